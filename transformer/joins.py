"""
Line joining rules.

A join groups consecutive lines of one output stream into a single
record, for example a stack trace that spans many lines:

    join:
      start:
        - regex: "^Traceback"
      while:
        - regex: "^\\s"

Three shapes are valid:
- start + end:   open on ``start``, join every line up to and including ``end``
- start + while: open on ``start``, join following lines while they match ``while``
- while:         join every run of consecutive lines matching ``while``

The rules are shared; each stream gets its own JoinHandle holding the state.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from core.errors import ConfigError
from transformer.filters import FilterNode, build_tree


VALID_SHAPES: tuple[tuple[bool, bool, bool], ...] = (
    (True, False, True),
    (True, True, False),
    (False, True, False),
)


def format_shapes() -> str:
    """Valid (start, while, end) presence combinations, as 0/1 triples."""
    return "[" + ", ".join(
        "({}, {}, {})".format(*(int(flag) for flag in shape)) for shape in VALID_SHAPES
    ) + "]"


class JoinKind(str, Enum):
    START_END = "start_end"
    START_WHILE = "start_while"
    WHILE = "while"


class JoinDecision(str, Enum):
    """What to do with a line, as decided by a join handle."""
    PASS = "pass"           # not part of a join
    START = "start"         # opens a new join
    CONTINUE = "continue"   # extends the open join (opens one if none)
    FINISH = "finish"       # extends the open join, then closes it


@dataclass(frozen=True)
class JoinSet:
    """
    Compiled join rules.

    Usage:
        joins = JoinSet.from_config({"start": [...], "end": [...]})
        handle = joins.new_handle()
        decision = handle.decide(line)
    """
    kind: JoinKind
    start: Optional[FilterNode] = None
    cont: Optional[FilterNode] = None
    end: Optional[FilterNode] = None

    @classmethod
    def from_config(cls, config: Any) -> "JoinSet":
        """
        Build the rules of a ``join`` config object.

        Raises:
            ConfigError: If the object is malformed or its shape is invalid
        """
        if not isinstance(config, dict):
            raise ConfigError("'join' must be a mapping of start / while / end seeds")

        unknown = set(config) - {"start", "while", "end"}
        if unknown:
            raise ConfigError(f"'join' has unknown keys: {', '.join(sorted(map(str, unknown)))}")

        shape = ("start" in config, "while" in config, "end" in config)
        if shape not in VALID_SHAPES:
            given = "({}, {}, {})".format(*(int(flag) for flag in shape))
            raise ConfigError(
                f"Invalid join combination {given} of (start, while, end), "
                f"valid combinations are: {format_shapes()}"
            )

        start = build_tree("join.start", config["start"]) if shape[0] else None
        cont = build_tree("join.while", config["while"]) if shape[1] else None
        end = build_tree("join.end", config["end"]) if shape[2] else None

        if shape == VALID_SHAPES[0]:
            kind = JoinKind.START_END
        elif shape == VALID_SHAPES[1]:
            kind = JoinKind.START_WHILE
        else:
            kind = JoinKind.WHILE
        return cls(kind=kind, start=start, cont=cont, end=end)

    def new_handle(self) -> "JoinHandle":
        return JoinHandle(self)


class JoinHandle:
    """Per-stream join state."""

    def __init__(self, rules: JoinSet):
        self.rules = rules
        self.inside = False

    def decide(self, text: str) -> JoinDecision:
        kind = self.rules.kind

        if kind is JoinKind.WHILE:
            return JoinDecision.CONTINUE if self.rules.cont.matches(text) else JoinDecision.PASS

        if kind is JoinKind.START_END:
            if not self.inside:
                if self.rules.start.matches(text):
                    self.inside = True
                    return JoinDecision.START
                return JoinDecision.PASS
            if self.rules.end.matches(text):
                self.inside = False
                return JoinDecision.FINISH
            return JoinDecision.CONTINUE

        # start + while
        if self.inside:
            if self.rules.cont.matches(text):
                return JoinDecision.CONTINUE
            self.inside = False
        if self.rules.start.matches(text):
            self.inside = True
            return JoinDecision.START
        return JoinDecision.PASS

    def should_join(self, text: str) -> bool:
        """True if the line belongs to a join."""
        return self.decide(text) is not JoinDecision.PASS

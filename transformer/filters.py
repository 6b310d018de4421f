"""
Named filter trees.

A filter is built from YAML seeds:

    filter:
      errors:
        - or:
          - regex: "ERROR"
          - regex: "FATAL"
        - not:
          - rx: "healthcheck"

``and``/``all`` and ``or``/``any`` seeds become nodes; ``regex``/``re``/``rx``
seeds become leaves; ``not`` is not a node of its own, it flips the
negation of every node built beneath it.

Design principles:
- Built once: trees are immutable after loading and shared by all streams
- Short circuit: and stops at the first false child, or at the first true one
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterator, Optional

from core.errors import ConfigError
from core.logging import get_logger


logger = get_logger(__name__)


class NodeType(str, Enum):
    """Kinds of node a filter tree is made of."""
    REGEX = "regex"
    AND = "and"
    OR = "or"


SEED_KEYWORDS: dict[str, Optional[NodeType]] = {
    "and": NodeType.AND,
    "all": NodeType.AND,
    "or": NodeType.OR,
    "any": NodeType.OR,
    "regex": NodeType.REGEX,
    "re": NodeType.REGEX,
    "rx": NodeType.REGEX,
    "not": None,
}


@dataclass(frozen=True)
class FilterNode:
    """
    A node of a filter tree.

    Regex leaves carry a compiled pattern; and/or nodes carry children.
    ``negate`` inverts the node's own result.
    """
    type: NodeType
    negate: bool = False
    pattern: Optional[re.Pattern] = None
    children: tuple["FilterNode", ...] = field(default_factory=tuple)

    def matches(self, text: str) -> bool:
        if self.type is NodeType.REGEX:
            result = self.pattern.search(text) is not None
        elif self.type is NodeType.AND:
            result = all(child.matches(text) for child in self.children)
        else:
            result = any(child.matches(text) for child in self.children)
        return result != self.negate


def build_nodes(seeds: Any, negate: bool = False, path: str = "") -> list[FilterNode]:
    """
    Build the nodes described by a list of seeds.

    Args:
        seeds: List of single-key mappings parsed from YAML
        negate: Negation inherited from enclosing ``not`` seeds
        path: Location of the seeds, used in error messages

    Raises:
        ConfigError: If a seed is malformed or a pattern does not compile
    """
    if not isinstance(seeds, list):
        raise ConfigError(f"{path or 'filter'}: expected a list of seeds")

    nodes: list[FilterNode] = []
    for index, seed in enumerate(seeds):
        where = f"{path}[{index}]"
        keyword, value = _unpack_seed(seed, where)
        node_type = SEED_KEYWORDS[keyword]

        if node_type is None:
            nodes.extend(build_nodes(value, not negate, f"{where}.not"))
        elif node_type is NodeType.REGEX:
            nodes.append(FilterNode(NodeType.REGEX, negate, _compile(value, where)))
        else:
            children = build_nodes(value, negate, f"{where}.{keyword}")
            nodes.append(FilterNode(node_type, negate, children=tuple(children)))
    return nodes


def build_tree(name: str, seeds: Any) -> FilterNode:
    """
    Build the root node of a named filter.

    No seeds produce an always-true root, a single top level node is
    the root itself, several are wrapped in an implicit ``and``.
    """
    nodes = build_nodes(seeds if seeds is not None else [], path=name)
    if not nodes:
        logger.warning("Filter has no nodes and will match everything", filter=name)
        return FilterNode(NodeType.AND)
    if len(nodes) == 1:
        return nodes[0]
    return FilterNode(NodeType.AND, children=tuple(nodes))


def _unpack_seed(seed: Any, where: str) -> tuple[str, Any]:
    if not isinstance(seed, dict) or len(seed) != 1:
        raise ConfigError(f"{where}: a seed must be a mapping with exactly one key")
    ((keyword, value),) = seed.items()
    if keyword not in SEED_KEYWORDS:
        raise ConfigError(
            f"{where}: unknown seed '{keyword}', expected one of {', '.join(SEED_KEYWORDS)}"
        )
    return keyword, value


def _compile(pattern: Any, where: str) -> re.Pattern:
    if not isinstance(pattern, str):
        raise ConfigError(f"{where}: regex must be a string")
    try:
        return re.compile(pattern)
    except re.error as e:
        raise ConfigError(f"{where}: invalid regex {pattern!r}: {e}") from e


class FilterSet:
    """
    Collection of named filter trees.

    Usage:
        filters = FilterSet.from_config({"errors": [{"regex": "ERROR"}]})
        filters.is_match("errors", "ERROR: disk full")  # True
    """

    def __init__(self, trees: dict[str, FilterNode]):
        self._trees = dict(trees)

    @classmethod
    def from_config(cls, config: Any) -> "FilterSet":
        """
        Build every filter of a ``filter`` config object.

        Raises:
            ConfigError: If the object is not a mapping of names to seed lists
        """
        if not isinstance(config, dict):
            raise ConfigError("'filter' must map filter names to lists of seeds")
        trees = {str(name): build_tree(str(name), seeds) for name, seeds in config.items()}
        logger.debug("Filters loaded", names=sorted(trees))
        return cls(trees)

    def is_match(self, name: str, text: str) -> bool:
        """
        Test text against the named filter.

        Raises:
            KeyError: If no filter has that name
        """
        return self._trees[name].matches(text)

    def get(self, name: str) -> FilterNode:
        return self._trees[name]

    def __contains__(self, name: object) -> bool:
        return name in self._trees

    def __iter__(self) -> Iterator[str]:
        return iter(self._trees)

    def __len__(self) -> int:
        return len(self._trees)

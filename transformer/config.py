"""
Transform pipeline configuration.

The configuration is YAML and may be split over several files. Three
top-level objects are understood, each of which may be defined once:

    filter:            # named filter trees (see transformer.filters)
      errors: [...]
    join:              # join rules (see transformer.joins)
      start: [...]
      end: [...]
    execute:           # required
      ops:
        - join
        - filter: errors
      load:
        - 127.0.0.1:50000

Files that cannot be opened are skipped with a warning, since the other
files may still hold everything that is needed.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Optional, Union

import yaml

from core.errors import ConfigError
from core.logging import get_logger
from transformer.filters import FilterSet
from transformer.joins import JoinSet
from transformer.pipeline import FilterOperation, JoinOperation, Pipeline
from transport.sinks import parse_address


logger = get_logger(__name__)


KNOWN_OBJECTS = ("filter", "join", "execute")


class UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader that rejects mappings with repeated keys."""

    def construct_mapping(self, node, deep=False):
        seen = set()
        for key_node, _ in node.value:
            key = self.construct_object(key_node, deep=deep)
            try:
                duplicate = key in seen
            except TypeError:
                # Unhashable keys are reported by the base implementation
                break
            if duplicate:
                raise ConfigError(
                    f"Duplicate key {key!r} at line {key_node.start_mark.line + 1}"
                )
            seen.add(key)
        return super().construct_mapping(node, deep=deep)


def load_yaml(text: str) -> Any:
    """
    Parse a YAML document, rejecting duplicate keys.

    Raises:
        ConfigError: On invalid YAML or a repeated key
    """
    try:
        return yaml.load(text, Loader=UniqueKeyLoader)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse yaml: {e}") from e


class OpKind(str, Enum):
    JOIN = "join"
    FILTER = "filter"


@dataclass(frozen=True)
class OpSpec:
    """One entry of ``execute.ops``."""
    kind: OpKind
    filter_name: Optional[str] = None


@dataclass(frozen=True)
class ExecuteConfig:
    """The ``execute`` object: operations to run and where to send results."""
    ops: tuple[OpSpec, ...] = ()
    loaders: tuple[str, ...] = ()

    @classmethod
    def from_config(cls, config: Any) -> "ExecuteConfig":
        if config is None:
            return cls()
        if not isinstance(config, dict):
            raise ConfigError("'execute' must be a mapping with 'ops' and 'load'")

        unknown = set(config) - {"ops", "load"}
        if unknown:
            raise ConfigError(f"'execute' has unknown keys: {', '.join(sorted(map(str, unknown)))}")

        ops = tuple(_parse_op(op, index) for index, op in enumerate(config.get("ops") or []))

        loaders = config.get("load") or []
        if not isinstance(loaders, list):
            raise ConfigError("'execute.load' must be a list of HOST:PORT addresses")
        for address in loaders:
            try:
                parse_address(str(address))
            except ValueError as e:
                raise ConfigError(f"execute.load: {e}") from e

        return cls(ops=ops, loaders=tuple(str(a) for a in loaders))


def _parse_op(op: Any, index: int) -> OpSpec:
    where = f"execute.ops[{index}]"
    if op == "join":
        return OpSpec(OpKind.JOIN)
    if isinstance(op, dict) and len(op) == 1 and "filter" in op:
        name = op["filter"]
        if not isinstance(name, str):
            raise ConfigError(f"{where}: filter name must be a string")
        return OpSpec(OpKind.FILTER, filter_name=name)
    raise ConfigError(f"{where}: expected 'join' or {{filter: NAME}}, got {op!r}")


@dataclass
class TransformConfig:
    """
    Complete, validated transform configuration.

    Usage:
        config = load_config(["filters.yaml", "pipeline.yaml"])
        pipeline = config.build_pipeline()
    """
    execute: ExecuteConfig
    filters: FilterSet = field(default_factory=lambda: FilterSet({}))
    join: Optional[JoinSet] = None

    def __post_init__(self) -> None:
        for op in self.execute.ops:
            if op.kind is OpKind.JOIN and self.join is None:
                raise ConfigError("execute.ops uses 'join' but no join object is defined")
            if op.kind is OpKind.FILTER and op.filter_name not in self.filters:
                raise ConfigError(f"execute.ops references undefined filter '{op.filter_name}'")

    @classmethod
    def from_objects(cls, objects: dict[str, Any]) -> "TransformConfig":
        """Build from the merged top-level objects of every config file."""
        if "execute" not in objects:
            raise ConfigError("Missing mandatory config object: 'execute'")
        return cls(
            execute=ExecuteConfig.from_config(objects["execute"]),
            filters=FilterSet.from_config(objects["filter"]) if "filter" in objects else FilterSet({}),
            join=JoinSet.from_config(objects["join"]) if "join" in objects else None,
        )

    def build_pipeline(self) -> Pipeline:
        """Create a fresh pipeline; each stream needs its own join state."""
        operations = []
        for op in self.execute.ops:
            if op.kind is OpKind.JOIN:
                operations.append(JoinOperation(self.join.new_handle()))
            else:
                operations.append(FilterOperation(self.filters, op.filter_name))
        return Pipeline(operations)


def merge_documents(documents: Iterable[tuple[str, Any]]) -> dict[str, Any]:
    """
    Merge the top-level objects of several parsed documents.

    Raises:
        ConfigError: If an object is defined by more than one document
    """
    merged: dict[str, Any] = {}
    origin: dict[str, str] = {}
    for source, document in documents:
        if document is None:
            continue
        if not isinstance(document, dict):
            raise ConfigError(f"{source}: top level must be a mapping")
        for key, value in document.items():
            if key not in KNOWN_OBJECTS:
                logger.warning("Ignoring unknown config object", object=key, source=source)
                continue
            if key in merged:
                raise ConfigError(
                    f"Duplicate config value: '{key}' defined in {origin[key]} and {source}"
                )
            merged[key] = value
            origin[key] = source
    return merged


def load_config(paths: Iterable[Union[str, Path]]) -> TransformConfig:
    """
    Read, merge and validate config files.

    Raises:
        ConfigError: If the merged configuration is invalid or incomplete
    """
    documents = []
    for path in paths:
        try:
            text = Path(path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Skipping unreadable config file", path=str(path), error=str(e))
            continue
        try:
            documents.append((str(path), load_yaml(text)))
        except ConfigError as e:
            raise ConfigError(f"{path}: {e}") from e

    config = TransformConfig.from_objects(merge_documents(documents))
    logger.info(
        "Transform config loaded",
        filters=len(config.filters),
        join=config.join.kind.value if config.join else None,
        ops=len(config.execute.ops),
        loaders=len(config.execute.loaders),
    )
    return config

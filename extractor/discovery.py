"""
Executable discovery.

Walks an execution root depth first, in priority order, and reports every
regular file with an execute bit set. Symlinks are never followed.
"""

import os
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Union

from core.errors import PriorityError
from core.logging import get_logger
from extractor.priority import Priority, sort_key


logger = get_logger(__name__)


@dataclass(frozen=True)
class Executable:
    """A file that will be run, with its parsed priority."""
    path: Path
    priority: Priority

    @property
    def name(self) -> str:
        return self.path.name


@dataclass(frozen=True)
class DiscoveryError:
    """A path that could not be listed or prioritised."""
    path: Path
    error: Exception

    @property
    def message(self) -> str:
        return f"{self.path}: {self.error}"


Discovered = Union[Executable, DiscoveryError]


def is_executable(mode: int) -> bool:
    """True if any of the user, group or other execute bits are set."""
    return mode & 0o111 != 0


def discover(root: Union[str, Path]) -> Iterator[Discovered]:
    """
    Yield executables below root in run order.

    Args:
        root: Directory to walk (a single executable file is also accepted)

    Yields:
        Executable for each runnable file, DiscoveryError for each path
        that could not be read or carries an invalid priority
    """
    root = Path(root)
    try:
        st = root.stat()
    except OSError as e:
        yield DiscoveryError(root, e)
        return

    if stat.S_ISDIR(st.st_mode):
        yield from _walk(root)
    elif stat.S_ISREG(st.st_mode) and is_executable(st.st_mode):
        yield from _prioritise(root)


def _walk(directory: Path) -> Iterator[Discovered]:
    try:
        with os.scandir(directory) as it:
            entries = sorted(it, key=lambda e: sort_key(e.name))
    except OSError as e:
        yield DiscoveryError(directory, e)
        return

    for entry in entries:
        path = Path(entry.path)
        try:
            if entry.is_symlink():
                continue
            if entry.is_dir(follow_symlinks=False):
                yield from _walk(path)
                continue
            if not entry.is_file(follow_symlinks=False):
                continue
            mode = entry.stat(follow_symlinks=False).st_mode
        except OSError as e:
            yield DiscoveryError(path, e)
            continue

        if is_executable(mode):
            yield from _prioritise(path)


def _prioritise(path: Path) -> Iterator[Discovered]:
    try:
        yield Executable(path, Priority.from_name(path.name))
    except PriorityError as e:
        yield DiscoveryError(path, e)


def batches(discovered: Iterable[Discovered]) -> Iterator[Union[list[Executable], DiscoveryError]]:
    """
    Group consecutive executables of equal priority.

    Errors are passed through in position and do not split a batch.
    """
    current: list[Executable] = []
    for item in discovered:
        if isinstance(item, DiscoveryError):
            yield item
            continue
        if current and item.priority != current[0].priority:
            yield current
            current = []
        current.append(item)
    if current:
        yield current

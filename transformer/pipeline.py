"""
Operations applied to one output stream of one process.

Each stream worker owns a Pipeline: an ordered chain of operations where
the records produced by one operation are fed to the next. Headers pass
through every operation untouched.
"""

from abc import ABC, abstractmethod
from typing import Iterable, Optional

from transformer.filters import FilterSet
from transformer.joins import JoinDecision, JoinHandle
from transport.records import Data, Record


class Operation(ABC):
    """A stateful record transformer."""

    @abstractmethod
    def feed(self, record: Record) -> list[Record]:
        """Process one record, returning whatever is ready to go downstream."""
        pass

    def flush(self) -> list[Record]:
        """Release anything still held once the stream has ended."""
        return []


class FilterOperation(Operation):
    """Keeps only the data records whose line matches a named filter."""

    def __init__(self, filters: FilterSet, name: str):
        self.filters = filters
        self.name = name

    def feed(self, record: Record) -> list[Record]:
        if not isinstance(record, Data):
            return [record]
        if self.filters.is_match(self.name, record.text):
            return [record]
        return []


class JoinOperation(Operation):
    """
    Merges related lines into one data record.

    The merged record keeps the metadata of its first line; the lines
    are separated by newlines.
    """

    def __init__(self, handle: JoinHandle):
        self.handle = handle
        self._ongoing: Optional[Data] = None
        self._parts: list[bytes] = []

    def feed(self, record: Record) -> list[Record]:
        if not isinstance(record, Data):
            return self.flush() + [record]

        decision = self.handle.decide(record.text)

        if decision is JoinDecision.PASS:
            return self.flush() + [record]

        if decision is JoinDecision.START:
            out = self.flush()
            self._begin(record)
            return out

        if self._ongoing is None:
            self._begin(record)
        else:
            self._parts.append(record.data)

        if decision is JoinDecision.FINISH:
            return self.flush()
        return []

    def flush(self) -> list[Record]:
        if self._ongoing is None:
            return []
        joined = self._ongoing.with_data(b"\n".join(self._parts))
        self._ongoing = None
        self._parts = []
        return [joined]

    def _begin(self, record: Data) -> None:
        self._ongoing = record
        self._parts = [record.data]


class Pipeline:
    """
    Ordered chain of operations.

    Usage:
        pipeline = Pipeline([JoinOperation(joins.new_handle()), FilterOperation(filters, "errors")])
        for record in incoming:
            emit(pipeline.feed(record))
        emit(pipeline.flush())
    """

    def __init__(self, operations: Iterable[Operation] = ()):
        self.operations = list(operations)

    def feed(self, record: Record) -> list[Record]:
        records = [record]
        for operation in self.operations:
            records = _apply(operation, records)
        return records

    def flush(self) -> list[Record]:
        # Records released by one operation still pass through the ones after it
        records: list[Record] = []
        for operation in self.operations:
            records = _apply(operation, records) + operation.flush()
        return records


def _apply(operation: Operation, records: list[Record]) -> list[Record]:
    produced: list[Record] = []
    for record in records:
        produced.extend(operation.feed(record))
    return produced

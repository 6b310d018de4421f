"""
Record model exchanged between the extract, transform and load stages.

A stream is a sequence of records opened by StreamStart and closed by
StreamEnd. In between, each captured process contributes a Start header,
any number of Data records (one per output line) and an End header.
Log and Error records carry out-of-band diagnostics.

Design principles:
- Plain dataclasses: records are values, cheap to copy and compare
- Wire agnostic: encoding lives in transport.codec
- Time is always integer nanoseconds since the Unix epoch
"""

import time
from dataclasses import dataclass, field, replace
from enum import Enum, IntEnum
from typing import ClassVar, Union


RECORD_VERSION = 1


class RecordKind(str, Enum):
    """Wire tag identifying what kind of record a frame carries."""
    STREAM_START = "ss"
    STREAM_END = "se"
    HEADER = "h"
    DATA = "d"
    LOG = "l"
    ERROR = "e"


class Tag(IntEnum):
    """Integer keys of a record's payload map."""
    DATA_CONTEXT = 0
    VERSION = 1
    TIME = 2
    ID = 3
    PID = 4
    DATA = 5
    UTF8_DATA = 6
    ERROR = 7


class DataContext(IntEnum):
    """Where in a process's lifetime a header or data record belongs."""
    START = 0
    STDOUT = 1
    STDERR = 2
    END = 3

    @property
    def label(self) -> str:
        return self.name.capitalize()

    @property
    def is_header(self) -> bool:
        return self in (DataContext.START, DataContext.END)

    @property
    def is_stream(self) -> bool:
        return self in (DataContext.STDOUT, DataContext.STDERR)


def now_nanos() -> int:
    """Current wall clock time in nanoseconds since the Unix epoch."""
    return time.time_ns()


@dataclass(frozen=True)
class StreamStart:
    """Opens a record stream."""
    kind: ClassVar[RecordKind] = RecordKind.STREAM_START


@dataclass(frozen=True)
class StreamEnd:
    """Closes a record stream."""
    kind: ClassVar[RecordKind] = RecordKind.STREAM_END


@dataclass(frozen=True)
class Header:
    """
    Marks the start or the end of a captured process.

    The id is the executable's file name and groups every record
    that the process produced.
    """
    kind: ClassVar[RecordKind] = RecordKind.HEADER

    id: str
    pid: int
    context: DataContext
    time: int = field(default_factory=now_nanos)
    version: int = RECORD_VERSION


@dataclass(frozen=True)
class Data:
    """A single line of output from a captured process."""
    kind: ClassVar[RecordKind] = RecordKind.DATA

    id: str
    pid: int
    context: DataContext
    data: bytes
    time: int = field(default_factory=now_nanos)
    version: int = RECORD_VERSION

    @property
    def text(self) -> str:
        """The line decoded as UTF-8, invalid sequences replaced."""
        return self.data.decode("utf-8", errors="replace")

    def with_data(self, data: bytes) -> "Data":
        return replace(self, data=data)


@dataclass(frozen=True)
class Log:
    """Free-form diagnostic text."""
    kind: ClassVar[RecordKind] = RecordKind.LOG

    log: str
    version: int = RECORD_VERSION


@dataclass(frozen=True)
class ErrorInfo:
    """
    Error details carried by an Error record.

    Holds the approximate time the error occurred, its category and the
    textual message of the original exception.
    """
    msg: str
    kind: str = "Generic"
    time: int = field(default_factory=now_nanos)


@dataclass(frozen=True)
class Error:
    """An error reported in-band by a pipeline stage."""
    kind: ClassVar[RecordKind] = RecordKind.ERROR

    error: ErrorInfo
    version: int = RECORD_VERSION

    @classmethod
    def from_exception(cls, exc: BaseException, version: int = RECORD_VERSION) -> "Error":
        return cls(error=ErrorInfo(msg=str(exc) or type(exc).__name__), version=version)


Record = Union[StreamStart, StreamEnd, Header, Data, Log, Error]


__all__ = [
    "RECORD_VERSION",
    "RecordKind",
    "Tag",
    "DataContext",
    "StreamStart",
    "StreamEnd",
    "Header",
    "Data",
    "Log",
    "ErrorInfo",
    "Error",
    "Record",
    "now_nanos",
]

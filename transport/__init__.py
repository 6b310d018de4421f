"""
Record model, wire codec and sinks shared by every pipeline stage.
"""

from transport.codec import (
    FrameDecoder,
    decode_record,
    encode_frame,
    encode_record,
    read_frames,
    read_records,
    write_record,
)
from transport.records import (
    Data,
    DataContext,
    Error,
    ErrorInfo,
    Header,
    Log,
    Record,
    RecordKind,
    StreamEnd,
    StreamStart,
)
from transport.sinks import DebugSink, FramedSink, MemorySink, RecordSink, open_sink

__all__ = [
    "Data",
    "DataContext",
    "DebugSink",
    "Error",
    "ErrorInfo",
    "FrameDecoder",
    "FramedSink",
    "Header",
    "Log",
    "MemorySink",
    "Record",
    "RecordKind",
    "RecordSink",
    "StreamEnd",
    "StreamStart",
    "decode_record",
    "encode_frame",
    "encode_record",
    "open_sink",
    "read_frames",
    "read_records",
    "write_record",
]

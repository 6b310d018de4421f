"""
CBOR record codec and length-delimited framing.

Records are CBOR maps tagged externally: ``{"t": "<kind>", "c": {...}}``
where the content map uses the integer keys of ``Tag``. Each encoded record
travels in a frame prefixed with its length as a 4-byte big-endian
unsigned integer.

Decoding is lenient where it can be and strict where it must be:
unknown payload keys are ignored, missing fields are reported by name.
"""

import asyncio
import struct
from typing import Any, AsyncIterator, Optional, Union

import cbor2

from core.config import settings
from core.errors import FrameTooLargeError, RecordDecodeError, RecordError
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
    Tag,
)


LENGTH_PREFIX = struct.Struct(">I")


# =========================================
# Record <-> CBOR
# =========================================

def record_to_wire(record: Record) -> dict[str, Any]:
    """Build the tagged map that represents a record on the wire."""
    if isinstance(record, (StreamStart, StreamEnd)):
        return {"t": record.kind.value}

    if isinstance(record, Header):
        content = {
            int(Tag.VERSION): record.version,
            int(Tag.TIME): record.time,
            int(Tag.ID): record.id,
            int(Tag.DATA_CONTEXT): int(record.context),
            int(Tag.PID): record.pid,
        }
    elif isinstance(record, Data):
        content = {
            int(Tag.VERSION): record.version,
            int(Tag.TIME): record.time,
            int(Tag.ID): record.id,
            int(Tag.PID): record.pid,
            int(Tag.DATA_CONTEXT): int(record.context),
            int(Tag.DATA): bytes(record.data),
        }
    elif isinstance(record, Log):
        content = {
            int(Tag.VERSION): record.version,
            int(Tag.UTF8_DATA): record.log,
        }
    elif isinstance(record, Error):
        content = {
            int(Tag.VERSION): record.version,
            int(Tag.ERROR): {
                "time": record.error.time,
                "kind": record.error.kind,
                "msg": record.error.msg,
            },
        }
    else:
        raise RecordError(f"Cannot encode object of type {type(record).__name__}")

    return {"t": record.kind.value, "c": content}


def encode_record(record: Record) -> bytes:
    """Serialize a record to CBOR."""
    return cbor2.dumps(record_to_wire(record))


def decode_record(payload: bytes) -> Record:
    """
    Deserialize a CBOR payload into a record.

    Raises:
        RecordDecodeError: If the payload is not a well formed record
    """
    try:
        obj = cbor2.loads(payload)
    except (cbor2.CBORDecodeError, ValueError, TypeError) as e:
        raise RecordDecodeError(f"Invalid CBOR: {e}") from e
    return record_from_wire(obj)


def record_from_wire(obj: Any) -> Record:
    """Build a record from its decoded tagged map."""
    if not isinstance(obj, dict) or "t" not in obj:
        raise RecordDecodeError("Expected a tagged record map")

    try:
        kind = RecordKind(obj["t"])
    except ValueError:
        raise RecordDecodeError(f"Unknown record kind: {obj['t']!r}") from None

    if kind is RecordKind.STREAM_START:
        return StreamStart()
    if kind is RecordKind.STREAM_END:
        return StreamEnd()

    content = obj.get("c")
    if not isinstance(content, dict):
        raise RecordDecodeError(f"Record of kind {kind.name} has no content map")

    if kind is RecordKind.HEADER:
        return Header(
            version=_int(content, Tag.VERSION, "version"),
            time=_int(content, Tag.TIME, "time"),
            id=_str(content, Tag.ID, "id"),
            pid=_int(content, Tag.PID, "pid"),
            context=_context(content),
        )
    if kind is RecordKind.DATA:
        return Data(
            version=_int(content, Tag.VERSION, "version"),
            time=_int(content, Tag.TIME, "time"),
            id=_str(content, Tag.ID, "id"),
            pid=_int(content, Tag.PID, "pid"),
            context=_context(content),
            data=_bytes(content),
        )
    if kind is RecordKind.LOG:
        return Log(
            version=_int(content, Tag.VERSION, "version"),
            log=_str(content, Tag.UTF8_DATA, "log"),
        )
    return Error(
        version=_int(content, Tag.VERSION, "version"),
        error=_error_info(content),
    )


def _required(content: dict, tag: Tag, name: str) -> Any:
    if int(tag) not in content:
        raise RecordDecodeError(f"Missing field '{name}'")
    return content[int(tag)]


def _int(content: dict, tag: Tag, name: str) -> int:
    value = _required(content, tag, name)
    if isinstance(value, bool) or not isinstance(value, int):
        raise RecordDecodeError(f"Field '{name}' must be an integer, got {type(value).__name__}")
    return value


def _str(content: dict, tag: Tag, name: str) -> str:
    value = _required(content, tag, name)
    if not isinstance(value, str):
        raise RecordDecodeError(f"Field '{name}' must be a string, got {type(value).__name__}")
    return value


def _context(content: dict) -> DataContext:
    value = _int(content, Tag.DATA_CONTEXT, "cxt")
    try:
        return DataContext(value)
    except ValueError:
        raise RecordDecodeError(f"Unknown data context: {value}") from None


def _bytes(content: dict) -> bytes:
    value = _required(content, Tag.DATA, "data")
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        return value.encode("utf-8")
    # Older producers write the line as a sequence of octets
    if isinstance(value, list) and all(isinstance(b, int) and 0 <= b <= 255 for b in value):
        return bytes(value)
    raise RecordDecodeError("Field 'data' must be a byte string")


def _error_info(content: dict) -> ErrorInfo:
    # Error details have been written under both the Error and Utf8Data keys
    if int(Tag.ERROR) in content:
        value = content[int(Tag.ERROR)]
    elif int(Tag.UTF8_DATA) in content:
        value = content[int(Tag.UTF8_DATA)]
    else:
        raise RecordDecodeError("Missing field 'error'")

    if not isinstance(value, dict):
        raise RecordDecodeError("Field 'error' must be a map")
    for name in ("time", "kind", "msg"):
        if name not in value:
            raise RecordDecodeError(f"Missing field 'error.{name}'")
    if isinstance(value["time"], bool) or not isinstance(value["time"], int):
        raise RecordDecodeError("Field 'error.time' must be an integer")

    return ErrorInfo(time=value["time"], kind=str(value["kind"]), msg=str(value["msg"]))


# =========================================
# Framing
# =========================================

def encode_frame(payload: bytes, max_frame_bytes: Optional[int] = None) -> bytes:
    """Prefix a payload with its 4-byte big-endian length."""
    limit = max_frame_bytes or settings.max_frame_bytes
    if len(payload) > limit:
        raise FrameTooLargeError(len(payload), limit)
    return LENGTH_PREFIX.pack(len(payload)) + payload


class FrameDecoder:
    """
    Incremental decoder for length-delimited frames.

    Accepts input split at arbitrary points and returns every complete
    payload as soon as its last byte arrives.

    Usage:
        decoder = FrameDecoder()
        for chunk in chunks:
            for payload in decoder.feed(chunk):
                handle(decode_record(payload))
        assert decoder.pending == 0
    """

    def __init__(self, max_frame_bytes: Optional[int] = None):
        self.max_frame_bytes = max_frame_bytes or settings.max_frame_bytes
        self._buffer = bytearray()

    def feed(self, chunk: bytes) -> list[bytes]:
        self._buffer.extend(chunk)
        payloads = []
        while len(self._buffer) >= LENGTH_PREFIX.size:
            (length,) = LENGTH_PREFIX.unpack_from(self._buffer)
            if length > self.max_frame_bytes:
                raise FrameTooLargeError(length, self.max_frame_bytes)
            end = LENGTH_PREFIX.size + length
            if len(self._buffer) < end:
                break
            payloads.append(bytes(self._buffer[LENGTH_PREFIX.size:end]))
            del self._buffer[:end]
        return payloads

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet part of a complete frame."""
        return len(self._buffer)


async def read_frames(
    reader: asyncio.StreamReader,
    idle_timeout: Optional[float] = None,
    max_frame_bytes: Optional[int] = None,
) -> AsyncIterator[bytes]:
    """
    Yield frame payloads from a stream until the peer closes it.

    Raises:
        asyncio.TimeoutError: If no frame starts within idle_timeout seconds
        FrameTooLargeError: If a length prefix exceeds the limit
        RecordDecodeError: If the stream ends in the middle of a frame
    """
    limit = max_frame_bytes or settings.max_frame_bytes

    while True:
        try:
            prefix = await asyncio.wait_for(reader.readexactly(LENGTH_PREFIX.size), idle_timeout)
        except asyncio.IncompleteReadError as e:
            if not e.partial:
                return
            raise RecordDecodeError("Stream closed inside a length prefix") from e

        (length,) = LENGTH_PREFIX.unpack(prefix)
        if length > limit:
            raise FrameTooLargeError(length, limit)

        try:
            payload = await asyncio.wait_for(reader.readexactly(length), idle_timeout)
        except asyncio.IncompleteReadError as e:
            raise RecordDecodeError(
                f"Stream closed after {len(e.partial)} of {length} frame bytes"
            ) from e

        yield payload


async def read_records(
    reader: asyncio.StreamReader,
    idle_timeout: Optional[float] = None,
    max_frame_bytes: Optional[int] = None,
) -> AsyncIterator[Union[Record, RecordDecodeError]]:
    """
    Yield decoded records from a stream.

    A frame that does not decode is yielded as its RecordDecodeError
    so the caller decides whether to skip it or give up.
    """
    async for payload in read_frames(reader, idle_timeout, max_frame_bytes):
        try:
            yield decode_record(payload)
        except RecordDecodeError as e:
            yield e


async def write_record(writer: asyncio.StreamWriter, record: Record) -> None:
    """Encode, frame and flush a single record."""
    writer.write(encode_frame(encode_record(record)))
    await writer.drain()

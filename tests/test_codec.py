"""
Tests for the CBOR record codec and frame handling.
"""

import asyncio
import struct

import cbor2
import pytest

from core.errors import FrameTooLargeError, RecordDecodeError, RecordError
from transport.codec import (
    FrameDecoder,
    decode_record,
    encode_frame,
    encode_record,
    read_frames,
    read_records,
    record_to_wire,
)
from transport.records import (
    Data,
    DataContext,
    Error,
    ErrorInfo,
    Header,
    Log,
    StreamEnd,
    StreamStart,
)


def _reader(data: bytes, eof: bool = True) -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    reader.feed_data(data)
    if eof:
        reader.feed_eof()
    return reader


def test_stream_markers_have_no_content():
    """StreamStart and StreamEnd carry only their tag."""
    assert record_to_wire(StreamStart()) == {"t": "ss"}
    assert record_to_wire(StreamEnd()) == {"t": "se"}


def test_data_uses_integer_keys():
    """Data content is keyed by the integer tags."""
    record = Data(id="10-probe", pid=42, context=DataContext.STDERR, data=b"oops", time=7)
    wire = record_to_wire(record)

    assert wire["t"] == "d"
    assert wire["c"] == {0: 2, 1: 1, 2: 7, 3: "10-probe", 4: 42, 5: b"oops"}


def test_header_decodes_from_cbor():
    """A header written by hand decodes into a Header."""
    payload = cbor2.dumps({"t": "h", "c": {0: 0, 1: 1, 2: 99, 3: "probe", 4: 5}})
    record = decode_record(payload)

    assert record == Header(id="probe", pid=5, context=DataContext.START, time=99, version=1)


def test_error_and_log_survive_encoding():
    """Log and Error records decode to equal values."""
    log = Log(log="extract started")
    error = Error(ErrorInfo(msg="permission denied", kind="Io", time=123))

    assert decode_record(encode_record(log)) == log
    assert decode_record(encode_record(error)) == error


def test_error_details_under_text_key():
    """Error details stored under the text key are accepted."""
    payload = cbor2.dumps({"t": "e", "c": {1: 1, 6: {"time": 1, "kind": "Generic", "msg": "boom"}}})
    record = decode_record(payload)

    assert isinstance(record, Error)
    assert record.error.msg == "boom"


def test_data_as_list_of_octets():
    """Data lines written as integer arrays are converted to bytes."""
    payload = cbor2.dumps({"t": "d", "c": {0: 1, 1: 1, 2: 3, 3: "p", 4: 1, 5: [104, 105]}})
    assert decode_record(payload).data == b"hi"


def test_unknown_payload_keys_are_ignored():
    """Extra keys in the content map do not break decoding."""
    payload = cbor2.dumps({"t": "l", "c": {1: 2, 6: "hello", 42: "future"}})
    assert decode_record(payload) == Log(log="hello", version=2)


def test_missing_field_is_named():
    """A missing field is reported by name."""
    payload = cbor2.dumps({"t": "h", "c": {0: 0, 1: 1, 2: 99, 4: 5}})
    with pytest.raises(RecordDecodeError, match="'id'"):
        decode_record(payload)


def test_wrong_field_type_rejected():
    """A string where an integer belongs is an error."""
    payload = cbor2.dumps({"t": "h", "c": {0: 0, 1: "one", 2: 99, 3: "p", 4: 5}})
    with pytest.raises(RecordDecodeError, match="version"):
        decode_record(payload)


def test_unknown_context_rejected():
    """Context values outside Start..End do not decode."""
    payload = cbor2.dumps({"t": "d", "c": {0: 9, 1: 1, 2: 3, 3: "p", 4: 1, 5: b"x"}})
    with pytest.raises(RecordDecodeError, match="context"):
        decode_record(payload)


@pytest.mark.parametrize("payload", [
    b"\xff\xff\xff",
    cbor2.dumps([1, 2, 3]),
    cbor2.dumps({"t": "zz"}),
    cbor2.dumps({"t": "d"}),
])
def test_garbage_payloads(payload):
    """Malformed payloads raise RecordDecodeError, never anything else."""
    with pytest.raises(RecordDecodeError):
        decode_record(payload)


def test_encode_rejects_non_records():
    """Only record types can be encoded."""
    with pytest.raises(RecordError):
        encode_record("not a record")


def test_frame_prefix_is_big_endian_length():
    """Frames start with the payload length as a 4-byte big-endian integer."""
    frame = encode_frame(b"abc")
    assert frame == b"\x00\x00\x00\x03abc"


def test_encode_frame_limit():
    """Payloads over the limit are refused."""
    with pytest.raises(FrameTooLargeError):
        encode_frame(b"x" * 11, max_frame_bytes=10)


def test_frame_decoder_reassembles_split_input():
    """Frames split at arbitrary points are reassembled."""
    data = encode_frame(b"first") + encode_frame(b"") + encode_frame(b"second")
    decoder = FrameDecoder()

    payloads = []
    for i in range(0, len(data), 3):
        payloads.extend(decoder.feed(data[i:i + 3]))

    assert payloads == [b"first", b"", b"second"]
    assert decoder.pending == 0


def test_frame_decoder_keeps_partial_frame():
    """An incomplete frame stays buffered."""
    decoder = FrameDecoder()
    assert decoder.feed(b"\x00\x00\x00\x05ab") == []
    assert decoder.pending == 6


def test_frame_decoder_rejects_oversized_prefix():
    """A prefix over the limit fails before the payload arrives."""
    decoder = FrameDecoder(max_frame_bytes=4)
    with pytest.raises(FrameTooLargeError):
        decoder.feed(struct.pack(">I", 5))


@pytest.mark.asyncio
async def test_read_frames_until_clean_eof():
    """Frames are yielded until the stream ends on a boundary."""
    reader = _reader(encode_frame(b"a") + encode_frame(b"bc"))
    payloads = [payload async for payload in read_frames(reader)]
    assert payloads == [b"a", b"bc"]


@pytest.mark.asyncio
async def test_read_frames_truncated_payload():
    """A stream that stops inside a frame is an error."""
    reader = _reader(b"\x00\x00\x00\x05ab")
    with pytest.raises(RecordDecodeError):
        async for _ in read_frames(reader):
            pass


@pytest.mark.asyncio
async def test_read_frames_truncated_prefix():
    """A stream that stops inside a length prefix is an error."""
    reader = _reader(encode_frame(b"ok") + b"\x00\x00")
    payloads = []
    with pytest.raises(RecordDecodeError):
        async for payload in read_frames(reader):
            payloads.append(payload)
    assert payloads == [b"ok"]


@pytest.mark.asyncio
async def test_read_frames_idle_timeout():
    """A silent connection times out."""
    reader = _reader(b"", eof=False)
    with pytest.raises(asyncio.TimeoutError):
        async for _ in read_frames(reader, idle_timeout=0.05):
            pass


@pytest.mark.asyncio
async def test_read_records_yields_decode_errors_in_place():
    """A bad frame is yielded as an error and reading continues."""
    data = (
        encode_frame(encode_record(StreamStart()))
        + encode_frame(b"\xff")
        + encode_frame(encode_record(StreamEnd()))
    )
    items = [item async for item in read_records(_reader(data))]

    assert isinstance(items[0], StreamStart)
    assert isinstance(items[1], RecordDecodeError)
    assert isinstance(items[2], StreamEnd)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

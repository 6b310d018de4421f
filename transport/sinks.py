"""
Destinations a record stream can be written to.

Design principles:
- One interface: producers only ever call send() and close()
- Framed sinks own their connection and close it exactly once
- The debug sink is for humans; it never writes CBOR
"""

import asyncio
import sys
from abc import ABC, abstractmethod
from typing import Optional, TextIO

from core.logging import get_logger
from transport.codec import write_record
from transport.records import Data, Error, Header, Log, Record, StreamEnd, StreamStart


logger = get_logger(__name__)


class RecordSink(ABC):
    """
    Abstract destination for records.

    Usage:
        sink = await open_sink(tcp="127.0.0.1:49999")
        await sink.send(StreamStart())
        ...
        await sink.close()
    """

    @abstractmethod
    async def send(self, record: Record) -> None:
        """Write a single record."""
        pass

    async def close(self) -> None:
        """Flush and release the destination."""
        return None


class FramedSink(RecordSink):
    """Writes length-delimited CBOR frames to a stream connection."""

    def __init__(self, writer: asyncio.StreamWriter, peer: str = ""):
        self.writer = writer
        self.peer = peer
        self._closed = False

    async def send(self, record: Record) -> None:
        await write_record(self.writer, record)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug("Connection closed uncleanly", peer=self.peer, error=str(e))


class DebugSink(RecordSink):
    """Prints one human-readable line per record."""

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream or sys.stdout

    async def send(self, record: Record) -> None:
        print(format_record(record), file=self.stream, flush=True)


class MemorySink(RecordSink):
    """Collects records in a list."""

    def __init__(self) -> None:
        self.records: list[Record] = []
        self.closed = False

    async def send(self, record: Record) -> None:
        self.records.append(record)

    async def close(self) -> None:
        self.closed = True


def format_record(record: Record) -> str:
    """Render a record for debug output."""
    if isinstance(record, StreamStart):
        return "StreamStart"
    if isinstance(record, StreamEnd):
        return "StreamEnd"
    if isinstance(record, Header):
        return f"Header {record.id} pid={record.pid} {record.context.label} t={record.time}"
    if isinstance(record, Data):
        return f"Data {record.id} pid={record.pid} {record.context.label}: {record.text}"
    if isinstance(record, Log):
        return f"Log: {record.log}"
    if isinstance(record, Error):
        return f"Error {record.error.kind} t={record.error.time}: {record.error.msg}"
    return repr(record)


def parse_address(address: str) -> tuple[str, int]:
    """
    Split a ``host:port`` address.

    The host part may be an IPv6 literal in brackets.
    """
    host, sep, port = address.rpartition(":")
    if not sep or not host or not port.isdigit():
        raise ValueError(f"Expected HOST:PORT, got {address!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    port_number = int(port)
    if not 0 < port_number < 65536:
        raise ValueError(f"Port out of range in {address!r}")
    return host, port_number


async def open_sink(tcp: Optional[str] = None, socket_path: Optional[str] = None) -> RecordSink:
    """
    Open the configured output.

    Args:
        tcp: ``host:port`` of a transform or load listener
        socket_path: Path of a unix socket listener

    Returns:
        A framed sink for network targets, otherwise a debug sink on stdout
    """
    if tcp and socket_path:
        raise ValueError("Only one of tcp and socket_path may be given")

    if tcp:
        host, port = parse_address(tcp)
        _, writer = await asyncio.open_connection(host, port)
        logger.info("Connected to TCP output", address=tcp)
        return FramedSink(writer, peer=tcp)

    if socket_path:
        _, writer = await asyncio.open_unix_connection(socket_path)
        logger.info("Connected to unix socket output", path=socket_path)
        return FramedSink(writer, peer=socket_path)

    return DebugSink()

"""
Transform server.

Accepts record streams from extractors, splits them per process and per
output stream, runs the configured operations and fans the results out
to every configured loader.

Per connection:

    reader -> StreamSession -+-> StreamWorker (stdout) -+-> LoaderFanout -> loader 1..n
                             +-> StreamWorker (stderr) -+

Design principles:
- Isolation: a bad record, a bad connection or a slow loader never stops the server
- Ordering: a process's End header is published only after its workers drained
- Backpressure stops at the loaders: a loader that falls behind loses records
"""

import asyncio
from dataclasses import dataclass
from typing import Callable, Optional

from core.config import settings
from core.errors import FrameTooLargeError, RecordDecodeError
from core.logging import get_logger
from core.stats import ServiceStats
from transformer.config import TransformConfig
from transformer.pipeline import Pipeline
from transport.codec import read_records
from transport.records import Data, DataContext, Header, Record, StreamEnd, StreamStart
from transport.sinks import FramedSink, parse_address


logger = get_logger(__name__)


WORKER_QUEUE_SIZE = 256

_CLOSE = object()


# =========================================
# Output
# =========================================

class LoaderConnection:
    """
    Bounded, lossy link to one loader.

    Records are queued without waiting; when the queue is full the record
    is dropped and counted, and the count is reported once the loader
    catches up.
    """

    def __init__(self, address: str, queue_size: int, stats: Optional[ServiceStats] = None):
        self.address = address
        self.stats = stats
        self.missed = 0
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        self._task = asyncio.create_task(self._run())

    def offer(self, record: Record) -> None:
        try:
            self._queue.put_nowait(record)
        except asyncio.QueueFull:
            self.missed += 1
            if self.stats is not None:
                self.stats.records_dropped += 1
            return
        self._report_missed()

    async def close(self) -> None:
        await self._queue.put(_CLOSE)
        if self._task is not None:
            await self._task
        self._report_missed()

    def _report_missed(self) -> None:
        if self.missed:
            logger.warning(
                f"Loader is slow, {self.missed} records skipped",
                loader=self.address,
                skipped=self.missed,
            )
            self.missed = 0

    async def _run(self) -> None:
        try:
            host, port = parse_address(self.address)
            _, writer = await asyncio.open_connection(host, port)
        except (OSError, ValueError) as e:
            logger.error("Failed to connect to loader", loader=self.address, error=str(e))
            await self._discard()
            return

        sink = FramedSink(writer, peer=self.address)
        try:
            while True:
                record = await self._queue.get()
                if record is _CLOSE:
                    return
                await sink.send(record)
                if self.stats is not None:
                    self.stats.records_sent += 1
        except (ConnectionError, OSError) as e:
            logger.error("Lost connection to loader", loader=self.address, error=str(e))
            await self._discard()
        finally:
            await sink.close()

    async def _discard(self) -> None:
        # Keep consuming so producers never block on a dead loader
        while await self._queue.get() is not _CLOSE:
            if self.stats is not None:
                self.stats.records_dropped += 1


class LoaderFanout:
    """
    Broadcasts one output stream to every configured loader.

    Usage:
        fanout = LoaderFanout(["127.0.0.1:50000"])
        await fanout.open()          # sends StreamStart
        fanout.publish(record)
        await fanout.close()         # sends StreamEnd and waits for the loaders
    """

    def __init__(
        self,
        addresses: tuple[str, ...],
        queue_size: Optional[int] = None,
        stats: Optional[ServiceStats] = None,
    ):
        size = queue_size or settings.transform_loader_queue_size
        self.loaders = [LoaderConnection(address, size, stats) for address in addresses]

    async def open(self) -> None:
        for loader in self.loaders:
            loader.start()
        self.publish(StreamStart())

    def publish(self, record: Record) -> None:
        if not self.loaders:
            logger.debug("No loaders configured, discarding record", kind=record.kind.name)
            return
        for loader in self.loaders:
            loader.offer(record)

    async def close(self) -> None:
        self.publish(StreamEnd())
        await asyncio.gather(*(loader.close() for loader in self.loaders))


# =========================================
# Per-process workers
# =========================================

class StreamWorker:
    """Runs a pipeline over the records of one output stream."""

    def __init__(self, pipeline: Pipeline, publish: Callable[[Record], None], name: str):
        self.pipeline = pipeline
        self.publish = publish
        self.name = name
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=WORKER_QUEUE_SIZE)
        self._task = asyncio.create_task(self._run())

    async def put(self, record: Record) -> None:
        await self._queue.put(record)

    async def close(self) -> None:
        await self._queue.put(_CLOSE)
        await self._task

    async def _run(self) -> None:
        try:
            while True:
                record = await self._queue.get()
                if record is _CLOSE:
                    self._emit(self.pipeline.flush())
                    return
                self._emit(self.pipeline.feed(record))
        except Exception as e:
            logger.error("Stream worker failed", stream=self.name, error=str(e), exc_info=True)
            while await self._queue.get() is not _CLOSE:
                pass

    def _emit(self, records: list[Record]) -> None:
        for record in records:
            self.publish(record)


@dataclass
class ProcessStreams:
    stdout: StreamWorker
    stderr: StreamWorker

    def for_context(self, context: DataContext) -> StreamWorker:
        return self.stdout if context is DataContext.STDOUT else self.stderr

    async def close(self) -> None:
        await asyncio.gather(self.stdout.close(), self.stderr.close())


class StreamSession:
    """
    Validates and routes the records of one inbound stream.

    ``handle`` returns False when the stream broke protocol and the
    connection must be terminated.
    """

    def __init__(
        self,
        config: TransformConfig,
        publish: Callable[[Record], None],
        peer: str = "",
    ):
        self.config = config
        self.publish = publish
        self.log = logger.bind(peer=peer) if peer else logger
        self._open: dict[str, ProcessStreams] = {}
        self._started = False
        self._ended = False

    async def handle(self, record: Record) -> bool:
        first = not self._started
        self._started = True

        if self._ended:
            self.log.error("Malformed stream, record received after 'Stream End'... terminating connection")
            return False

        if isinstance(record, StreamStart):
            if not first:
                self.log.error("Malformed stream, client sent: 'Stream Start' out of sequence... terminating connection")
                return False
            return True

        if isinstance(record, StreamEnd):
            self._ended = True
            return True

        if isinstance(record, Header):
            if not record.context.is_header:
                self.log.warning(
                    "Header record has a stream context... discarding record",
                    id=record.id,
                    cxt=record.context.label,
                )
                return True
            await self._handle_header(record)
            return True

        if isinstance(record, Data):
            if not record.context.is_stream:
                self.log.warning(
                    "Data record has a header context... discarding record",
                    id=record.id,
                    cxt=record.context.label,
                )
                return True
            await self._handle_data(record)
            return True

        self.log.info("Discarding record", kind=record.kind.name)
        return True

    async def finish(self) -> None:
        """Close every process still open when the stream stops."""
        for process_id in list(self._open):
            self.log.warning("Stream closed before process ended", id=process_id)
            await self._open.pop(process_id).close()

    @property
    def open_processes(self) -> list[str]:
        return list(self._open)

    async def _handle_header(self, header: Header) -> None:
        known = header.id in self._open

        if header.context is DataContext.START:
            if known:
                self.log.error("Duplicate Header record", id=header.id)
                return
            self._open[header.id] = ProcessStreams(
                stdout=StreamWorker(self.config.build_pipeline(), self.publish, f"{header.id}:stdout"),
                stderr=StreamWorker(self.config.build_pipeline(), self.publish, f"{header.id}:stderr"),
            )
            self.publish(header)
            return

        if not known:
            self.log.error("Malformed stream, received Header end before start", id=header.id)
            return
        await self._open.pop(header.id).close()
        self.publish(header)

    async def _handle_data(self, data: Data) -> None:
        streams = self._open.get(data.id)
        if streams is None:
            self.log.warning("Data record sent out of sequence... discarding", id=data.id)
            return
        await streams.for_context(data.context).put(data)


# =========================================
# Server
# =========================================

class TransformServer:
    """
    Listener that runs a StreamSession per inbound connection.

    Usage:
        server = TransformServer(load_config(["pipeline.yaml"]))
        listener = await server.start(host="0.0.0.0", port=49999)
        async with listener:
            await listener.serve_forever()
    """

    def __init__(
        self,
        config: TransformConfig,
        idle_timeout: Optional[float] = None,
        loader_queue_size: Optional[int] = None,
        stats: Optional[ServiceStats] = None,
    ):
        self.config = config
        self.idle_timeout = idle_timeout if idle_timeout is not None else settings.transform_idle_timeout_seconds
        self.loader_queue_size = loader_queue_size or settings.transform_loader_queue_size
        self.stats = stats or ServiceStats(service="transform")

    async def start(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        socket_path: Optional[str] = None,
    ) -> asyncio.AbstractServer:
        """Bind the listener on a unix socket path, or on host and port."""
        if socket_path:
            server = await asyncio.start_unix_server(self.handle_connection, path=socket_path)
            logger.info("Transform listening", socket=socket_path)
        else:
            server = await asyncio.start_server(
                self.handle_connection,
                host or settings.transform_bind,
                port if port is not None else settings.transform_port,
            )
            logger.info(
                "Transform listening",
                addresses=[str(sock.getsockname()) for sock in server.sockets],
            )
        self.stats.listening = True
        return server

    async def handle_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = str(writer.get_extra_info("peername") or "unix")
        log = logger.bind(peer=peer)
        log.info("Accepted connection")
        self.stats.connection_opened()

        fanout = LoaderFanout(self.config.execute.loaders, self.loader_queue_size, self.stats)
        await fanout.open()
        session = StreamSession(self.config, fanout.publish, peer=peer)

        try:
            async for item in read_records(reader, self.idle_timeout):
                if isinstance(item, RecordDecodeError):
                    self.stats.decode_errors += 1
                    log.warning("Invalid record detected in stream... ignoring", error=str(item))
                    continue
                self.stats.records_received += 1
                if not await session.handle(item):
                    break
        except asyncio.TimeoutError:
            log.warning("Connection idle, closing", timeout_seconds=self.idle_timeout)
        except (FrameTooLargeError, RecordDecodeError) as e:
            log.error("Unreadable stream... terminating connection", error=str(e))
        except (ConnectionError, OSError) as e:
            log.error("Connection failed", error=str(e))
        finally:
            await session.finish()
            await fanout.close()
            await _close_writer(writer)
            self.stats.connection_closed()
            log.info("Connection closed")


async def _close_writer(writer: asyncio.StreamWriter) -> None:
    writer.close()
    try:
        await writer.wait_closed()
    except (ConnectionError, OSError) as e:
        logger.debug("Connection closed uncleanly", error=str(e))

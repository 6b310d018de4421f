"""
Process runner for the extract stage.

Runs every executable found under the execution root and turns its output
into records:

    StreamStart
      Header(Start)  Data(Stdout | Stderr)*  Header(End)   per process
    StreamEnd

Design principles:
- Ordered batches: a priority group starts only when the previous one finished
- Concurrent capture: stdout and stderr are read at the same time
- Error isolation: a process that fails to start, or whose output cannot be
  sent, becomes an Error record; the run goes on with the next process
- Bounded lines: output longer than max_line_bytes is split into several records
"""

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from core.config import settings
from core.errors import DolysisError
from core.logging import get_logger
from extractor.discovery import DiscoveryError, Executable, batches, discover
from transport.records import (
    RECORD_VERSION,
    Data,
    DataContext,
    Error,
    Header,
    Record,
    StreamEnd,
    StreamStart,
)
from transport.sinks import RecordSink


logger = get_logger(__name__)


READ_CHUNK_BYTES = 64 * 1024


def split_lines(buffer: bytearray) -> list[bytes]:
    """
    Remove and return every complete line held in buffer.

    Line terminators (``\\n`` or ``\\r\\n``) are stripped.
    """
    lines = []
    while True:
        index = buffer.find(b"\n")
        if index < 0:
            return lines
        line = bytes(buffer[:index])
        del buffer[:index + 1]
        if line.endswith(b"\r"):
            line = line[:-1]
        lines.append(line)


def split_long_line(line: bytes, limit: int) -> list[bytes]:
    """Cut line into pieces of at most limit bytes."""
    if len(line) <= limit:
        return [line]
    return [line[i:i + limit] for i in range(0, len(line), limit)]


@dataclass
class RunSummary:
    """Outcome of one pass over the execution root."""
    processes: int = 0
    failed: int = 0
    errors: int = 0
    lines: int = 0


class ExtractionRunner:
    """
    Runs the executables of a directory and writes their output to a sink.

    Usage:
        sink = await open_sink(tcp="127.0.0.1:49999")
        runner = ExtractionRunner(sink, max_concurrency=8)
        summary = await runner.run("/opt/probes")
        await sink.close()
    """

    def __init__(
        self,
        sink: RecordSink,
        max_concurrency: Optional[int] = None,
        version: int = RECORD_VERSION,
        max_line_bytes: Optional[int] = None,
    ):
        """
        Initialize the runner.

        Args:
            sink: Destination of the record stream
            max_concurrency: Max processes of one batch running at once (default from config)
            version: Record version stamped on every record
            max_line_bytes: Longer output lines are split into several records (default from config)
        """
        self.sink = sink
        self.max_concurrency = max_concurrency or settings.extract_max_concurrency
        self.version = version
        self.max_line_bytes = max_line_bytes or settings.extract_max_line_bytes
        self._send_lock = asyncio.Lock()

    async def run(self, root: Union[str, Path]) -> RunSummary:
        """
        Run one complete stream over root.

        The stream is always closed with StreamEnd, even when every
        executable failed.
        """
        summary = RunSummary()
        logger.info("Extraction started", root=str(root))

        await self._send(StreamStart())
        try:
            for batch in batches(discover(root)):
                if isinstance(batch, DiscoveryError):
                    summary.errors += 1
                    logger.error("Skipping path", path=str(batch.path), error=str(batch.error))
                    await self._report(batch.error)
                    continue
                await self._run_batch(batch, summary)
        finally:
            await self._send(StreamEnd())

        logger.info(
            "Extraction finished",
            root=str(root),
            processes=summary.processes,
            failed=summary.failed,
            errors=summary.errors,
            lines=summary.lines,
        )
        return summary

    async def _run_batch(self, batch: list[Executable], summary: RunSummary) -> None:
        logger.debug(
            "Running batch",
            priority=batch[0].priority.number,
            size=len(batch),
        )
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def run_with_semaphore(executable: Executable) -> None:
            async with semaphore:
                await self._run_one(executable, summary)

        await asyncio.gather(*(run_with_semaphore(e) for e in batch))

    async def _run_one(self, executable: Executable, summary: RunSummary) -> None:
        try:
            proc = await self.spawn(executable)
        except OSError as e:
            summary.errors += 1
            logger.error("Failed to spawn process", path=str(executable.path), error=str(e))
            await self._report(e)
            return

        summary.processes += 1
        try:
            exit_code = await self.capture(proc, executable, summary)
        except (DolysisError, OSError) as e:
            # Only this process's stream is lost; the run goes on
            summary.errors += 1
            logger.error(
                "Failed to stream process output",
                id=executable.name,
                pid=proc.pid,
                error=str(e),
            )
            await self._report(e)
            return

        if exit_code != 0:
            summary.failed += 1

    async def spawn(self, executable: Executable) -> asyncio.subprocess.Process:
        """
        Start one executable with stdin closed and its output piped.

        Raises:
            OSError: If the process cannot be started
        """
        proc = await asyncio.create_subprocess_exec(
            str(executable.path),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        logger.debug("Process started", id=executable.name, pid=proc.pid, path=str(executable.path))
        return proc

    async def capture(
        self,
        proc: asyncio.subprocess.Process,
        executable: Executable,
        summary: Optional[RunSummary] = None,
    ) -> int:
        """
        Stream the output of a started process and wait for it.

        The process is killed and reaped if streaming stops early.

        Returns:
            The process exit code

        Raises:
            DolysisError: If a record cannot be encoded
            OSError: If the sink fails
        """
        log = logger.bind(id=executable.name, pid=proc.pid)

        try:
            await self._send(self._header(executable, proc.pid, DataContext.START))
            pumps = [
                asyncio.ensure_future(self._pump(proc.stdout, executable, proc.pid, DataContext.STDOUT)),
                asyncio.ensure_future(self._pump(proc.stderr, executable, proc.pid, DataContext.STDERR)),
            ]
            try:
                counts = await asyncio.gather(*pumps)
            except BaseException:
                for pump in pumps:
                    pump.cancel()
                await asyncio.gather(*pumps, return_exceptions=True)
                raise
            await self._send(self._header(executable, proc.pid, DataContext.END))
            exit_code = await proc.wait()
        finally:
            if proc.returncode is None:
                await _kill(proc, log)

        if summary is not None:
            summary.lines += sum(counts)

        if exit_code != 0:
            log.warning("Process exited with non-zero status", exit_code=exit_code)
        else:
            log.debug("Process finished", stdout_lines=counts[0], stderr_lines=counts[1])
        return exit_code

    async def _pump(
        self,
        stream: Optional[asyncio.StreamReader],
        executable: Executable,
        pid: int,
        context: DataContext,
    ) -> int:
        if stream is None:
            return 0

        count = 0
        buffer = bytearray()
        while True:
            chunk = await stream.read(READ_CHUNK_BYTES)
            if not chunk:
                break
            buffer.extend(chunk)
            lines = split_lines(buffer)
            if len(buffer) >= self.max_line_bytes:
                # A line without a terminator in sight is emitted in pieces
                lines.append(bytes(buffer))
                buffer.clear()
            for line in lines:
                count += await self._send_line(executable, pid, context, line)

        if buffer:
            # Final line without a terminator
            line = bytes(buffer[:-1]) if buffer.endswith(b"\r") else bytes(buffer)
            count += await self._send_line(executable, pid, context, line)
        return count

    async def _send_line(self, executable: Executable, pid: int, context: DataContext, line: bytes) -> int:
        pieces = split_long_line(line, self.max_line_bytes)
        if len(pieces) > 1:
            logger.warning(
                "Output line too long, splitting",
                id=executable.name,
                pid=pid,
                length=len(line),
                pieces=len(pieces),
            )
        for piece in pieces:
            await self._send(self._data(executable, pid, context, piece))
        return len(pieces)

    def _header(self, executable: Executable, pid: int, context: DataContext) -> Header:
        return Header(id=executable.name, pid=pid, context=context, version=self.version)

    def _data(self, executable: Executable, pid: int, context: DataContext, line: bytes) -> Data:
        text = line.decode("utf-8", errors="replace")
        return Data(
            id=executable.name,
            pid=pid,
            context=context,
            data=text.encode("utf-8"),
            version=self.version,
        )

    async def _send(self, record: Record) -> None:
        async with self._send_lock:
            await self.sink.send(record)

    async def _report(self, exc: BaseException) -> None:
        """Put an Error record on the stream, logging if even that fails."""
        try:
            await self._send(Error.from_exception(exc, self.version))
        except (DolysisError, OSError) as e:
            logger.error("Failed to send error record", error=str(e), cause=str(exc))


async def _kill(proc: asyncio.subprocess.Process, log) -> None:
    try:
        proc.kill()
    except ProcessLookupError:
        # Exited between the returncode check and the signal
        pass
    await proc.wait()
    log.warning("Process killed before it finished", exit_code=proc.returncode)


async def extract_directory(
    root: Union[str, Path],
    sink: RecordSink,
    max_concurrency: Optional[int] = None,
) -> RunSummary:
    """Run root once into sink."""
    return await ExtractionRunner(sink, max_concurrency=max_concurrency).run(root)

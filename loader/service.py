"""
Load server.

Receives record streams from the transform stage (or straight from an
extractor) and prints every record as JSON.
"""

import asyncio
from pathlib import Path
from typing import Optional

from core.config import settings
from core.errors import FrameTooLargeError, RecordDecodeError
from core.logging import get_logger
from core.stats import ServiceStats
from loader.printer import JsonPrinter
from transport.codec import read_records
from transport.records import StreamEnd


logger = get_logger(__name__)


class LoadServer:
    """
    Listener that prints every inbound record.

    With ``once`` set, the server handles a single connection and
    ``done`` is set when that stream ends.

    Usage:
        server = LoadServer(JsonPrinter(pretty=True))
        listener = await server.start(port=50000)
        async with listener:
            await listener.serve_forever()
    """

    def __init__(
        self,
        printer: JsonPrinter,
        once: bool = False,
        idle_timeout: Optional[float] = None,
        stats: Optional[ServiceStats] = None,
    ):
        self.printer = printer
        self.once = once
        self.idle_timeout = idle_timeout
        self.stats = stats or ServiceStats(service="load")
        self.done = asyncio.Event()
        self._lock = asyncio.Lock()
        self._served = False

    async def start(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        socket_path: Optional[str] = None,
    ) -> asyncio.AbstractServer:
        """
        Bind the listener on a unix socket path, or on host and port.

        Raises:
            FileExistsError: If the socket path already exists
        """
        if socket_path:
            if Path(socket_path).exists():
                raise FileExistsError(f"'{socket_path}' already exists or is an invalid path")
            server = await asyncio.start_unix_server(self.handle_connection, path=socket_path)
            logger.info("Load listening", socket=socket_path)
        else:
            server = await asyncio.start_server(
                self.handle_connection,
                host or settings.load_bind,
                port if port is not None else settings.load_port,
            )
            logger.info(
                "Load listening",
                addresses=[str(sock.getsockname()) for sock in server.sockets],
            )
        self.stats.listening = True
        return server

    async def handle_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        peer = str(writer.get_extra_info("peername") or "unix")
        log = logger.bind(peer=peer)

        if self.once and self._served:
            log.warning("Already served a stream, rejecting connection")
            writer.close()
            return
        self._served = True

        log.info("Got a connection")
        self.stats.connection_opened()
        try:
            async for item in read_records(reader, self.idle_timeout):
                if isinstance(item, RecordDecodeError):
                    self.stats.decode_errors += 1
                    log.warning("Invalid record detected in stream... ignoring", error=str(item))
                    continue
                self.stats.records_received += 1
                # Output from concurrent connections must not interleave mid-record
                async with self._lock:
                    if self.printer.write(item):
                        self.stats.records_sent += 1
                    else:
                        self.stats.records_dropped += 1
                if self.once and isinstance(item, StreamEnd):
                    break
        except asyncio.TimeoutError:
            log.warning("Connection idle, closing", timeout_seconds=self.idle_timeout)
        except (FrameTooLargeError, RecordDecodeError) as e:
            log.error("Unreadable stream... terminating connection", error=str(e))
        except (ConnectionError, OSError) as e:
            log.error("Connection failed", error=str(e))
        finally:
            writer.close()
            self.stats.connection_closed()
            log.info("Connection closed")
            if self.once:
                self.done.set()

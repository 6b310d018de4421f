"""
Root Typer application for the dolysis CLI.

    dolysis extract [ROOT] [--tcp HOST:PORT | --socket PATH] [--every SECONDS]
    dolysis transform -f CONFIG [-f CONFIG ...] [--bind ADDR --port N | --socket PATH]
    dolysis load [--bind ADDR --port N | --socket PATH] [--pretty] [--output FILE] [--once]
    dolysis recipe render|check|locate
    dolysis docs check [PATHS ...]

Each stage is also installed as its own command (dolysis-extract,
dolysis-transform, dolysis-load) for use as a container entrypoint.
"""

import asyncio
import sys
from pathlib import Path
from typing import List, Optional

import typer

from cli.docs import app as docs_app
from cli.recipe import app as recipe_app
from cli.utils import err_console, exit_on_error
from core.config import settings
from core.logging import bind_stage, configure_logging, get_logger


logger = get_logger(__name__)

VERSION = "0.1.0"

app = typer.Typer(
    name="dolysis",
    help="dolysis: capture, transform and load the output of executables.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

app.add_typer(recipe_app, name="recipe", help="Container build recipes.")
app.add_typer(docs_app, name="docs", help="Documentation checks.")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"dolysis {VERSION}")
        raise typer.Exit()


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        "-l",
        help="DEBUG, INFO, WARNING or ERROR (default from DOLYSIS_LOG_LEVEL).",
    ),
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """dolysis CLI: run a pipeline stage or manage its packaging."""
    configure_logging(log_level)


# =========================================
# extract
# =========================================

@app.command()
def extract(
    root: Optional[Path] = typer.Argument(None, help="Directory of executables to run."),
    tcp: Optional[str] = typer.Option(None, "--tcp", "-t", help="Send records to HOST:PORT."),
    socket_path: Optional[Path] = typer.Option(None, "--socket", "-s", help="Send records to a unix socket."),
    every: Optional[int] = typer.Option(None, "--every", help="Re-run every N seconds instead of once."),
    max_concurrency: Optional[int] = typer.Option(
        None, "--max-concurrency", "-j", help="Max processes of one priority running at once."
    ),
) -> None:
    """Run every executable under ROOT and stream its output as records.

    Without --tcp or --socket the records are printed for debugging.
    """
    from extractor.runner import ExtractionRunner
    from manager.scheduler import ExtractionScheduler
    from transport.sinks import open_sink

    bind_stage("extract")

    if tcp and socket_path:
        err_console.print("[red]Error:[/red] --tcp and --socket are mutually exclusive")
        raise typer.Exit(code=2)

    directory = root or Path(settings.extract_root)
    interval = every or settings.extract_interval_seconds

    async def open_output():
        return await open_sink(tcp=tcp, socket_path=str(socket_path) if socket_path else None)

    async def run_once() -> None:
        sink = await open_output()
        try:
            await ExtractionRunner(sink, max_concurrency=max_concurrency).run(directory)
        finally:
            await sink.close()

    async def run_scheduled() -> None:
        scheduler = ExtractionScheduler(directory, open_output, interval, max_concurrency)
        await scheduler.start()
        try:
            await asyncio.Event().wait()
        finally:
            await scheduler.shutdown()

    with exit_on_error():
        if not directory.exists():
            raise FileNotFoundError(f"Execution root '{directory}' does not exist")
        asyncio.run(run_scheduled() if interval else run_once())


# =========================================
# transform
# =========================================

@app.command()
def transform(
    files: List[Path] = typer.Option(
        ..., "--file", "-f", help="Config file; repeat for several (filter, join and execute objects)."
    ),
    bind: Optional[str] = typer.Option(None, "--bind", "-b", help="Address to listen on."),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port to listen on."),
    socket_path: Optional[Path] = typer.Option(None, "--socket", "-s", help="Listen on a unix socket instead."),
    idle_timeout: Optional[float] = typer.Option(
        None, "--idle-timeout", help="Seconds a connection may stay silent."
    ),
    status_port: Optional[int] = typer.Option(None, "--status-port", help="Serve the status API on this port."),
) -> None:
    """Listen for record streams, apply filters and joins, forward to loaders."""
    from transformer.config import load_config
    from transformer.service import TransformServer

    bind_stage("transform")

    with exit_on_error():
        config = load_config(files)
        server = TransformServer(config, idle_timeout=idle_timeout)

        async def serve() -> None:
            listener = await server.start(
                host=bind,
                port=port,
                socket_path=str(socket_path) if socket_path else None,
            )
            async with listener:
                await listener.serve_forever()

        asyncio.run(_with_status(serve(), server.stats, status_port))


# =========================================
# load
# =========================================

@app.command()
def load(
    bind: Optional[str] = typer.Option(None, "--bind", "-b", help="Address to listen on."),
    port: Optional[int] = typer.Option(None, "--port", "-p", help="Port to listen on."),
    socket_path: Optional[Path] = typer.Option(
        None, "--socket", "-s", help="Listen on a unix socket (the path must not exist)."
    ),
    pretty: bool = typer.Option(False, "--pretty", help="Pretty print JSON."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Append JSON to a file instead of stdout."),
    once: bool = typer.Option(False, "--once", help="Handle a single stream, then exit."),
    status_port: Optional[int] = typer.Option(None, "--status-port", help="Serve the status API on this port."),
) -> None:
    """Listen for record streams and print every record as JSON."""
    from loader.printer import JsonPrinter
    from loader.service import LoadServer

    bind_stage("load")

    async def serve(printer: JsonPrinter) -> None:
        server = LoadServer(printer, once=once)
        listener = await server.start(
            host=bind,
            port=port,
            socket_path=str(socket_path) if socket_path else None,
        )
        async with listener:
            main = server.done.wait() if once else listener.serve_forever()
            await _with_status(main, server.stats, status_port)

    with exit_on_error():
        if output is None:
            asyncio.run(serve(JsonPrinter(sys.stdout, pretty)))
        else:
            with output.open("a", encoding="utf-8") as stream:
                asyncio.run(serve(JsonPrinter(stream, pretty)))


async def _with_status(main, stats, status_port: Optional[int]) -> None:
    port = status_port or settings.status_port
    if not port:
        await main
        return
    from api.server import run_with_status

    await run_with_status(main, stats, port=port)


# =========================================
# Stage entrypoints
# =========================================

def extract_main() -> None:
    app(args=["extract", *sys.argv[1:]], prog_name="dolysis-extract")


def transform_main() -> None:
    app(args=["transform", *sys.argv[1:]], prog_name="dolysis-transform")


def load_main() -> None:
    app(args=["load", *sys.argv[1:]], prog_name="dolysis-load")

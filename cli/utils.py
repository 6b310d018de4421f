"""
CLI helpers: consoles and error reporting.
"""

from contextlib import contextmanager
from typing import Iterator

import typer
from rich.console import Console

from core.errors import DolysisError
from core.logging import get_logger


console = Console()
err_console = Console(stderr=True)

logger = get_logger(__name__)


@contextmanager
def exit_on_error() -> Iterator[None]:
    """Turn pipeline and OS errors into a red message and exit status 1."""
    try:
        yield
    except (DolysisError, OSError, ValueError) as e:
        err_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1) from e
    except KeyboardInterrupt:
        logger.info("Interrupted")
        raise typer.Exit(code=130) from None

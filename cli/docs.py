"""
CLI: ``dolysis docs`` - documentation checks.
"""

from pathlib import Path
from typing import List, Optional

import typer

from cli.utils import console, err_console
from recipes.docs import check_markdown, iter_markdown


app = typer.Typer(no_args_is_help=True)


@app.command("check")
def check_docs(
    paths: Optional[List[Path]] = typer.Argument(None, help="Markdown files or directories (default: docs)."),
) -> None:
    """Check Markdown files are UTF-8 and their internal links resolve."""
    targets = paths or [Path("docs")]
    files = list(iter_markdown(targets))
    problems = check_markdown(files)

    for problem in problems:
        err_console.print(f"[red]{problem}[/red]")

    if problems:
        err_console.print(f"{len(problems)} problem(s) in {len(files)} file(s)")
        raise typer.Exit(code=1)
    console.print(f"[green]{len(files)} file(s) ok[/green]")

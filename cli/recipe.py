"""
CLI: ``dolysis recipe`` - render and verify container build recipes.
"""

from pathlib import Path
from typing import Optional

import typer
from rich.table import Table

from cli.utils import console, exit_on_error
from recipes.recipe import PRESETS, build_recipe, check_deployed, locate_artifact


app = typer.Typer(no_args_is_help=True)


@app.command("render")
def render_recipe(
    bin_name: str = typer.Argument(..., help="Name of the binary the image runs."),
    preset: str = typer.Option("python", "--preset", help=f"One of: {', '.join(PRESETS)}."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write to a file instead of stdout."),
) -> None:
    """Render the Dockerfile of a preset for BIN_NAME."""
    with exit_on_error():
        text = build_recipe(preset, bin_name).render()
        if output is None:
            typer.echo(text, nl=False)
        else:
            output.write_text(text, encoding="utf-8")
            console.print(f"Wrote [bold]{output}[/bold]")


@app.command("check")
def check_recipes(
    deploy_dir: Path = typer.Argument(Path("deploy"), help="Directory holding the shipped recipes."),
) -> None:
    """Verify the shipped recipes match what the presets render."""
    results = check_deployed(deploy_dir)

    table = Table()
    table.add_column("Recipe")
    table.add_column("Status")
    for result in results:
        status = "[green]ok[/green]" if result.ok else "[red]" + "; ".join(result.problems) + "[/red]"
        table.add_row(str(result.path), status)
    console.print(table)

    if not all(result.ok for result in results):
        raise typer.Exit(code=1)


@app.command("locate")
def locate(
    bin_name: str = typer.Argument(..., help="Name of the binary the image runs."),
    preset: str = typer.Option("python", "--preset", help=f"One of: {', '.join(PRESETS)}."),
    root: Path = typer.Option(Path("."), "--root", help="Project root of a local build."),
) -> None:
    """Check a local build produced the artifact the recipe copies."""
    with exit_on_error():
        path = locate_artifact(root, build_recipe(preset, bin_name))
    console.print(f"[green]Found[/green] {path}")

"""
Tests for the command line interface.
"""

import json

import pytest
from typer.testing import CliRunner

from cli.app import VERSION, app
from recipes.recipe import python_recipe


runner = CliRunner()


@pytest.fixture(autouse=True)
def keep_logging(monkeypatch):
    """Keep loggers off the runner's short-lived output streams."""
    monkeypatch.setattr("cli.app.configure_logging", lambda level=None: None)


def test_version():
    """--version prints the version and exits cleanly."""
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert VERSION in result.output


def test_recipe_render_to_stdout():
    """render prints the Dockerfile of a preset."""
    result = runner.invoke(app, ["recipe", "render", "dolysis-load"])
    assert result.exit_code == 0
    assert result.output == python_recipe("dolysis-load").render()


def test_recipe_render_to_file(tmp_path):
    """render --output writes the recipe to a file."""
    output = tmp_path / "extract.Dockerfile"
    result = runner.invoke(app, ["recipe", "render", "extract", "--preset", "rust-musl", "-o", str(output)])

    assert result.exit_code == 0
    assert 'ENTRYPOINT ["./extract"]' in output.read_text()


def test_recipe_render_unknown_preset():
    """An unknown preset exits with an error."""
    result = runner.invoke(app, ["recipe", "render", "x", "--preset", "go"])
    assert result.exit_code == 1


def test_recipe_check_shipped(project_dir):
    """The shipped recipes pass the check."""
    result = runner.invoke(app, ["recipe", "check", str(project_dir / "deploy")])
    assert result.exit_code == 0


def test_recipe_check_empty_dir(tmp_path):
    """A deploy directory without recipes fails the check."""
    result = runner.invoke(app, ["recipe", "check", str(tmp_path)])
    assert result.exit_code == 1


def test_recipe_locate_missing(tmp_path):
    """locate fails when nothing was built."""
    result = runner.invoke(app, ["recipe", "locate", "dolysis-load", "--root", str(tmp_path)])
    assert result.exit_code == 1


def test_docs_check_shipped(project_dir):
    """The shipped documentation passes the link check."""
    result = runner.invoke(app, ["docs", "check", str(project_dir / "docs")])
    assert result.exit_code == 0
    assert "ok" in result.output


def test_docs_check_broken(tmp_path):
    """Broken links fail the check."""
    (tmp_path / "index.md").write_text("# Index\n[x](#nowhere)\n")
    result = runner.invoke(app, ["docs", "check", str(tmp_path)])
    assert result.exit_code == 1


def test_extract_exclusive_outputs(tmp_path):
    """--tcp and --socket cannot be combined."""
    result = runner.invoke(
        app, ["extract", str(tmp_path), "--tcp", "127.0.0.1:1", "--socket", str(tmp_path / "s")]
    )
    assert result.exit_code == 2


def test_extract_missing_root(tmp_path):
    """A missing execution root is an error."""
    result = runner.invoke(app, ["extract", str(tmp_path / "nope")])
    assert result.exit_code == 1


def test_extract_debug_output(tmp_path, make_script):
    """Without an output the records are printed for debugging."""
    make_script("10-probe", "echo hello")
    result = runner.invoke(app, ["extract", str(tmp_path)])

    assert result.exit_code == 0
    assert "StreamStart" in result.output
    assert "Data 10-probe" in result.output
    assert "hello" in result.output


def test_transform_rejects_bad_config(tmp_path):
    """An incomplete config stops the transform stage before it listens."""
    config = tmp_path / "filters.yaml"
    config.write_text(json.dumps({"filter": {"x": [{"regex": "y"}]}}))

    result = runner.invoke(app, ["transform", "-f", str(config)])
    assert result.exit_code == 1


def test_load_refuses_existing_socket(tmp_path):
    """The load stage never reuses an existing socket path."""
    path = tmp_path / "load.sock"
    path.write_text("")
    result = runner.invoke(app, ["load", "--socket", str(path)])
    assert result.exit_code == 1


def test_load_once_serves_status(monkeypatch):
    """--once still serves the status API when a status port is given."""
    calls = []

    async def fake_run_with_status(main, stats, host=None, port=None):
        calls.append((stats.service, port))
        main.close()

    monkeypatch.setattr("api.server.run_with_status", fake_run_with_status)

    result = runner.invoke(
        app, ["load", "--once", "--bind", "127.0.0.1", "--port", "0", "--status-port", "8099"]
    )

    assert result.exit_code == 0
    assert calls == [("load", 8099)]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

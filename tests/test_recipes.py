"""
Tests for container build recipes and the documentation checker.
"""

import pytest

from core.errors import ArtifactNotFoundError, RecipeError
from recipes.docs import check_markdown, find_links, heading_anchors, slugify
from recipes.recipe import (
    DEPLOYED,
    PRESETS,
    build_recipe,
    check_deployed,
    check_recipe_file,
    inspect_recipe,
    locate_artifact,
    python_recipe,
    rust_musl_recipe,
)


# =========================================
# Recipes
# =========================================

def test_rendered_recipe_structure():
    """A recipe has a build stage and a labelled runtime stage."""
    text = rust_musl_recipe("extract").render()
    lines = text.splitlines()

    assert lines[0] == "ARG BuildImage=ekidd/rust-musl-builder:stable"
    assert lines[1] == "ARG BinName=extract"
    assert "FROM $BuildImage AS Build" in lines
    assert "FROM alpine:3" in lines
    assert 'LABEL "project.namespace"="dolysis" "dolysis.binary"=$BinName' in lines
    assert "    /home/rust/src/target/x86_64-unknown-linux-musl/release/$BinName \\" in lines
    assert lines[-1] == 'ENTRYPOINT ["./extract"]'


def test_runtime_declares_bin_name_again():
    """BinName is re-declared after the runtime FROM so it stays in scope."""
    lines = python_recipe("dolysis-load").render().splitlines()
    runtime = lines.index("FROM python:3.12-slim")
    assert lines[runtime + 1] == "ARG BinName"


def test_inspect_recipe():
    """Argument defaults and entrypoint are read back from the text."""
    info = inspect_recipe(python_recipe("dolysis-extract").render())
    assert info == {
        "BuildImage": "python:3.12-slim",
        "BinName": "dolysis-extract",
        "entrypoint": "./dolysis-extract",
    }


@pytest.mark.parametrize("name", ["", "../escape", "has space", "a/b"])
def test_invalid_bin_names(name):
    """The binary name must be a plain file name."""
    with pytest.raises(RecipeError):
        python_recipe(name)


def test_unknown_preset():
    """Presets are looked up by name."""
    assert set(PRESETS) == {"rust-musl", "python"}
    with pytest.raises(RecipeError, match="Unknown preset"):
        build_recipe("go", "extract")


def test_shipped_recipes_match_presets(project_dir):
    """Every file in deploy/ is exactly what its preset renders."""
    results = check_deployed(project_dir / "deploy")
    assert len(results) == len(DEPLOYED)
    assert [str(r.path.name) for r in results if not r.ok] == []


def test_check_reports_drift(tmp_path):
    """A hand-edited recipe is flagged."""
    recipe = python_recipe("dolysis-load")
    path = tmp_path / "load.Dockerfile"
    path.write_text(recipe.render().replace('"./dolysis-load"', '"./other"'))

    result = check_recipe_file(path, recipe)

    assert not result.ok
    assert any("entrypoint" in problem for problem in result.problems)


def test_check_missing_file(tmp_path):
    """A missing recipe file is a problem, not a crash."""
    result = check_recipe_file(tmp_path / "nope", python_recipe("x"))
    assert not result.ok


def test_locate_artifact(tmp_path):
    """A built, executable artifact is found where the recipe copies it from."""
    recipe = rust_musl_recipe("extract")
    artifact = tmp_path / "target/x86_64-unknown-linux-musl/release/extract"
    artifact.parent.mkdir(parents=True)
    artifact.write_text("")
    artifact.chmod(0o755)

    assert locate_artifact(tmp_path, recipe) == artifact


def test_locate_artifact_missing(tmp_path):
    """No build output means no artifact."""
    with pytest.raises(ArtifactNotFoundError, match="not found"):
        locate_artifact(tmp_path, python_recipe("dolysis-load"))


def test_locate_artifact_not_a_file(tmp_path):
    """A directory in the artifact's place is rejected."""
    (tmp_path / ".venv/bin/dolysis-load").mkdir(parents=True)
    with pytest.raises(ArtifactNotFoundError, match="not a regular file"):
        locate_artifact(tmp_path, python_recipe("dolysis-load"))


def test_locate_artifact_not_executable(tmp_path):
    """An artifact without an execute bit is rejected."""
    artifact = tmp_path / ".venv/bin/dolysis-load"
    artifact.parent.mkdir(parents=True)
    artifact.write_text("")
    artifact.chmod(0o644)

    with pytest.raises(ArtifactNotFoundError, match="not executable"):
        locate_artifact(tmp_path, python_recipe("dolysis-load"))


# =========================================
# Documentation
# =========================================

def test_slugify():
    """Anchors follow GitHub's rules."""
    assert slugify("Simple should be Simple") == "simple-should-be-simple"
    assert slugify("The cost of moving data") == "the-cost-of-moving-data"
    assert slugify("What's new?") == "whats-new"
    assert slugify("[Linked](x.md) heading") == "linked-heading"


def test_duplicate_headings_get_suffixes():
    """Repeated headings are numbered."""
    anchors = heading_anchors("# Notes\n## Notes\n### Notes\n")
    assert anchors == {"notes", "notes-1", "notes-2"}


def test_headings_in_code_blocks_are_ignored():
    """Lines inside fences are not headings or links."""
    text = "# Real\n```\n# Fake\n[x](#nowhere)\n```\n"
    assert heading_anchors(text) == {"real"}
    assert find_links(text) == []


def test_find_links_skips_images_and_code():
    """Images and inline code do not count as links."""
    text = "![img](pic.png) `[x](#code)` [ok](#real)\n"
    assert find_links(text) == [(1, "#real")]


def test_shipped_docs_are_sound(project_dir):
    """The documentation set has no broken links."""
    assert check_markdown([project_dir / "docs"]) == []


def test_broken_links_are_reported(tmp_path):
    """Missing anchors and missing files are both found."""
    (tmp_path / "other.md").write_text("# Present\n")
    (tmp_path / "index.md").write_text(
        "# Index\n"
        "[a](#index)\n"
        "[b](#absent)\n"
        "[c](other.md#present)\n"
        "[d](other.md#absent)\n"
        "[e](missing.md)\n"
        "[f](https://example.com/#anything)\n"
    )

    problems = check_markdown([tmp_path / "index.md"])

    assert [(p.line, p.message) for p in problems] == [
        (3, "broken anchor '#absent'"),
        (5, "broken anchor 'other.md#absent'"),
        (6, "missing link target 'missing.md'"),
    ]


def test_non_utf8_is_reported(tmp_path):
    """A document that is not UTF-8 is a problem."""
    path = tmp_path / "bad.md"
    path.write_bytes(b"# Title\n\xff\xfe\n")

    problems = check_markdown([path])

    assert len(problems) == 1
    assert "UTF-8" in problems[0].message


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

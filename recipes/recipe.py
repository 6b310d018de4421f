"""
Two-stage container build recipes.

Every stage binary ships in an image built the same way:

1. a build stage, selected by the ``BuildImage`` argument, adds the source
   and compiles or installs it
2. a runtime stage copies the single artifact named by ``BinName`` into a
   minimal base image, labels it and runs it as the entrypoint

``BuildRecipe.render`` produces the Dockerfile text; the files under
``deploy/`` are generated from it and must never be edited by hand.
"""

import os
import re
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Union

from core.errors import ArtifactNotFoundError, RecipeError


NAMESPACE = "dolysis"

BIN_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


@dataclass(frozen=True)
class BuildRecipe:
    """
    Parameters of a two-stage build.

    ``artifact_subdir`` is where the build leaves the binary, relative to
    ``build_workdir`` inside the build stage and to the project root on
    the host.
    """
    bin_name: str
    build_image: str
    runtime_image: str
    build_workdir: str
    artifact_subdir: str
    build_steps: tuple[str, ...]
    runtime_steps: tuple[str, ...] = ()
    namespace: str = NAMESPACE

    def __post_init__(self) -> None:
        if not BIN_NAME_PATTERN.match(self.bin_name):
            raise RecipeError(
                f"Invalid binary name {self.bin_name!r}: must be a plain file name"
            )

    @property
    def artifact_dir(self) -> str:
        """Directory holding the artifact inside the build stage."""
        return f"{self.build_workdir.rstrip('/')}/{self.artifact_subdir.strip('/')}"

    @property
    def entrypoint(self) -> str:
        return f"./{self.bin_name}"

    def render(self) -> str:
        """Render the Dockerfile text."""
        lines = [
            f"ARG BuildImage={self.build_image}",
            f"ARG BinName={self.bin_name}",
            "",
            "# Build",
            "FROM $BuildImage AS Build",
            *self.build_steps,
            "",
            "# Runtime",
            f"FROM {self.runtime_image}",
            "ARG BinName",
            "",
            f'LABEL "project.namespace"="{self.namespace}" "{self.namespace}.binary"=$BinName',
            "",
        ]
        if self.runtime_steps:
            lines.extend(self.runtime_steps)
            lines.append("")
        lines.extend([
            "WORKDIR /home/$BinName",
            "COPY --from=Build \\",
            f"    {self.artifact_dir}/$BinName \\",
            "    .",
            "",
            f'ENTRYPOINT ["{self.entrypoint}"]',
        ])
        return "\n".join(lines) + "\n"

    def host_artifact(self, root: Union[str, Path]) -> Path:
        """Where a local build of this recipe leaves its artifact."""
        return Path(root) / self.artifact_subdir / self.bin_name


def rust_musl_recipe(bin_name: str) -> BuildRecipe:
    """Static musl build of a cargo binary on a minimal alpine runtime."""
    return BuildRecipe(
        bin_name=bin_name,
        build_image="ekidd/rust-musl-builder:stable",
        runtime_image="alpine:3",
        build_workdir="/home/rust/src",
        artifact_subdir="target/x86_64-unknown-linux-musl/release",
        build_steps=(
            "ADD --chown=rust:rust . ./",
            "RUN cargo build --release",
        ),
    )


def python_recipe(bin_name: str) -> BuildRecipe:
    """Virtualenv install of this project; the console script is the artifact."""
    return BuildRecipe(
        bin_name=bin_name,
        build_image="python:3.12-slim",
        runtime_image="python:3.12-slim",
        build_workdir="/opt/dolysis",
        artifact_subdir=".venv/bin",
        build_steps=(
            "WORKDIR /opt/dolysis",
            "COPY . ./",
            "RUN python -m venv .venv && .venv/bin/pip install --no-cache-dir .",
        ),
        # Console scripts point at the virtualenv's interpreter
        runtime_steps=("COPY --from=Build /opt/dolysis/.venv /opt/dolysis/.venv",),
    )


PRESETS: dict[str, Callable[[str], BuildRecipe]] = {
    "rust-musl": rust_musl_recipe,
    "python": python_recipe,
}


@dataclass(frozen=True)
class DeployedRecipe:
    """A recipe file shipped in the repository."""
    filename: str
    recipe: BuildRecipe


DEPLOYED: tuple[DeployedRecipe, ...] = (
    DeployedRecipe("extract.Dockerfile", python_recipe("dolysis-extract")),
    DeployedRecipe("transform.Dockerfile", python_recipe("dolysis-transform")),
    DeployedRecipe("load.Dockerfile", python_recipe("dolysis-load")),
    DeployedRecipe("extract.rust-musl.Dockerfile", rust_musl_recipe("extract")),
)


def build_recipe(preset: str, bin_name: str) -> BuildRecipe:
    """
    Build a recipe from a named preset.

    Raises:
        RecipeError: If the preset is unknown or the name is invalid
    """
    try:
        factory = PRESETS[preset]
    except KeyError:
        raise RecipeError(f"Unknown preset '{preset}', expected one of: {', '.join(PRESETS)}") from None
    return factory(bin_name)


def locate_artifact(root: Union[str, Path], recipe: BuildRecipe) -> Path:
    """
    Check that the artifact a recipe copies has been built.

    Raises:
        ArtifactNotFoundError: If it is missing, not a file or not executable
    """
    path = recipe.host_artifact(root)
    try:
        st = path.stat()
    except FileNotFoundError:
        raise ArtifactNotFoundError(str(path)) from None
    except OSError as e:
        raise ArtifactNotFoundError(str(path), f"is unreadable: {e.strerror}") from e

    if not stat.S_ISREG(st.st_mode):
        raise ArtifactNotFoundError(str(path), "is not a regular file")
    if not os.access(path, os.X_OK):
        raise ArtifactNotFoundError(str(path), "is not executable")
    return path


_ARG_DEFAULT = re.compile(r"^ARG\s+(\w+)=(\S+)\s*$", re.MULTILINE)
_ENTRYPOINT = re.compile(r'^ENTRYPOINT\s+\["([^"]+)"', re.MULTILINE)


@dataclass
class RecipeCheck:
    """Result of comparing a recipe file with its expected rendering."""
    path: Path
    problems: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.problems


def inspect_recipe(text: str) -> dict[str, Optional[str]]:
    """Read the argument defaults and entrypoint of a rendered recipe."""
    args = dict(_ARG_DEFAULT.findall(text))
    entry = _ENTRYPOINT.search(text)
    return {
        "BuildImage": args.get("BuildImage"),
        "BinName": args.get("BinName"),
        "entrypoint": entry.group(1) if entry else None,
    }


def check_recipe_file(path: Union[str, Path], recipe: BuildRecipe) -> RecipeCheck:
    """Compare a shipped recipe with the text its recipe renders."""
    path = Path(path)
    result = RecipeCheck(path)
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        result.problems.append(f"cannot read: {e}")
        return result

    info = inspect_recipe(text)
    if info["BinName"] != recipe.bin_name:
        result.problems.append(f"BinName default is {info['BinName']!r}, expected {recipe.bin_name!r}")
    if info["entrypoint"] != recipe.entrypoint:
        result.problems.append(f"entrypoint is {info['entrypoint']!r}, expected {recipe.entrypoint!r}")
    if text != recipe.render():
        result.problems.append("content differs from the rendered recipe")
    return result


def check_deployed(deploy_dir: Union[str, Path]) -> list[RecipeCheck]:
    """Check every shipped recipe in deploy_dir."""
    return [check_recipe_file(Path(deploy_dir) / item.filename, item.recipe) for item in DEPLOYED]

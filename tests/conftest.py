"""
Pytest configuration and fixtures.
"""

import os
import stat
import sys
from pathlib import Path

import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Set test environment
os.environ.setdefault("DOLYSIS_ENVIRONMENT", "development")
os.environ.setdefault("DOLYSIS_LOG_LEVEL", "WARNING")
os.environ.setdefault("DOLYSIS_TRANSFORM_IDLE_TIMEOUT_SECONDS", "5")


@pytest.fixture
def project_dir() -> Path:
    """Root of the repository."""
    return project_root


@pytest.fixture
def make_script(tmp_path):
    """Write an executable shell script below tmp_path."""

    def _make(name: str, body: str, directory: Path = None, mode: int = 0o755) -> Path:
        path = (directory or tmp_path) / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("#!/bin/sh\n" + body + "\n")
        path.chmod(mode)
        return path

    return _make


@pytest.fixture
def make_file(tmp_path):
    """Write a plain, non-executable file below tmp_path."""

    def _make(name: str, body: str = "", directory: Path = None) -> Path:
        path = (directory or tmp_path) / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(body)
        path.chmod(stat.S_IRUSR | stat.S_IWUSR)
        return path

    return _make

"""
Tests that every project module compiles cleanly.
"""

import warnings

import pytest


PACKAGES = ("api", "cli", "core", "extractor", "loader", "manager", "recipes", "transformer", "transport")


def _sources(root):
    for package in PACKAGES:
        yield from sorted((root / package).rglob("*.py"))


def test_modules_compile_without_warnings(project_dir):
    """No module emits a warning (e.g. an invalid escape sequence) when compiled."""
    sources = list(_sources(project_dir))
    assert sources

    for path in sources:
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            compile(path.read_text(encoding="utf-8"), str(path), "exec")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

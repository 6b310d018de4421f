"""
Markdown link checker for the documentation set.

Verifies that every Markdown file is valid UTF-8 and that each internal
link resolves: ``[text](#anchor)`` against the headings of the same file,
``[text](other.md#anchor)`` against the headings of the other file.
Anchors follow GitHub's heading slug rules.
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Optional, Union


_HEADING = re.compile(r"^ {0,3}(#{1,6})\s+(.*?)\s*#*\s*$")
_FENCE = re.compile(r"^ {0,3}(```|~~~)")
_INLINE_CODE = re.compile(r"`[^`]*`")
_LINK = re.compile(r"(?<!!)\[[^\]]*\]\(\s*<?([^)\s>]+)>?(?:\s+\"[^\"]*\")?\s*\)")
_LINK_TEXT = re.compile(r"!?\[([^\]]*)\]\([^)]*\)")
_SCHEME = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*:")


@dataclass(frozen=True)
class MarkdownProblem:
    path: Path
    line: int
    message: str

    def __str__(self) -> str:
        return f"{self.path}:{self.line}: {self.message}"


def slugify(heading: str) -> str:
    """GitHub style anchor for a heading text."""
    text = _LINK_TEXT.sub(r"\1", heading)
    text = text.strip().lower()
    text = re.sub(r"[^\w\- ]", "", text)
    return text.replace(" ", "-")


def _content_lines(text: str) -> Iterator[tuple[int, str]]:
    """Yield (line number, line) outside fenced code blocks."""
    fence: Optional[str] = None
    for number, line in enumerate(text.splitlines(), start=1):
        match = _FENCE.match(line)
        if match:
            if fence is None:
                fence = match.group(1)
            elif match.group(1) == fence:
                fence = None
            continue
        if fence is None:
            yield number, line


def heading_anchors(text: str) -> set[str]:
    """All anchors generated by the headings of a document."""
    anchors: set[str] = set()
    counts: dict[str, int] = {}
    for _, line in _content_lines(text):
        match = _HEADING.match(line)
        if not match:
            continue
        slug = slugify(match.group(2))
        seen = counts.get(slug, 0)
        counts[slug] = seen + 1
        anchors.add(slug if seen == 0 else f"{slug}-{seen}")
    return anchors


def find_links(text: str) -> list[tuple[int, str]]:
    """Link targets of a document with their line numbers."""
    links = []
    for number, line in _content_lines(text):
        for match in _LINK.finditer(_INLINE_CODE.sub("", line)):
            links.append((number, match.group(1)))
    return links


def iter_markdown(paths: Iterable[Union[str, Path]]) -> Iterator[Path]:
    """Expand directories into the Markdown files they contain."""
    for path in map(Path, paths):
        if path.is_dir():
            yield from sorted(path.rglob("*.md"))
        else:
            yield path


def check_markdown(paths: Iterable[Union[str, Path]]) -> list[MarkdownProblem]:
    """
    Check Markdown files for encoding errors and broken internal links.

    Args:
        paths: Files or directories to check

    Returns:
        Every problem found, empty when the documents are sound
    """
    files = list(iter_markdown(paths))
    problems: list[MarkdownProblem] = []
    texts: dict[Path, Optional[str]] = {}

    def load(path: Path) -> Optional[str]:
        key = path.resolve()
        if key not in texts:
            try:
                texts[key] = path.read_bytes().decode("utf-8")
            except (OSError, UnicodeDecodeError):
                texts[key] = None
        return texts[key]

    for path in files:
        try:
            text = path.read_bytes().decode("utf-8")
        except UnicodeDecodeError as e:
            problems.append(MarkdownProblem(path, 0, f"not valid UTF-8 ({e.reason} at byte {e.start})"))
            continue
        except OSError as e:
            problems.append(MarkdownProblem(path, 0, f"cannot read: {e.strerror}"))
            continue
        texts[path.resolve()] = text
        own_anchors = heading_anchors(text)

        for line, target in find_links(text):
            if _SCHEME.match(target):
                continue
            file_part, _, anchor = target.partition("#")

            if not file_part:
                if anchor not in own_anchors:
                    problems.append(MarkdownProblem(path, line, f"broken anchor '#{anchor}'"))
                continue

            linked = (path.parent / file_part)
            if not linked.exists():
                problems.append(MarkdownProblem(path, line, f"missing link target '{file_part}'"))
                continue
            if not anchor or linked.suffix.lower() != ".md":
                continue

            linked_text = load(linked)
            if linked_text is None:
                problems.append(MarkdownProblem(path, line, f"cannot read link target '{file_part}'"))
            elif anchor not in heading_anchors(linked_text):
                problems.append(MarkdownProblem(path, line, f"broken anchor '{file_part}#{anchor}'"))

    return problems

"""Single-pass splitting of unified diff text into per-file segments."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

DIFF_HEADER_PREFIX = "diff --git "
HEADER_LINE_PREFIXES = ("index ", "+++", "---")
HUNK_HEADER_PREFIX = "@@"
UNKNOWN_FILE_NAME = "unknown"


class SegmenterState(Enum):
    """Position of the segmenter relative to the current file block."""

    BEFORE_ANY_FILE = "before_any_file"
    IN_HEADER = "in_header"
    IN_HUNK_BODY = "in_hunk_body"


@dataclass(slots=True)
class FileSegment:
    """One file's block of a unified diff."""

    file_name: str
    header_lines: list[str] = field(default_factory=list)
    hunk_header_lines: list[str] = field(default_factory=list)
    content_lines: list[str] = field(default_factory=list)
    lines: list[str] = field(default_factory=list)

    def add_header(self, line: str) -> None:
        self.header_lines.append(line)
        self.lines.append(line)

    def add_hunk_header(self, line: str) -> None:
        self.hunk_header_lines.append(line)
        self.lines.append(line)

    def add_content(self, line: str) -> None:
        self.content_lines.append(line)
        self.lines.append(line)


DiffPart = FileSegment | str


@dataclass(slots=True, frozen=True)
class DiffDocument:
    """Ordered file segments interleaved with lines found outside any segment."""

    parts: tuple[DiffPart, ...]

    @property
    def segments(self) -> tuple[FileSegment, ...]:
        return tuple(part for part in self.parts if isinstance(part, FileSegment))


def parse_diff_header(line: str) -> tuple[str, str] | None:
    """Return the (old, new) paths of a ``diff --git a/<old> b/<new>`` line.

    The new path is split off at the last `` b/`` that leaves a non-empty
    remainder, so paths containing spaces resolve the same way a greedy
    ``a/(.+) b/(.+)`` match would. Returns None when either side is missing.
    """
    prefix = f"{DIFF_HEADER_PREFIX}a/"
    if not line.startswith(prefix):
        return None
    rest = line[len(prefix) :]
    separator = " b/"
    search_end = len(rest)
    while True:
        index = rest.rfind(separator, 0, search_end)
        if index < 1:
            return None
        new_path = rest[index + len(separator) :]
        if new_path:
            return rest[:index], new_path
        search_end = index + len(separator) - 1


def file_name_from_header(line: str) -> str:
    """Return the ``b/`` side path of a diff header, or ``"unknown"``."""
    parsed = parse_diff_header(line)
    if parsed is None:
        return UNKNOWN_FILE_NAME
    return parsed[1]


def segment_diff(text: str) -> DiffDocument:
    """Split diff text into ordered file segments and interstitial lines."""
    parts: list[DiffPart] = []
    current: FileSegment | None = None
    state = SegmenterState.BEFORE_ANY_FILE

    for line in text.split("\n"):
        if line.startswith(DIFF_HEADER_PREFIX):
            current = FileSegment(file_name=file_name_from_header(line))
            parts.append(current)
            current.add_header(line)
            state = SegmenterState.IN_HEADER
            continue
        if current is None:
            parts.append(line)
            continue
        if line.startswith(HEADER_LINE_PREFIXES):
            current.add_header(line)
        elif line.startswith(HUNK_HEADER_PREFIX):
            current.add_hunk_header(line)
            state = SegmenterState.IN_HUNK_BODY
        elif state is SegmenterState.IN_HUNK_BODY:
            current.add_content(line)
        else:
            # Extended metadata before the first hunk (mode, rename, binary).
            current.add_header(line)

    return DiffDocument(parts=tuple(parts))


def render_document(document: DiffDocument) -> str:
    """Reassemble a document without applying any truncation."""
    lines: list[str] = []
    for part in document.parts:
        if isinstance(part, FileSegment):
            lines.extend(part.lines)
        else:
            lines.append(part)
    return "\n".join(lines)

"""Per-file head/tail truncation of unified diff text."""

from __future__ import annotations

import math

from bitbucket_mcp.diff.segmenter import FileSegment, segment_diff

HEAD_RATIO = 0.6
TAIL_RATIO = 0.4


def resolve_budget(explicit: int | None, configured: int | None) -> int | None:
    """Pick the per-file line budget: call parameter, then configured default."""
    if explicit is not None:
        return explicit
    return configured


def window_sizes(max_lines: int) -> tuple[int, int]:
    """Return (head, tail) content line counts for a positive budget."""
    return math.floor(max_lines * HEAD_RATIO), math.floor(max_lines * TAIL_RATIO)


def truncation_marker(file_name: str, total: int, head: int, tail: int) -> list[str]:
    """Build the lines that replace the hidden middle of a file."""
    hidden = total - head - tail
    return [
        "",
        f"[*** FILE TRUNCATED: {hidden} lines hidden from {file_name} ***]",
        f"[*** File had {total} total lines, showing first {head} and last {tail} ***]",
        "[*** Use maxLinesPerFile=0 to see complete diff ***]",
        "",
    ]


def truncate_segment(segment: FileSegment, max_lines: int | None) -> list[str]:
    """Return the lines to emit for one file segment under a content budget.

    Segments at or under budget come back in their original line order.
    Oversized segments keep every header and hunk header, then the first 60%
    and last 40% of the budget in content lines around a marker.
    """
    if max_lines is None or max_lines <= 0:
        return list(segment.lines)
    content = segment.content_lines
    if len(content) <= max_lines:
        return list(segment.lines)

    head, tail = window_sizes(max_lines)
    output = list(segment.header_lines)
    output.extend(segment.hunk_header_lines)
    output.extend(content[:head])
    output.extend(truncation_marker(segment.file_name, len(content), head, tail))
    output.extend(content[len(content) - tail :])
    return output


def truncate_diff(diff_text: str, max_lines: int | None) -> str:
    """Truncate every file of a diff to at most ``max_lines`` content lines.

    A missing or non-positive budget returns the text untouched.
    """
    if max_lines is None or max_lines <= 0:
        return diff_text
    document = segment_diff(diff_text)
    lines: list[str] = []
    for part in document.parts:
        if isinstance(part, FileSegment):
            lines.extend(truncate_segment(part, max_lines))
        else:
            lines.append(part)
    return "\n".join(lines)

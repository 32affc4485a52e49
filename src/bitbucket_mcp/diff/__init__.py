"""Unified diff segmentation and truncation."""

from .segmenter import (
    DiffDocument,
    FileSegment,
    file_name_from_header,
    parse_diff_header,
    render_document,
    segment_diff,
)
from .truncator import (
    HEAD_RATIO,
    TAIL_RATIO,
    resolve_budget,
    truncate_diff,
    truncate_segment,
    window_sizes,
)

__all__ = [
    "DiffDocument",
    "FileSegment",
    "HEAD_RATIO",
    "TAIL_RATIO",
    "file_name_from_header",
    "parse_diff_header",
    "render_document",
    "resolve_budget",
    "segment_diff",
    "truncate_diff",
    "truncate_segment",
    "window_sizes",
]

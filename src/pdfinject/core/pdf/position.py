"""
Placement geometry: coordinate conversion, alignment and page numbers.

Callers position content from the top-left corner of a reference page
(A4 by default).  PDF user space has its origin at the bottom-left, so
every rectangle is flipped against the reference height before any
operator is generated.
"""

from __future__ import annotations

import enum
import logging
import math
from typing import NamedTuple

from ...constants import REFERENCE_PAGE_HEIGHT
from ...errors import PlacementError

_logger = logging.getLogger(__name__)


class Align(enum.IntFlag):
    """Cell alignment flags; combine one horizontal and one vertical."""

    BOTTOM = 1
    RIGHT = 2
    TOP = 4
    LEFT = 8
    CENTER = 16
    MIDDLE = 32


DEFAULT_ALIGN = Align.LEFT | Align.TOP

# Highest priority first
_HORIZONTAL = (Align.LEFT, Align.CENTER, Align.RIGHT)
_VERTICAL = (Align.TOP, Align.MIDDLE, Align.BOTTOM)


class Rect(NamedTuple):
    """Rectangle in PDF user space (origin bottom-left)."""

    x: float
    y: float
    w: float
    h: float


def to_pdf_rect(
    x: float, y: float, w: float, h: float, reference_height: float = REFERENCE_PAGE_HEIGHT
) -> Rect:
    """Convert a top-left-relative cell to PDF user space.

    >>> to_pdf_rect(10, 20, 100, 30, reference_height=800)
    Rect(x=10, y=750, w=100, h=30)

    Raises PlacementError for negative or non-finite sizes.
    """
    for label, value in (("x", x), ("y", y), ("w", w), ("h", h)):
        if not math.isfinite(value):
            raise PlacementError(f"Placement {label} must be finite, got {value!r}")
    if w < 0 or h < 0:
        raise PlacementError(f"Placement size must be non-negative, got {w}x{h}")
    return Rect(x, reference_height - y - h, w, h)


def _pick(align: Align, candidates: tuple[Align, ...], axis: str) -> Align:
    present = [flag for flag in candidates if flag in align]
    if not present:
        return candidates[0]
    if len(present) > 1:
        _logger.warning(
            "Conflicting %s alignment flags %s; using %s",
            axis,
            "|".join(flag.name or "" for flag in present),
            present[0].name,
        )
    return present[0]


def resolve_alignment(align: int) -> tuple[Align, Align]:
    """Reduce a flag set to exactly one horizontal and one vertical flag.

    >>> resolve_alignment(Align.RIGHT | Align.LEFT)
    (<Align.LEFT: 8>, <Align.TOP: 4>)
    """
    flags = Align(align)
    return _pick(flags, _HORIZONTAL, "horizontal"), _pick(flags, _VERTICAL, "vertical")


def compute_anchor(rect: Rect, align: int) -> tuple[float, float]:
    """Reference point inside ``rect`` selected by ``align``."""
    horizontal, vertical = resolve_alignment(align)
    if horizontal is Align.LEFT:
        ax = rect.x
    elif horizontal is Align.CENTER:
        ax = rect.x + rect.w / 2
    else:
        ax = rect.x + rect.w

    if vertical is Align.TOP:
        ay = rect.y + rect.h
    elif vertical is Align.MIDDLE:
        ay = rect.y + rect.h / 2
    else:
        ay = rect.y
    return ax, ay


def resolve_page_index(page: int, total: int) -> int:
    """Convert a 1-based page number to a validated 0-based index.

    Raises:
        PlacementError: If the page does not exist.
    """
    if isinstance(page, bool) or not isinstance(page, int):
        raise PlacementError(f"Page number must be an integer, got {page!r}")
    if page < 1 or page > total:
        raise PlacementError(f"Page {page} out of range (PDF has {total} page(s), 1-based).")
    return page - 1

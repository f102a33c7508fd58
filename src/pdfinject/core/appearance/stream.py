"""
Content stream operators for injected text and images.

Each placement becomes a self-contained ``q ... Q`` block so graphics
state never leaks between placements or into the page's own content:

    q
    0.1 w [2 3] 11 d 10 700 200 40 re S      (border mode only)
    BT /PdfInjF1 14 Tf 10 727.4 Td <0001...> Tj ET
    Q

    q 120 0 0 80 300 500 cm /PdfInjIm1 Do Q
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ...constants import BORDER_DASH_PATTERN, BORDER_LINE_WIDTH, DEFAULT_FONT_SIZE, DEFAULT_LINE_WIDTH
from ..pdf.position import Align, Rect, compute_anchor, resolve_alignment

if TYPE_CHECKING:
    from .fonts import FontHandle

_logger = logging.getLogger(__name__)

__all__ = [
    "TextStyle",
    "build_image_ops",
    "build_text_ops",
    "fmt_num",
]

_PDF_UNITS = 1000


@dataclass(frozen=True)
class TextStyle:
    """Text style captured when a placement is made.

    ``style`` holds font style letters; ``"U"`` underlines.  Bold and
    italic come from registering the matching font file.
    """

    font_name: str | None = None
    size: float = DEFAULT_FONT_SIZE
    style: str = ""
    show_border: bool = False

    @property
    def underline(self) -> bool:
        return "U" in self.style.upper()


def fmt_num(value: float) -> str:
    """Compact PDF number: up to four decimals, no trailing zeros."""
    text = f"{value:.4f}".rstrip("0").rstrip(".")
    return "0" if text in ("-0", "") else text


def _border_ops(rect: Rect, show_border: bool) -> list[str]:
    if not show_border:
        return [f"{fmt_num(DEFAULT_LINE_WIDTH)} w", "[] 0 d"]
    return [
        f"{fmt_num(BORDER_LINE_WIDTH)} w",
        BORDER_DASH_PATTERN,
        f"{fmt_num(rect.x)} {fmt_num(rect.y)} {fmt_num(rect.w)} {fmt_num(rect.h)} re",
        "S",
    ]


def build_text_ops(
    text: str,
    rect: Rect,
    align: int,
    style: TextStyle,
    font: FontHandle,
    resource_name: str,
) -> list[str]:
    """Operators drawing ``text`` aligned inside ``rect``.

    ``font`` must already be built so widths and the CID encoding are known.
    """
    size = style.size
    horizontal, vertical = resolve_alignment(align)
    ax, ay = compute_anchor(rect, align)

    width = font.text_width(text, size)
    if horizontal is Align.LEFT:
        tx = ax
    elif horizontal is Align.CENTER:
        tx = ax - width / 2
    else:
        tx = ax - width

    ascent = font.ascent * size / _PDF_UNITS
    descent = font.descent * size / _PDF_UNITS  # negative below the baseline
    if vertical is Align.TOP:
        ty = ay - ascent
    elif vertical is Align.MIDDLE:
        ty = ay - (ascent + descent) / 2
    else:
        ty = ay - descent

    if width > rect.w:
        _logger.debug("Text %r (%.1f pt) overflows its %.1f pt cell", text[:20], width, rect.w)

    ops = ["q"]
    ops += _border_ops(rect, style.show_border)
    ops += [
        "BT",
        f"/{resource_name} {fmt_num(size)} Tf",
        f"{fmt_num(tx)} {fmt_num(ty)} Td",
        f"<{font.encode(text)}> Tj",
        "ET",
    ]
    if style.underline and text:
        position = font.underline_position * size / _PDF_UNITS
        thickness = font.underline_thickness * size / _PDF_UNITS
        bar_y = ty + position - thickness / 2
        ops.append(f"{fmt_num(tx)} {fmt_num(bar_y)} {fmt_num(width)} {fmt_num(thickness)} re f")
    ops.append("Q")
    return ops


def build_image_ops(rect: Rect, resource_name: str) -> list[str]:
    """Operators painting an image XObject scaled to fill ``rect``."""
    return [
        "q",
        f"{fmt_num(rect.w)} 0 0 {fmt_num(rect.h)} {fmt_num(rect.x)} {fmt_num(rect.y)} cm",
        f"/{resource_name} Do",
        "Q",
    ]

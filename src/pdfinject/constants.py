"""
Library-wide constants for pdfinject.

Page geometry, stroke styles, size limits, and PDF syntax constants are
centralized here for easy maintenance.
"""

from __future__ import annotations

import importlib.metadata

try:
    __version__ = importlib.metadata.version("pdfinject")
except importlib.metadata.PackageNotFoundError:
    __version__ = "0.3.0"

__all__ = [
    "BORDER_DASH_PATTERN",
    "BORDER_LINE_WIDTH",
    "CID_BASE",
    "DEFAULT_FONT_SIZE",
    "DEFAULT_LINE_WIDTH",
    "MAX_IMAGE_PIXELS",
    "PDF_BINARY_MARKER",
    "PDF_HEADER",
    "PDF_MAGIC",
    "REFERENCE_PAGE_HEIGHT",
    "RESOURCE_FONT_PREFIX",
    "RESOURCE_IMAGE_PREFIX",
    "XREF_FREE_GENERATION",
    "__version__",
]

# ── Page geometry ──────────────────────────────────────────────────────

# Callers position content against an A4 page (297 mm = 841.89 pt),
# measured from the top-left corner.
REFERENCE_PAGE_HEIGHT = 841.89


# ── Text defaults ──────────────────────────────────────────────────────

DEFAULT_FONT_SIZE = 14.0

# First CID handed out to a used character; CID 0 stays .notdef.
CID_BASE = 1


# ── Cell border (diagnostic mode) ──────────────────────────────────────

# Hairline dotted border drawn around each text cell when enabled
BORDER_LINE_WIDTH = 0.1
BORDER_DASH_PATTERN = "[2 3] 11 d"

# PDF default line width, restored when the border is disabled
DEFAULT_LINE_WIDTH = 1.0


# ── Resource naming ────────────────────────────────────────────────────

# Prefixes for injected /Font and /XObject resource names
RESOURCE_FONT_PREFIX = "PdfInjF"
RESOURCE_IMAGE_PREFIX = "PdfInjIm"


# ── Size limits ────────────────────────────────────────────────────────

# Maximum decoded pixel count (decompression bomb guard, CWE-400).
# 12000x12000 covers a full A4 page scanned at 1200 dpi.
MAX_IMAGE_PIXELS = 12000 * 12000


# ── PDF syntax ─────────────────────────────────────────────────────────

PDF_MAGIC = b"%PDF-"
PDF_HEADER = b"%PDF-1.7\n"

# Comment line with high-bit bytes so transfer tools treat the file as binary
PDF_BINARY_MARKER = b"%\xe2\xe3\xcf\xd3\n"

# Generation number written for free xref entries (never reused)
XREF_FREE_GENERATION = 65535

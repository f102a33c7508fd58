"""
pdfinject -- add text, images and password protection to existing PDFs.

Parses a classic PDF into its object graph, embeds subset TrueType fonts
and images, writes page-relative text and image placements into new
content streams, and re-serializes the whole file with a fresh xref
table, optionally encrypted with the standard security handler.
"""

from __future__ import annotations

from .api import DocumentOptions, PdfInjector
from .constants import __version__
from .core.appearance import FontHandle, ImageHandle, TextStyle
from .core.pdf import Align, Document, Permission, parse_document, serialize_document
from .errors import (
    DuplicateFontNameError,
    FontBuildError,
    ImageBuildError,
    ImageDecodeError,
    MalformedDocumentError,
    PdfInjectError,
    PlacementError,
    ProtectionError,
    UnknownFontError,
)

__all__ = [
    "Align",
    "Document",
    "DocumentOptions",
    "DuplicateFontNameError",
    "FontBuildError",
    "FontHandle",
    "ImageBuildError",
    "ImageDecodeError",
    "ImageHandle",
    "MalformedDocumentError",
    "PdfInjectError",
    "PdfInjector",
    "Permission",
    "PlacementError",
    "ProtectionError",
    "TextStyle",
    "UnknownFontError",
    "__version__",
    "parse_document",
    "serialize_document",
]

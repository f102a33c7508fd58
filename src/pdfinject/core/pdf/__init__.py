"""PDF object store, parsing, encryption and serialization.

The save pipeline (builder.py) and the page rewrite (inject.py) depend on
the appearance package and are imported from their modules directly.
"""

from .encrypt import ALGORITHMS, Permission, ProtectionConfig, SecurityHandler
from .objects import (
    Document,
    IndirectObject,
    StreamParts,
    Trailer,
    build_dict_override,
    join_stream,
    ref,
    split_stream,
    stream_payload,
)
from .parser import parse_document
from .position import DEFAULT_ALIGN, Align, Rect, compute_anchor, resolve_alignment, to_pdf_rect
from .xref import XrefRow, build_xref_and_trailer, build_xref_rows, serialize_document, write_objects

__all__ = [
    "ALGORITHMS",
    "DEFAULT_ALIGN",
    "Align",
    "Document",
    "IndirectObject",
    "Permission",
    "ProtectionConfig",
    "Rect",
    "SecurityHandler",
    "StreamParts",
    "Trailer",
    "XrefRow",
    "build_dict_override",
    "build_xref_and_trailer",
    "build_xref_rows",
    "compute_anchor",
    "join_stream",
    "parse_document",
    "ref",
    "resolve_alignment",
    "serialize_document",
    "split_stream",
    "stream_payload",
    "to_pdf_rect",
    "write_objects",
]

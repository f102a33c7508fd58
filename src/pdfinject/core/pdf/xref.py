"""Object writing, cross-reference table and trailer.

Emits a full (non-incremental) PDF: header, every object of the Document
in order, a classic xref table whose free entries form one closed linked
list, and the trailer.

The save pipeline that assigns object ids and drives these steps is in
builder.py.
"""

from __future__ import annotations

import logging
from typing import NamedTuple

from ...constants import PDF_BINARY_MARKER, PDF_HEADER, XREF_FREE_GENERATION
from ...errors import PdfInjectError
from .objects import Document, ref

_logger = logging.getLogger(__name__)

# Placeholder file identifier written alongside /Encrypt.  The encryption
# key is derived with the matching empty first element.
ENCRYPT_ID_PLACEHOLDER = "[()()]"


class XrefRow(NamedTuple):
    """One cross-reference entry."""

    offset: int  # byte offset ("n") or next free object number ("f")
    generation: int
    flag: str  # "n" (in use) or "f" (free)

    def format(self) -> bytes:
        # ISO 32000-1 7.5.4: each entry is exactly 20 bytes including the EOL.
        return f"{self.offset:010d} {self.generation:05d} {self.flag}\r\n".encode("ascii")


def write_objects(document: Document) -> tuple[bytearray, dict[int, int]]:
    """Write the header and every object; return (buffer, offsets by object number)."""
    buff = bytearray(PDF_HEADER + PDF_BINARY_MARKER)
    offsets: dict[int, int] = {}
    for obj in document:
        offsets[obj.obj_num] = len(buff)
        buff += f"{obj.obj_num} 0 obj\n".encode("ascii")
        buff += obj.payload
        buff += b"\nendobj\n"
    return buff, offsets


def build_xref_rows(offsets: dict[int, int], size: int) -> list[XrefRow]:
    """Build xref rows for object numbers 0..size-1.

    Object numbers missing from ``offsets`` become free entries.  Entry 0
    heads the free list; each free entry points at the next free object
    number and the last one points back to 0, so the free entries always
    form a single closed chain.
    """
    if size < 1:
        raise PdfInjectError(f"Invalid xref size: {size}")
    stray = [n for n in offsets if n < 1 or n >= size]
    if stray:
        raise PdfInjectError(f"Object numbers outside xref range 1..{size - 1}: {sorted(stray)}")

    free = [0] + [n for n in range(1, size) if n not in offsets]
    next_free = {n: free[(i + 1) % len(free)] for i, n in enumerate(free)}

    rows: list[XrefRow] = []
    for n in range(size):
        if n in next_free:
            rows.append(XrefRow(next_free[n], XREF_FREE_GENERATION, "f"))
        else:
            rows.append(XrefRow(offsets[n], 0, "n"))
    return rows


def build_xref_and_trailer(
    offsets: dict[int, int],
    size: int,
    root_obj_num: int,
    xref_offset: int,
    info_obj_num: int | None = None,
    encrypt_obj_num: int | None = None,
    id_array: bytes | None = None,
) -> bytes:
    """Build the xref table, trailer, startxref and %%EOF.

    Args:
        offsets: Mapping of object number to byte offset of its header.
        size: /Size value (highest object number + 1).
        root_obj_num: Catalog object number for /Root.
        xref_offset: Byte offset where this xref table starts.
        info_obj_num: Document information dictionary, if any.
        encrypt_obj_num: Encryption dictionary; adds /Encrypt and the
            placeholder /ID.
        id_array: Raw /ID array carried from the input (unencrypted saves).

    Returns:
        Raw bytes from "xref" through the final newline.
    """
    rows = build_xref_rows(offsets, size)
    out = bytearray(f"xref\n0 {size}\n".encode("ascii"))
    for row in rows:
        out += row.format()

    lines = ["trailer", "<<", f"  /Size {size}", f"  /Root {ref(root_obj_num)}"]
    if info_obj_num is not None:
        lines.append(f"  /Info {ref(info_obj_num)}")
    if encrypt_obj_num is not None:
        lines.append(f"  /Encrypt {ref(encrypt_obj_num)}")
        lines.append(f"  /ID {ENCRYPT_ID_PLACEHOLDER}")
    elif id_array is not None:
        lines.append(f"  /ID {id_array.decode('latin-1')}")
    lines.append(">>")
    lines.append("startxref")
    lines.append(str(xref_offset))
    lines.append("%%EOF")
    lines.append("")  # trailing newline

    out += "\n".join(lines).encode("latin-1")
    return bytes(out)


def append_xref(
    buff: bytearray,
    offsets: dict[int, int],
    document: Document,
    encrypt_obj_num: int | None = None,
) -> None:
    """Append the xref table and trailer for objects already in ``buff``."""
    trailer = document.trailer
    if trailer is None:
        raise PdfInjectError("Document has no trailer.")

    info = trailer.info_obj_num
    if info is not None and info not in offsets:
        _logger.warning("Dropping /Info %d: object does not exist", info)
        info = None

    xref_offset = len(buff)
    buff += build_xref_and_trailer(
        offsets=offsets,
        size=document.max_obj_num() + 1,
        root_obj_num=trailer.root_obj_num,
        xref_offset=xref_offset,
        info_obj_num=info,
        encrypt_obj_num=encrypt_obj_num,
        id_array=trailer.id_array,
    )


def serialize_document(document: Document, encrypt_obj_num: int | None = None) -> bytes:
    """Serialize a complete Document to PDF bytes."""
    document.validate()
    buff, offsets = write_objects(document)
    append_xref(buff, offsets, document, encrypt_obj_num)
    return bytes(buff)

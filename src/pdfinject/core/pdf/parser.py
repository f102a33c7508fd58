"""Classic PDF parsing into the object store.

Locates every ``N G obj ... endobj`` span and the trailer's /Root, /Info
and /ID entries.  Dictionary and stream contents are passed through
opaquely; nothing beyond object boundaries and the trailer is
interpreted.

Cross-reference streams and compressed object streams (PDF 1.5+) are not
supported: their objects are invisible to a span scan, so such files are
rejected instead of being silently truncated.
"""

from __future__ import annotations

import logging
import re

from ...constants import PDF_MAGIC
from ...errors import MalformedDocumentError, PdfInjectError
from .objects import (
    Document,
    IndirectObject,
    Trailer,
    direct_stream_length,
    find_stream_start,
    split_stream,
)

_logger = logging.getLogger(__name__)

_OBJ_HEADER = re.compile(rb"(?<!\d)(\d+)\s+(\d+)\s+obj\b")
_TRAILER = re.compile(rb"trailer\s*<<")
_ROOT_REF = re.compile(rb"/Root\s+(\d+)\s+(\d+)\s+R")
_INFO_REF = re.compile(rb"/Info\s+(\d+)\s+(\d+)\s+R")
_ID_ARRAY = re.compile(rb"/ID\s*(\[.*?\])", re.DOTALL)
_ENCRYPT_REF = re.compile(rb"/Encrypt\b")
_OBJSTM = re.compile(rb"/Type\s*/ObjStm\b")
_REFERENCE = re.compile(rb"(?<!\d)(\d+)\s+(\d+)\s+R(?![A-Za-z0-9])")

_PDF_WHITESPACE = b"\x00\t\n\x0c\r "

# ISO 32000-1 7.5.2: the header may be preceded by up to 1024 bytes of junk
_HEADER_SEARCH_LIMIT = 1024


def parse_document(pdf_bytes: bytes) -> Document:
    """Parse raw PDF bytes into a Document.

    A later definition of an object number (incremental update) replaces
    the earlier payload but keeps the earlier position.

    Raises:
        MalformedDocumentError: On any structural failure.  There is no
            partial-document recovery.
    """
    if pdf_bytes.find(PDF_MAGIC, 0, _HEADER_SEARCH_LIMIT) == -1:
        raise MalformedDocumentError("Not a PDF: missing %PDF- header.")

    document = Document()
    generations: dict[int, int] = {}
    pos = 0
    while True:
        m = _OBJ_HEADER.search(pdf_bytes, pos)
        if m is None:
            break
        obj_num, gen = int(m.group(1)), int(m.group(2))
        body_end, pos = _find_object_end(pdf_bytes, m.end(), obj_num)
        payload = pdf_bytes[m.end() : body_end].strip(_PDF_WHITESPACE)

        if _OBJSTM.search(payload.split(b"stream", 1)[0]):
            raise MalformedDocumentError(
                f"Object {obj_num} is a compressed object stream; "
                "only classic (uncompressed xref) PDFs are supported."
            )
        if gen != 0:
            _logger.warning("Object %d has generation %d; it will be written as generation 0", obj_num, gen)
        if obj_num in document:
            _logger.debug("Object %d redefined by a later revision", obj_num)
        if obj_num < 1:
            raise MalformedDocumentError(f"Invalid object number {obj_num}.")
        document.put(IndirectObject(obj_num, payload))
        generations[obj_num] = gen

    if len(document) == 0:
        raise MalformedDocumentError("No indirect objects found.")

    renumbered = {(num, gen) for num, gen in generations.items() if gen != 0}
    if renumbered:
        for obj in document:
            obj.payload = _rewrite_references(obj.payload, renumbered)

    document.trailer = _parse_trailer(pdf_bytes)
    try:
        document.validate()
    except PdfInjectError as exc:
        raise MalformedDocumentError(str(exc)) from exc

    _logger.debug(
        "Parsed %d objects (max %d), root %d",
        len(document),
        document.max_obj_num(),
        document.trailer.root_obj_num,
    )
    return document


def _find_object_end(pdf_bytes: bytes, body_start: int, obj_num: int) -> tuple[int, int]:
    """Return (offset of endobj, offset just past it) for one object.

    Stream data is skipped before searching for endobj so binary
    content containing the keyword does not split the object.
    """
    endobj = pdf_bytes.find(b"endobj", body_start)
    if endobj == -1:
        raise MalformedDocumentError(f"Object {obj_num} is not terminated by endobj.")

    m = find_stream_start(pdf_bytes, body_start, endobj)
    if m is None:
        return endobj, endobj + len(b"endobj")

    data_start = m.end()
    endstream = -1
    length = direct_stream_length(pdf_bytes[body_start : m.start()])
    if length is not None:
        i = data_start + length
        while i < len(pdf_bytes) and pdf_bytes[i] in _PDF_WHITESPACE:
            i += 1
        if pdf_bytes.startswith(b"endstream", i):
            endstream = i
    if endstream == -1:
        endstream = pdf_bytes.find(b"endstream", data_start)
        if endstream == -1:
            raise MalformedDocumentError(f"Stream object {obj_num} has no endstream keyword.")

    endobj = pdf_bytes.find(b"endobj", endstream + len(b"endstream"))
    if endobj == -1:
        raise MalformedDocumentError(f"Object {obj_num} is not terminated by endobj.")
    return endobj, endobj + len(b"endobj")


def _parse_trailer(pdf_bytes: bytes) -> Trailer:
    """Extract /Root, /Info and /ID from the last classic trailer that has /Root.

    Uses the LAST trailer -- PDFs with incremental updates may redefine
    /Root in later trailers, and the last one is always authoritative.
    """
    matches = list(_TRAILER.finditer(pdf_bytes))
    if not matches:
        raise MalformedDocumentError(
            "No trailer dictionary found; cross-reference-stream PDFs are not supported."
        )

    for match in reversed(matches):
        end = pdf_bytes.find(b"startxref", match.end())
        if end == -1:
            end = len(pdf_bytes)
        section = pdf_bytes[match.start() : end]
        root_m = _ROOT_REF.search(section)
        if root_m is None:
            continue
        if _ENCRYPT_REF.search(section):
            raise MalformedDocumentError("Encrypted input documents are not supported.")
        info_m = _INFO_REF.search(section)
        id_m = _ID_ARRAY.search(section)
        return Trailer(
            root_obj_num=int(root_m.group(1)),
            info_obj_num=int(info_m.group(1)) if info_m else None,
            id_array=id_m.group(1) if id_m else None,
        )

    raise MalformedDocumentError("Cannot find /Root reference in PDF trailer.")


def _rewrite_references(payload: bytes, renumbered: set[tuple[int, int]]) -> bytes:
    """Point ``N G R`` references at the generation-0 copy of each renumbered object.

    Stream data is left alone; only the dictionary part is rewritten.
    """

    def repl(m: re.Match[bytes]) -> bytes:
        num, gen = int(m.group(1)), int(m.group(2))
        if (num, gen) not in renumbered:
            return m.group(0)
        return b"%d 0 R" % num

    parts = split_stream(payload)
    if parts is None:
        return _REFERENCE.sub(repl, payload)
    return _REFERENCE.sub(repl, parts.head) + parts.data + parts.tail

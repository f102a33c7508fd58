"""In-memory PDF object store.

Types and helpers for the object graph every other subsystem reads and
writes: indirect objects (id + opaque payload), the trailer, the ordered
document that owns them, and raw stream/dictionary helpers.

Parsing raw bytes into a Document is in parser.py.
Serialization (object offsets, xref table, trailer) is in xref.py.
"""

from __future__ import annotations

import copy
import decimal
import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass
from typing import TYPE_CHECKING, NamedTuple

from ...errors import MalformedDocumentError, PdfInjectError
from .. import require_pikepdf as _require_pikepdf

if TYPE_CHECKING:
    import pikepdf

_logger = logging.getLogger(__name__)


@dataclass
class IndirectObject:
    """One ``N 0 obj ... endobj`` span.

    ``payload`` is the literal text between ``obj`` and ``endobj`` with
    surrounding whitespace trimmed.  Past parse time it is opaque.
    """

    obj_num: int
    payload: bytes


@dataclass
class Trailer:
    """Trailer entries carried through a save.

    /Size is not stored; it is derived from the highest object number when
    the document is serialized.
    """

    root_obj_num: int
    info_obj_num: int | None = None
    id_array: bytes | None = None  # raw "[<...> <...>]" from the input trailer


class StreamParts(NamedTuple):
    """A stream object's payload split around its data."""

    head: bytes  # dictionary plus the "stream" keyword and its EOL
    data: bytes
    tail: bytes  # EOL + "endstream"


# ── Stream helpers ───────────────────────────────────────────────────

_STREAM_KEYWORD = re.compile(rb"\bstream(?:\r\n|\n|\r)")
# A direct integer /Length; "/Length 12 0 R" must not match as 12 or 1.
_DIRECT_LENGTH = re.compile(rb"/Length\s+(\d+)(?!\d)(?!\s+\d+\s+R)")
_ANY_LENGTH = re.compile(rb"/Length\s+\d+(?:\s+\d+\s+R)?")


def find_stream_start(data: bytes, start: int = 0, end: int | None = None) -> re.Match[bytes] | None:
    """Find the ``stream`` keyword (with its EOL) between start and end."""
    if end is None:
        end = len(data)
    return _STREAM_KEYWORD.search(data, start, end)


def direct_stream_length(head: bytes) -> int | None:
    """Return the direct integer /Length of a stream dictionary, if any."""
    m = _DIRECT_LENGTH.search(head)
    return int(m.group(1)) if m else None


def split_stream(payload: bytes) -> StreamParts | None:
    """Split a stream object's payload into (head, data, tail).

    Returns None for non-stream objects.  A direct /Length is trusted when
    only whitespace separates the counted data from ``endstream``;
    otherwise the data runs up to the EOL preceding ``endstream``.
    """
    m = find_stream_start(payload)
    if m is None:
        return None
    data_start = m.end()
    end = payload.rfind(b"endstream")
    if end < data_start:
        raise MalformedDocumentError("Stream object has no endstream keyword.")

    length = direct_stream_length(payload[: m.start()])
    if length is not None and data_start + length <= end:
        if not payload[data_start + length : end].strip():
            data = payload[data_start : data_start + length]
            return StreamParts(payload[:data_start], data, payload[data_start + length :])

    data = payload[data_start:end]
    if data.endswith(b"\r\n"):
        data = data[:-2]
    elif data.endswith((b"\n", b"\r")):
        data = data[:-1]
    return StreamParts(payload[:data_start], data, payload[data_start + len(data) :])


def join_stream(head: bytes, data: bytes, tail: bytes) -> bytes:
    """Reassemble a stream payload, rewriting /Length to match ``data``."""
    new_length = f"/Length {len(data)}".encode("ascii")
    head, count = _ANY_LENGTH.subn(lambda _m: new_length, head, count=1)
    if count == 0:
        raise PdfInjectError("Stream dictionary has no /Length entry.")
    if not tail.startswith((b"\n", b"\r")):
        tail = b"\n" + tail
    return head + data + tail


def stream_payload(entries: str, data: bytes) -> bytes:
    """Build a stream payload from dictionary entries and raw data.

    ``entries`` is the inside of the dictionary without /Length, e.g.
    ``"/Filter /FlateDecode"``.
    """
    sep = " " if entries else ""
    header = f"<< {entries}{sep}/Length {len(data)} >>\nstream\n"
    return header.encode("latin-1") + data + b"\nendstream"


def ref(obj_num: int) -> str:
    """Indirect reference syntax for an object number (generation 0)."""
    return f"{obj_num} 0 R"


# ── Document ─────────────────────────────────────────────────────────


class Document:
    """Ordered collection of indirect objects plus a trailer.

    Insertion order is preserved and determines serialization order.
    Object numbers are unique; ``trailer.root_obj_num`` must reference an
    existing object.
    """

    def __init__(self, objects: list[IndirectObject] | None = None, trailer: Trailer | None = None):
        self._objects: list[IndirectObject] = []
        self._index: dict[int, int] = {}
        for obj in objects or []:
            self.put(obj)
        self.trailer = trailer
        if trailer is not None:
            self.validate()

    def __len__(self) -> int:
        return len(self._objects)

    def __iter__(self) -> Iterator[IndirectObject]:
        return iter(self._objects)

    def __contains__(self, obj_num: object) -> bool:
        return obj_num in self._index

    @property
    def obj_nums(self) -> list[int]:
        return [obj.obj_num for obj in self._objects]

    def get(self, obj_num: int) -> IndirectObject:
        try:
            return self._objects[self._index[obj_num]]
        except KeyError:
            raise PdfInjectError(f"Object {obj_num} does not exist.") from None

    def put(self, obj: IndirectObject) -> None:
        """Append a new object, or replace the payload of an existing one in place."""
        if obj.obj_num < 1:
            raise PdfInjectError(f"Invalid object number: {obj.obj_num}")
        pos = self._index.get(obj.obj_num)
        if pos is None:
            self._index[obj.obj_num] = len(self._objects)
            self._objects.append(obj)
        else:
            self._objects[pos] = obj

    def add(self, obj_num: int, payload: bytes) -> IndirectObject:
        """Append a brand-new object; the number must not be taken."""
        if obj_num in self._index:
            raise PdfInjectError(f"Object {obj_num} already exists.")
        obj = IndirectObject(obj_num, payload)
        self.put(obj)
        return obj

    def replace_payload(self, obj_num: int, payload: bytes) -> None:
        self.get(obj_num).payload = payload

    def max_obj_num(self) -> int:
        return max(self._index, default=0)

    def next_obj_num(self) -> int:
        """First free object number (max existing + 1)."""
        return self.max_obj_num() + 1

    def validate(self) -> None:
        """Check the root invariant."""
        if self.trailer is None:
            raise PdfInjectError("Document has no trailer.")
        if self.trailer.root_obj_num not in self._index:
            raise PdfInjectError(
                f"/Root references object {self.trailer.root_obj_num}, which does not exist."
            )

    def copy(self) -> Document:
        """Deep copy: the clone shares no mutable state with this document."""
        clone = Document()
        for obj in self._objects:
            clone.put(IndirectObject(obj.obj_num, obj.payload))
        clone.trailer = copy.copy(self.trailer)
        return clone


# ── pikepdf serialization ────────────────────────────────────────────


def serialize_pikepdf_obj(obj: None | bool | int | float | decimal.Decimal | pikepdf.Object) -> str:
    """Serialize a pikepdf object to a raw PDF string for embedding.

    Uses pikepdf's built-in unparse() for correct PDF syntax, with
    special handling for indirect references (emitted as "N G R")
    and plain Python types that pikepdf may return.
    """
    # Plain Python types (pikepdf sometimes returns these directly)
    if obj is None:
        return "null"
    if isinstance(obj, bool):
        return "true" if obj else "false"
    if isinstance(obj, int):
        return str(obj)
    if isinstance(obj, float):
        return str(int(obj)) if obj % 1 == 0.0 else f"{obj:.6f}"
    if isinstance(obj, decimal.Decimal):
        # pikepdf returns reals as Decimal; PDF has no exponent syntax
        return format(obj.normalize(), "f")
    pikepdf = _require_pikepdf()
    if isinstance(obj, pikepdf.Object) and obj.is_indirect:
        num, gen = obj.objgen
        if gen != 0:
            _logger.warning("Reference %d %d R rewritten with generation 0", num, gen)
        return ref(num)
    return obj.unparse(resolved=True).decode("latin-1")


def build_dict_override(entries: list[str]) -> bytes:
    """Build a raw dictionary payload from ``"/Key value"`` entries."""
    body = "\n".join(f"  {entry}" for entry in entries)
    return f"<<\n{body}\n>>".encode("latin-1")

"""Page rewriting for injected content.

Uses pikepdf only for reading the page tree of the working document --
never saves the PDF.  Each touched page object is replaced with a raw
dictionary that:

  - keeps every original entry except /Contents and /Resources,
  - wraps the original content between a shared ``q`` stream and the new
    stream (which opens with ``Q``), so the page's own graphics state
    cannot leak into injected content,
  - carries its effective /Resources inline, own or inherited from
    /Parent, with the injected /Font and /XObject names merged in.
"""

from __future__ import annotations

import io
import logging
import zlib
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ...constants import RESOURCE_FONT_PREFIX, RESOURCE_IMAGE_PREFIX
from ...errors import MalformedDocumentError
from .. import require_pikepdf as _require_pikepdf
from .objects import Document, build_dict_override, ref, serialize_pikepdf_obj, stream_payload
from .position import resolve_page_index
from .xref import serialize_document

if TYPE_CHECKING:
    import pikepdf

_logger = logging.getLogger(__name__)

# Guards against /Parent cycles in damaged page trees
_MAX_TREE_DEPTH = 64


@dataclass
class PageResources:
    """A page's effective resources with injected names allocated on top."""

    fonts: dict[str, str] = field(default_factory=dict)  # "/Name" -> serialized value
    xobjects: dict[str, str] = field(default_factory=dict)
    other: list[str] = field(default_factory=list)  # remaining "/Key value" entries
    _allocated: dict[tuple[str, int], str] = field(default_factory=dict, repr=False)

    def _allocate(self, kind: str, obj_id: int, prefix: str, table: dict[str, str]) -> str:
        key = (kind, obj_id)
        if key in self._allocated:
            return self._allocated[key]
        n = 1
        while f"/{prefix}{n}" in table:
            n += 1
        name = f"{prefix}{n}"
        table[f"/{name}"] = ref(obj_id)
        self._allocated[key] = name
        return name

    def add_font(self, font_dict_id: int) -> str:
        """Resource name (without slash) for a font dictionary object."""
        return self._allocate("font", font_dict_id, RESOURCE_FONT_PREFIX, self.fonts)

    def add_xobject(self, image_id: int) -> str:
        """Resource name (without slash) for an image XObject."""
        return self._allocate("xobject", image_id, RESOURCE_IMAGE_PREFIX, self.xobjects)

    def serialize(self) -> str:
        entries = list(self.other)
        if self.fonts:
            entries.append("/Font << " + " ".join(f"{k} {v}" for k, v in self.fonts.items()) + " >>")
        if self.xobjects:
            entries.append("/XObject << " + " ".join(f"{k} {v}" for k, v in self.xobjects.items()) + " >>")
        return "<< " + " ".join(entries) + " >>"


@dataclass
class PageTarget:
    """Everything needed to rewrite one page object."""

    index: int  # 0-based
    obj_num: int
    entries: list[str]  # original entries other than /Contents and /Resources
    contents: list[str]  # references to the original content streams
    resources: PageResources

    def build_override(self, q_stream_id: int, content_id: int) -> bytes:
        """Replacement page dictionary wrapping the original content."""
        contents = [ref(q_stream_id), *self.contents, ref(content_id)]
        entries = [
            *self.entries,
            f"/Resources {self.resources.serialize()}",
            f"/Contents [{' '.join(contents)}]",
        ]
        return build_dict_override(entries)


def _open_working_copy(document: Document) -> pikepdf.Pdf:
    pikepdf = _require_pikepdf()
    try:
        return pikepdf.open(io.BytesIO(serialize_document(document)))
    except pikepdf.PdfError as exc:
        raise MalformedDocumentError(f"Cannot read page tree: {exc}") from exc


def count_pages(document: Document) -> int:
    """Number of pages in the document's page tree."""
    with _open_working_copy(document) as pdf:
        return len(pdf.pages)


def _dict_entries(obj: pikepdf.Object) -> dict[str, str]:
    pikepdf = _require_pikepdf()
    if not isinstance(obj, pikepdf.Dictionary):
        raise MalformedDocumentError(f"Expected a dictionary, got {type(obj).__name__}")
    return {str(key): serialize_pikepdf_obj(value) for key, value in obj.items()}


def _effective_resources(page_obj: pikepdf.Object) -> PageResources:
    node = page_obj
    for _ in range(_MAX_TREE_DEPTH):
        resources = node.get("/Resources")
        if resources is not None:
            break
        node = node.get("/Parent")
        if node is None:
            return PageResources()
    else:
        raise MalformedDocumentError("Page tree /Parent chain is too deep or cyclic.")

    result = PageResources()
    for key, value in _dict_entries(resources).items():
        if key == "/Font":
            result.fonts = _dict_entries(resources[key])
        elif key == "/XObject":
            result.xobjects = _dict_entries(resources[key])
        else:
            result.other.append(f"{key} {value}")
    return result


def _content_refs(page_obj: pikepdf.Object) -> list[str]:
    pikepdf = _require_pikepdf()
    contents = page_obj.get("/Contents")
    if contents is None:
        return []
    if isinstance(contents, pikepdf.Array):
        return [serialize_pikepdf_obj(item) for item in contents]
    if not contents.is_indirect:
        raise MalformedDocumentError("Page /Contents stream is not an indirect object.")
    return [serialize_pikepdf_obj(contents)]


def read_pages(document: Document, pages: list[int]) -> dict[int, PageTarget]:
    """Look up 1-based ``pages`` in the document's page tree.

    Raises:
        PlacementError: If a page number is out of range.
        MalformedDocumentError: If the page tree cannot be read.
    """
    targets: dict[int, PageTarget] = {}
    with _open_working_copy(document) as pdf:
        total = len(pdf.pages)
        for page in sorted(set(pages)):
            index = resolve_page_index(page, total)
            page_obj = pdf.pages[index].obj
            if not page_obj.is_indirect:
                raise MalformedDocumentError(f"Page {page} is not an indirect object.")
            obj_num = page_obj.objgen[0]
            if obj_num not in document:
                raise MalformedDocumentError(f"Page {page} object {obj_num} is missing from the document.")
            entries = [
                f"{key} {serialize_pikepdf_obj(value)}"
                for key, value in page_obj.items()
                if key not in ("/Contents", "/Resources")
            ]
            targets[page] = PageTarget(
                index=index,
                obj_num=obj_num,
                entries=entries,
                contents=_content_refs(page_obj),
                resources=_effective_resources(page_obj),
            )
            _logger.debug("Page %d is object %d", page, obj_num)
    return targets


def build_content_stream(ops: list[str], compress: bool = True) -> bytes:
    """Page content stream for injected operators; restores state first."""
    data = "\n".join(["Q", *ops]).encode("latin-1")
    if compress:
        return stream_payload("/Filter /FlateDecode", zlib.compress(data))
    return stream_payload("", data)


def build_save_state_stream() -> bytes:
    """The shared ``q`` stream placed before a page's original content."""
    return stream_payload("", b"q")

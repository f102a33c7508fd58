"""
Full-document save pipeline.

Drives one save through four states:

    ASSIGNING_IDS    allocate object numbers, then build font/image
                     objects, rewrite pages and encrypt
    WRITING_OBJECTS  header and every object, offsets recorded
    BUILDING_XREF    xref table with a closed free list, trailer
    DONE             startxref and %%EOF written; bytes available

Object numbers are allocated after the highest existing one in a fixed
order: fonts (five each, registration order), images (registration order),
the shared ``q`` stream and one content stream per touched page (ascending
page number), and the Encrypt dictionary last.

All work happens on copies of the document and handles, so a failed save
leaves the caller's state untouched and a successful one can be repeated.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from ...errors import PdfInjectError, UnknownFontError
from ..appearance.fonts import FontHandle
from ..appearance.image import ImageHandle, build_image_objects
from ..appearance.stream import TextStyle, build_image_ops, build_text_ops
from .encrypt import ProtectionConfig, SecurityHandler
from .inject import PageTarget, build_content_stream, build_save_state_stream, read_pages
from .objects import Document
from .position import DEFAULT_ALIGN, Rect
from .xref import append_xref, write_objects

_logger = logging.getLogger(__name__)

__all__ = [
    "ImagePlacement",
    "Placement",
    "SaveBuilder",
    "SaveState",
    "TextPlacement",
]


@dataclass(frozen=True)
class TextPlacement:
    """Text drawn inside a cell on a 1-based page."""

    page: int
    rect: Rect  # PDF user space
    text: str
    style: TextStyle
    align: int = DEFAULT_ALIGN


@dataclass(frozen=True)
class ImagePlacement:
    """A registered image scaled into a cell on a 1-based page."""

    page: int
    rect: Rect  # PDF user space
    image_id: int


Placement = TextPlacement | ImagePlacement


class SaveState(enum.Enum):
    ASSIGNING_IDS = "assigning_ids"
    WRITING_OBJECTS = "writing_objects"
    BUILDING_XREF = "building_xref"
    DONE = "done"


class SaveBuilder:
    """One save of a document with its registered fonts, images and placements.

    Args:
        document: Parsed document; never modified.
        fonts: Registered fonts by name, in registration order.
        images: Registered images by handle id, in registration order.
        placements: Pending placements, in insertion order.
        protection: Encryption parameters, or None for plain output.
        compress: Flate-compress injected content streams.
    """

    def __init__(
        self,
        document: Document,
        fonts: Mapping[str, FontHandle],
        images: Mapping[int, ImageHandle],
        placements: Iterable[Placement],
        protection: ProtectionConfig | None = None,
        compress: bool = True,
    ):
        self._document = document
        self._fonts = {name: handle.copy() for name, handle in fonts.items()}
        self._images = {image_id: handle.copy() for image_id, handle in images.items()}
        self._placements = list(placements)
        self._protection = protection
        self._compress = compress
        self._state: SaveState | None = None
        self._output: bytes | None = None

    @property
    def state(self) -> SaveState | None:
        """Current state; None before ``build()`` starts."""
        return self._state

    def build(self) -> bytes:
        """Run the pipeline and return the complete PDF bytes.

        Raises:
            PdfInjectError: Any subclass; the save is aborted with no output.
        """
        if self._state is SaveState.DONE and self._output is not None:
            return self._output
        if self._state is not None:
            raise PdfInjectError(f"Save already in progress (state: {self._state.value}).")

        self._state = SaveState.ASSIGNING_IDS
        working = self._document.copy()
        self._check_references()

        by_page: dict[int, list[Placement]] = {}
        for placement in self._placements:
            by_page.setdefault(placement.page, []).append(placement)
        targets = read_pages(working, list(by_page)) if by_page else {}

        next_id = working.next_obj_num()
        for font in self._fonts.values():
            next_id = font.assign_object_ids(next_id)
        for image in self._images.values():
            next_id = image.assign_object_ids(next_id)

        q_stream_id = None
        content_ids: dict[int, int] = {}
        if targets:
            q_stream_id = next_id
            next_id += 1
            for page in sorted(targets):
                content_ids[page] = next_id
                next_id += 1

        encrypt_id = None
        if self._protection is not None:
            encrypt_id = next_id
            next_id += 1
        _logger.debug("Assigned object ids %d-%d", working.next_obj_num(), next_id - 1)

        for font in self._fonts.values():
            for obj in font.build():
                working.add(obj.obj_num, obj.payload)
        for image in self._images.values():
            for obj in build_image_objects(image):
                working.add(obj.obj_num, obj.payload)

        if q_stream_id is not None:
            working.add(q_stream_id, build_save_state_stream())
            for page in sorted(targets):
                self._inject_page(working, targets[page], by_page[page], q_stream_id, content_ids[page])

        handler = None
        if self._protection is not None and encrypt_id is not None:
            handler = SecurityHandler(self._protection)
            for obj in working:
                obj.payload = handler.encrypt_payload(obj.obj_num, obj.payload)
            working.add(encrypt_id, handler.encryption_dict())
            _logger.debug("Encrypted %d objects (%s)", len(working) - 1, self._protection.algorithm)

        working.validate()

        self._state = SaveState.WRITING_OBJECTS
        buff, offsets = write_objects(working)

        self._state = SaveState.BUILDING_XREF
        append_xref(buff, offsets, working, encrypt_obj_num=encrypt_id)

        self._state = SaveState.DONE
        self._output = bytes(buff)
        _logger.debug("Saved %d objects, %d bytes", len(working), len(self._output))
        return self._output

    def _check_references(self) -> None:
        for placement in self._placements:
            if isinstance(placement, TextPlacement):
                if placement.style.font_name not in self._fonts:
                    raise UnknownFontError(placement.style.font_name)
            elif placement.image_id not in self._images:
                raise PdfInjectError(f"Image {placement.image_id} is not registered.")

    def _inject_page(
        self,
        working: Document,
        target: PageTarget,
        placements: list[Placement],
        q_stream_id: int,
        content_id: int,
    ) -> None:
        ops: list[str] = []
        for placement in placements:
            if isinstance(placement, TextPlacement):
                font = self._fonts[placement.style.font_name or ""]
                if font.object_ids is None:
                    raise PdfInjectError(f"Font {font.name!r} was not built.")
                name = target.resources.add_font(font.object_ids.dict_id)
                ops += build_text_ops(placement.text, placement.rect, placement.align, placement.style, font, name)
            else:
                image = self._images[placement.image_id]
                if image.object_id is None:
                    raise PdfInjectError(f"Image {image.id} was not built.")
                name = target.resources.add_xobject(image.object_id)
                ops += build_image_ops(placement.rect, name)

        working.add(content_id, build_content_stream(ops, compress=self._compress))
        working.replace_payload(target.obj_num, target.build_override(q_stream_id, content_id))
        _logger.debug("Page %d: %d placement(s) in object %d", target.index + 1, len(placements), content_id)

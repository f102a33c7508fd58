"""High-level API for editing an existing PDF.

:class:`PdfInjector` owns one parsed document together with its font and
image registries and the pending placements::

    pdf = PdfInjector.open("form.pdf")
    pdf.register_font("sans", "NotoSans-Regular.ttf")
    pdf.set_font("sans", size=12)
    pdf.insert_text("Hello", page=1, x=72, y=72, w=200, h=20)
    pdf.set_protection(Permission.PRINT, "user", "owner")
    pdf.save("out.pdf")

Nothing is written to the document until a save; every save works on a
copy, so the same injector can be saved repeatedly.
"""

from __future__ import annotations

__all__ = ["DocumentOptions", "PdfInjector"]

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import BinaryIO

from .constants import DEFAULT_FONT_SIZE, REFERENCE_PAGE_HEIGHT
from .core.appearance.fonts import FontHandle, check_program
from .core.appearance.image import ImageHandle, decode_image
from .core.appearance.stream import TextStyle
from .core.pdf.builder import ImagePlacement, Placement, SaveBuilder, TextPlacement
from .core.pdf.encrypt import ProtectionConfig
from .core.pdf.inject import count_pages
from .core.pdf.objects import Document
from .core.pdf.parser import parse_document
from .core.pdf.position import DEFAULT_ALIGN, Rect, resolve_page_index, to_pdf_rect
from .errors import DuplicateFontNameError, PdfInjectError, UnknownFontError

_logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DocumentOptions:
    """Per-document settings.

    Attributes:
        reference_height: Page height (pt) that top-left-relative
            coordinates are measured against.  Defaults to A4.
        compress: Flate-compress injected content streams.
        default_font_size: Size used by :meth:`PdfInjector.set_font` when
            none is given.
    """

    reference_height: float = REFERENCE_PAGE_HEIGHT
    compress: bool = True
    default_font_size: float = DEFAULT_FONT_SIZE


_OPTIONS_FIELDS = frozenset(f.name for f in fields(DocumentOptions))


def _resolve_options(
    options: DocumentOptions | None,
    kwargs: dict[str, object],
) -> DocumentOptions:
    """Merge explicit keyword arguments into an options instance.

    Keyword arguments override the corresponding fields in *options*.
    Unknown keys raise TypeError.
    """
    unknown = set(kwargs) - _OPTIONS_FIELDS
    if unknown:
        raise TypeError(f"Unexpected keyword arguments: {', '.join(sorted(unknown))}")

    if options is None:
        options = DocumentOptions()
    if not kwargs:
        return options
    return replace(options, **kwargs)


def _read_source(source: bytes | str | os.PathLike[str]) -> bytes:
    if isinstance(source, bytes):
        return source
    return Path(source).read_bytes()


class PdfInjector:
    """Register fonts and images, place content on pages, then save.

    Args:
        document: A parsed document (see :meth:`open` / :meth:`from_bytes`).
        options: Per-document settings; keyword arguments override fields.
    """

    def __init__(self, document: Document, options: DocumentOptions | None = None, **kwargs: object):
        document.validate()
        self._document = document
        self._options = _resolve_options(options, kwargs)
        self._fonts: dict[str, FontHandle] = {}
        self._images: dict[int, ImageHandle] = {}
        self._placements: list[Placement] = []
        self._style = TextStyle(size=self._options.default_font_size)
        self._protection: ProtectionConfig | None = None
        self._page_count: int | None = None

    @classmethod
    def open(
        cls, path: str | os.PathLike[str], options: DocumentOptions | None = None, **kwargs: object
    ) -> PdfInjector:
        """Read and parse a PDF file.

        Raises:
            OSError: If the file cannot be read.
            MalformedDocumentError: If it is not a classic PDF.
        """
        return cls.from_bytes(Path(path).read_bytes(), options, **kwargs)

    @classmethod
    def from_bytes(cls, data: bytes, options: DocumentOptions | None = None, **kwargs: object) -> PdfInjector:
        document = parse_document(data)
        _logger.info("Opened PDF: %d bytes, %d objects", len(data), len(document))
        return cls(document, options, **kwargs)

    # ── State ────────────────────────────────────────────────────────

    @property
    def document(self) -> Document:
        return self._document

    @property
    def options(self) -> DocumentOptions:
        return self._options

    @property
    def current_style(self) -> TextStyle:
        return self._style

    @property
    def fonts(self) -> dict[str, FontHandle]:
        return dict(self._fonts)

    @property
    def images(self) -> dict[int, ImageHandle]:
        return dict(self._images)

    @property
    def placements(self) -> tuple[Placement, ...]:
        return tuple(self._placements)

    @property
    def protection(self) -> ProtectionConfig | None:
        return self._protection

    @property
    def page_count(self) -> int:
        if self._page_count is None:
            self._page_count = count_pages(self._document)
        return self._page_count

    # ── Fonts and style ──────────────────────────────────────────────

    def register_font(self, name: str, ttf: bytes | str | os.PathLike[str]) -> FontHandle:
        """Register a TrueType font under ``name``.

        Args:
            name: Registry key used by :meth:`set_font`.
            ttf: The font program, or a path to a .ttf file.

        Raises:
            DuplicateFontNameError: If ``name`` is already registered.
            FontBuildError: If the program is not a usable TrueType font.
        """
        if name in self._fonts:
            raise DuplicateFontNameError(name)
        program = _read_source(ttf)
        check_program(program)
        handle = FontHandle(name, program)
        self._fonts[name] = handle
        _logger.debug("Registered font %r (%d bytes)", name, len(program))
        return handle

    def set_font(self, name: str, size: float | None = None, style: str = "") -> None:
        """Select the font used by later :meth:`insert_text` calls.

        Raises:
            UnknownFontError: If ``name`` was never registered.
        """
        if name not in self._fonts:
            raise UnknownFontError(name)
        if size is None:
            size = self._options.default_font_size
        if size <= 0:
            raise PdfInjectError(f"Font size must be positive, got {size}")
        self._style = replace(self._style, font_name=name, size=float(size), style=style)

    def show_cell_border(self, flag: bool) -> None:
        """Draw a dotted hairline around every later text cell."""
        self._style = replace(self._style, show_border=bool(flag))

    # ── Images ───────────────────────────────────────────────────────

    def register_image(self, data: bytes | str) -> ImageHandle:
        """Decode and register an image (raw bytes or a base64 string).

        Raises:
            ImageDecodeError: If the data is not a decodable image.
        """
        raster = decode_image(data)
        handle = ImageHandle(len(self._images) + 1, raster)
        self._images[handle.id] = handle
        _logger.debug("Registered image %d: %dx%d %s", handle.id, raster.width, raster.height, raster.mode)
        return handle

    def register_image_file(self, path: str | os.PathLike[str]) -> ImageHandle:
        return self.register_image(Path(path).read_bytes())

    # ── Placements ───────────────────────────────────────────────────

    def _cell(self, page: int, x: float, y: float, w: float, h: float) -> Rect:
        rect = to_pdf_rect(x, y, w, h, self._options.reference_height)
        resolve_page_index(page, self.page_count)
        return rect

    def insert_text(
        self,
        text: str,
        page: int,
        x: float,
        y: float,
        w: float,
        h: float,
        align: int = DEFAULT_ALIGN,
        style: TextStyle | None = None,
    ) -> TextPlacement:
        """Queue ``text`` inside the cell (x, y, w, h) on a 1-based page.

        Coordinates are measured from the top-left of the reference page.
        The current style (or ``style``) is captured now; later
        :meth:`set_font` calls do not affect this placement.

        Raises:
            UnknownFontError: If no registered font is selected.
            PlacementError: If the page or cell is invalid.
        """
        style = style or self._style
        font = self._fonts.get(style.font_name) if style.font_name is not None else None
        if font is None:
            raise UnknownFontError(style.font_name)
        rect = self._cell(page, x, y, w, h)

        font.add_characters(text)
        placement = TextPlacement(page=page, rect=rect, text=text, style=style, align=align)
        self._placements.append(placement)
        return placement

    def insert_image(self, handle: ImageHandle, page: int, x: float, y: float, w: float, h: float) -> ImagePlacement:
        """Queue a registered image scaled into the cell (x, y, w, h).

        Raises:
            PdfInjectError: If the handle is not registered here.
            PlacementError: If the page or cell is invalid.
        """
        if self._images.get(handle.id) is not handle:
            raise PdfInjectError(f"Image {handle.id} is not registered with this document.")
        rect = self._cell(page, x, y, w, h)
        placement = ImagePlacement(page=page, rect=rect, image_id=handle.id)
        self._placements.append(placement)
        return placement

    def insert_image_base64(self, data: str, page: int, x: float, y: float, w: float, h: float) -> ImagePlacement:
        """Register a base64 image and place it in one step."""
        self._cell(page, x, y, w, h)
        handle = self.register_image(data)
        return self.insert_image(handle, page, x, y, w, h)

    # ── Protection ───────────────────────────────────────────────────

    def set_protection(
        self,
        permissions: int,
        user_password: str | bytes,
        owner_password: str | bytes,
        algorithm: str = "rc4",
    ) -> None:
        """Encrypt the output with the standard security handler.

        Raises:
            ProtectionError: On reserved permission bits, non-Latin-1
                passwords, or an unknown algorithm.
        """
        self._protection = ProtectionConfig.create(permissions, user_password, owner_password, algorithm)
        _logger.debug("Protection enabled (%s, P=%d)", algorithm, self._protection.p_value)

    # ── Output ───────────────────────────────────────────────────────

    def to_bytes(self) -> bytes:
        """Build the complete output PDF."""
        builder = SaveBuilder(
            self._document,
            self._fonts,
            self._images,
            self._placements,
            protection=self._protection,
            compress=self._options.compress,
        )
        data = builder.build()
        _logger.info(
            "Built PDF: %d bytes, %d placement(s), %d font(s), %d image(s)%s",
            len(data),
            len(self._placements),
            len(self._fonts),
            len(self._images),
            ", encrypted" if self._protection else "",
        )
        return data

    def save(self, path: str | os.PathLike[str]) -> None:
        """Write the output PDF to ``path``; nothing is written if the build fails."""
        data = self.to_bytes()
        Path(path).write_bytes(data)

    def save_to(self, stream: BinaryIO) -> None:
        stream.write(self.to_bytes())

    def __repr__(self) -> str:
        return (
            f"PdfInjector(objects={len(self._document)}, fonts={list(self._fonts)}, "
            f"images={len(self._images)}, placements={len(self._placements)})"
        )



# pyright: reportUnknownMemberType=false
"""
Image decoding and PDF image XObject construction.

Decodes PNG/JPEG/GIF/... rasters with Pillow into a normalized form,
splits alpha channels into a separate soft mask, and emits image
XObjects with FlateDecode samples (or DCTDecode pass-through for JPEG).
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
import zlib
from dataclasses import dataclass
from io import BytesIO

from PIL import Image

from ...constants import MAX_IMAGE_PIXELS
from ...errors import ImageBuildError, ImageDecodeError, PdfInjectError
from ..pdf.objects import IndirectObject, ref, stream_payload

_logger = logging.getLogger(__name__)

__all__ = [
    "DecodedImage",
    "ImageHandle",
    "build_image_objects",
    "decode_image",
]

_DATA_URI_PREFIX = re.compile(r"^\s*data:[^,]*;base64,", re.IGNORECASE)

# Pillow mode -> (PDF color space, bits per component)
_COLOR_SPACES = {
    "1": ("DeviceGray", 1),
    "L": ("DeviceGray", 8),
    "RGB": ("DeviceRGB", 8),
    "CMYK": ("DeviceCMYK", 8),
}

# JPEG color models embedded as-is
_JPEG_PASSTHROUGH_MODES = {"L", "RGB", "CMYK"}

# Modes whose last band is alpha, and the mode left after removing it
_ALPHA_MODES = {"RGBA": "RGB", "LA": "L"}


@dataclass(frozen=True)
class DecodedImage:
    """A decoded raster ready for embedding."""

    width: int
    height: int
    mode: str  # Pillow mode of ``samples``
    samples: bytes  # raw uncompressed pixels, or the JPEG file when ``is_jpeg``
    alpha: bytes | None = None  # raw 8-bit alpha plane, or None if opaque
    is_jpeg: bool = False
    inverted_cmyk: bool = False  # Adobe APP14 CMYK JPEG (stored inverted)


def _raw_bytes(raw: bytes | str) -> bytes:
    if isinstance(raw, bytes):
        return raw
    text = _DATA_URI_PREFIX.sub("", raw)
    try:
        return base64.b64decode("".join(text.split()), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ImageDecodeError(f"Invalid base64 image data: {exc}") from exc


def decode_image(raw: bytes | str) -> DecodedImage:
    """Decode image bytes (or a base64 string) into a DecodedImage.

    Palette images are expanded to RGB/RGBA.  JPEG data in L, RGB or CMYK
    keeps its original bytes.

    Raises:
        ImageDecodeError: If the data is empty, not an image Pillow can
            read, or larger than MAX_IMAGE_PIXELS.
    """
    data = _raw_bytes(raw)
    if not data:
        raise ImageDecodeError("Image data is empty.")

    try:
        img = Image.open(BytesIO(data))
    except (OSError, Image.DecompressionBombError) as exc:
        # UnidentifiedImageError is a subclass of OSError
        raise ImageDecodeError(f"Cannot decode image: {exc}") from exc

    try:
        # Image.open() only reads the header; check size before decompressing
        pixel_count = img.width * img.height
        if pixel_count > MAX_IMAGE_PIXELS:
            raise ImageDecodeError(
                f"Image too large: {img.width}x{img.height} ({pixel_count:,} pixels). "
                f"Maximum: {MAX_IMAGE_PIXELS:,} pixels."
            )
        try:
            img.load()
        except (OSError, ValueError, Image.DecompressionBombError) as exc:
            raise ImageDecodeError(f"Cannot decode image: {exc}") from exc

        if img.format == "JPEG" and img.mode in _JPEG_PASSTHROUGH_MODES:
            return DecodedImage(
                width=img.width,
                height=img.height,
                mode=img.mode,
                samples=data,
                is_jpeg=True,
                inverted_cmyk=img.mode == "CMYK" and "adobe" in img.info,
            )

        if img.mode == "P":
            img = img.convert("RGBA" if "transparency" in img.info else "RGB")
        elif img.mode == "PA":
            img = img.convert("RGBA")

        alpha = None
        if img.mode in _ALPHA_MODES:
            alpha = img.getchannel("A").tobytes()
            img = img.convert(_ALPHA_MODES[img.mode])

        return DecodedImage(
            width=img.width,
            height=img.height,
            mode=img.mode,
            samples=img.tobytes(),
            alpha=alpha,
        )
    finally:
        img.close()


@dataclass
class ImageHandle:
    """A registered image.

    ``id`` is the registration index placements refer to.  Object numbers
    are assigned once per save on a copy of the handle; ``smask_id`` only
    when the raster has an alpha plane.
    """

    id: int
    raster: DecodedImage
    object_id: int | None = None
    smask_id: int | None = None

    def copy(self) -> ImageHandle:
        return ImageHandle(self.id, self.raster)

    def assign_object_ids(self, start_id: int) -> int:
        if self.object_id is not None:
            raise PdfInjectError(f"Image {self.id} already has object ids assigned.")
        self.object_id = start_id
        next_id = start_id + 1
        if self.raster.alpha is not None:
            self.smask_id = next_id
            next_id += 1
        return next_id


def build_image_objects(handle: ImageHandle) -> list[IndirectObject]:
    """Emit the image XObject (and its soft mask, if any).

    Raises:
        ImageBuildError: If the raster's color model has no PDF equivalent.
    """
    if handle.object_id is None:
        raise PdfInjectError(f"Image {handle.id} has no object ids assigned.")
    raster = handle.raster
    try:
        color_space, bpc = _COLOR_SPACES[raster.mode]
    except KeyError:
        raise ImageBuildError(
            f"Image {handle.id}: unsupported color model {raster.mode!r}. "
            f"Supported: {', '.join(_COLOR_SPACES)}"
        ) from None

    entries = [
        "/Type /XObject",
        "/Subtype /Image",
        f"/Width {raster.width}",
        f"/Height {raster.height}",
        f"/ColorSpace /{color_space}",
        f"/BitsPerComponent {bpc}",
    ]
    if raster.is_jpeg:
        entries.append("/Filter /DCTDecode")
        if raster.inverted_cmyk:
            entries.append("/Decode [1 0 1 0 1 0 1 0]")
        data = raster.samples
    else:
        entries.append("/Filter /FlateDecode")
        data = zlib.compress(raster.samples)

    objects = []
    if raster.alpha is not None:
        if handle.smask_id is None:
            raise PdfInjectError(f"Image {handle.id} has alpha but no soft mask id.")
        entries.append(f"/SMask {ref(handle.smask_id)}")
        smask = stream_payload(
            f"/Type /XObject /Subtype /Image /Width {raster.width} /Height {raster.height}"
            " /ColorSpace /DeviceGray /BitsPerComponent 8 /Filter /FlateDecode",
            zlib.compress(raster.alpha),
        )
        objects.append(IndirectObject(handle.smask_id, smask))

    objects.insert(0, IndirectObject(handle.object_id, stream_payload(" ".join(entries), data)))
    _logger.debug(
        "Image %d: %dx%d %s as object %d", handle.id, raster.width, raster.height, color_space, handle.object_id
    )
    return objects

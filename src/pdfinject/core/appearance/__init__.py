"""Injected content -- fonts, images, and content stream operators."""

from .fonts import FontHandle, FontMetrics, FontObjectIds, GlyphSubset, check_program, extract_glyphs
from .image import DecodedImage, ImageHandle, build_image_objects, decode_image
from .stream import TextStyle, build_image_ops, build_text_ops, fmt_num

__all__ = [
    "DecodedImage",
    "FontHandle",
    "FontMetrics",
    "FontObjectIds",
    "GlyphSubset",
    "ImageHandle",
    "TextStyle",
    "build_image_objects",
    "build_image_ops",
    "build_text_ops",
    "check_program",
    "decode_image",
    "extract_glyphs",
    "fmt_num",
]

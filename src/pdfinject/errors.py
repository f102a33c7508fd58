"""pdfinject error types."""

from __future__ import annotations

__all__ = [
    "DuplicateFontNameError",
    "FontBuildError",
    "ImageBuildError",
    "ImageDecodeError",
    "MalformedDocumentError",
    "PdfInjectError",
    "PlacementError",
    "ProtectionError",
    "UnknownFontError",
]


class PdfInjectError(Exception):
    """Base error for pdfinject operations."""


class MalformedDocumentError(PdfInjectError):
    """The input is not a classic PDF this library can parse."""


class DuplicateFontNameError(PdfInjectError):
    """A font with this name is already registered.

    Args:
        name: The font name that was registered twice.
    """

    def __init__(self, name: str) -> None:
        super().__init__(f"Font {name!r} is already registered.")
        self.name = name

    def __reduce__(self) -> tuple[type[DuplicateFontNameError], tuple[str]]:
        return (type(self), (self.name,))


class UnknownFontError(PdfInjectError):
    """A placement or style references a font that was never registered.

    Args:
        name: The font name that could not be found.
    """

    def __init__(self, name: str | None) -> None:
        if name is None:
            message = "No font selected. Call set_font() first."
        else:
            message = f"Font {name!r} is not registered."
        super().__init__(message)
        self.name = name

    def __reduce__(self) -> tuple[type[UnknownFontError], tuple[str | None]]:
        return (type(self), (self.name,))


class FontBuildError(PdfInjectError):
    """The font program could not be parsed or subset."""


class ImageDecodeError(PdfInjectError):
    """Image bytes could not be decoded."""


class ImageBuildError(PdfInjectError):
    """A decoded image cannot be represented as a PDF image XObject."""


class ProtectionError(PdfInjectError):
    """Invalid encryption parameters."""


class PlacementError(PdfInjectError):
    """A placement targets a page or rectangle that does not exist."""

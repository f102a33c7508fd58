"""Shared test fixtures for the pdfinject test suite."""

from __future__ import annotations

import io

import pytest

# Characters covered by the synthetic test font
FONT_CHARS = (
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    "abcdefghijklmnopqrstuvwxyz"
    "0123456789 "
    "Ж"  # Cyrillic Zhe
    "ก"  # Thai Ko Kai
)
FONT_ASCENT = 800
FONT_DESCENT = -200
FONT_ADVANCE = 600
SPACE_ADVANCE = 250


def _box_glyph():
    from fontTools.pens.ttGlyphPen import TTGlyphPen

    pen = TTGlyphPen(None)
    pen.moveTo((50, 0))
    pen.lineTo((50, 700))
    pen.lineTo((450, 700))
    pen.lineTo((450, 0))
    pen.closePath()
    return pen.glyph()


def build_test_font(chars: str = FONT_CHARS, ps_name: str = "TestSans-Regular") -> bytes:
    """Build a small TrueType font with one box glyph per character."""
    from fontTools.fontBuilder import FontBuilder

    glyph_names = {ord(ch): f"uni{ord(ch):04X}" for ch in chars}
    glyph_order = [".notdef", *glyph_names.values()]

    fb = FontBuilder(1000, isTTF=True)
    fb.setupGlyphOrder(glyph_order)
    fb.setupCharacterMap(glyph_names)
    fb.setupGlyf({name: _box_glyph() for name in glyph_order})
    glyf = fb.font["glyf"]
    metrics = {}
    for name in glyph_order:
        advance = SPACE_ADVANCE if name == "uni0020" else FONT_ADVANCE
        metrics[name] = (advance, glyf[name].xMin)
    fb.setupHorizontalMetrics(metrics)
    fb.setupHorizontalHeader(ascent=FONT_ASCENT, descent=FONT_DESCENT)
    fb.setupNameTable({"familyName": "Test Sans", "styleName": "Regular", "psName": ps_name})
    fb.setupOS2(sTypoAscender=FONT_ASCENT, usWinAscent=FONT_ASCENT, usWinDescent=-FONT_DESCENT)
    fb.setupPost()
    buf = io.BytesIO()
    fb.save(buf)
    return buf.getvalue()


def save_pikepdf(pdf) -> bytes:
    """Save a pikepdf document with a classic xref table."""
    import pikepdf

    buf = io.BytesIO()
    pdf.save(buf, object_stream_mode=pikepdf.ObjectStreamMode.disable)
    return buf.getvalue()


def build_raw_pdf(objects: dict[int, bytes], root: int, trailer_extra: str = "") -> bytes:
    """Assemble a classic PDF from raw object payloads (xref offsets included)."""
    out = bytearray(b"%PDF-1.4\n")
    offsets = {}
    for num, payload in objects.items():
        offsets[num] = len(out)
        out += f"{num} 0 obj\n".encode() + payload + b"\nendobj\n"
    size = max(objects) + 1
    xref = len(out)
    out += f"xref\n0 {size}\n".encode()
    for n in range(size):
        if n in offsets:
            out += f"{offsets[n]:010d} 00000 n\r\n".encode()
        else:
            out += b"0000000000 65535 f\r\n"
    out += f"trailer\n<< /Size {size} /Root {root} 0 R {trailer_extra}>>\nstartxref\n{xref}\n%%EOF\n".encode()
    return bytes(out)


@pytest.fixture
def valid_pdf_bytes():
    """Create a minimal valid PDF using pikepdf."""
    import pikepdf

    pdf = pikepdf.Pdf.new()
    pdf.add_blank_page(page_size=(612, 792))
    return save_pikepdf(pdf)


@pytest.fixture
def multi_page_pdf_bytes():
    """Three pages; page 2 carries its own content and a Helvetica font named PdfInjF1."""
    import pikepdf

    pdf = pikepdf.Pdf.new()
    for _ in range(3):
        pdf.add_blank_page(page_size=(595.28, 841.89))
    helv = pdf.make_indirect(
        pikepdf.Dictionary(Type=pikepdf.Name.Font, Subtype=pikepdf.Name.Type1, BaseFont=pikepdf.Name.Helvetica)
    )
    page = pdf.pages[1]
    page.obj.Resources = pikepdf.Dictionary(Font=pikepdf.Dictionary(PdfInjF1=helv))
    page.obj.Contents = pdf.make_stream(b"BT /PdfInjF1 12 Tf 72 72 Td (Original) Tj ET")
    pdf.docinfo["/Title"] = "Fixture"
    return save_pikepdf(pdf)


@pytest.fixture
def inherited_resources_pdf_bytes():
    """One page whose /Resources are inherited from the /Pages node."""
    objects = {
        1: b"<< /Type /Catalog /Pages 2 0 R >>",
        2: b"<< /Type /Pages /Kids [3 0 R] /Count 1 /MediaBox [0 0 595 842]"
        b" /Resources << /Font << /F1 4 0 R >> /ProcSet [/PDF /Text] >> >>",
        3: b"<< /Type /Page /Parent 2 0 R /Contents 5 0 R >>",
        4: b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
        5: b"<< /Length 40 >>\nstream\nBT /F1 12 Tf 72 700 Td (Inherited) Tj ET\nendstream",
    }
    return build_raw_pdf(objects, root=1)


@pytest.fixture
def font_bytes():
    return build_test_font()


def _image_bytes(mode: str, fmt: str, size=(4, 3), color=None, **save_kwargs) -> bytes:
    from PIL import Image

    img = Image.new(mode, size, color)
    buf = io.BytesIO()
    img.save(buf, format=fmt, **save_kwargs)
    return buf.getvalue()


@pytest.fixture
def png_rgb_bytes():
    return _image_bytes("RGB", "PNG", color=(200, 30, 30))


@pytest.fixture
def png_rgba_bytes():
    return _image_bytes("RGBA", "PNG", color=(0, 0, 255, 128))


@pytest.fixture
def png_gray_bytes():
    return _image_bytes("L", "PNG", color=128)


@pytest.fixture
def png_bilevel_bytes():
    return _image_bytes("1", "PNG", size=(10, 2), color=1)


@pytest.fixture
def png_palette_bytes():
    from PIL import Image

    img = Image.new("RGB", (4, 4), (10, 200, 10)).convert("P")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def jpeg_rgb_bytes():
    return _image_bytes("RGB", "JPEG", size=(8, 8), color=(120, 60, 30))


@pytest.fixture
def jpeg_cmyk_bytes():
    return _image_bytes("CMYK", "JPEG", size=(8, 8), color=(0, 50, 100, 0))

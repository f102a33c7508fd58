"""End-to-end tests: edit a PDF, save it, and read it back with pikepdf."""

from __future__ import annotations

import io

import pikepdf
import pytest

from pdfinject import Align, Permission, PdfInjector, parse_document

from .conftest import build_raw_pdf


def _open(data: bytes, password: str = "") -> pikepdf.Pdf:
    return pikepdf.open(io.BytesIO(data), password=password)


def _operators(page) -> list[tuple[list, str]]:
    return [(list(operands), str(op)) for operands, op in pikepdf.parse_content_stream(page)]


@pytest.fixture
def edited(multi_page_pdf_bytes, font_bytes, png_rgba_bytes):
    pdf = PdfInjector.from_bytes(multi_page_pdf_bytes)
    pdf.register_font("sans", font_bytes)
    pdf.set_font("sans", 12)
    pdf.insert_text("Hello", 2, 72, 72, 200, 30)
    pdf.insert_text("Centered", 2, 72, 120, 200, 30, align=Align.CENTER | Align.MIDDLE)
    logo = pdf.register_image(png_rgba_bytes)
    pdf.insert_image(logo, 1, 300, 100, 120, 80)
    return pdf


# ── Text ─────────────────────────────────────────────────────────────


def test_output_opens_with_same_pages(edited):
    with _open(edited.to_bytes()) as pdf:
        assert len(pdf.pages) == 3
        assert str(pdf.docinfo["/Title"]) == "Fixture"


def test_page_contents_wrap_original(edited):
    with _open(edited.to_bytes()) as pdf:
        contents = pdf.pages[1].obj.Contents
        assert isinstance(contents, pikepdf.Array)
        assert len(contents) == 3
        assert contents[0].read_bytes() == b"q"
        assert b"(Original) Tj" in contents[1].read_bytes()
        assert contents[2].read_bytes().startswith(b"Q\n")


def test_text_is_drawn_with_new_font(edited):
    with _open(edited.to_bytes()) as pdf:
        page = pdf.pages[1]
        font = page.obj.Resources.Font
        # PdfInjF1 already names the page's Helvetica
        assert font.PdfInjF1.BaseFont == pikepdf.Name.Helvetica
        assert font.PdfInjF2.Subtype == pikepdf.Name.Type0
        assert font.PdfInjF2.DescendantFonts[0].Subtype == pikepdf.Name.CIDFontType2

        ops = _operators(page)
        shown = [operands for operands, op in ops if op == "Tj"]
        assert len(shown) == 3  # original text plus two placements
        selected = [str(operands[0]) for operands, op in ops if op == "Tf"]
        assert selected == ["/PdfInjF1", "/PdfInjF2", "/PdfInjF2"]


def test_untouched_page_is_unchanged(edited, multi_page_pdf_bytes):
    before = parse_document(multi_page_pdf_bytes)
    after = parse_document(edited.to_bytes())
    with _open(multi_page_pdf_bytes) as pdf:
        third = pdf.pages[2].obj.objgen[0]
    assert after.get(third).payload == before.get(third).payload


def test_new_objects_follow_existing_ones(edited, multi_page_pdf_bytes):
    before = parse_document(multi_page_pdf_bytes)
    after = parse_document(edited.to_bytes())
    top = before.max_obj_num()
    # 5 font objects, image + soft mask, q stream, 2 content streams
    assert after.max_obj_num() == top + 5 + 2 + 1 + 2
    assert after.obj_nums[: len(before.obj_nums)] == before.obj_nums
    assert sorted(after.obj_nums[len(before.obj_nums) :]) == list(range(top + 1, top + 11))


def test_inherited_resources_are_merged(inherited_resources_pdf_bytes, font_bytes):
    pdf = PdfInjector.from_bytes(inherited_resources_pdf_bytes)
    pdf.register_font("sans", font_bytes)
    pdf.set_font("sans")
    pdf.insert_text("Added", 1, 10, 10, 100, 20)
    with _open(pdf.to_bytes()) as out:
        resources = out.pages[0].obj.Resources
        assert set(resources.Font.keys()) == {"/F1", "/PdfInjF1"}
        assert list(resources.ProcSet) == [pikepdf.Name.PDF, pikepdf.Name.Text]
        shown = [op for _, op in _operators(out.pages[0]) if op == "Tj"]
        assert len(shown) == 2


def test_page_with_real_entries(font_bytes):
    objects = {
        1: b"<< /Type /Catalog /Pages 2 0 R >>",
        2: b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        3: b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 595.5 842] /UserUnit 1.5"
        b" /Resources << /Font << /F1 4 0 R >> /Opacity 0.75 >> >>",
        4: b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    }
    pdf = PdfInjector.from_bytes(build_raw_pdf(objects, root=1))
    pdf.register_font("sans", font_bytes)
    pdf.set_font("sans")
    pdf.insert_text("Hi", 1, 10, 10, 100, 20)
    with _open(pdf.to_bytes()) as out:
        page = out.pages[0].obj
        assert float(page.UserUnit) == 1.5
        assert [float(v) for v in page.MediaBox] == [0, 0, 595.5, 842]
        assert float(page.Resources.Opacity) == 0.75
        assert set(page.Resources.Font.keys()) == {"/F1", "/PdfInjF1"}


def test_uncompressed_content(multi_page_pdf_bytes, font_bytes):
    pdf = PdfInjector.from_bytes(multi_page_pdf_bytes, compress=False)
    pdf.register_font("sans", font_bytes)
    pdf.set_font("sans")
    pdf.show_cell_border(True)
    pdf.insert_text("Box", 3, 10, 10, 100, 20)
    with _open(pdf.to_bytes()) as out:
        stream = out.pages[2].obj.Contents[-1]
        assert "/Filter" not in stream.stream_dict
        assert b"[2 3] 11 d" in stream.read_raw_bytes()


# ── Images ───────────────────────────────────────────────────────────


def test_image_is_placed_with_soft_mask(edited):
    with _open(edited.to_bytes()) as pdf:
        page = pdf.pages[0]
        xobject = page.obj.Resources.XObject.PdfInjIm1
        image = pikepdf.PdfImage(xobject)
        assert (image.width, image.height) == (4, 3)
        assert xobject.SMask.ColorSpace == pikepdf.Name.DeviceGray

        ops = _operators(page)
        cm = next(operands for operands, op in ops if op == "cm")
        assert [float(v) for v in cm] == pytest.approx([120, 0, 0, 80, 300, 841.89 - 180])
        assert any(op == "Do" for _, op in ops)


def test_jpeg_image_passthrough(valid_pdf_bytes, jpeg_rgb_bytes):
    pdf = PdfInjector.from_bytes(valid_pdf_bytes, reference_height=792)
    pdf.insert_image(pdf.register_image(jpeg_rgb_bytes), 1, 0, 0, 50, 50)
    with _open(pdf.to_bytes()) as out:
        xobject = out.pages[0].obj.Resources.XObject.PdfInjIm1
        assert xobject.Filter == pikepdf.Name.DCTDecode
        assert xobject.read_raw_bytes() == jpeg_rgb_bytes


# ── Encryption ───────────────────────────────────────────────────────


@pytest.mark.parametrize(("algorithm", "revision"), [("rc4", 3), ("aes", 4)])
def test_encrypted_output_opens_with_passwords(edited, algorithm, revision):
    edited.set_protection(Permission.PRINT | Permission.COPY, "u", "o", algorithm=algorithm)
    data = edited.to_bytes()

    with pytest.raises(pikepdf.PasswordError):
        _open(data)

    with _open(data, password="u") as pdf:
        assert pdf.is_encrypted
        assert int(pdf.trailer.Encrypt.R) == revision
        assert int(pdf.trailer.Encrypt.P) == -3904 + Permission.PRINT + Permission.COPY
        assert str(pdf.docinfo["/Title"]) == "Fixture"
        assert pdf.pages[1].obj.Contents[2].read_bytes().startswith(b"Q\n")
        assert len([op for _, op in _operators(pdf.pages[1]) if op == "Tj"]) == 3

    with _open(data, password="o") as pdf:
        assert pdf.owner_password_matched


def test_encrypted_output_hides_plaintext(edited):
    edited.set_protection(0, "u", "o")
    data = edited.to_bytes()
    assert b"Fixture" not in data
    assert b"(Original)" not in data
    assert b"/Encrypt" in data


# ── Determinism ──────────────────────────────────────────────────────


def test_unencrypted_output_is_deterministic(multi_page_pdf_bytes, font_bytes, png_rgb_bytes):
    def build():
        pdf = PdfInjector.from_bytes(multi_page_pdf_bytes)
        pdf.register_font("sans", font_bytes)
        pdf.set_font("sans", 10, style="U")
        pdf.insert_text("Same every time", 1, 10, 10, 200, 20)
        pdf.insert_image(pdf.register_image(png_rgb_bytes), 2, 10, 10, 40, 40)
        return pdf.to_bytes()

    assert build() == build()


def test_output_reparses(edited):
    data = edited.to_bytes()
    document = parse_document(data)
    assert document.trailer.info_obj_num is not None
    with _open(data) as pdf:
        assert len(pdf.pages) == 3
    assert document.trailer.root_obj_num in document

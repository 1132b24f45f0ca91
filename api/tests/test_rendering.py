import logging
import math
from io import BytesIO
from types import SimpleNamespace

import pytest
from pypdf import PdfReader, PdfWriter
from pypdf.generic import RectangleObject
from reportlab.pdfbase.pdfmetrics import stringWidth

from docseal.geometry import Box
from docseal.rendering import (
    BakeError,
    _checkbox_op,
    _image_op,
    _text_op,
    bake,
    bake_with_report,
    fit_text,
    layout_fields,
    missing_glyphs,
    page_sizes,
)


def fld(id_, type_, page=1, x=10, y=10, w=30, h=5, label="", font_size=12):
    return SimpleNamespace(
        id=id_, type=type_, page_number=page, position_x=x, position_y=y,
        width=w, height=h, label=label, font_size=font_size,
    )


def page_text(pdf: bytes, index: int = 0) -> str:
    return PdfReader(BytesIO(pdf)).pages[index].extract_text()


def test_checkbox_without_value_renders_nothing(build_pdf):
    cb = fld(1, "checkbox", label="I agree")
    result = bake_with_report(build_pdf(), [cb], {}, {})
    assert result.drawn == []
    assert "I agree" not in page_text(result.pdf)


def test_checkbox_only_renders_for_literal_true(build_pdf):
    cb = fld(1, "checkbox", label="I agree")
    assert bake_with_report(build_pdf(), [cb], {1: "yes"}, {}).drawn == []


def test_checked_checkbox_renders_box_mark_and_label(build_pdf):
    cb = fld(1, "checkbox", label="I agree")
    result = bake_with_report(build_pdf(), [cb], {1: "true"}, {})
    assert result.drawn == [1]
    text = page_text(result.pdf)
    assert "I agree" in text
    assert "Base page" in text


def test_checkbox_geometry():
    op = _checkbox_op(fld(1, "checkbox", label="Opt in"), Box(100, 200, 60, 20), "true")
    assert (op["x"], op["y"], op["size"]) == (102, 204, 12)
    assert op["label"]["x"] == 118
    assert op["label"]["text"] == "Opt in"


def test_checkbox_size_is_clamped():
    op = _checkbox_op(fld(1, "checkbox", font_size=32), Box(0, 0, 60, 40), "true")
    assert op["size"] == 18
    assert op["label"] is None


def test_text_is_inset_centered_and_clamped():
    op = _text_op(fld(1, "text", font_size=32), Box(50, 100, 200, 40), "Hello")
    assert op["size"] == 28
    assert op["x"] == 54
    assert op["y"] == 100 + (40 - 28) / 2
    assert _text_op(fld(1, "text"), Box(0, 0, 10, 10), "") is None


def test_long_text_is_truncated_to_box():
    text = fit_text("W" * 200, 12, 50)
    assert 0 < len(text) < 200
    assert stringWidth(text, "Helvetica", 12) <= 50
    assert fit_text("short", 12, 500) == "short"
    assert fit_text("anything", 12, 0) == ""


def test_signature_scales_preserving_aspect_and_centers(build_png):
    op = _image_op(Box(0, 0, 100, 30), build_png(40, 20))
    assert math.isclose(op["w"], 60)
    assert math.isclose(op["h"], 30)
    assert math.isclose(op["x"], 20)
    assert math.isclose(op["y"], 0)


def test_text_date_and_dropdown_values_are_drawn(build_pdf):
    fields = [
        fld(1, "text", y=10),
        fld(2, "date", y=20),
        fld(3, "dropdown", y=30),
        fld(4, "text", y=40),
    ]
    values = {1: "Ana Recipient", 2: "01/02/2025", 3: "Option 2"}
    result = bake_with_report(build_pdf(), fields, values, {})
    assert result.drawn == [1, 2, 3]
    text = page_text(result.pdf)
    for value in values.values():
        assert value in text


def test_fields_on_missing_pages_are_skipped(build_pdf):
    fields = [fld(1, "text", page=3), fld(2, "text", page=0), fld(3, "text", page=1)]
    result = bake_with_report(build_pdf(), fields, {1: "gone", 2: "gone", 3: "kept"}, {})
    assert result.drawn == [3]
    assert sorted(result.skipped) == [1, 2]
    assert "kept" in page_text(result.pdf)


def test_bad_signature_image_does_not_block_other_fields(build_pdf, build_png):
    fields = [fld(1, "signature"), fld(2, "initials", y=30), fld(3, "text", y=50)]
    images = {1: b"not a png", 2: build_png()}
    result = bake_with_report(build_pdf(), fields, {3: "still here"}, images)
    assert result.skipped == [1]
    assert result.drawn == [2, 3]
    assert "still here" in page_text(result.pdf)


def test_signature_without_image_draws_nothing(build_pdf):
    result = bake_with_report(build_pdf(), [fld(1, "signature")], {}, {})
    assert result.drawn == []
    assert result.skipped == []


def test_invalid_geometry_is_skipped(build_pdf):
    fields = [fld(1, "text", w=0), fld(2, "text", x=float("nan")), fld(3, "text")]
    result = bake_with_report(build_pdf(), fields, {1: "a", 2: "b", 3: "c"}, {})
    assert result.drawn == [3]
    assert sorted(result.skipped) == [1, 2]


@pytest.mark.parametrize("data", [b"", b"not a pdf"])
def test_corrupt_base_pdf_is_fatal(data):
    with pytest.raises(BakeError):
        bake(data, [fld(1, "text")], {1: "x"}, {})


def test_each_page_uses_its_own_size(build_pdf):
    pdf = build_pdf(page_sizes=((612, 792), (842, 595)))
    placements = layout_fields(page_sizes(pdf), [fld(1, "text", page=1), fld(2, "text", page=2)])
    first, second = placements
    assert math.isclose(first.box.x, 61.2)
    assert math.isclose(second.box.x, 84.2)
    assert second.page_index == 1
    assert math.isclose(second.box.y, 595 - 59.5 - 29.75)


def test_baking_is_reproducible(build_pdf, build_png):
    pdf = build_pdf(page_sizes=((612, 792), (400, 400)))
    fields = [fld(1, "text"), fld(2, "signature", page=2, y=60), fld(3, "checkbox", y=70, label="Yes")]
    values = {1: "Same every time", 3: "true"}
    images = {2: build_png()}

    first = bake_with_report(pdf, fields, values, images)
    second = bake_with_report(pdf, fields, values, images)
    assert first.drawn == second.drawn == [1, 2, 3]
    assert layout_fields(page_sizes(pdf), fields) == layout_fields(page_sizes(pdf), fields)
    assert page_sizes(first.pdf) == page_sizes(second.pdf) == page_sizes(pdf)
    for index in range(2):
        assert page_text(first.pdf, index) == page_text(second.pdf, index)


def test_base_pdf_is_not_modified(build_pdf):
    pdf = build_pdf()
    snapshot = bytes(pdf)
    out = bake(pdf, [fld(1, "text")], {1: "value"}, {})
    assert pdf == snapshot
    assert out != pdf


def blank_pdf(left=0, bottom=0, width=612, height=792) -> bytes:
    writer = PdfWriter()
    page = writer.add_blank_page(width=width, height=height)
    page.mediabox = RectangleObject([left, bottom, left + width, bottom + height])
    buf = BytesIO()
    writer.write(buf)
    return buf.getvalue()


def text_origin(pdf: bytes, needle: str):
    found = []

    def visit(text, cm, tm, font_dict, font_size):
        if needle in text:
            # text matrix origin mapped through the current transformation
            found.append((
                tm[4] * cm[0] + tm[5] * cm[2] + cm[4],
                tm[4] * cm[1] + tm[5] * cm[3] + cm[5],
            ))

    PdfReader(BytesIO(pdf)).pages[0].extract_text(visitor_text=visit)
    return found[0]


def test_overlay_follows_mediabox_origin():
    fields = [fld(1, "text", x=10, y=10, w=40, h=5)]
    plain = bake(blank_pdf(), fields, {1: "Shifted"}, {})
    offset = bake(blank_pdf(left=50, bottom=50), fields, {1: "Shifted"}, {})
    assert page_sizes(offset) == [(612, 792)]

    px, py = text_origin(plain, "Shifted")
    ox, oy = text_origin(offset, "Shifted")
    assert math.isclose(px, 61.2 + 4, abs_tol=0.01)
    assert math.isclose(ox - px, 50, abs_tol=0.01)
    assert math.isclose(oy - py, 50, abs_tol=0.01)


def test_characters_outside_the_font_are_reported(build_pdf, caplog):
    assert missing_glyphs("café © 2025") == ""
    assert missing_glyphs("a日b本日") == "日本"

    with caplog.at_level(logging.WARNING, logger="docseal.rendering"):
        result = bake_with_report(build_pdf(), [fld(1, "text")], {1: "Tokyo 日本語"}, {})
    assert result.drawn == [1]
    warnings = [r.getMessage() for r in caplog.records if "no glyph" in r.getMessage()]
    assert len(warnings) == 1
    assert "日本語" in warnings[0]

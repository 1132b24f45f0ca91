# Baking: draw field values and signature images into a flattened PDF.
# Each page that carries content gets a reportlab overlay that is stamped onto
# the original page with pypdf; the base document bytes are never modified.

import logging
from dataclasses import dataclass, field as dc_field
from io import BytesIO
from typing import Dict, List, Optional, Tuple

from pypdf import PdfReader, PdfWriter, Transformation
from pypdf.errors import PyPdfError
from reportlab.pdfgen import canvas
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.lib.utils import ImageReader

from .fields import FieldType, CHECKED, DEFAULT_FONT_SIZE
from .geometry import Box, to_pdf_box, is_drawable

logger = logging.getLogger(__name__)

FONT = "Helvetica"
# standard Type 1 fonts only cover WinAnsi
FONT_ENCODING = "cp1252"
TEXT_INSET = 4.0
CHECKBOX_INSET = 2.0


class BakeError(Exception):
    """The base PDF could not be read; nothing was produced."""


@dataclass(frozen=True)
class Placement:
    field_id: int
    field_type: str
    page_index: int
    box: Box


@dataclass
class BakeResult:
    pdf: bytes
    drawn: List[int] = dc_field(default_factory=list)
    skipped: List[int] = dc_field(default_factory=list)


def _clamp(value, low, high):
    return min(max(value, low), high)


def _font_size(field, low, high, default=DEFAULT_FONT_SIZE):
    return _clamp(field.font_size or default, low, high)


def fit_text(text: str, size: float, max_width: float) -> str:
    """Truncate ``text`` so it fits in ``max_width`` points. Fields are single line."""
    if max_width <= 0:
        return ""
    if stringWidth(text, FONT, size) <= max_width:
        return text
    lo, hi = 0, len(text)
    while lo < hi:
        mid = (lo + hi + 1) // 2
        if stringWidth(text[:mid], FONT, size) <= max_width:
            lo = mid
        else:
            hi = mid - 1
    return text[:lo]


def missing_glyphs(text: str) -> str:
    """Characters of ``text`` the standard font cannot draw, in order of appearance."""
    missing = []
    for ch in text:
        try:
            ch.encode(FONT_ENCODING)
        except UnicodeEncodeError:
            if ch not in missing:
                missing.append(ch)
    return "".join(missing)


def _warn_missing_glyphs(field_id, text: str):
    missing = missing_glyphs(text)
    if missing:
        logger.warning("field %s: %s has no glyph for %r; drawn as placeholder boxes", field_id, FONT, missing)


def _read_pdf(base_pdf_bytes: bytes) -> PdfReader:
    try:
        reader = PdfReader(BytesIO(base_pdf_bytes))
        len(reader.pages)
    except (PyPdfError, ValueError, KeyError, OSError) as exc:
        raise BakeError(f"unreadable base PDF: {exc}") from exc
    return reader


def _page_geometry(page) -> Tuple[float, float, float, float]:
    box = page.mediabox
    return float(box.left), float(box.bottom), float(box.width), float(box.height)


def page_sizes(base_pdf_bytes: bytes) -> List[Tuple[float, float]]:
    reader = _read_pdf(base_pdf_bytes)
    return [_page_geometry(p)[2:] for p in reader.pages]


def layout_fields(sizes: List[Tuple[float, float]], fields) -> List[Placement]:
    """Absolute placement of every field that lands on an existing page.

    Pure function of page sizes and field geometry, so the same inputs always
    place the same boxes. Fields on missing pages or with unusable geometry are
    left out.
    """
    placements = []
    for f in fields:
        page_index = (f.page_number or 0) - 1
        if page_index < 0 or page_index >= len(sizes):
            logger.warning("field %s references page %s of %s; skipped", f.id, f.page_number, len(sizes))
            continue
        if not is_drawable(f.position_x, f.position_y, f.width, f.height):
            logger.warning("field %s has unusable geometry; skipped", f.id)
            continue
        width, height = sizes[page_index]
        box = to_pdf_box(f.position_x, f.position_y, f.width, f.height, width, height)
        placements.append(Placement(field_id=f.id, field_type=f.type, page_index=page_index, box=box))
    return placements


def _text_op(field, box: Box, value: str) -> Optional[dict]:
    if not value:
        return None
    size = _font_size(field, 8, 28)
    _warn_missing_glyphs(field.id, value)
    text = fit_text(value, size, max(box.width - 2 * TEXT_INSET, 0))
    return {
        "type": "text",
        "x": box.x + TEXT_INSET,
        "y": box.y + (box.height - size) / 2,
        "size": size,
        "text": text,
    }


def _checkbox_op(field, box: Box, value: str) -> Optional[dict]:
    if value != CHECKED:
        return None
    size = _font_size(field, 8, 18)
    x = box.x + CHECKBOX_INSET
    y = box.y + (box.height - size) / 2
    op = {"type": "checkbox", "x": x, "y": y, "size": size, "label": None}
    if field.label:
        label_size = _font_size(field, 8, 16, default=10)
        _warn_missing_glyphs(field.id, field.label)
        op["label"] = {
            "x": x + size + 4,
            "y": y + (size - label_size) / 2,
            "size": label_size,
            "text": fit_text(field.label, label_size, max(box.width - size - 8, 0)),
        }
    return op


def load_image(image_bytes: bytes) -> ImageReader:
    """Fully decode ``image_bytes``; raises ValueError when it is not a usable image."""
    try:
        image = ImageReader(BytesIO(image_bytes))
        img_w, img_h = image.getSize()
        # force a full decode so a truncated image fails here, not mid-page
        image.getRGBData()
    except Exception as exc:
        raise ValueError("image could not be decoded") from exc
    if img_w <= 0 or img_h <= 0:
        raise ValueError("empty image")
    return image


def _image_op(box: Box, image_bytes: Optional[bytes]) -> Optional[dict]:
    if not image_bytes:
        return None
    image = load_image(image_bytes)
    img_w, img_h = image.getSize()
    scale = min(box.width / img_w, box.height / img_h)
    draw_w, draw_h = img_w * scale, img_h * scale
    return {
        "type": "image",
        "x": box.x + (box.width - draw_w) / 2,
        "y": box.y + (box.height - draw_h) / 2,
        "w": draw_w,
        "h": draw_h,
        "image": image,
    }


def _draw_op(placement: Placement, field, value: str, image_bytes: Optional[bytes]) -> Optional[dict]:
    t = placement.field_type
    if t in (FieldType.TEXT.value, FieldType.DATE.value, FieldType.DROPDOWN.value):
        return _text_op(field, placement.box, value)
    if t == FieldType.CHECKBOX.value:
        return _checkbox_op(field, placement.box, value)
    if t in (FieldType.SIGNATURE.value, FieldType.INITIALS.value):
        return _image_op(placement.box, image_bytes)
    logger.warning("field %s has unknown type %r; skipped", placement.field_id, t)
    return None


def _overlay_page(width, height, draw_ops) -> bytes:
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=(width, height), invariant=1)
    c.setFillColorRGB(0, 0, 0)
    c.setStrokeColorRGB(0, 0, 0)
    for op in draw_ops:
        t = op["type"]
        if t == "text":
            c.setFont(FONT, op["size"])
            c.drawString(op["x"], op["y"], op["text"])
        elif t == "checkbox":
            x, y, size = op["x"], op["y"], op["size"]
            c.setLineWidth(1)
            c.setFillColorRGB(1, 1, 1)
            c.rect(x, y, size, size, stroke=1, fill=1)
            c.setFillColorRGB(0, 0, 0)
            inset = size * 0.2
            c.setLineWidth(_clamp(size * 0.12, 0.8, 2))
            c.line(x + inset, y + size * 0.5, x + size * 0.4, y + inset)
            c.line(x + size * 0.4, y + inset, x + size - inset, y + size - inset)
            label = op.get("label")
            if label and label["text"]:
                c.setFont(FONT, label["size"])
                c.drawString(label["x"], label["y"], label["text"])
        elif t == "image":
            c.drawImage(op["image"], op["x"], op["y"], width=op["w"], height=op["h"], mask="auto")
    c.showPage()
    c.save()
    return buf.getvalue()


def bake_with_report(
    base_pdf_bytes: bytes,
    fields,
    values: Dict[int, str],
    signature_images: Dict[int, bytes],
) -> BakeResult:
    reader = _read_pdf(base_pdf_bytes)
    writer = PdfWriter()
    for p in reader.pages:
        writer.add_page(p)

    geometry = [_page_geometry(p) for p in reader.pages]
    sizes = [(w, h) for _, _, w, h in geometry]
    fields_by_id = {f.id: f for f in fields}
    result = BakeResult(pdf=b"")
    placed = set()

    draw_map = {}  # page_index -> [ops]
    for placement in layout_fields(sizes, fields):
        placed.add(placement.field_id)
        field = fields_by_id[placement.field_id]
        try:
            op = _draw_op(placement, field, values.get(field.id) or "", signature_images.get(field.id))
        except Exception:
            logger.warning("field %s could not be rendered; skipped", field.id, exc_info=True)
            result.skipped.append(field.id)
            continue
        if op is None:
            continue
        draw_map.setdefault(placement.page_index, []).append(op)
        result.drawn.append(field.id)
    result.skipped.extend(f.id for f in fields if f.id not in placed)

    for pidx, ops in sorted(draw_map.items()):
        left, bottom, width, height = geometry[pidx]
        overlay_reader = PdfReader(BytesIO(_overlay_page(width, height, ops)))
        writer.pages[pidx].merge_transformed_page(
            overlay_reader.pages[0], Transformation().translate(tx=left, ty=bottom)
        )

    out = BytesIO()
    writer.write(out)
    result.pdf = out.getvalue()
    return result


def bake(
    base_pdf_bytes: bytes,
    fields,
    values: Dict[int, str],
    signature_images: Dict[int, bytes],
) -> bytes:
    """Return a new PDF with every field's content drawn onto its page.

    Raises BakeError for an unreadable base PDF. A field whose page is missing,
    whose geometry is unusable, or whose image cannot be decoded is skipped.
    """
    return bake_with_report(base_pdf_bytes, fields, values, signature_images).pdf

import logging

from sqlmodel import Session, select, delete

from .activity import append_activity, DOCUMENT_PREPARED
from .errors import Conflict, InputError
from .fields import FieldType, FieldValidation, catalog_entry, decode_options, encode_options
from .geometry import clamp_geometry
from .models import Document, DocumentField, DOC_DRAFT, utcnow

logger = logging.getLogger(__name__)


def document_fields(session: Session, document_id: int):
    return session.exec(
        select(DocumentField).where(DocumentField.document_id == document_id).order_by(DocumentField.id)
    ).all()


def field_to_dict(f: DocumentField) -> dict:
    return {
        "id": f.id,
        "document_id": f.document_id,
        "type": f.type,
        "label": f.label,
        "placeholder": f.placeholder,
        "required": f.required,
        "validation": f.validation,
        "font_size": f.font_size,
        "page_number": f.page_number,
        "position_x": f.position_x,
        "position_y": f.position_y,
        "width": f.width,
        "height": f.height,
        "options": decode_options(f.options_json),
        "created_at": f.created_at,
    }


def _apply(row: DocumentField, data) -> DocumentField:
    field_type = data.type.value
    x, y, w, h = clamp_geometry(data.position_x, data.position_y, data.width, data.height)
    options = list(data.options)
    if field_type == FieldType.DROPDOWN.value and not options:
        options = list(catalog_entry(field_type).get("options", []))
    row.type = field_type
    row.label = data.label
    row.placeholder = data.placeholder
    row.required = data.required
    # validation only constrains free text
    if field_type == FieldType.TEXT.value and data.validation:
        row.validation = data.validation.value
    else:
        row.validation = FieldValidation.NONE.value if field_type == FieldType.TEXT.value else None
    row.font_size = data.font_size
    row.page_number = data.page_number
    row.position_x, row.position_y, row.width, row.height = x, y, w, h
    row.options_json = encode_options(options if field_type == FieldType.DROPDOWN.value else [])
    return row


def save_fields(session: Session, doc: Document, incoming, user_id=None):
    """Replace the document's layout with ``incoming``.

    Rows whose id is listed are updated in place, rows that are not listed are
    deleted and entries without an id are inserted. Only drafts can change.
    """
    if doc.status != DOC_DRAFT:
        raise Conflict("Fields can only be changed while the document is a draft", status=doc.status)
    existing = {f.id: f for f in document_fields(session, doc.id)}
    keep_ids = {f.db_id for f in incoming if f.db_id is not None}
    unknown = keep_ids - set(existing)
    if unknown:
        raise InputError("Unknown field ids", field_ids=sorted(unknown))

    stale = set(existing) - keep_ids
    if stale:
        session.exec(delete(DocumentField).where(DocumentField.id.in_(stale)))

    for data in incoming:
        row = existing[data.db_id] if data.db_id is not None else DocumentField(
            document_id=doc.id, type=data.type.value, position_x=0, position_y=0, width=0, height=0,
        )
        session.add(_apply(row, data))

    doc.updated_at = utcnow()
    session.add(doc)
    append_activity(session, doc.id, DOCUMENT_PREPARED, {"field_count": len(incoming)}, user_id=user_id)
    session.commit()
    logger.info("document %s layout saved: %d field(s), %d removed", doc.id, len(incoming), len(stale))
    return document_fields(session, doc.id)

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from sqlalchemy import func
from sqlmodel import Session, select, delete

from .. import storage
from ..activity import append_activity, list_activity, DOCUMENT_UPLOADED
from ..auth import AccessContext, require_sender, resolve_access_context, can_manage
from ..config import FILE_URL_TTL_SECONDS
from ..db import get_session
from ..lifecycle import create_signing_requests, request_to_dict
from ..models import ActivityLog, Document, DocumentField, SigningRequest, DOC_DRAFT, DOC_PENDING, DOC_COMPLETED
from ..preparation import document_fields, field_to_dict, save_fields
from ..rendering import BakeError, page_sizes
from ..schemas import FieldsSave, SigningRequestCreate
from ..utils import safe_filename, sha256_bytes

logger = logging.getLogger(__name__)

router = APIRouter()

_IMAGE_SUFFIXES = (".png", ".jpg", ".jpeg", ".gif", ".webp")
_DOC_SUFFIXES = (".doc", ".docx", ".odt", ".rtf")


def _file_type(upload: UploadFile) -> str:
    name = (upload.filename or "").lower()
    content_type = (upload.content_type or "").lower()
    if content_type == "application/pdf" or name.endswith(".pdf"):
        return "pdf"
    if content_type.startswith("image/") or name.endswith(_IMAGE_SUFFIXES):
        return "image"
    if name.endswith(_DOC_SUFFIXES) or "word" in content_type:
        return "doc"
    raise HTTPException(400, "unsupported file type")


def _serialize_document(doc: Document) -> dict:
    return {
        "id": doc.id,
        "title": doc.title,
        "file_type": doc.file_type,
        "status": doc.status,
        "sender_id": doc.sender_id,
        "created_at": doc.created_at,
        "updated_at": doc.updated_at,
    }


def _owned_document(session: Session, document_id: int, ctx: AccessContext) -> Document:
    doc = session.get(Document, document_id)
    if not doc or not can_manage(ctx, doc):
        raise HTTPException(404, "document not found")
    return doc


@router.post("")
async def upload_document(
    file: UploadFile = File(...),
    converted: Optional[UploadFile] = File(default=None),
    title: Optional[str] = Form(default=None),
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(require_sender),
):
    file_type = _file_type(file)
    data = await file.read()
    if not data:
        raise HTTPException(400, "empty file")
    converted_data = await converted.read() if converted is not None else None
    pdf_bytes = data if file_type == "pdf" else converted_data
    if not pdf_bytes:
        raise HTTPException(400, "a converted PDF is required for non-PDF uploads")
    try:
        sizes = page_sizes(pdf_bytes)
    except BakeError:
        raise HTTPException(400, "file is not a readable PDF")

    filename = safe_filename(file.filename)
    doc = Document(
        title=(title or "").strip() or filename.rsplit(".", 1)[0],
        file_key="pending",
        file_type=file_type,
        sha256=sha256_bytes(data),
        sender_id=ctx.user_id,
    )
    session.add(doc)
    session.flush()
    doc.file_key = f"documents/{ctx.user_id}/{doc.id}-{filename}"
    storage.put_bytes(doc.file_key, data, content_type=file.content_type or "application/octet-stream")
    if file_type != "pdf":
        doc.converted_key = f"converted/{ctx.user_id}/{doc.id}.pdf"
        storage.put_bytes(doc.converted_key, converted_data, content_type="application/pdf")
    session.add(doc)
    append_activity(session, doc.id, DOCUMENT_UPLOADED, {"file_type": file_type, "title": doc.title}, user_id=ctx.user_id)
    session.commit()
    session.refresh(doc)
    logger.info("document %s uploaded (%s, %d page(s))", doc.id, file_type, len(sizes))
    return {**_serialize_document(doc), "pages": [{"width": w, "height": h} for w, h in sizes]}


@router.get("")
def list_documents(
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(resolve_access_context),
):
    query = select(Document).order_by(Document.created_at.desc(), Document.id.desc())
    if ctx.role != "admin":
        query = query.where(Document.sender_id == ctx.user_id)
    return [_serialize_document(d) for d in session.exec(query).all()]


@router.get("/stats")
def document_stats(
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(resolve_access_context),
):
    query = select(Document.status, func.count(Document.id)).group_by(Document.status)
    if ctx.role != "admin":
        query = query.where(Document.sender_id == ctx.user_id)
    counts = dict(session.exec(query).all())
    stats = {status: counts.get(status, 0) for status in (DOC_DRAFT, DOC_PENDING, DOC_COMPLETED)}
    return {"total": sum(counts.values()), **stats}


@router.get("/{document_id}")
def get_document(
    document_id: int,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(resolve_access_context),
):
    doc = _owned_document(session, document_id, ctx)
    requests = session.exec(
        select(SigningRequest).where(SigningRequest.document_id == doc.id).order_by(SigningRequest.id)
    ).all()
    return {
        **_serialize_document(doc),
        "signing_requests": [request_to_dict(r) for r in requests],
        "fields": [field_to_dict(f) for f in document_fields(session, doc.id)],
    }


@router.delete("/{document_id}", status_code=204)
def delete_document(
    document_id: int,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(resolve_access_context),
):
    doc = _owned_document(session, document_id, ctx)
    if doc.status != DOC_DRAFT:
        raise HTTPException(409, "only draft documents can be deleted")
    keys = [k for k in (doc.file_key, doc.converted_key) if k]
    session.exec(delete(DocumentField).where(DocumentField.document_id == doc.id))
    session.exec(delete(ActivityLog).where(ActivityLog.document_id == doc.id))
    session.delete(doc)
    session.commit()
    for key in keys:
        try:
            storage.delete_object(key)
        except Exception:
            logger.warning("could not remove %s after deleting document %s", key, document_id, exc_info=True)


@router.get("/{document_id}/file-url")
def document_file_url(
    document_id: int,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(resolve_access_context),
):
    doc = _owned_document(session, document_id, ctx)
    url = storage.presigned_url(doc.source_key, FILE_URL_TTL_SECONDS)
    if not url:
        raise HTTPException(404, "file not found")
    return {"url": url, "expires_in": FILE_URL_TTL_SECONDS}


@router.get("/{document_id}/fields")
def list_fields(
    document_id: int,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(resolve_access_context),
):
    doc = _owned_document(session, document_id, ctx)
    return [field_to_dict(f) for f in document_fields(session, doc.id)]


@router.put("/{document_id}/fields")
def replace_fields(
    document_id: int,
    payload: FieldsSave,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(resolve_access_context),
):
    doc = _owned_document(session, document_id, ctx)
    saved = save_fields(session, doc, payload.fields, user_id=ctx.user_id)
    return [field_to_dict(f) for f in saved]


@router.get("/{document_id}/activity")
def document_activity(
    document_id: int,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(resolve_access_context),
):
    doc = _owned_document(session, document_id, ctx)
    return list_activity(session, doc.id)


@router.post("/{document_id}/requests", status_code=201)
def send_for_signing(
    document_id: int,
    payload: SigningRequestCreate,
    session: Session = Depends(get_session),
    ctx: AccessContext = Depends(resolve_access_context),
):
    doc = _owned_document(session, document_id, ctx)
    return create_signing_requests(session, doc, ctx, payload.recipients, payload.message)

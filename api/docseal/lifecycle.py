"""Signing request lifecycle.

    pending -> viewed -> signed        (signed is terminal)
    pending|viewed -> cancelled        (cancelled is terminal)

Recipients act only through the request token. Every mutation re-reads the
row and is applied as a conditional UPDATE on the expected source status, so
two racing callers on the same token cannot both win. Document completion is
recomputed from all sibling requests after each settling transition.
"""
import logging
import secrets
from typing import Optional

from sqlalchemy import update, func
from sqlmodel import Session, select

from . import storage, signatures, rendering
from . import email as mailer
from .activity import (
    append_activity,
    SIGNATURE_REQUESTED,
    DOCUMENT_VIEWED,
    DOCUMENT_SIGNED,
    REQUEST_CANCELLED,
)
from .auth import AccessContext, can_manage
from .config import APP_URL, FILE_URL_TTL_SECONDS, SIGNED_URL_TTL_SECONDS
from .errors import (
    DocSealError,
    NotFound,
    Forbidden,
    Conflict,
    Gone,
    ValidationFailed,
    AlreadySigned,
    RequestCancelled,
)
from .fields import IMAGE_TYPES, check_value
from .models import (
    Document,
    SigningRequest,
    FieldValue,
    User,
    DOC_DRAFT,
    DOC_PENDING,
    DOC_COMPLETED,
    REQ_PENDING,
    REQ_VIEWED,
    REQ_SIGNED,
    REQ_CANCELLED,
    REQ_DECLINED,
    OPEN_STATUSES,
    SETTLED_STATUSES,
    utcnow,
)
from .preparation import document_fields, field_to_dict
from .schemas import SignSubmit
from .utils import (
    make_token,
    read_token,
    normalize_email,
    decode_data_url,
    data_url_type,
    image_extension,
    image_content_type,
)

logger = logging.getLogger(__name__)


def signing_url(token: str) -> str:
    return f"{APP_URL}/sign/{token}"


def request_to_dict(req: SigningRequest, include_token: bool = False) -> dict:
    data = {
        "id": req.id,
        "document_id": req.document_id,
        "recipient_email": req.recipient_email,
        "recipient_id": req.recipient_id,
        "status": req.status,
        "message": req.message,
        "signed_at": req.signed_at,
        "signature_url": req.signature_url,
        "signed_file_url": req.signed_file_url,
        "created_at": req.created_at,
    }
    if include_token:
        data["token"] = req.token
    return data


def recipient_inbox(session: Session, email: Optional[str]) -> list:
    """Every request addressed to ``email``, newest first, with its document."""
    email = normalize_email(email)
    if not email:
        return []
    rows = session.exec(
        select(SigningRequest, Document)
        .join(Document, Document.id == SigningRequest.document_id)
        .where(SigningRequest.recipient_email == email)
        .order_by(SigningRequest.created_at.desc(), SigningRequest.id.desc())
    ).all()
    sender_ids = {doc.sender_id for _, doc in rows}
    senders = {u.id: u for u in session.exec(select(User).where(User.id.in_(sender_ids))).all()} if sender_ids else {}
    inbox = []
    for req, doc in rows:
        sender = senders.get(doc.sender_id)
        item = request_to_dict(req)
        item["document"] = {
            "id": doc.id,
            "title": doc.title,
            "status": doc.status,
            "sender_name": (sender.full_name or sender.email) if sender else "Unknown",
        }
        # only open requests still have a usable link
        item["signing_url"] = signing_url(req.token) if req.status in OPEN_STATUSES else None
        inbox.append(item)
    return inbox


# ---------- token resolution & guards ----------

def find_by_token(session: Session, token: str) -> SigningRequest:
    if not token or read_token(token) is None:
        raise NotFound("Invalid signing link")
    req = session.exec(select(SigningRequest).where(SigningRequest.token == token)).first()
    if not req:
        raise NotFound("Invalid signing link")
    return req


def ensure_actionable(req: SigningRequest):
    """Short-circuit terminal requests before any side effect."""
    if req.status == REQ_CANCELLED:
        raise RequestCancelled()
    if req.status == REQ_SIGNED:
        raise AlreadySigned(req.signed_at)
    if req.status == REQ_DECLINED:
        raise Gone("This signing request was declined", status=REQ_DECLINED)


def _transition(session: Session, req: SigningRequest, sources, **values) -> bool:
    """Conditional update; True only for the caller whose update matched."""
    result = session.exec(
        update(SigningRequest)
        .where(SigningRequest.id == req.id, SigningRequest.status.in_(sources))
        .values(**values)
    )
    return result.rowcount == 1


def _reload(session: Session, req: SigningRequest) -> SigningRequest:
    session.rollback()
    session.refresh(req)
    return req


def mark_viewed(session: Session, req: SigningRequest) -> bool:
    """pending -> viewed, appending exactly one document_viewed record."""
    if not _transition(session, req, (REQ_PENDING,), status=REQ_VIEWED):
        _reload(session, req)
        return False
    append_activity(
        session, req.document_id, DOCUMENT_VIEWED,
        {"recipient_email": req.recipient_email}, user_id=req.recipient_id,
    )
    session.commit()
    session.refresh(req)
    logger.info("signing request %s viewed", req.id)
    return True


# ---------- aggregation ----------

def aggregate(session: Session, document_id: int) -> bool:
    """Mark the document completed once every request is signed or cancelled.

    Statuses are re-read on every call; concurrent completions converge.
    """
    statuses = session.exec(
        select(SigningRequest.status).where(SigningRequest.document_id == document_id)
    ).all()
    if not statuses or any(s not in SETTLED_STATUSES for s in statuses):
        return False
    result = session.exec(
        update(Document)
        .where(Document.id == document_id, Document.status != DOC_COMPLETED)
        .values(status=DOC_COMPLETED, updated_at=utcnow())
    )
    session.commit()
    if result.rowcount:
        logger.info("document %s completed", document_id)
    return True


# ---------- recipient actions ----------

def resolve(session: Session, token: str) -> dict:
    req = find_by_token(session, token)
    ensure_actionable(req)
    doc = session.get(Document, req.document_id)
    if not doc:
        raise NotFound("Document not found")

    if req.status == REQ_PENDING and not mark_viewed(session, req):
        # lost the race; someone may have signed or cancelled meanwhile
        ensure_actionable(req)

    sender = session.get(User, doc.sender_id)
    return {
        "request": {
            "id": req.id,
            "status": req.status,
            "recipient_email": req.recipient_email,
            "message": req.message,
        },
        "document": {
            "id": doc.id,
            "title": doc.title,
            "file_type": doc.file_type,
            "file_url": storage.presigned_url(doc.source_key, FILE_URL_TTL_SECONDS),
            "sender_name": (sender.full_name or sender.email) if sender else "Unknown",
        },
        "fields": [field_to_dict(f) for f in document_fields(session, doc.id)],
        "saved_signature": signatures.load_saved_signature(session, req.recipient_email),
    }


def _signature_bytes(payload, owned: set):
    """Return ``(bytes, content_type)`` for one submitted image, or None."""
    if payload.data_url:
        try:
            content_type = data_url_type(payload.data_url)
            image_extension(content_type)
            return decode_data_url(payload.data_url), content_type
        except ValueError:
            raise ValueError("Invalid signature image") from None
    if payload.signature_path:
        if payload.signature_path not in owned:
            raise ValueError("Unknown saved signature")
        try:
            data = storage.get_bytes(payload.signature_path)
        except storage.ObjectNotFound:
            raise ValueError("Saved signature is no longer available") from None
        return data, image_content_type(payload.signature_path)
    return None


def _collect_images(session, req, fields, signature_data):
    images, content_types, errors = {}, {}, {}
    by_field = {p.document_field_id: p for p in signature_data}
    owned = signatures.owned_paths(session, req.recipient_email)
    for field in fields:
        if field.type not in IMAGE_TYPES or field.id not in by_field:
            continue
        try:
            found = _signature_bytes(by_field[field.id], owned)
        except ValueError as exc:
            errors[field.id] = str(exc)
            continue
        if not found or not found[0]:
            continue
        try:
            rendering.load_image(found[0])
        except ValueError:
            errors[field.id] = "Invalid signature image"
            continue
        images[field.id], content_types[field.id] = found
    return images, content_types, errors


def validate_submission(fields, values: dict, images: dict, errors: Optional[dict] = None) -> dict:
    errors = dict(errors or {})
    for field in fields:
        if field.id in errors:
            continue
        message = check_value(field, values.get(field.id), has_image=field.id in images)
        if message:
            errors[field.id] = message
    return errors


def submit(session: Session, token: str, payload: SignSubmit) -> dict:
    req = find_by_token(session, token)
    ensure_actionable(req)
    doc = session.get(Document, req.document_id)
    if not doc:
        raise NotFound("Document not found")

    fields = document_fields(session, doc.id)
    known = {f.id for f in fields}
    values = {fv.document_field_id: fv.value for fv in payload.field_values if fv.document_field_id in known}

    # 1. validate; nothing is written until every field passes
    images, content_types, image_errors = _collect_images(session, req, fields, payload.signature_data)
    errors = validate_submission(fields, values, images, image_errors)
    if errors:
        raise ValidationFailed(errors)

    # render in memory first so an unreadable source fails before any write
    try:
        base_pdf = storage.get_bytes(doc.source_key)
    except storage.ObjectNotFound:
        raise DocSealError("Failed to load document") from None
    signed_pdf = rendering.bake(base_pdf, fields, values, images)

    attempt = secrets.token_hex(8)

    # 2. request-scoped images, then the recipient's saved signature/initials
    image_paths, primary = {}, {}
    for field in fields:
        if field.id not in images:
            continue
        content_type = content_types[field.id]
        path = f"requests/{req.id}/{attempt}/{field.id}.{image_extension(content_type)}"
        storage.put_bytes(path, images[field.id], content_type=content_type)
        image_paths[field.id] = path
        primary.setdefault(field.type, field.id)
    for kind, field_id in primary.items():
        signatures.save_signature(session, req.recipient_email, kind, images[field_id], content_types[field_id])

    # 3. field values, committed together with the status change below
    for field in fields:
        value = image_paths.get(field.id) or values.get(field.id)
        if value and value.strip():
            session.add(FieldValue(signing_request_id=req.id, document_field_id=field.id, value=value))

    # 4. baked PDF under a (document, request) scoped key
    signed_key = f"signed/{doc.id}/{req.id}/{attempt}.pdf"
    storage.put_bytes(signed_key, signed_pdf, content_type="application/pdf")

    # 5. the single guarded write
    signed_at = utcnow()
    primary_field = primary.get("signature") or primary.get("initials")
    won = _transition(
        session, req, OPEN_STATUSES,
        status=REQ_SIGNED,
        signed_at=signed_at,
        signature_url=image_paths.get(primary_field) if primary_field else None,
        signed_file_url=signed_key,
    )
    if not won:
        _reload(session, req)
        _discard(signed_key, *image_paths.values())
        logger.info("signing request %s lost submission race (now %s)", req.id, req.status)
        ensure_actionable(req)
        raise Conflict("Request can no longer be signed", status=req.status)
    session.commit()
    logger.info("signing request %s signed", req.id)

    # 6. aggregation
    completed = aggregate(session, doc.id)

    # 7. audit + best-effort notifications
    append_activity(
        session, doc.id, DOCUMENT_SIGNED,
        {"recipient_email": req.recipient_email}, user_id=req.recipient_id,
    )
    session.commit()
    _notify_signed(session, doc, req, signed_key, signed_pdf)

    return {
        "success": True,
        "status": REQ_SIGNED,
        "signed_at": signed_at,
        "document_status": DOC_COMPLETED if completed else doc.status,
    }


def _discard(*keys: str):
    for key in keys:
        try:
            storage.delete_object(key)
        except Exception:
            logger.warning("could not remove orphaned object %s", key, exc_info=True)


def _notify_signed(session: Session, doc: Document, req: SigningRequest, signed_key: str, signed_pdf: bytes):
    try:
        download_url = storage.presigned_url(signed_key, SIGNED_URL_TTL_SECONDS)
    except Exception:
        logger.warning("could not presign %s for notification", signed_key, exc_info=True)
        download_url = None
    sender = session.get(User, doc.sender_id)
    sender_name = (sender.full_name or sender.email) if sender else "Sender"
    subject, text_body, html_body = mailer.signed_notice(doc.title, req.recipient_email, sender_name, download_url)
    attachments = [{
        "filename": mailer.pdf_filename(doc.title),
        "content": signed_pdf,
        "maintype": "application",
        "subtype": "pdf",
    }]
    recipients = [sender.email] if sender and sender.email else []
    recipients.append(req.recipient_email)
    for to in recipients:
        mailer.notify(to, subject, text_body, html_body=html_body, attachments=attachments)


# ---------- sender actions ----------

def _managed_request(session: Session, request_id: int, ctx: AccessContext):
    req = session.get(SigningRequest, request_id)
    doc = session.get(Document, req.document_id) if req else None
    if not req or not doc or not can_manage(ctx, doc):
        raise Forbidden("Not authorized")
    return req, doc


def create_signing_requests(session: Session, doc: Document, ctx: AccessContext, recipients, message: Optional[str] = None) -> dict:
    if doc.status == DOC_COMPLETED:
        raise Conflict("Document is already completed", status=doc.status)
    emails = list(dict.fromkeys(normalize_email(r.email) for r in recipients))
    active = session.exec(
        select(SigningRequest.recipient_email).where(
            SigningRequest.document_id == doc.id,
            SigningRequest.status.in_((REQ_PENDING, REQ_VIEWED, REQ_SIGNED)),
        )
    ).all()
    taken = sorted(set(active) & set(emails))
    if taken:
        raise Conflict("Recipient already has a signing request for this document", recipients=taken)

    created = []
    for email in emails:
        account = session.exec(select(User).where(func.lower(User.email) == email)).first()
        req = SigningRequest(
            document_id=doc.id,
            recipient_email=email,
            recipient_id=account.id if account else None,
            token=make_token(doc.id),
            message=message or None,
        )
        session.add(req)
        created.append(req)
    if doc.status == DOC_DRAFT:
        doc.status = DOC_PENDING
    doc.updated_at = utcnow()
    session.add(doc)
    append_activity(
        session, doc.id, SIGNATURE_REQUESTED,
        {"recipient_count": len(emails), "recipients": emails}, user_id=ctx.user_id,
    )
    session.commit()
    for req in created:
        session.refresh(req)
    logger.info("document %s sent to %d recipient(s)", doc.id, len(created))

    sender_name = ctx.display_name or "Someone"
    emails_sent = True
    for req in created:
        subject, text_body, html_body = mailer.signing_invite(doc.title, sender_name, message or "", signing_url(req.token))
        emails_sent = mailer.notify(
            req.recipient_email, subject, text_body,
            html_body=html_body, sender_name=mailer.format_sender_name(sender_name),
        ) and emails_sent

    return {
        "data": [request_to_dict(r) for r in created],
        "emails_sent": emails_sent,
        "signing_links": [{"email": r.recipient_email, "url": signing_url(r.token)} for r in created],
    }


def cancel_request(session: Session, request_id: int, ctx: AccessContext) -> dict:
    req, doc = _managed_request(session, request_id, ctx)
    if not _transition(session, req, OPEN_STATUSES, status=REQ_CANCELLED):
        _reload(session, req)
        raise Conflict(f"Request is already {req.status}", status=req.status, signed_at=req.signed_at)
    append_activity(
        session, doc.id, REQUEST_CANCELLED,
        {"recipient_email": req.recipient_email}, user_id=ctx.user_id,
    )
    session.commit()
    session.refresh(req)
    logger.info("signing request %s cancelled", req.id)
    completed = aggregate(session, doc.id)
    return {
        "success": True,
        "status": req.status,
        "document_status": DOC_COMPLETED if completed else doc.status,
    }


def resend_request(session: Session, request_id: int, ctx: AccessContext) -> dict:
    req, doc = _managed_request(session, request_id, ctx)
    if req.status not in OPEN_STATUSES:
        raise Conflict("Can only resend email for pending or viewed requests", status=req.status)
    sender_name = ctx.display_name or "Someone"
    subject, text_body, html_body = mailer.signing_invite(doc.title, sender_name, req.message or "", signing_url(req.token))
    if not mailer.notify(
        req.recipient_email, subject, text_body,
        html_body=html_body, sender_name=mailer.format_sender_name(sender_name),
    ):
        raise DocSealError("Failed to send email")
    return {"success": True}


def signed_file_url(session: Session, request_id: int, ctx: AccessContext) -> dict:
    req, _ = _managed_request(session, request_id, ctx)
    if req.status != REQ_SIGNED or not req.signed_file_url:
        raise NotFound("Signed file not available")
    url = storage.presigned_url(req.signed_file_url, SIGNED_URL_TTL_SECONDS)
    if not url:
        raise NotFound("Signed file not available")
    return {"url": url}

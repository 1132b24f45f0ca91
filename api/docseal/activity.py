import json
from typing import Optional

from sqlmodel import Session, select
from .models import ActivityLog, Document
from .utils import canonical_json, sha256_bytes

DOCUMENT_UPLOADED = "document_uploaded"
DOCUMENT_PREPARED = "document_prepared"
SIGNATURE_REQUESTED = "signature_requested"
DOCUMENT_VIEWED = "document_viewed"
DOCUMENT_SIGNED = "document_signed"
REQUEST_CANCELLED = "request_cancelled"

def append_activity(session: Session, document_id: int, action: str, meta: dict, user_id: Optional[int] = None) -> ActivityLog:
    """Stage an activity record chained to the document's previous one.

    The caller commits, so the record lands in the same transaction as the
    state change it describes.
    """
    last = session.exec(
        select(ActivityLog).where(ActivityLog.document_id == document_id).order_by(ActivityLog.id.desc())
    ).first()
    prev_hash = last.hash if last else "0" * 64
    payload = {"user_id": user_id, "action": action, "meta": meta}
    entry = ActivityLog(
        document_id=document_id,
        user_id=user_id,
        action=action,
        metadata_json=canonical_json(meta),
        prev_hash=prev_hash,
    )
    entry.hash = sha256_bytes((prev_hash + canonical_json(payload)).encode())
    session.add(entry)
    session.flush()
    return entry

def _entry(row: ActivityLog) -> dict:
    return {
        "id": row.id,
        "action": row.action,
        "user_id": row.user_id,
        "metadata": json.loads(row.metadata_json or "{}"),
        "created_at": row.created_at,
        "hash": row.hash,
    }

def list_activity(session: Session, document_id: int):
    rows = session.exec(
        select(ActivityLog).where(ActivityLog.document_id == document_id).order_by(ActivityLog.id.desc())
    ).all()
    return [_entry(row) for row in rows]

def recent_activity(session: Session, sender_id: Optional[int] = None, limit: int = 50):
    """Newest entries across documents, optionally only those of one sender."""
    query = select(ActivityLog, Document.title).join(Document, Document.id == ActivityLog.document_id)
    if sender_id is not None:
        query = query.where(Document.sender_id == sender_id)
    rows = session.exec(query.order_by(ActivityLog.id.desc()).limit(limit)).all()
    return [{**_entry(row), "document_id": row.document_id, "document_title": title} for row, title in rows]

def verify_chain(session: Session, document_id: int) -> bool:
    rows = session.exec(
        select(ActivityLog).where(ActivityLog.document_id == document_id).order_by(ActivityLog.id)
    ).all()
    prev_hash = "0" * 64
    for row in rows:
        payload = {"user_id": row.user_id, "action": row.action, "meta": json.loads(row.metadata_json or "{}")}
        if row.prev_hash != prev_hash:
            return False
        if row.hash != sha256_bytes((prev_hash + canonical_json(payload)).encode()):
            return False
        prev_hash = row.hash
    return True

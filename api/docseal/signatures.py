"""Saved signature store.

One entry per recipient, keyed by the normalized (trimmed, lowercased) email.
The images live in object storage under a path derived from a hash of that
email so addresses never appear in keys. Writes overwrite the previous image;
this is a convenience cache for the next signing session, not an audit record.
"""
import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select
from . import storage
from .config import FILE_URL_TTL_SECONDS
from .fields import FieldType
from .models import SavedSignature, utcnow
from .utils import normalize_email, email_key, image_extension

logger = logging.getLogger(__name__)

KINDS = (FieldType.SIGNATURE.value, FieldType.INITIALS.value)


def saved_path(email: str, kind: str, content_type: str = "image/png") -> str:
    if kind not in KINDS:
        raise ValueError(f"unknown signature kind {kind!r}")
    return f"saved/{email_key(email)}/{kind}.{image_extension(content_type)}"


def get_saved(session: Session, email: str) -> Optional[SavedSignature]:
    return session.exec(
        select(SavedSignature).where(SavedSignature.recipient_email == normalize_email(email))
    ).first()


def owned_paths(session: Session, email: str) -> set:
    entry = get_saved(session, email)
    if not entry:
        return set()
    return {p for p in (entry.signature_path, entry.initials_path) if p}


def load_saved_signature(session: Session, email: str) -> Optional[dict]:
    """Links to the recipient's saved images, offered alongside draw/type."""
    entry = get_saved(session, email)
    if not entry:
        return None
    result = {}
    for kind, path in ((FieldType.SIGNATURE.value, entry.signature_path), (FieldType.INITIALS.value, entry.initials_path)):
        if not path:
            continue
        url = storage.presigned_url(path, FILE_URL_TTL_SECONDS)
        if url:
            result[kind] = {"url": url, "path": path}
    if not result:
        return None
    # flat url/path mirror the signature (or, failing that, initials) entry
    primary = result.get(FieldType.SIGNATURE.value) or result[FieldType.INITIALS.value]
    return {**primary, **result}


def save_signature(session: Session, email: str, kind: str, image: bytes, content_type: str = "image/png") -> str:
    """Overwrite the recipient's saved ``kind`` image and upsert the row (committed)."""
    path = saved_path(email, kind, content_type)
    storage.put_bytes(path, image, content_type=content_type)
    try:
        _upsert(session, email, kind, path)
    except IntegrityError:
        # another submission created the row first; update theirs
        session.rollback()
        _upsert(session, email, kind, path)
    logger.info("saved %s image updated for %s", kind, path.split("/")[1][:12])
    return path


def _upsert(session: Session, email: str, kind: str, path: str):
    entry = get_saved(session, email)
    if entry is None:
        entry = SavedSignature(recipient_email=normalize_email(email))
    if kind == FieldType.SIGNATURE.value:
        entry.signature_path = path
    else:
        entry.initials_path = path
    entry.updated_at = utcnow()
    session.add(entry)
    session.commit()

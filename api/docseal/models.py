from typing import Optional
from datetime import datetime, timezone
from sqlmodel import SQLModel, Field as ORMField

# document.status
DOC_DRAFT = "draft"
DOC_PENDING = "pending"
DOC_COMPLETED = "completed"

# signingrequest.status
REQ_PENDING = "pending"
REQ_VIEWED = "viewed"
REQ_SIGNED = "signed"
REQ_CANCELLED = "cancelled"
REQ_DECLINED = "declined"  # reserved, no transition produces it yet

OPEN_STATUSES = (REQ_PENDING, REQ_VIEWED)
SETTLED_STATUSES = (REQ_SIGNED, REQ_CANCELLED)

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

class User(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    email: str = ORMField(index=True)
    full_name: str = ""
    role: str = "sender"  # sender|recipient|admin
    access_token: Optional[str] = ORMField(default=None, index=True)
    created_at: datetime = ORMField(default_factory=utcnow)

class Document(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    title: str
    file_key: str
    file_type: str = "pdf"  # pdf|image|doc
    converted_key: Optional[str] = None
    sha256: Optional[str] = None
    status: str = DOC_DRAFT
    sender_id: int = ORMField(index=True)
    created_at: datetime = ORMField(default_factory=utcnow)
    updated_at: datetime = ORMField(default_factory=utcnow)

    @property
    def source_key(self) -> str:
        return self.converted_key or self.file_key

class DocumentField(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    document_id: int = ORMField(index=True)
    type: str  # signature|initials|text|date|checkbox|dropdown
    label: str = ""
    placeholder: Optional[str] = None
    required: bool = False
    validation: Optional[str] = None  # none|number|email|phone
    font_size: int = 12
    page_number: int = 1
    position_x: float
    position_y: float
    width: float
    height: float
    options_json: str = "[]"
    created_at: datetime = ORMField(default_factory=utcnow)

class SigningRequest(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    document_id: int = ORMField(index=True)
    recipient_email: str = ORMField(index=True)
    recipient_id: Optional[int] = None
    token: str = ORMField(index=True, unique=True)
    status: str = REQ_PENDING
    message: Optional[str] = None
    signed_at: Optional[datetime] = None
    signature_url: Optional[str] = None
    signed_file_url: Optional[str] = None
    created_at: datetime = ORMField(default_factory=utcnow)

class FieldValue(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    signing_request_id: int = ORMField(index=True)
    document_field_id: int
    value: str
    created_at: datetime = ORMField(default_factory=utcnow)

class SavedSignature(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    recipient_email: str = ORMField(index=True, unique=True)
    signature_path: Optional[str] = None
    initials_path: Optional[str] = None
    updated_at: datetime = ORMField(default_factory=utcnow)

class ActivityLog(SQLModel, table=True):
    id: Optional[int] = ORMField(default=None, primary_key=True)
    document_id: int = ORMField(index=True)
    user_id: Optional[int] = None
    action: str  # document_uploaded|document_prepared|signature_requested|document_viewed|document_signed|request_cancelled
    metadata_json: str = "{}"
    created_at: datetime = ORMField(default_factory=utcnow)
    prev_hash: Optional[str] = None
    hash: Optional[str] = None

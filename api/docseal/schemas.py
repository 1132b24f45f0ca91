from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import List, Optional

from .fields import FieldType, FieldValidation, MIN_FONT_SIZE, MAX_FONT_SIZE, DEFAULT_FONT_SIZE

class FieldIn(BaseModel):
    db_id: Optional[int] = None  # set when the field already exists
    type: FieldType
    label: str = ""
    placeholder: Optional[str] = None
    required: bool = False
    validation: Optional[FieldValidation] = FieldValidation.NONE
    font_size: int = Field(DEFAULT_FONT_SIZE, ge=MIN_FONT_SIZE, le=MAX_FONT_SIZE)
    page_number: int = Field(1, ge=1)
    position_x: float = Field(ge=0, le=100)
    position_y: float = Field(ge=0, le=100)
    width: float = Field(gt=0, le=100)
    height: float = Field(gt=0, le=100)
    options: List[str] = []

class FieldsSave(BaseModel):
    fields: List[FieldIn]

class RecipientIn(BaseModel):
    email: EmailStr
    name: Optional[str] = None

    @field_validator("email", mode="after")
    @classmethod
    def _lowercase(cls, v: str) -> str:
        return v.lower()

class SigningRequestCreate(BaseModel):
    recipients: List[RecipientIn] = Field(min_length=1)
    message: Optional[str] = None

class FieldValueIn(BaseModel):
    document_field_id: int
    value: str = ""

class SignatureIn(BaseModel):
    document_field_id: int
    data_url: Optional[str] = None
    signature_path: Optional[str] = None

class SignSubmit(BaseModel):
    field_values: List[FieldValueIn] = []
    signature_data: List[SignatureIn] = []

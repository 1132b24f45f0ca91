import json
import math
import re
from enum import Enum
from typing import Optional


class FieldType(str, Enum):
    SIGNATURE = "signature"
    INITIALS = "initials"
    TEXT = "text"
    DATE = "date"
    CHECKBOX = "checkbox"
    DROPDOWN = "dropdown"


class FieldValidation(str, Enum):
    NONE = "none"
    NUMBER = "number"
    EMAIL = "email"
    PHONE = "phone"


IMAGE_TYPES = (FieldType.SIGNATURE.value, FieldType.INITIALS.value)
TEXT_TYPES = (FieldType.TEXT.value, FieldType.DATE.value, FieldType.DROPDOWN.value)
CHECKED = "true"

MIN_FONT_SIZE = 8
MAX_FONT_SIZE = 32
DEFAULT_FONT_SIZE = 12

# defaults used when a field is dropped on the page; sizes are percentages
FIELD_CATALOG = [
    {"type": "signature", "label": "Signature", "default_width": 22, "default_height": 8},
    {"type": "text", "label": "Text", "default_width": 20, "default_height": 6, "placeholder": "Text"},
    {"type": "date", "label": "Date", "default_width": 16, "default_height": 6, "placeholder": "MM/DD/YYYY"},
    {"type": "checkbox", "label": "Checkbox", "default_width": 6, "default_height": 6},
    {"type": "initials", "label": "Initials", "default_width": 12, "default_height": 6, "placeholder": "Initials"},
    {"type": "dropdown", "label": "Dropdown", "default_width": 18, "default_height": 6, "options": ["Option 1", "Option 2"]},
]

_CATALOG_BY_TYPE = {entry["type"]: entry for entry in FIELD_CATALOG}

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PHONE_RE = re.compile(r"^[\d\s\-+()]{7,}$")


def catalog_entry(field_type: str) -> dict:
    return _CATALOG_BY_TYPE[field_type]


def decode_options(options_json: Optional[str]) -> list:
    try:
        options = json.loads(options_json or "[]")
    except json.JSONDecodeError:
        return []
    return [str(o) for o in options] if isinstance(options, list) else []


def encode_options(options) -> str:
    return json.dumps([str(o) for o in (options or [])])


def is_filled(field_type: str, value: Optional[str]) -> bool:
    if field_type == FieldType.CHECKBOX.value:
        return value == CHECKED
    return bool(value and value.strip())


def _is_number(value: str) -> bool:
    try:
        return math.isfinite(float(value.strip()))
    except ValueError:
        return False


def check_value(field, value: Optional[str], has_image: bool = False) -> Optional[str]:
    """Return an error message for ``value`` on ``field`` or None when it is acceptable.

    Image fields are satisfied by an uploaded image rather than a text value.
    """
    if field.type in IMAGE_TYPES:
        if field.required and not has_image:
            return "This field is required"
        return None
    if field.required and not is_filled(field.type, value):
        return "This field is required"
    if not value:
        return None
    if field.type == FieldType.DROPDOWN.value:
        options = decode_options(field.options_json)
        if options and value not in options:
            return "Choose one of the listed options"
        return None
    if field.type != FieldType.TEXT.value:
        return None
    validation = field.validation or FieldValidation.NONE.value
    if validation == FieldValidation.NUMBER.value and not _is_number(value):
        return "Must be a number"
    if validation == FieldValidation.EMAIL.value and not _EMAIL_RE.match(value.strip()):
        return "Invalid email"
    if validation == FieldValidation.PHONE.value and not _PHONE_RE.match(value.strip()):
        return "Invalid phone number"
    return None

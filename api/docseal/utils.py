import base64, binascii, hashlib, json, re, secrets
from itsdangerous import URLSafeSerializer, BadSignature
from .config import SECRET_KEY

_DATA_URL_PREFIX = re.compile(r"^data:(image/[\w.+-]+);base64,")

IMAGE_EXTENSIONS = {"image/png": "png", "image/jpeg": "jpg", "image/gif": "gif", "image/webp": "webp"}

def decode_data_url(data_url: str) -> bytes:
    """Decode a ``data:image/...;base64,`` URL (or bare base64) into bytes.

    Raises ValueError when the payload is not valid base64.
    """
    payload = _DATA_URL_PREFIX.sub("", data_url.strip(), count=1)
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("invalid base64 image data") from exc

def sha256_bytes(b: bytes) -> str:
    return hashlib.sha256(b).hexdigest()

def canonical_json(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)

def normalize_email(email: str) -> str:
    return (email or "").strip().lower()

def email_key(email: str) -> str:
    return sha256_bytes(normalize_email(email).encode())

def _serializer() -> URLSafeSerializer:
    return URLSafeSerializer(SECRET_KEY, salt="signing")

def make_token(document_id: int) -> str:
    # the nonce makes each token unguessable even for the same document
    return _serializer().dumps({"d": document_id, "n": secrets.token_urlsafe(16)})

def read_token(token: str):
    """Return the token payload, or None when the signature does not verify."""
    try:
        return _serializer().loads(token)
    except BadSignature:
        return None

def data_url_type(data_url: str) -> str:
    """Declared media type of a data URL; bare base64 is taken as PNG."""
    m = _DATA_URL_PREFIX.match(data_url.strip())
    return m.group(1).lower() if m else "image/png"

def image_extension(content_type: str) -> str:
    try:
        return IMAGE_EXTENSIONS[content_type]
    except KeyError:
        raise ValueError(f"unsupported image type {content_type}") from None

def image_content_type(path: str) -> str:
    ext = path.rsplit(".", 1)[-1].lower()
    for content_type, known in IMAGE_EXTENSIONS.items():
        if known == ext:
            return content_type
    return "image/png"

def safe_filename(name: str, default: str = "document") -> str:
    """Last path segment of a client filename, reduced to a storage-safe charset."""
    base = re.split(r"[\\/]", name or "")[-1]
    base = re.sub(r"[^A-Za-z0-9._-]+", "_", base).lstrip(".")
    return base or default

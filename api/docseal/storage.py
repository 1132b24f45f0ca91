import io
import logging
from datetime import timedelta
from typing import Optional

from minio import Minio
from minio.error import S3Error
from .config import (
    MINIO_ENDPOINT,
    MINIO_ACCESS_KEY,
    MINIO_SECRET_KEY,
    MINIO_BUCKET,
    MINIO_SECURE,
    MINIO_REGION,
)

logger = logging.getLogger(__name__)

_MISSING_CODES = ("NoSuchKey", "NoSuchBucket", "NoSuchObject")

# region is pinned so presigning never needs a bucket-location round trip
_client = Minio(
    MINIO_ENDPOINT,
    access_key=MINIO_ACCESS_KEY,
    secret_key=MINIO_SECRET_KEY,
    secure=MINIO_SECURE,
    region=MINIO_REGION,
)

class ObjectNotFound(Exception):
    """The key does not exist (or its link has lapsed) in the bucket."""

def ensure_bucket():
    if not _client.bucket_exists(MINIO_BUCKET):
        _client.make_bucket(MINIO_BUCKET)

def put_bytes(key: str, data: bytes, content_type: str = "application/octet-stream"):
    ensure_bucket()
    _client.put_object(MINIO_BUCKET, key, io.BytesIO(data), length=len(data), content_type=content_type)

def get_bytes(key: str) -> bytes:
    try:
        resp = _client.get_object(MINIO_BUCKET, key)
    except S3Error as exc:
        if exc.code in _MISSING_CODES:
            raise ObjectNotFound(key) from exc
        raise
    try:
        return resp.read()
    finally:
        resp.close()
        resp.release_conn()

def delete_object(key: str):
    _client.remove_object(MINIO_BUCKET, key)

def presigned_url(key: str, expires_seconds: int) -> Optional[str]:
    """Time-limited GET link for ``key``; None when the object is gone."""
    try:
        _client.stat_object(MINIO_BUCKET, key)
    except S3Error as exc:
        if exc.code in _MISSING_CODES:
            logger.info("presign skipped, object missing: %s", key)
            return None
        raise
    return _client.presigned_get_object(MINIO_BUCKET, key, expires=timedelta(seconds=expires_seconds))

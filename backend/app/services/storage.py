from __future__ import annotations

import logging
import re
import time

import boto3
from botocore.client import Config

from app.core.config import settings

logger = logging.getLogger(__name__)

DOCUMENT_PREFIX = "quiz-documents"


def get_s3_client(*, endpoint_url: str | None = None):
    ep = (endpoint_url or "").strip() or None
    # For AWS S3, endpoint_url must be None.
    # For S3-compatible providers (MinIO/R2/YC), endpoint_url is required.
    return boto3.client(
        "s3",
        endpoint_url=ep or (str(getattr(settings, "s3_endpoint_url", "") or "").strip() or None),
        aws_access_key_id=settings.s3_access_key_id,
        aws_secret_access_key=settings.s3_secret_access_key,
        region_name=settings.s3_region_name,
        config=Config(
            signature_version="s3v4",
            connect_timeout=float(settings.s3_connect_timeout_seconds),
            read_timeout=float(settings.s3_read_timeout_seconds),
            retries={"max_attempts": int(settings.s3_max_attempts), "mode": "standard"},
            s3={"addressing_style": str(settings.s3_addressing_style)},
        ),
    )


def ensure_bucket_exists() -> None:
    s3 = get_s3_client()
    try:
        s3.head_bucket(Bucket=settings.s3_bucket)
    except Exception:
        # Never auto-create buckets in production.
        if (settings.app_env or "").strip().lower() in {"prod", "production"}:
            raise
        s3.create_bucket(Bucket=settings.s3_bucket)


def _safe_filename(filename: str) -> str:
    name = (filename or "").replace("\\", "/").rsplit("/", 1)[-1].strip()
    name = re.sub(r"[^A-Za-z0-9._-]+", "-", name).strip("-.")
    return name or "document.pdf"


def document_object_key(filename: str, *, now_ms: int | None = None) -> str:
    ts = int(now_ms if now_ms is not None else time.time() * 1000)
    return f"{DOCUMENT_PREFIX}/{ts}-{_safe_filename(filename)}"


def public_url(object_key: str) -> str:
    base = (settings.s3_public_endpoint_url or settings.s3_endpoint_url or "").strip().rstrip("/")
    if not base:
        return f"https://{settings.s3_bucket}.s3.{settings.s3_region_name}.amazonaws.com/{object_key}"
    return f"{base}/{settings.s3_bucket}/{object_key}"


def upload_document(*, filename: str, data: bytes, content_type: str | None = None) -> tuple[str, str]:
    """Store a source document and return (object_key, public_url)."""
    ensure_bucket_exists()
    key = document_object_key(filename)
    s3 = get_s3_client()
    s3.put_object(
        Bucket=settings.s3_bucket,
        Key=key,
        Body=data,
        ContentType=content_type or "application/pdf",
    )
    logger.info("storage: uploaded document key=%s bytes=%d", key, len(data))
    return key, public_url(key)

from __future__ import annotations

import json
import logging
from pathlib import Path
import re
import time

import boto3

from studyplan.config import Settings

logger = logging.getLogger("studyplan.storage")

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class StorageError(RuntimeError):
    """Raised when a response archive or upload URL cannot be produced."""


def _normalize_backend(value: str) -> str:
    normalized = (value or "").strip().lower()
    if normalized in {"local", "filesystem", "fs"}:
        return "local"
    if normalized in {"s3"}:
        return "s3"
    if normalized in {"", "off", "none", "disabled"}:
        return "off"
    raise StorageError(f"Unsupported ARCHIVE_BACKEND '{value}'. Use 'local', 's3' or 'off'.")


def _safe_component(value: str | None, default: str) -> str:
    cleaned = _UNSAFE_NAME_CHARS.sub("_", (value or "").strip()).strip("._")
    return cleaned or default


def _s3_key(settings: Settings, *parts: str) -> str:
    prefix = str(settings.s3_prefix or "").strip().strip("/")
    base = f"{prefix}/" if prefix else ""
    return base + "/".join(parts)


def archive_response(
    *,
    settings: Settings,
    request_id: str | None,
    tag: str | None,
    payload: dict[str, object],
) -> str | None:
    """Write a response body for later review and return where it went.

    Archiving never fails the request: errors are logged and ``None`` is returned.
    """
    try:
        backend = _normalize_backend(settings.archive_backend)
    except StorageError as exc:
        logger.warning("response_archive_failed", extra={"event": "response_archive_failed", "error": str(exc)})
        return None
    if backend == "off":
        return None

    name = f"{_safe_component(request_id, 'anon')}_{_safe_component(tag, 'subject')}_{int(time.time() * 1000)}.json"
    body = json.dumps(payload, ensure_ascii=False, indent=2)

    if backend == "local":
        try:
            folder = Path(settings.archive_root)
            folder.mkdir(parents=True, exist_ok=True)
            destination = folder / name
            destination.write_text(body, encoding="utf-8")
        except OSError as exc:
            logger.warning(
                "response_archive_failed",
                extra={"event": "response_archive_failed", "backend": backend, "error": str(exc)},
            )
            return None
        return str(destination.resolve())

    bucket = str(settings.s3_bucket or "").strip()
    key = _s3_key(settings, "responses", name)
    try:
        if not bucket:
            raise StorageError("S3 archive backend selected but S3_BUCKET is not configured.")
        client = boto3.client("s3", region_name=settings.aws_region)
        client.put_object(
            Bucket=bucket,
            Key=key,
            Body=body.encode("utf-8"),
            ContentType="application/json",
        )
    except Exception as exc:  # pragma: no cover - depends on AWS runtime integration
        logger.warning(
            "response_archive_failed",
            extra={"event": "response_archive_failed", "backend": backend, "bucket": bucket, "error": str(exc)},
        )
        return None
    return f"s3://{bucket}/{key}"


def create_upload_url(
    *,
    settings: Settings,
    file_name: str,
    content_type: str,
    client: object | None = None,
) -> dict[str, object]:
    bucket = str(settings.s3_bucket or "").strip()
    if not bucket:
        raise StorageError("S3_BUCKET is not configured for upload URLs.")

    key = _s3_key(settings, "uploads", Path(file_name).name or "upload.bin")
    s3 = client or boto3.client("s3", region_name=settings.aws_region)
    try:
        url = s3.generate_presigned_url(
            "put_object",
            Params={"Bucket": bucket, "Key": key, "ContentType": content_type},
            ExpiresIn=settings.upload_url_expiry_seconds,
        )
    except Exception as exc:
        raise StorageError(f"Failed to generate upload URL (bucket={bucket}, key={key}): {exc}") from exc

    return {
        "uploadUrl": url,
        "method": "PUT",
        "key": key,
        "expiresIn": f"{settings.upload_url_expiry_seconds // 60} minutes",
    }

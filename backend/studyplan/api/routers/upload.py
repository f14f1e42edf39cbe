from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException

from studyplan.api.contracts import SignedUrlRequest
from studyplan.config import settings
from studyplan.storage import StorageError, create_upload_url

logger = logging.getLogger("studyplan.api")

router = APIRouter(prefix="/api")


@router.post("/signed-url")
def signed_url(payload: SignedUrlRequest) -> dict[str, object]:
    try:
        return create_upload_url(
            settings=settings,
            file_name=payload.file_name,
            content_type=payload.content_type,
        )
    except StorageError as exc:
        logger.error("upload_url_failed", extra={"event": "upload_url_failed", "error": str(exc)})
        raise HTTPException(status_code=500, detail="Failed to generate signed URL") from exc

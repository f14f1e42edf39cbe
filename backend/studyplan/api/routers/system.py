from __future__ import annotations

from fastapi import APIRouter

from studyplan.config import settings


router = APIRouter()


@router.get("/")
def root() -> dict[str, str]:
    return {"service": "studyplan-backend", "status": "running"}


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok", "environment": settings.app_env}

from __future__ import annotations

import logging
from typing import Callable, Mapping

from fastapi import APIRouter, HTTPException

from studyplan.api.contracts import PlanningRequest, SummarizeRequest
from studyplan.api.services.subjects import (
    PlanningPipeline,
    SummaryPipeline,
    create_plans,
    summarize_subjects,
)
from studyplan.config import settings
from studyplan.db import PlanPersistenceError, save_plan
from studyplan.nova_runtime import NovaConfigurationError
from studyplan.reconciler import is_error_sentinel
from studyplan.storage import archive_response

logger = logging.getLogger("studyplan.api")

PlanningPipelineGetter = Callable[[], PlanningPipeline]
SummaryPipelineGetter = Callable[[], SummaryPipeline]


def _configuration_failure(exc: NovaConfigurationError) -> HTTPException:
    return HTTPException(
        status_code=503,
        detail={"message": "Model runtime is not configured.", "error": str(exc)},
    )


def persist_structured_plans(user_id: str, plans: Mapping[str, object]) -> tuple[bool, dict[str, int]]:
    """Save every successful subject plan; stops at the first failure.

    A failure is logged and reported through the returned flag only: the
    generated plans are still returned to the caller.
    """
    plan_ids: dict[str, int] = {}
    for subject, result in plans.items():
        if not isinstance(result, dict) or is_error_sentinel(result):
            continue
        try:
            plan_ids[subject] = save_plan(user_id, subject, result)
        except PlanPersistenceError as exc:
            logger.error(
                "plan_persistence_failed",
                extra={"event": "plan_persistence_failed", "subject": subject, "error": str(exc)},
            )
            return False, plan_ids
    return True, plan_ids


def build_planning_router(
    *,
    get_planning_pipeline: PlanningPipelineGetter,
    get_summary_pipeline: SummaryPipelineGetter,
) -> APIRouter:
    router = APIRouter(prefix="/api")

    @router.post("/planning")
    def planning(payload: PlanningRequest) -> dict[str, object]:
        try:
            result = create_plans(
                payload.id,
                payload.subjects,
                structured=payload.structured,
                source_path=payload.source_path,
                pipeline=get_planning_pipeline(),
            )
        except NovaConfigurationError as exc:
            raise _configuration_failure(exc) from exc

        saved_path = archive_response(
            settings=settings,
            request_id=payload.id,
            tag="structured_planning" if payload.structured else "planning",
            payload=result,
        )

        db_saved = False
        plan_ids: dict[str, int] = {}
        if payload.structured:
            db_saved, plan_ids = persist_structured_plans(payload.id, result["plans"])

        return {**result, "savedPath": saved_path, "dbSaved": db_saved, "planIds": plan_ids}

    @router.post("/summarize")
    def summarize(payload: SummarizeRequest) -> dict[str, object]:
        try:
            result = summarize_subjects(
                payload.id,
                payload.subjects,
                structured=payload.structured,
                pipeline=get_summary_pipeline(),
            )
        except NovaConfigurationError as exc:
            raise _configuration_failure(exc) from exc

        saved_path = archive_response(
            settings=settings,
            request_id=payload.id,
            tag="structured_summaries" if payload.structured else "summaries",
            payload=result,
        )
        return {**result, "savedPath": saved_path}

    return router

from contextlib import asynccontextmanager
from functools import lru_cache
import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from studyplan.api.routers import system, upload
from studyplan.api.routers.planning import build_planning_router
from studyplan.api.services.subjects import (
    PlanningPipeline,
    SummaryPipeline,
    build_planning_pipeline,
    build_summary_pipeline,
)
from studyplan.config import settings
from studyplan.db import init_db
from studyplan.generation import ModelClient
from studyplan.nova_runtime import BedrockNovaClient, validate_bedrock_model_ids
from studyplan.observability import (
    configure_logging,
    normalize_request_id,
    reset_request_id,
    sanitize_for_logging,
    set_request_id,
)

logger = logging.getLogger("studyplan.api")


@lru_cache(maxsize=1)
def _cached_nova_client() -> BedrockNovaClient:
    return BedrockNovaClient(settings=settings)


def get_nova_client() -> ModelClient:
    return _cached_nova_client()


def _planning_pipeline() -> PlanningPipeline:
    # Resolved per request so get_nova_client can be replaced.
    return build_planning_pipeline(settings, get_nova_client())


def _summary_pipeline() -> SummaryPipeline:
    return build_summary_pipeline(settings, get_nova_client())


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging(settings.log_level, settings.log_format)
    logger.info(
        "application_startup",
        extra={
            "event": "application_startup",
            "environment": settings.app_env,
            "model_id": settings.bedrock_model_id,
            "lite_model_id": settings.bedrock_lite_model_id,
            "archive_backend": settings.archive_backend,
        },
    )
    init_db()
    validate_bedrock_model_ids(settings)
    yield
    logger.info("application_shutdown", extra={"event": "application_shutdown"})


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


def _install_request_context(app: FastAPI) -> None:
    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        request_id = normalize_request_id(request.headers.get(settings.request_id_header))
        request.state.request_id = request_id
        token = set_request_id(request_id)
        fields = {"request_id": request_id, "method": request.method, "path": request.url.path}
        started = time.perf_counter()
        logger.info(
            "request_started",
            extra={"event": "request_started", **fields, "query": sanitize_for_logging(dict(request.query_params))},
        )
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "request_failed",
                extra={"event": "request_failed", **fields, "duration_ms": _elapsed_ms(started)},
            )
            raise
        finally:
            reset_request_id(token)

        response.headers[settings.request_id_header] = request_id
        logger.info(
            "request_completed",
            extra={
                "event": "request_completed",
                **fields,
                "status_code": response.status_code,
                "duration_ms": _elapsed_ms(started),
            },
        )
        return response


def create_app() -> FastAPI:
    cors_origins = settings.cors_origins_list
    if settings.cors_allow_credentials and "*" in cors_origins:
        raise RuntimeError("Invalid CORS_ORIGINS: wildcard '*' is not allowed when credentials are enabled.")

    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", settings.request_id_header],
    )
    _install_request_context(app)

    app.include_router(system.router)
    app.include_router(upload.router)
    app.include_router(
        build_planning_router(
            get_planning_pipeline=_planning_pipeline,
            get_summary_pipeline=_summary_pipeline,
        )
    )
    return app


app = create_app()

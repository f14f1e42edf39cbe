from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
from typing import Sequence

from studyplan.config import Settings
from studyplan.corpus import CorpusCollector, Document, build_planning_collector, build_summary_collector
from studyplan.generation import ModelClient, StructuredGenerator, build_planning_generator, build_summary_generator
from studyplan.nova_runtime import NovaConfigurationError, NovaRuntimeError
from studyplan.reconciler import NO_FILES_MESSAGE, MultiFileReconciler, no_files_sentinel
from studyplan.schemas import PLAN_SCHEMA, SUMMARY_SCHEMA

logger = logging.getLogger("studyplan.api")


@dataclass(frozen=True)
class PlanningPipeline:
    collector: CorpusCollector
    generator: StructuredGenerator
    reconciler: MultiFileReconciler
    content_root: Path


@dataclass(frozen=True)
class SummaryPipeline:
    collector: CorpusCollector
    generator: StructuredGenerator
    content_root: Path


def build_planning_pipeline(settings: Settings, client: ModelClient) -> PlanningPipeline:
    generator = build_planning_generator(settings, client)
    return PlanningPipeline(
        collector=build_planning_collector(settings),
        generator=generator,
        reconciler=MultiFileReconciler(
            generator,
            schema=PLAN_SCHEMA,
            max_workers=settings.reconcile_max_workers,
        ),
        content_root=Path(settings.content_root),
    )


def build_summary_pipeline(settings: Settings, client: ModelClient) -> SummaryPipeline:
    return SummaryPipeline(
        collector=build_summary_collector(settings),
        generator=build_summary_generator(settings, client),
        content_root=Path(settings.content_root),
    )


def resolve_subject_root(content_root: Path, subject: str) -> Path | None:
    root = content_root.resolve()
    candidate = (root / subject).resolve()
    if candidate != root and root not in candidate.parents:
        return None
    return candidate


def _collect(collector: CorpusCollector, content_root: Path, subject: str, source_path: str | None) -> list[Document]:
    if source_path:
        return collector.collect(source_path)
    subject_root = resolve_subject_root(content_root, subject)
    if subject_root is None:
        logger.warning("subject_path_rejected", extra={"event": "subject_path_rejected", "subject": subject})
        return []
    return collector.collect(subject_root)


def _subject_failure(structured: bool, exc: Exception) -> dict[str, str] | str:
    message = str(exc) or "Failed to generate."
    return {"error": message} if structured else f"Error: {message}"


def create_plans(
    request_id: str,
    subjects: Sequence[str],
    *,
    structured: bool,
    source_path: str | None,
    pipeline: PlanningPipeline,
) -> dict[str, object]:
    """Plan every subject independently; one subject failing never aborts the others.

    With ``source_path`` only the first subject is planned, against that path.
    Configuration errors are not per-subject and propagate to the caller.
    """
    plans: dict[str, object] = {}
    if source_path:
        target_subjects = [subjects[0] if subjects else Path(source_path).name]
    else:
        target_subjects = list(subjects)

    for subject in target_subjects:
        documents = _collect(pipeline.collector, pipeline.content_root, subject, source_path)
        if not documents:
            plans[subject] = no_files_sentinel() if structured else NO_FILES_MESSAGE
            continue

        try:
            if structured:
                plans[subject] = pipeline.reconciler.reconcile(request_id, subject, documents)
            else:
                plans[subject] = pipeline.generator.generate_text(request_id, subject, documents)
        except NovaConfigurationError:
            raise
        except NovaRuntimeError as exc:
            logger.error(
                "subject_planning_failed",
                extra={"event": "subject_planning_failed", "subject": subject, "error": str(exc)},
            )
            plans[subject] = _subject_failure(structured, exc)

    return {"id": request_id, "plans": plans}


def summarize_subjects(
    request_id: str,
    subjects: Sequence[str],
    *,
    structured: bool,
    pipeline: SummaryPipeline,
) -> dict[str, object]:
    summaries: dict[str, object] = {}
    for subject in subjects:
        documents = _collect(pipeline.collector, pipeline.content_root, subject, None)
        if not documents:
            summaries[subject] = no_files_sentinel() if structured else NO_FILES_MESSAGE
            continue

        try:
            if structured:
                summaries[subject] = pipeline.generator.generate(request_id, subject, documents, SUMMARY_SCHEMA)
            else:
                summaries[subject] = pipeline.generator.generate_text(request_id, subject, documents)
        except NovaConfigurationError:
            raise
        except NovaRuntimeError as exc:
            logger.error(
                "subject_summary_failed",
                extra={"event": "subject_summary_failed", "subject": subject, "error": str(exc)},
            )
            summaries[subject] = _subject_failure(structured, exc)

    return {"id": request_id, "summaries": summaries}

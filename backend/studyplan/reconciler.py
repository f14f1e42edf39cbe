from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
import logging
from typing import Iterable, Sequence

from studyplan.corpus import Document
from studyplan.generation import StructuredGenerator
from studyplan.nova_runtime import NovaConfigurationError, NovaRuntimeError
from studyplan.plans import DEFAULT_DIFFICULTY
from studyplan.schemas import PLAN_SCHEMA, StructuredSchema

logger = logging.getLogger("studyplan.reconciler")

NO_FILES_MESSAGE = "No files found for this subject."


def no_files_sentinel() -> dict[str, str]:
    return {"error": NO_FILES_MESSAGE}


def is_error_sentinel(result: object) -> bool:
    return isinstance(result, dict) and "error" in result and "plan" not in result


def dedupe_preserving_order(items: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        result.append(item)
    return result


def _attributed_plan(plan: object, reference: str) -> list[dict[str, object]]:
    groups: list[dict[str, object]] = []
    if not isinstance(plan, list):
        return groups
    for group in plan:
        if not isinstance(group, dict):
            continue
        small_todos = group.get("small_todos")
        groups.append(
            {
                **group,
                "small_todos": [
                    {**todo, "reference": reference}
                    for todo in (small_todos if isinstance(small_todos, list) else [])
                    if isinstance(todo, dict)
                ],
            }
        )
    return groups


def merge_file_results(results: Sequence[tuple[Document, dict[str, object]]]) -> dict[str, object]:
    """Fold per-file structured results into one subject-level result, in the given order.

    Every small todo's ``reference`` is overwritten with the path of the file
    that produced it. The input dicts are left untouched.
    """
    summaries: list[str] = []
    key_concepts: list[str] = []
    code_examples: list[str] = []
    difficulty: str | None = None
    plan: list[dict[str, object]] = []

    for document, result in results:
        summary = result.get("summary")
        if isinstance(summary, str) and summary:
            summaries.append(f"[{document.path}] {summary}")
        concepts = result.get("key_concepts")
        if isinstance(concepts, list):
            key_concepts.extend(str(item) for item in concepts)
        examples = result.get("code_examples")
        if isinstance(examples, list):
            code_examples.extend(str(item) for item in examples)
        if difficulty is None and result.get("difficulty"):
            difficulty = str(result["difficulty"])
        plan.extend(_attributed_plan(result.get("plan"), document.path))

    return {
        "summary": "\n\n".join(summaries),
        "key_concepts": dedupe_preserving_order(key_concepts),
        "code_examples": dedupe_preserving_order(code_examples),
        "difficulty": difficulty or DEFAULT_DIFFICULTY,
        "plan": plan,
    }


class MultiFileReconciler:
    def __init__(
        self,
        generator: StructuredGenerator,
        *,
        schema: StructuredSchema = PLAN_SCHEMA,
        max_workers: int = 1,
    ) -> None:
        self._generator = generator
        self._schema = schema
        self._max_workers = max(1, max_workers)

    def reconcile(self, request_id: str, subject: str, documents: Sequence[Document]) -> dict[str, object]:
        if not documents:
            return no_files_sentinel()

        def run(document: Document) -> dict[str, object] | NovaRuntimeError:
            try:
                return self._generator.generate(request_id, subject, [document], self._schema)
            except NovaConfigurationError:
                raise
            except NovaRuntimeError as exc:
                logger.warning(
                    "reconcile_file_failed",
                    extra={
                        "event": "reconcile_file_failed",
                        "subject": subject,
                        "path": document.path,
                        "error": str(exc),
                    },
                )
                return exc

        if self._max_workers == 1 or len(documents) == 1:
            outcomes = [run(document) for document in documents]
        else:
            with ThreadPoolExecutor(max_workers=min(self._max_workers, len(documents))) as executor:
                # map() yields in submission order, so each outcome stays paired with its document.
                outcomes = list(executor.map(run, documents))

        succeeded: list[tuple[Document, dict[str, object]]] = []
        last_error: NovaRuntimeError | None = None
        for document, outcome in zip(documents, outcomes):
            if isinstance(outcome, NovaRuntimeError):
                last_error = outcome
                continue
            succeeded.append((document, outcome))

        if not succeeded and last_error is not None:
            raise last_error

        merged = merge_file_results(succeeded)
        logger.info(
            "reconcile_completed",
            extra={
                "event": "reconcile_completed",
                "subject": subject,
                "document_count": len(documents),
                "failed_documents": len(documents) - len(succeeded),
                "plan_groups": len(merged["plan"]),
                "key_concepts": len(merged["key_concepts"]),
            },
        )
        return merged

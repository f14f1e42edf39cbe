from __future__ import annotations

import re
from typing import Literal

from pydantic import BaseModel, Field

from studyplan.schemas import DIFFICULTY_LEVELS, SchemaVariant

Difficulty = Literal["beginner", "intermediate", "advanced"]

DEFAULT_DIFFICULTY = "intermediate"
DEFAULT_DURATION_MINUTES = 30
FIXED_PLAN_LENGTH = 3
FILLER_STEP = "추가 복습 및 연습"
FALLBACK_GROUP_TITLE = "학습 계획 (자동 추출됨)"
MAX_FALLBACK_CONCEPTS = 5
MAX_CONCEPT_CHARS = 200
MAX_FALLBACK_PROSE_STEPS = 3
MIN_PROSE_STEP_CHARS = 20

_LIST_ITEM_PATTERN = re.compile(r"^(?:[-–•*]|\d+[.)])\s*(.*)$")
_PARAGRAPH_BREAK = re.compile(r"\r?\n[ \t]*\r?\n")
_LEADING_INTEGER = re.compile(r"^\s*(\d+)")


class SmallTodo(BaseModel):
    todo: str
    duration_minutes: int = Field(default=DEFAULT_DURATION_MINUTES, ge=0)
    percentage: int = Field(default=0, ge=0, le=100)
    reference: str | None = None


class BigTodo(BaseModel):
    big_todo: str
    small_todos: list[SmallTodo] = Field(default_factory=list)


class StructuredPlan(BaseModel):
    summary: str = ""
    key_concepts: list[str] = Field(default_factory=list)
    code_examples: list[str] = Field(default_factory=list)
    difficulty: Difficulty = DEFAULT_DIFFICULTY
    plan: list[BigTodo] = Field(default_factory=list)


def _text(value: object) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _string_list(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    items: list[str] = []
    for item in value:
        text = _text(item)
        if text:
            items.append(text)
    return items


def _coerce_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        match = _LEADING_INTEGER.match(value)
        if match:
            return int(match.group(1))
    return None


def _duration(value: object) -> int:
    minutes = _coerce_int(value)
    if minutes is None or minutes < 0:
        return DEFAULT_DURATION_MINUTES
    return minutes


def _percentage(value: object) -> int:
    percent = _coerce_int(value)
    if percent is None:
        return 0
    return max(0, min(100, percent))


def normalize_difficulty(value: object) -> str:
    candidate = _text(value).lower()
    return candidate if candidate in DIFFICULTY_LEVELS else DEFAULT_DIFFICULTY


def normalize_small_todo(item: object) -> dict[str, object] | None:
    if isinstance(item, str):
        return {"todo": item.strip(), "duration_minutes": DEFAULT_DURATION_MINUTES, "percentage": 0, "reference": None}
    if not isinstance(item, dict):
        return None
    reference = _text(item.get("reference")) or None
    return {
        "todo": _text(item.get("todo")),
        "duration_minutes": _duration(item.get("duration_minutes")),
        "percentage": _percentage(item.get("percentage")),
        "reference": reference,
    }


def normalize_big_todo(item: object) -> dict[str, object] | None:
    if isinstance(item, str):
        return {"big_todo": item.strip(), "small_todos": []}
    if not isinstance(item, dict):
        return None
    small_todos: list[dict[str, object]] = []
    raw_small_todos = item.get("small_todos")
    if isinstance(raw_small_todos, list):
        for raw in raw_small_todos:
            normalized = normalize_small_todo(raw)
            if normalized is not None:
                small_todos.append(normalized)
    return {"big_todo": _text(item.get("big_todo")), "small_todos": small_todos}


def normalize_plan_step(item: object) -> dict[str, object]:
    if isinstance(item, dict):
        return {
            "step": _text(item.get("step")),
            "duration_minutes": _duration(item.get("duration_minutes")),
            "resources": _string_list(item.get("resources")),
        }
    return {"step": _text(item), "duration_minutes": DEFAULT_DURATION_MINUTES, "resources": []}


def filler_step() -> dict[str, object]:
    return {"step": FILLER_STEP, "duration_minutes": DEFAULT_DURATION_MINUTES, "resources": []}


def fit_fixed_length_plan(steps: list[dict[str, object]]) -> list[dict[str, object]]:
    fitted = list(steps[:FIXED_PLAN_LENGTH])
    while len(fitted) < FIXED_PLAN_LENGTH:
        fitted.append(filler_step())
    return fitted


def normalize_structured_payload(payload: dict[str, object], variant: SchemaVariant) -> dict[str, object]:
    """Coerce a schema-valid payload into the canonical result shape.

    Applying this to its own output returns an equal dict.
    """
    raw_plan = payload.get("plan")
    if not isinstance(raw_plan, list):
        raw_plan = []

    if variant == "steps":
        plan: list[dict[str, object]] = fit_fixed_length_plan([normalize_plan_step(item) for item in raw_plan])
    else:
        plan = [group for group in (normalize_big_todo(item) for item in raw_plan) if group is not None]

    return {
        "summary": _text(payload.get("summary")),
        "key_concepts": _string_list(payload.get("key_concepts")),
        "code_examples": _string_list(payload.get("code_examples")),
        "difficulty": normalize_difficulty(payload.get("difficulty")),
        "plan": plan,
    }


def _content_lines(text: str) -> list[str]:
    return [line.strip() for line in text.splitlines() if line.strip()]


def extract_key_concepts(text: str) -> list[str]:
    concepts: list[str] = []
    for line in _content_lines(text):
        match = _LIST_ITEM_PATTERN.match(line)
        if match:
            concept = match.group(1).strip()
            if concept and len(concept) < MAX_CONCEPT_CHARS:
                concepts.append(concept)
        if len(concepts) >= MAX_FALLBACK_CONCEPTS:
            break
    return concepts


def extract_plan_steps(text: str) -> list[str]:
    lines = _content_lines(text)
    steps: list[str] = []
    for line in lines:
        match = _LIST_ITEM_PATTERN.match(line)
        if match and match.group(1).strip():
            steps.append(match.group(1).strip())
    if steps:
        return steps

    # No list markers at all: take the first few substantial prose lines instead.
    return [line for line in lines if len(line) > MIN_PROSE_STEP_CHARS][:MAX_FALLBACK_PROSE_STEPS]


def first_paragraph(text: str) -> str:
    stripped = text.strip()
    if not stripped:
        return ""
    return _PARAGRAPH_BREAK.split(stripped, maxsplit=1)[0].strip()


def _even_percentages(count: int) -> list[int]:
    if count <= 0:
        return []
    base, remainder = divmod(100, count)
    return [base + 1 if index < remainder else base for index in range(count)]


def build_fallback_payload(text: str, variant: SchemaVariant) -> dict[str, object]:
    steps = extract_plan_steps(text)
    if variant == "steps":
        plan: list[dict[str, object]] = fit_fixed_length_plan(
            [normalize_plan_step(step) for step in steps[:FIXED_PLAN_LENGTH]]
        )
    else:
        small_todos = [
            {
                "todo": step,
                "duration_minutes": DEFAULT_DURATION_MINUTES,
                "percentage": percentage,
                "reference": None,
            }
            for step, percentage in zip(steps, _even_percentages(len(steps)))
        ]
        plan = [{"big_todo": FALLBACK_GROUP_TITLE, "small_todos": small_todos}]

    return {
        "summary": first_paragraph(text),
        "key_concepts": extract_key_concepts(text),
        "code_examples": [],
        "difficulty": DEFAULT_DIFFICULTY,
        "plan": plan,
    }

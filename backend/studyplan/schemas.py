"""Structured output schemas, declared as data, and the validator that checks them.

Each schema carries two JSON Schema documents: ``parameters`` is what the model
is asked to produce through tool use, ``validation`` is what a response must
satisfy before it is normalized. The validation document is looser
(no plan length bounds, no difficulty enum) so that normalization, not a
retry, fixes those drifts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Mapping

from jsonschema import Draft202012Validator

SchemaVariant = Literal["steps", "todos"]

DIFFICULTY_LEVELS = ("beginner", "intermediate", "advanced")


@dataclass(frozen=True)
class StructuredSchema:
    name: str
    description: str
    variant: SchemaVariant
    parameters: Mapping[str, Any]
    validation: Mapping[str, Any]
    instruction: str

    def repair_instruction(self) -> str:
        return (
            "Your previous response did not match the schema. "
            f"Return ONLY the JSON arguments for {self.name} that validate against the schema."
        )


@dataclass(frozen=True)
class ValidationReport:
    valid: bool
    errors: list[str] = field(default_factory=list)


class SchemaValidator:
    def __init__(self, max_errors: int = 20) -> None:
        self._max_errors = max_errors
        self._compiled: dict[str, Draft202012Validator] = {}

    def validate(self, schema: StructuredSchema, payload: object) -> ValidationReport:
        validator = self._compiled.get(schema.name)
        if validator is None:
            Draft202012Validator.check_schema(schema.validation)
            validator = Draft202012Validator(schema.validation)
            self._compiled[schema.name] = validator

        errors: list[str] = []
        for error in sorted(validator.iter_errors(payload), key=lambda item: [str(part) for part in item.path]):
            location = "/".join(str(part) for part in error.path) or "<root>"
            errors.append(f"{location}: {error.message}")
            if len(errors) >= self._max_errors:
                break
        return ValidationReport(valid=not errors, errors=errors)


_STRING_LIST = {"type": "array", "items": {"type": "string"}}

_SMALL_TODO_PARAMETERS = {
    "type": "object",
    "properties": {
        "todo": {"type": "string"},
        "duration_minutes": {"type": "integer"},
        "percentage": {
            "type": "integer",
            "description": "Estimated percentage of the big todo that this small todo represents (0-100)",
        },
        "reference": {
            "type": "string",
            "description": "Reference to the specific lecture note or file name relevant to this todo",
        },
    },
    "required": ["todo", "percentage"],
}

_SMALL_TODO_VALIDATION = {
    "type": "object",
    "properties": {
        "todo": {"type": "string"},
        "duration_minutes": {"type": "integer"},
        "percentage": {"type": "integer"},
        "reference": {"type": ["string", "null"]},
    },
    "required": ["todo", "percentage"],
}


def _plan_schema(small_todo: Mapping[str, Any], *, with_descriptions: bool) -> dict[str, Any]:
    big_todo: dict[str, Any] = {"type": "string"}
    if with_descriptions:
        big_todo["description"] = "Main goal or phase"
    return {
        "type": "array",
        "items": {
            "type": "object",
            "properties": {
                "big_todo": big_todo,
                "small_todos": {"type": "array", "items": small_todo},
            },
            "required": ["big_todo", "small_todos"],
        },
    }


def _step_schema(*, fixed_length: bool) -> dict[str, Any]:
    schema: dict[str, Any] = {
        "type": "array",
        "items": {
            "type": "object",
            "properties": {
                "step": {"type": "string"},
                "duration_minutes": {"type": "integer"},
                "resources": _STRING_LIST,
            },
            "required": ["step"],
        },
    }
    if fixed_length:
        schema["minItems"] = 3
        schema["maxItems"] = 3
    return schema


def _envelope(plan: Mapping[str, Any], *, difficulty_enum: bool) -> dict[str, Any]:
    difficulty: dict[str, Any] = {"type": "string"}
    if difficulty_enum:
        difficulty["enum"] = list(DIFFICULTY_LEVELS)
    return {
        "type": "object",
        "properties": {
            "summary": {"type": "string"},
            "key_concepts": _STRING_LIST,
            "code_examples": _STRING_LIST,
            "plan": plan,
            "difficulty": difficulty,
        },
        "required": ["summary", "key_concepts", "plan", "difficulty"],
    }


PLAN_SCHEMA = StructuredSchema(
    name="create_structured_plan",
    description=(
        "Return structured planning fields: summary, key_concepts (array), code_examples (array), "
        "plan (hierarchical array), difficulty"
    ),
    variant="todos",
    parameters=_envelope(_plan_schema(_SMALL_TODO_PARAMETERS, with_descriptions=True), difficulty_enum=True),
    validation=_envelope(_plan_schema(_SMALL_TODO_VALIDATION, with_descriptions=False), difficulty_enum=False),
    instruction=(
        "Please produce structured fields and invoke the function create_structured_plan with arguments "
        "matching the schema. The plan should be hierarchical (Big Todo -> Small Todos) and flexible in "
        'length. For each small todo, please specify the "reference" field with the filename '
        '(e.g., "lecture1.pdf") that is most relevant to that task.'
    ),
)

SUMMARY_SCHEMA = StructuredSchema(
    name="create_structured_summary",
    description=(
        "Return structured summary fields: summary, key_concepts (array), code_examples (array), "
        "plan (array of 3 steps), difficulty"
    ),
    variant="steps",
    parameters=_envelope(_step_schema(fixed_length=True), difficulty_enum=True),
    validation=_envelope(_step_schema(fixed_length=False), difficulty_enum=False),
    instruction=(
        "Please produce structured fields and invoke the function create_structured_summary with "
        "arguments matching the schema."
    ),
)

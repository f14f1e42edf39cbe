from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import json
import logging
from typing import Any, Callable, Literal, Protocol, Sequence

from studyplan.config import Settings
from studyplan.corpus import Document
from studyplan.nova_runtime import (
    ChatMessage,
    NovaConfigurationError,
    NovaRuntimeError,
    StructuredCompletion,
    parse_json_object,
)
from studyplan.observability import MAX_STRING_LENGTH_ATTR
from studyplan.plans import build_fallback_payload, normalize_structured_payload
from studyplan.prompts import PLAN_TEMPLATE, SUMMARY_TEMPLATE, Prompt, PromptTemplate, build_prompt
from studyplan.schemas import SchemaValidator, StructuredSchema, ValidationReport

logger = logging.getLogger("studyplan.generation")

RawResponseHook = Callable[[dict[str, Any]], None]
RAW_RESPONSE_LOG_CHARS = 2000


class ModelClient(Protocol):
    def ensure_configured(self) -> None:
        ...

    def invoke_structured(
        self,
        *,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        schema: StructuredSchema,
        max_tokens: int,
    ) -> StructuredCompletion:
        ...

    def invoke_text(self, *, system_prompt: str, user_prompt: str, max_tokens: int) -> str:
        ...


class GenerationState(str, Enum):
    ATTEMPTING = "attempting"
    REPAIRING = "repairing"
    FALLING_BACK = "falling_back"


@dataclass
class GenerationOutcome:
    payload: dict[str, object]
    source: Literal["model", "fallback"]
    attempts: int
    validation_errors: list[str] = field(default_factory=list)
    transport_error: str | None = None


def log_raw_response(payload: dict[str, Any]) -> None:
    logger.debug(
        "structured_raw_response",
        extra={
            "event": "structured_raw_response",
            "payload": json.dumps(payload, ensure_ascii=False, default=str),
            MAX_STRING_LENGTH_ATTR: RAW_RESPONSE_LOG_CHARS,
        },
    )


def _ignore_raw_response(payload: dict[str, Any]) -> None:
    del payload


class StructuredGenerator:
    """Schema-targeted generation with one repair retry and a heuristic fallback.

    ``generate`` only raises for configuration problems or when the plain-text
    fallback call itself cannot reach the model. Any response the model gives
    ends in a structurally valid result.
    """

    def __init__(
        self,
        client: ModelClient,
        *,
        template: PromptTemplate,
        context_max_chars: int,
        structured_max_tokens: int,
        text_max_tokens: int,
        max_attempts: int = 2,
        validator: SchemaValidator | None = None,
        on_raw_response: RawResponseHook | None = None,
    ) -> None:
        self._client = client
        self._template = template
        self._context_max_chars = context_max_chars
        self._structured_max_tokens = structured_max_tokens
        self._text_max_tokens = text_max_tokens
        self._max_attempts = max(1, max_attempts)
        self._validator = validator or SchemaValidator()
        self._on_raw_response = on_raw_response or _ignore_raw_response

    def build_prompt(self, request_id: str, subject: str, documents: Sequence[Document]) -> Prompt:
        return build_prompt(request_id, subject, documents, self._context_max_chars, self._template)

    def generate(
        self,
        request_id: str,
        subject: str,
        documents: Sequence[Document],
        schema: StructuredSchema,
    ) -> dict[str, object]:
        return self.generate_with_diagnostics(request_id, subject, documents, schema).payload

    def generate_text(self, request_id: str, subject: str, documents: Sequence[Document]) -> str:
        self._client.ensure_configured()
        prompt = self.build_prompt(request_id, subject, documents)
        return self._client.invoke_text(
            system_prompt=prompt.system,
            user_prompt=prompt.user,
            max_tokens=self._text_max_tokens,
        )

    def generate_with_diagnostics(
        self,
        request_id: str,
        subject: str,
        documents: Sequence[Document],
        schema: StructuredSchema,
    ) -> GenerationOutcome:
        self._client.ensure_configured()
        prompt = self.build_prompt(request_id, subject, documents)
        messages: list[ChatMessage] = [ChatMessage(role="user", content=f"{prompt.user}\n\n{schema.instruction}")]

        state = GenerationState.ATTEMPTING
        attempts = 0
        validation_errors: list[str] = []
        transport_error: str | None = None
        last_output = ""

        # Each terminal branch returns its outcome directly.
        while True:
            if state is GenerationState.ATTEMPTING:
                attempts += 1
                try:
                    completion = self._client.invoke_structured(
                        system_prompt=prompt.system,
                        messages=messages,
                        schema=schema,
                        max_tokens=self._structured_max_tokens,
                    )
                except NovaConfigurationError:
                    raise
                except NovaRuntimeError as exc:
                    transport_error = str(exc)
                    logger.warning(
                        "structured_attempt_failed",
                        extra={
                            "event": "structured_attempt_failed",
                            "schema": schema.name,
                            "subject": subject,
                            "attempt": attempts,
                            "error": transport_error,
                        },
                    )
                    state = GenerationState.FALLING_BACK
                    continue

                self._on_raw_response(completion.raw)
                payload, report = self._check(schema, completion.arguments)
                if payload is not None and report.valid:
                    return GenerationOutcome(
                        payload=normalize_structured_payload(payload, schema.variant),
                        source="model",
                        attempts=attempts,
                        validation_errors=validation_errors,
                    )

                validation_errors.extend(report.errors)
                last_output = self._render_output(completion.arguments)
                logger.warning(
                    "structured_validation_failed",
                    extra={
                        "event": "structured_validation_failed",
                        "schema": schema.name,
                        "subject": subject,
                        "attempt": attempts,
                        "errors": report.errors[:5],
                    },
                )
                state = GenerationState.REPAIRING if attempts < self._max_attempts else GenerationState.FALLING_BACK

            elif state is GenerationState.REPAIRING:
                messages.append(ChatMessage(role="assistant", content=last_output))
                messages.append(ChatMessage(role="user", content=schema.repair_instruction()))
                state = GenerationState.ATTEMPTING

            elif state is GenerationState.FALLING_BACK:
                text = self._client.invoke_text(
                    system_prompt=prompt.system,
                    user_prompt=prompt.user,
                    max_tokens=self._text_max_tokens,
                )
                logger.info(
                    "structured_fallback_used",
                    extra={
                        "event": "structured_fallback_used",
                        "schema": schema.name,
                        "subject": subject,
                        "attempts": attempts,
                        "fallback_chars": len(text),
                    },
                )
                return GenerationOutcome(
                    payload=build_fallback_payload(text, schema.variant),
                    source="fallback",
                    attempts=attempts,
                    validation_errors=validation_errors,
                    transport_error=transport_error,
                )

    def _check(self, schema: StructuredSchema, arguments: object) -> tuple[dict[str, object] | None, ValidationReport]:
        if arguments is None:
            return None, ValidationReport(valid=False, errors=["<root>: model returned no structured output"])
        if isinstance(arguments, str):
            try:
                arguments = parse_json_object(arguments)
            except NovaRuntimeError as exc:
                return None, ValidationReport(valid=False, errors=[f"<root>: {exc}"])
        report = self._validator.validate(schema, arguments)
        if not isinstance(arguments, dict):
            return None, report
        return arguments, report

    @staticmethod
    def _render_output(arguments: object) -> str:
        if isinstance(arguments, str) and arguments.strip():
            return arguments
        if arguments is None:
            return "(no structured output)"
        return json.dumps(arguments, ensure_ascii=False, default=str)


def _raw_response_hook(settings: Settings) -> RawResponseHook | None:
    return log_raw_response if settings.log_raw_model_responses else None


def build_planning_generator(settings: Settings, client: ModelClient) -> StructuredGenerator:
    return StructuredGenerator(
        client,
        template=PLAN_TEMPLATE,
        context_max_chars=settings.plan_context_max_chars,
        structured_max_tokens=settings.plan_max_output_tokens,
        text_max_tokens=settings.text_max_output_tokens,
        max_attempts=settings.structured_max_attempts,
        on_raw_response=_raw_response_hook(settings),
    )


def build_summary_generator(settings: Settings, client: ModelClient) -> StructuredGenerator:
    return StructuredGenerator(
        client,
        template=SUMMARY_TEMPLATE,
        context_max_chars=settings.summary_context_max_chars,
        structured_max_tokens=settings.summary_max_output_tokens,
        text_max_tokens=settings.text_max_output_tokens,
        max_attempts=settings.structured_max_attempts,
        on_raw_response=_raw_response_hook(settings),
    )

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
import re
import threading
import time
from typing import Any, Literal, Sequence

import boto3

from studyplan.config import Settings
from studyplan.schemas import StructuredSchema

logger = logging.getLogger("studyplan.nova")


class NovaRuntimeError(RuntimeError):
    """Raised when a Bedrock invocation fails or returns unusable output."""


class NovaConfigurationError(NovaRuntimeError):
    """Raised when the runtime has no model id or no AWS credentials to call Bedrock with."""


@dataclass(frozen=True)
class ChatMessage:
    role: Literal["user", "assistant"]
    content: str


@dataclass(frozen=True)
class StructuredCompletion:
    # dict when the model answered through the tool, str when it answered in text, None when empty.
    arguments: object
    raw: dict[str, Any]


class BedrockNovaClient:
    def __init__(self, settings: Settings, client: Any | None = None) -> None:
        self._settings = settings
        self._client = client
        self._client_lock = threading.Lock()

    def ensure_configured(self) -> None:
        if not self._settings.bedrock_model_id:
            raise NovaConfigurationError("BEDROCK_MODEL_ID is not configured.")
        if not self._settings.bedrock_lite_model_id:
            raise NovaConfigurationError("BEDROCK_LITE_MODEL_ID is not configured.")
        self._get_client()

    def invoke_structured(
        self,
        *,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        schema: StructuredSchema,
        max_tokens: int,
    ) -> StructuredCompletion:
        response = self._converse(
            self._settings.bedrock_model_id,
            system=[{"text": system_prompt}],
            messages=[{"role": message.role, "content": [{"text": message.content}]} for message in messages],
            inferenceConfig={
                "temperature": self._settings.structured_temperature,
                "maxTokens": max_tokens,
            },
            toolConfig={
                "tools": [
                    {
                        "toolSpec": {
                            "name": schema.name,
                            "description": schema.description,
                            "inputSchema": {"json": dict(schema.parameters)},
                        }
                    }
                ],
                "toolChoice": {"tool": {"name": schema.name}},
            },
        )
        tool_input = self._extract_tool_input(response, schema.name)
        if tool_input is not None:
            return StructuredCompletion(arguments=tool_input, raw=response)
        text = self._extract_text(response)
        return StructuredCompletion(arguments=text or None, raw=response)

    def invoke_text(self, *, system_prompt: str, user_prompt: str, max_tokens: int) -> str:
        response = self._converse(
            self._settings.bedrock_lite_model_id,
            system=[{"text": system_prompt}],
            messages=[{"role": "user", "content": [{"text": user_prompt}]}],
            inferenceConfig={
                "temperature": self._settings.text_temperature,
                "maxTokens": max_tokens,
            },
        )
        return self._extract_text(response)

    def _get_client(self) -> Any:
        with self._client_lock:
            if self._client is None:
                self._client = self._create_bedrock_client()
            return self._client

    def _create_bedrock_client(self) -> Any:
        session = boto3.Session(region_name=self._settings.aws_region)
        if session.get_credentials() is None:
            raise NovaConfigurationError(
                f"AWS credentials are not configured for Bedrock (AWS_REGION={self._settings.aws_region})."
            )
        return session.client("bedrock-runtime")

    def _converse(self, model_id: str, **request: Any) -> dict[str, Any]:
        if not model_id:
            raise NovaConfigurationError("Bedrock model ID is not configured.")

        client = self._get_client()
        started = time.perf_counter()
        try:
            response = client.converse(modelId=model_id, **request)
        except Exception as exc:
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            error_text = str(exc)
            logger.warning(
                "nova_invoke_failed",
                extra={
                    "event": "nova_invoke_failed",
                    "model_id": model_id,
                    "duration_ms": duration_ms,
                    "error": error_text,
                },
            )
            if "model identifier is invalid" in error_text.lower():
                raise NovaConfigurationError(
                    "Bedrock invocation failed: the configured model identifier is invalid.\n"
                    f"AWS_REGION={self._settings.aws_region}\n"
                    f"BEDROCK_MODEL_ID={self._settings.bedrock_model_id}\n"
                    f"BEDROCK_LITE_MODEL_ID={self._settings.bedrock_lite_model_id}"
                ) from exc
            raise NovaRuntimeError(f"Bedrock invocation failed for model '{model_id}': {exc}") from exc

        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        usage = response.get("usage", {}) if isinstance(response, dict) else {}
        logger.info(
            "nova_invoke_completed",
            extra={
                "event": "nova_invoke_completed",
                "model_id": model_id,
                "duration_ms": duration_ms,
                "tool_use": "toolConfig" in request,
                "stop_reason": response.get("stopReason") if isinstance(response, dict) else None,
                "input_tokens": usage.get("inputTokens"),
                "output_tokens": usage.get("outputTokens"),
            },
        )
        return response

    @staticmethod
    def _content_blocks(response: Any) -> list[dict[str, Any]]:
        if not isinstance(response, dict):
            return []
        content = response.get("output", {}).get("message", {}).get("content", [])
        return [block for block in content if isinstance(block, dict)]

    @staticmethod
    def _extract_tool_input(response: Any, tool_name: str) -> object | None:
        for block in BedrockNovaClient._content_blocks(response):
            tool_use = block.get("toolUse")
            if not isinstance(tool_use, dict):
                continue
            if tool_use.get("name") not in (None, tool_name):
                continue
            return tool_use.get("input")
        return None

    @staticmethod
    def _extract_text(response: Any) -> str:
        parts: list[str] = []
        for block in BedrockNovaClient._content_blocks(response):
            text = block.get("text")
            if isinstance(text, str) and text.strip():
                parts.append(text)
        return "\n".join(parts).strip()


def parse_json_object(raw: str) -> Any:
    """Parse a JSON value out of model text: bare, fenced in ```json, or the outermost {...} span."""
    candidate = raw.strip()
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        pass

    fenced = re.search(r"```(?:json)?\s*(.*?)\s*```", candidate, flags=re.IGNORECASE | re.DOTALL)
    if fenced:
        try:
            return json.loads(fenced.group(1))
        except json.JSONDecodeError:
            pass

    start = candidate.find("{")
    end = candidate.rfind("}")
    if start != -1 and end != -1 and end > start:
        try:
            return json.loads(candidate[start : end + 1])
        except json.JSONDecodeError as exc:
            raise NovaRuntimeError("Nova response contained malformed JSON content.") from exc

    raise NovaRuntimeError("Nova response was not valid JSON.")


def validate_bedrock_model_ids(settings: Settings) -> None:
    """Optionally check on startup that the configured foundation model IDs exist in the region."""

    if not settings.bedrock_validate_model_ids_on_startup:
        return

    client = boto3.client("bedrock", region_name=settings.aws_region)
    checks = (
        ("BEDROCK_MODEL_ID", settings.bedrock_model_id),
        ("BEDROCK_LITE_MODEL_ID", settings.bedrock_lite_model_id),
    )
    for env_name, model_id in checks:
        if not model_id:
            raise NovaConfigurationError(f"{env_name} is not configured (AWS_REGION={settings.aws_region}).")
        try:
            client.get_foundation_model(modelIdentifier=model_id)
        except Exception as exc:
            raise NovaConfigurationError(
                f"Bedrock model ID validation failed for {env_name}='{model_id}' "
                f"(AWS_REGION={settings.aws_region}): {exc}"
            ) from exc

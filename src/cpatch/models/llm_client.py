"""Typed client base class shared by all completion-engine integrations."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, List, Optional, Type, TypeVar

from pydantic import ValidationError
from pydantic.type_adapter import TypeAdapter

from ..errors import CpatchError

__all__ = [
    "AttemptLogger",
    "EngineError",
    "EngineRequestError",
    "EngineResponseShapeError",
    "LLMClient",
    "LLMRequest",
]


T = TypeVar("T")

AttemptLogger = Callable[[Dict[str, Any], Optional[str], Optional[Any], Optional[Exception]], None]

_RAW_SNIPPET_LIMIT = 2_000


def _close_schema(value: Any) -> Any:
    """Recursively tighten JSON Schema objects to disallow unknown keys."""
    if isinstance(value, dict):
        value.pop("default", None)
        schema_type = value.get("type")
        if schema_type == "object":
            value["additionalProperties"] = False
            properties = value.get("properties")
            if isinstance(properties, dict):
                required = value.get("required")
                all_keys = list(properties.keys())
                if not isinstance(required, list):
                    required = all_keys
                else:
                    missing = [key for key in all_keys if key not in required]
                    if missing:
                        required.extend(missing)
                value["required"] = required
                for key, child in list(properties.items()):
                    properties[key] = _close_schema(child)
        for key, child in list(value.items()):
            if key == "properties":
                continue
            value[key] = _close_schema(child)
    elif isinstance(value, list):
        return [_close_schema(item) for item in value]
    return value


class EngineError(CpatchError):
    """Base error raised for completion-engine failures."""


class EngineRequestError(EngineError):
    """Raised when the transport fails or the engine answers with an error status."""

    def __init__(self, message: str, *, status: int | None = None, body: str | None = None) -> None:
        super().__init__(message, details={"status": status, "body": body})
        self.status = status
        self.body = body


class EngineResponseShapeError(EngineError):
    """Raised when the engine payload is missing fields or violates the schema."""

    def __init__(self, message: str, *, raw: str | None = None) -> None:
        super().__init__(message, details={"raw": raw})
        self.raw = raw

    def __str__(self) -> str:
        base = super().__str__()
        if not self.raw:
            return base
        snippet = self.raw
        if len(snippet) > _RAW_SNIPPET_LIMIT:
            snippet = f"{snippet[:_RAW_SNIPPET_LIMIT]}..."
        return f"{base}\nRaw payload:\n{snippet}"


@dataclass(slots=True)
class LLMRequest(Generic[T]):
    """Typed request payload sent to the completion engine."""

    prompt: str
    response_model: Type[T]
    model: Optional[str] = None
    system_prompt: Optional[str] = None
    context_blocks: List[str] = field(default_factory=list)
    schema_name: Optional[str] = None
    temperature: float = 0.0

    def to_payload(self, default_model: str) -> Dict[str, Any]:
        """Render a transport-ready payload for the JSON responses API."""
        def _message(role: str, text: str) -> Dict[str, Any]:
            return {
                "role": role,
                "content": [
                    {
                        "type": "input_text",
                        "text": text,
                    }
                ],
            }

        messages: list[Dict[str, Any]] = []
        if self.system_prompt:
            messages.append(_message("system", self.system_prompt))
        for block in self.context_blocks:
            if block and block.strip():
                messages.append(_message("system", block))
        messages.append(_message("user", self.prompt))

        schema_name = self.schema_name or getattr(self.response_model, "__name__", "cpatch_response")
        schema = _close_schema(TypeAdapter(self.response_model).json_schema())

        payload: Dict[str, Any] = {
            "model": self.model or default_model,
            "input": messages,
            "text": {
                "format": {
                    "type": "json_schema",
                    "name": schema_name,
                    "schema": schema,
                    "strict": True,
                }
            },
        }
        if self.temperature not in (None, 0.0):
            payload["temperature"] = self.temperature
        return payload


class LLMClient:
    """High-level helper that enforces JSON responses and schema validation.

    There is no retry loop: a failed call raises immediately and the caller
    decides whether the task is aborted.
    """

    def __init__(self, model: str) -> None:
        self._model = model

    @property
    def model(self) -> str:
        """Return the default model name configured for this client."""
        return self._model

    def invoke(self, request: LLMRequest[T]) -> T:
        """Invoke the underlying model and return a validated response."""
        result, _ = self.invoke_structured(request)
        return result

    def invoke_structured(
        self,
        request: LLMRequest[T],
        *,
        logger: Optional[AttemptLogger] = None,
    ) -> tuple[T, Any]:
        """Invoke the model and return both the structured response and decoded payload."""
        payload = request.to_payload(self._model)
        raw: Optional[str] = None
        data: Optional[Any] = None
        try:
            raw = self._raw_invoke(payload)
            data = self._parse_json(raw)
            try:
                validated = TypeAdapter(request.response_model).validate_python(data)
            except ValidationError as error:
                raise EngineResponseShapeError(
                    f"Engine response does not match {payload['text']['format']['name']}: "
                    f"{error.error_count()} validation error(s)\n{error}",
                    raw=raw,
                ) from error
        except EngineError as error:
            if logger:
                logger(payload, raw, data, error)
            raise
        if logger:
            logger(payload, raw, data, None)
        return validated, data

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        """Perform the transport call. Subclasses must implement."""
        raise NotImplementedError("Subclasses must implement _raw_invoke().")

    @staticmethod
    def _parse_json(raw_response: str) -> Any:
        """Parse JSON payloads and normalize errors."""
        text = raw_response.strip()
        if not text:
            raise EngineResponseShapeError("Engine returned an empty response.", raw=raw_response)

        text = _strip_code_fence(text)
        try:
            return json.loads(text)
        except json.JSONDecodeError as error:
            raise EngineResponseShapeError(
                f"Engine returned invalid JSON: {error.msg} (line {error.lineno})",
                raw=raw_response,
            ) from error


def _strip_code_fence(payload: str) -> str:
    """Remove Markdown-style code fences that wrap JSON payloads."""
    if not payload.startswith("```"):
        return payload
    fence_header_match = re.match(r"```(?:json)?", payload[:10], re.IGNORECASE)
    if not fence_header_match:
        return payload
    fence_end = payload.find("```", len(fence_header_match.group(0)))
    if fence_end == -1:
        return payload
    content_start = payload.find("\n", len(fence_header_match.group(0)))
    if content_start == -1:
        return payload
    return payload[content_start + 1 : fence_end].strip()

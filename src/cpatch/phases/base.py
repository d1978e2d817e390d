"""Shared helpers for invoking phases and emitting structured logs."""

from __future__ import annotations

import hashlib
import json
import logging
import re
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Sequence, TypeVar

from ..cancellation import CancellationToken
from ..models.llm_client import EngineError, LLMClient, LLMRequest
from ..prompts import JSON_RESPONSE_INSTRUCTION
from . import PhaseName

T = TypeVar("T")

LOGGER = logging.getLogger(__name__)


def invoke_phase(
    phase: PhaseName,
    prompt: str,
    response_model: type[T],
    *,
    client: LLMClient,
    instruction: str,
    context_blocks: Sequence[str] = (),
    schema_name: Optional[str] = None,
    logs_root: Optional[Path] = None,
    cancel: Optional[CancellationToken] = None,
) -> T:
    """Common helper used by the phase modules to call the engine once."""
    if cancel is not None:
        cancel.raise_if_cancelled(f"{phase.value} engine call")

    llm_request = LLMRequest(
        prompt=prompt,
        response_model=response_model,
        system_prompt=f"{instruction}\n\n{JSON_RESPONSE_INSTRUCTION}",
        context_blocks=[block for block in context_blocks if block],
        schema_name=schema_name,
    )
    attempts: list[dict[str, Any]] = []

    def _attempt_logger(
        payload: dict[str, Any],
        raw: str | None,
        parsed: Any,
        error: Exception | None,
    ) -> None:
        attempts.append(
            {
                "payload": _json_safe(payload),
                "raw": raw,
                "parsed": _json_safe(parsed),
                "error": str(error) if error else None,
            }
        )

    LOGGER.info("Calling engine for %s phase (model %s)", phase.value, client.model)
    try:
        result, _ = client.invoke_structured(llm_request, logger=_attempt_logger)
    except EngineError as error:
        if logs_root is not None:
            _write_phase_log(logs_root, phase, llm_request, attempts, error=error)
        raise

    if logs_root is not None:
        _write_phase_log(logs_root, phase, llm_request, attempts, result=result)
    return result


def _write_phase_log(
    logs_root: Path,
    phase: PhaseName,
    llm_request: LLMRequest[Any],
    attempts: list[dict[str, Any]],
    *,
    result: Any | None = None,
    error: Exception | None = None,
) -> None:
    """Persist a structured phase execution log for later debugging."""
    phases_root = logs_root / "phases"
    try:
        phases_root.mkdir(parents=True, exist_ok=True)
    except OSError as mkdir_error:
        LOGGER.debug("Cannot create phase log directory %s: %s", phases_root, mkdir_error)
        return

    entry: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "phase": phase.value,
        "context": {
            "system_prompt": llm_request.system_prompt,
            "context_blocks": list(llm_request.context_blocks),
            "user_prompt": llm_request.prompt,
        },
        "attempts": attempts,
    }
    if result is not None:
        entry["result"] = _json_safe(result)
    if error is not None:
        entry["error"] = str(error)

    timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    parts = ["phase", phase.value, _slug(llm_request.prompt[:60], fallback="task"), timestamp]
    log_path = phases_root / ("__".join(filter(None, parts)) + ".json")
    try:
        with log_path.open("w", encoding="utf-8") as handle:
            json.dump(entry, handle, indent=2, sort_keys=True, ensure_ascii=False)
    except OSError as write_error:
        LOGGER.debug("Cannot write phase log %s: %s", log_path, write_error)


def _json_safe(value: Any) -> Any:
    """Coerce complex objects into JSON-serialisable representations."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Path):
        return value.as_posix()
    if is_dataclass(value) and not isinstance(value, type):
        return _json_safe(asdict(value))
    if isinstance(value, dict):
        return {str(key): _json_safe(val) for key, val in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_json_safe(item) for item in value]
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="ignore")
    return str(value)


def _slug(value: str, *, fallback: str = "item", max_length: int = 80) -> str:
    """Normalise identifiers for use in log filenames."""
    cleaned = re.sub(r"[^A-Za-z0-9]+", "-", value).strip("-")
    slug = cleaned or fallback
    if len(slug) <= max_length:
        return slug
    digest = hashlib.sha256(slug.encode("utf-8")).hexdigest()[:8]
    prefix_length = max(max_length - len(digest) - 1, 1)
    prefix = slug[:prefix_length].rstrip("-") or slug[:prefix_length]
    return f"{prefix}-{digest}"

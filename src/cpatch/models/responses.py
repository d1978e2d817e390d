"""Production client that speaks the JSON Responses API."""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Callable, Dict, Optional

from .llm_client import EngineRequestError, EngineResponseShapeError, LLMClient

__all__ = ["DEFAULT_BASE_URL", "DEFAULT_MODEL", "ResponsesClient"]

LOGGER = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1/responses"
DEFAULT_MODEL = "gpt-4o-2024-08-06"

Transport = Callable[[Dict[str, Any]], str]


class ResponsesClient(LLMClient):
    """Thin adapter around the Responses API."""

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        transport: Optional[Transport] = None,
        timeout: float = 60.0,
    ) -> None:
        super().__init__(model=model)
        self._api_key = api_key or os.getenv("CPATCH_API_KEY") or os.getenv("OPENAI_API_KEY")
        self._base_url = base_url
        timeout_override = os.getenv("CPATCH_TIMEOUT")
        if timeout_override:
            try:
                parsed = float(timeout_override)
                if parsed > 0:
                    timeout = parsed
            except ValueError:
                LOGGER.warning("Ignoring non-numeric CPATCH_TIMEOUT=%r", timeout_override)
        self._timeout = timeout
        self._transport = transport or self._http_transport

        if transport is None and not self._api_key:
            raise ValueError("An API key is required when using the default transport.")

    @property
    def timeout(self) -> float:
        return self._timeout

    def _raw_invoke(self, payload: Dict[str, Any]) -> str:
        """Send the request over the configured transport."""
        try:
            raw_response = self._transport(payload)
        except (EngineRequestError, EngineResponseShapeError):
            raise
        except Exception as error:
            raise EngineRequestError(f"Transport rejected the request: {error}") from error

        return self._extract_model_payload(raw_response)

    def _http_transport(self, payload: Dict[str, Any]) -> str:
        """Default HTTP transport that targets the Responses API."""
        import urllib.error
        import urllib.request

        if LOGGER.isEnabledFor(logging.DEBUG):
            LOGGER.debug("Engine request payload:\n%s", json.dumps(payload, indent=2, sort_keys=True))

        data = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(
            self._base_url,
            data=data,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self._api_key}",
            },
            method="POST",
        )

        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                raw = response.read()
                status = getattr(response, "status", 200)
        except TimeoutError as error:  # pragma: no cover - network-dependent
            raise EngineRequestError(f"Engine response timed out after {self._timeout:g}s.") from error
        except urllib.error.HTTPError as error:  # pragma: no cover - network-dependent
            message = error.read().decode("utf-8", errors="ignore")
            raise EngineRequestError(
                f"HTTP {error.code}: {message}", status=error.code, body=message
            ) from error
        except urllib.error.URLError as error:  # pragma: no cover - network-dependent
            raise EngineRequestError(f"Failed to reach engine endpoint: {error.reason}") from error

        body = raw.decode("utf-8")
        if status != 200:
            raise EngineRequestError(f"HTTP {status}: {body}", status=status, body=body)
        LOGGER.debug("Engine responded with %d byte(s)", len(raw))
        return body

    def _extract_model_payload(self, raw_response: str) -> str:
        """Extract the generated text returned by the Responses API.

        ``output_text`` wins when present, then the nested
        ``output[]/content[]/text`` path.
        """
        if not raw_response or not raw_response.strip():
            raise EngineResponseShapeError("Engine response body was empty.", raw=raw_response)

        try:
            data = json.loads(raw_response)
        except json.JSONDecodeError as error:
            raise EngineResponseShapeError(
                "Engine response body is not JSON.", raw=raw_response
            ) from error

        if isinstance(data, dict):
            direct = data.get("output_text")
            if isinstance(direct, str) and direct.strip():
                return direct

            output_events = data.get("output") or data.get("outputs")
            text_payload = self._first_text_content(output_events)
            if text_payload:
                return text_payload

            response_container = data.get("response")
            if isinstance(response_container, dict):
                direct = response_container.get("output_text")
                if isinstance(direct, str) and direct.strip():
                    return direct
                text_payload = self._first_text_content(
                    response_container.get("output") or response_container.get("outputs")
                )
                if text_payload:
                    return text_payload

        raise EngineResponseShapeError(
            "Engine response contains neither output_text nor output[].content[].text.",
            raw=raw_response,
        )

    @staticmethod
    def _first_text_content(container: Any) -> Optional[str]:
        """Return the first text field found within the responses container."""
        if not container:
            return None

        if isinstance(container, dict):
            container = [container]
        if not isinstance(container, list):
            return None

        for item in container:
            if not isinstance(item, dict):
                continue

            contents = item.get("content")
            if isinstance(contents, list):
                for content_item in contents:
                    if not isinstance(content_item, dict):
                        continue
                    json_payload = content_item.get("json")
                    if isinstance(json_payload, (dict, list)):
                        return json.dumps(json_payload)

                    text = content_item.get("text")
                    if isinstance(text, str) and text.strip():
                        return text

            text_value = item.get("text")
            if isinstance(text_value, str) and text_value.strip():
                return text_value

        return None

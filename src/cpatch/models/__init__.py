"""Convenience exports for completion-engine client implementations."""

from .llm_client import (
    EngineError,
    EngineRequestError,
    EngineResponseShapeError,
    LLMClient,
    LLMRequest,
)
from .responses import ResponsesClient

__all__ = [
    "EngineError",
    "EngineRequestError",
    "EngineResponseShapeError",
    "LLMClient",
    "LLMRequest",
    "ResponsesClient",
]

"""Ask the engine for the file edits that carry out a task."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from ..cancellation import CancellationToken
from ..models.llm_client import LLMClient
from ..prompts import GENERATE_INSTRUCTION, render_context_block
from ..structured import EditBatch
from . import PhaseName
from .base import invoke_phase

SCHEMA_NAME = "code_response"


def generate_edits(
    task: str,
    context: str,
    *,
    client: LLMClient,
    logs_root: Optional[Path] = None,
    cancel: Optional[CancellationToken] = None,
) -> EditBatch:
    """Return the edit batch for ``task``; an empty ``context`` adds no context block."""
    return invoke_phase(
        PhaseName.GENERATE,
        task,
        EditBatch,
        client=client,
        instruction=GENERATE_INSTRUCTION,
        context_blocks=[render_context_block(context)],
        schema_name=SCHEMA_NAME,
        logs_root=logs_root,
        cancel=cancel,
    )


__all__ = ["SCHEMA_NAME", "generate_edits"]

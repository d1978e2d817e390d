"""Ask the engine which indexed symbols matter for a task."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from ..cancellation import CancellationToken
from ..models.llm_client import LLMClient
from ..prompts import FILTER_INSTRUCTION, render_index_block
from ..structured import FilterResponse, RelevantSymbolRef
from . import PhaseName
from .base import invoke_phase

SCHEMA_NAME = "context_filter"


def filter_nodes(
    task: str,
    index_text: str,
    *,
    client: LLMClient,
    logs_root: Optional[Path] = None,
    cancel: Optional[CancellationToken] = None,
) -> List[RelevantSymbolRef]:
    """Return the symbols the engine picked from ``index_text`` for ``task``."""
    response = invoke_phase(
        PhaseName.FILTER,
        task,
        FilterResponse,
        client=client,
        instruction=FILTER_INSTRUCTION,
        context_blocks=[render_index_block(index_text)],
        schema_name=SCHEMA_NAME,
        logs_root=logs_root,
        cancel=cancel,
    )
    return list(response.nodes)


__all__ = ["SCHEMA_NAME", "filter_nodes"]

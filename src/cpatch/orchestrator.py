"""Drive one task through index, filter, assembly, generation, and apply."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, List, Mapping, Optional

from .cancellation import CancellationToken
from .code_index.symbol_index import DEFAULT_EXCLUDED_DIRS, DEFAULT_MAX_CONTEXT_LENGTH, SymbolIndex, SymbolIndexBuilder
from .context_builder import AssembledContext, ContextAssembler
from .errors import ConfigError, TaskInFlightError
from .models.llm_client import LLMClient
from .phases.filter import filter_nodes
from .phases.generate import generate_edits
from .structured import EditBatch, RelevantSymbolRef
from .tools.patch import PatchApplier, PatchOutcome, PatchResult, UnmatchedElementPolicy
from .tools.workspace import Workspace

__all__ = ["Pipeline", "PipelineSettings", "TaskResult", "TaskRunner", "resolve_repo_root"]

LOGGER = logging.getLogger(__name__)

AppliedCallback = Callable[[PatchResult], None]


@dataclass(slots=True)
class PipelineSettings:
    """Knobs read from the ``context`` and ``patch`` config sections."""

    max_context_length: int = DEFAULT_MAX_CONTEXT_LENGTH
    excluded_dirs: frozenset[str] = DEFAULT_EXCLUDED_DIRS
    unmatched_element: UnmatchedElementPolicy = UnmatchedElementPolicy.ERROR
    logs_root: Optional[Path] = None

    @classmethod
    def from_config(cls, config: Mapping[str, Any], *, base_dir: Path | None = None) -> "PipelineSettings":
        context_cfg = config.get("context") or {}
        patch_cfg = config.get("patch") or {}
        paths_cfg = config.get("paths") or {}

        excluded = context_cfg.get("excluded_dirs")
        logs_value = paths_cfg.get("logs")
        logs_root: Optional[Path] = None
        if logs_value:
            logs_root = Path(logs_value)
            if base_dir is not None and not logs_root.is_absolute():
                logs_root = base_dir / logs_root
        max_length = context_cfg.get("max_length") or DEFAULT_MAX_CONTEXT_LENGTH
        try:
            max_context_length = int(max_length)
        except (TypeError, ValueError) as error:
            raise ConfigError(
                f"context.max_length must be an integer, got {max_length!r}",
                details={"key": "context.max_length"},
            ) from error
        policy = patch_cfg.get("unmatched_element") or "error"
        try:
            unmatched_element = UnmatchedElementPolicy(policy)
        except ValueError as error:
            choices = ", ".join(item.value for item in UnmatchedElementPolicy)
            raise ConfigError(
                f"patch.unmatched_element must be one of {choices}; got {policy!r}",
                details={"key": "patch.unmatched_element"},
            ) from error
        if excluded is not None and not isinstance(excluded, (list, tuple, set, frozenset)):
            raise ConfigError(
                "context.excluded_dirs must be a list of names",
                details={"key": "context.excluded_dirs"},
            )
        return cls(
            max_context_length=max_context_length,
            excluded_dirs=frozenset(excluded) if excluded is not None else DEFAULT_EXCLUDED_DIRS,
            unmatched_element=unmatched_element,
            logs_root=logs_root,
        )


def resolve_repo_root(config: Mapping[str, Any], base_dir: Path | None = None) -> Path:
    """Resolve ``project.repo_root`` against ``base_dir`` (the config file's directory)."""
    base = base_dir or Path.cwd()
    project_cfg = config.get("project") or {}
    repo_root = Path(project_cfg.get("repo_root") or ".")
    if not repo_root.is_absolute():
        repo_root = base / repo_root
    return repo_root


@dataclass(slots=True)
class TaskResult:
    """Everything one task produced, stage by stage."""

    task: str
    index: SymbolIndex
    refs: List[RelevantSymbolRef] = field(default_factory=list)
    context: Optional[AssembledContext] = None
    batch: Optional[EditBatch] = None
    outcomes: List[PatchOutcome] = field(default_factory=list)

    @property
    def applied(self) -> List[PatchResult]:
        return [outcome.result for outcome in self.outcomes if outcome.result is not None]

    @property
    def failures(self) -> List[PatchOutcome]:
        return [outcome for outcome in self.outcomes if outcome.error is not None]


class Pipeline:
    """Request-scoped pipeline; nothing is cached between runs."""

    def __init__(
        self,
        workspace: Workspace,
        client: LLMClient,
        settings: Optional[PipelineSettings] = None,
    ) -> None:
        self.workspace = workspace
        self.client = client
        self.settings = settings or PipelineSettings()

    def build_index(self, *, cancel: Optional[CancellationToken] = None) -> SymbolIndex:
        builder = SymbolIndexBuilder(
            excluded_dirs=self.settings.excluded_dirs,
            max_context_length=self.settings.max_context_length,
        )
        if cancel is not None:
            cancel.raise_if_cancelled("indexing")
        return builder.build(self.workspace, cancel=cancel)

    def run(
        self,
        task: str,
        *,
        cancel: Optional[CancellationToken] = None,
        on_applied: Optional[AppliedCallback] = None,
        dry_run: bool = False,
    ) -> TaskResult:
        """Run every stage in order.

        Engine errors propagate before any edit is applied. Once applying
        starts, a failed edit is recorded and the remaining edits still run.
        """
        logs_root = self.settings.logs_root
        index = self.build_index(cancel=cancel)
        result = TaskResult(task=task, index=index)
        LOGGER.info(
            "Indexed %d file(s)%s", len(index.entries), " (truncated)" if index.truncated else ""
        )

        result.refs = filter_nodes(task, index.render(), client=self.client, logs_root=logs_root, cancel=cancel)
        LOGGER.info("Engine selected %d symbol(s)", len(result.refs))

        assembler = ContextAssembler(self.workspace, max_context_length=self.settings.max_context_length)
        result.context = assembler.assemble(result.refs, cancel=cancel)

        result.batch = generate_edits(
            task, result.context.render(), client=self.client, logs_root=logs_root, cancel=cancel
        )
        LOGGER.info("Engine proposed %d edit(s)", len(result.batch.files))
        if dry_run:
            return result

        applier = PatchApplier(self.workspace, unmatched_element_policy=self.settings.unmatched_element)
        result.outcomes = applier.apply_all(result.batch.files, on_applied=on_applied, cancel=cancel)
        return result


class TaskRunner:
    """Single-flight wrapper: at most one task runs per runner."""

    def __init__(self, pipeline: Pipeline) -> None:
        self._pipeline = pipeline
        self._lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None
        self._cancel: Optional[CancellationToken] = None

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def run(
        self,
        task: str,
        *,
        on_applied: Optional[AppliedCallback] = None,
        dry_run: bool = False,
    ) -> TaskResult:
        """Execute ``task`` on the calling thread."""
        token = self._acquire()
        try:
            return self._pipeline.run(task, cancel=token, on_applied=on_applied, dry_run=dry_run)
        finally:
            self._release()

    def submit(
        self,
        task: str,
        *,
        on_applied: Optional[AppliedCallback] = None,
        dry_run: bool = False,
    ) -> Future[TaskResult]:
        """Execute ``task`` on the worker thread and return its future."""
        token = self._acquire()
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="cpatch-task")

        def _work() -> TaskResult:
            try:
                return self._pipeline.run(task, cancel=token, on_applied=on_applied, dry_run=dry_run)
            finally:
                self._release()

        try:
            return self._executor.submit(_work)
        except RuntimeError:
            self._release()
            raise

    def cancel(self) -> bool:
        """Request cancellation of the in-flight task, if any."""
        token = self._cancel
        if token is None:
            return False
        token.cancel()
        return True

    def shutdown(self, *, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None

    def _acquire(self) -> CancellationToken:
        if not self._lock.acquire(blocking=False):
            raise TaskInFlightError("A task is already running; wait for it to finish or cancel it.")
        self._cancel = CancellationToken()
        return self._cancel

    def _release(self) -> None:
        self._cancel = None
        self._lock.release()

"""CLI commands for indexing a workspace and running edit tasks."""

from __future__ import annotations

import copy
import logging
from pathlib import Path
from typing import Any, Dict

import typer
import yaml

from .code_index.symbol_index import DEFAULT_EXCLUDED_DIRS, DEFAULT_MAX_CONTEXT_LENGTH, SymbolIndexBuilder
from .errors import ConfigError, CpatchError
from .models import LLMClient, ResponsesClient
from .models.responses import DEFAULT_BASE_URL, DEFAULT_MODEL
from .orchestrator import Pipeline, PipelineSettings, TaskResult, TaskRunner, resolve_repo_root
from .tools.patch import PatchResult
from .tools.workspace import Workspace

APP_HELP = "Context Patcher: turn a task description into edits of a Python workspace."
DEFAULT_CONFIG_NAME = "cpatch.yaml"

DEFAULT_CONFIG_TEMPLATE: Dict[str, Any] = {
    "project": {
        "repo_root": ".",
    },
    "models": {
        "default": DEFAULT_MODEL,
        "base_url": DEFAULT_BASE_URL,
        "timeout": 60,
        "api_key": "",
    },
    "context": {
        "max_length": DEFAULT_MAX_CONTEXT_LENGTH,
        "excluded_dirs": sorted(DEFAULT_EXCLUDED_DIRS),
    },
    "patch": {
        "unmatched_element": "error",
    },
    "paths": {
        "logs": ".cpatch/logs",
    },
}

app = typer.Typer(help=APP_HELP)


def _copy_config_template() -> Dict[str, Any]:
    """Return a deep copy of the default configuration template."""
    return copy.deepcopy(DEFAULT_CONFIG_TEMPLATE)


def _write_config(config_path: Path, config_data: Dict[str, Any]) -> None:
    """Persist configuration data to disk with stable formatting."""
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(config_data, handle, sort_keys=False)


def load_config(config_path: Path) -> Dict[str, Any]:
    """Load YAML configuration from disk and return it as a dictionary."""
    if not config_path.exists():
        raise typer.BadParameter(f"Config file not found: {config_path}")

    try:
        with config_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        typer.echo(f"Failed to parse config: {error}")
        raise typer.Exit(code=1) from error

    if not isinstance(data, dict):
        typer.echo("Configuration must be a mapping at the top level.")
        raise typer.Exit(code=1)

    return data


def _load_settings(config: Dict[str, Any], base_dir: Path) -> PipelineSettings:
    try:
        return PipelineSettings.from_config(config, base_dir=base_dir)
    except ConfigError as error:
        typer.echo(f"Invalid configuration: {error}")
        raise typer.Exit(code=1) from error


def _build_client(config: Dict[str, Any]) -> LLMClient:
    """Construct the Responses API client from the ``models`` section."""
    models_cfg = config.get("models") or {}
    client_kwargs: Dict[str, Any] = {"model": str(models_cfg.get("default") or DEFAULT_MODEL)}
    timeout_value = models_cfg.get("timeout")
    if isinstance(timeout_value, (int, float)) and timeout_value > 0:
        client_kwargs["timeout"] = float(timeout_value)
    base_url_value = models_cfg.get("base_url")
    if isinstance(base_url_value, str) and base_url_value.strip():
        client_kwargs["base_url"] = base_url_value.strip()
    api_key_value = models_cfg.get("api_key")
    if isinstance(api_key_value, str) and api_key_value.strip():
        client_kwargs["api_key"] = api_key_value.strip()
    try:
        return ResponsesClient(**client_kwargs)
    except ValueError as error:
        if "api key" in str(error).lower():
            typer.echo("No API key given. Set models.api_key, CPATCH_API_KEY or OPENAI_API_KEY.")
        else:
            typer.echo(f"Failed to initialise engine client: {error}")
        raise typer.Exit(code=1)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _echo_applied(result: PatchResult) -> None:
    typer.echo(f"Applied {result.mode.value} to {result.path} ({result.action.value}).")


def _render_task_result(result: TaskResult, *, dry_run: bool) -> None:
    if result.index.truncated:
        typer.echo("Symbol index was truncated to fit the context cap.")
    if result.refs:
        typer.echo("Relevant symbols:")
        for ref in result.refs:
            parent = f" in {ref.parent_signature}" if ref.parent_signature else ""
            typer.echo(f"- {ref.file}: {ref.kind} {ref.name}{parent} ({ref.description})")
    else:
        typer.echo("No relevant symbols selected.")

    edits = result.batch.files if result.batch is not None else []
    if not edits:
        typer.echo("No edits proposed.")
        return
    typer.echo("Proposed edits:")
    for edit in edits:
        typer.echo(f"- {edit.target_path} [{edit.mode.value}]: {edit.user_message or edit.description}")
        if dry_run:
            typer.echo(edit.code)
    for failure in result.failures:
        typer.echo(f"Failed to apply edit to {failure.edit.target_path}: {failure.error}")


@app.command()
def init(
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path to the configuration file.",
    ),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing configuration file."),
) -> None:
    """Write the default configuration file."""
    config_path = Path(config)
    if config_path.exists() and not force:
        typer.echo(f"Config already exists at {config_path}; pass --force to overwrite.")
        raise typer.Exit(code=1)
    _write_config(config_path, _copy_config_template())
    typer.echo(f"Wrote default configuration to {config_path}.")


@app.command()
def index(
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path to the configuration file.",
    )
) -> None:
    """Build and print the symbol index of the workspace."""
    config_path = Path(config)
    config_data = load_config(config_path)
    base_dir = config_path.parent.resolve()
    settings = _load_settings(config_data, base_dir)
    builder = SymbolIndexBuilder(
        excluded_dirs=settings.excluded_dirs,
        max_context_length=settings.max_context_length,
    )
    symbol_index = builder.build(Workspace(resolve_repo_root(config_data, base_dir)))
    typer.echo(symbol_index.render(), nl=False)
    if symbol_index.truncated:
        typer.echo(f"(truncated at {symbol_index.length} characters)")


@app.command()
def run(
    task: str = typer.Argument(..., help="Natural-language description of the change."),
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path to the configuration file.",
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print proposed edits without applying them."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Run the full pipeline for TASK."""
    _configure_logging(verbose)
    config_path = Path(config)
    config_data = load_config(config_path)
    base_dir = config_path.parent.resolve()
    settings = _load_settings(config_data, base_dir)
    client = _build_client(config_data)
    pipeline = Pipeline(Workspace(resolve_repo_root(config_data, base_dir)), client, settings)
    runner = TaskRunner(pipeline)
    try:
        result = runner.run(task, on_applied=_echo_applied, dry_run=dry_run)
    except CpatchError as error:
        typer.echo(f"Task failed: {error}")
        raise typer.Exit(code=1) from error
    _render_task_result(result, dry_run=dry_run)
    if result.failures:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()

from __future__ import annotations

import json
import sys
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from cpatch.models.responses import ResponsesClient  # noqa: E402
from cpatch.tools.workspace import Workspace  # noqa: E402


def responses_body(payload: Any) -> str:
    """Wrap a structured payload the way the Responses API nests message output."""
    return json.dumps(
        {
            "id": "resp_mock",
            "object": "response",
            "status": "completed",
            "output": [
                {
                    "id": "msg_mock",
                    "type": "message",
                    "role": "assistant",
                    "content": [{"type": "output_text", "text": json.dumps(payload)}],
                }
            ],
        }
    )


class ScriptedTransport:
    """Transport returning queued responses in order and recording every payload.

    Queued items may be a structured payload, a raw body string, or an
    exception instance to raise.
    """

    def __init__(self, responses: Iterable[Any]) -> None:
        self.responses: List[Any] = list(responses)
        self.requests: List[Dict[str, Any]] = []
        self.started = threading.Event()
        self.release: threading.Event | None = None

    def __call__(self, payload: Dict[str, Any]) -> str:
        self.requests.append(payload)
        self.started.set()
        if self.release is not None:
            self.release.wait(timeout=5)
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, str):
            return item
        return responses_body(item)


@pytest.fixture()
def make_client() -> Callable[..., tuple[ResponsesClient, ScriptedTransport]]:
    def _make(*responses: Any) -> tuple[ResponsesClient, ScriptedTransport]:
        transport = ScriptedTransport(responses)
        return ResponsesClient(model="test-model", transport=transport), transport

    return _make


@pytest.fixture()
def make_workspace(tmp_path: Path) -> Callable[[Dict[str, str]], Workspace]:
    """Create a workspace under ``tmp_path`` populated with the given files."""

    def _make(files: Dict[str, str]) -> Workspace:
        root = tmp_path / "workspace"
        root.mkdir(exist_ok=True)
        for relative, content in files.items():
            target = root / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        return Workspace(root)

    return _make


@pytest.fixture()
def snapshot() -> Callable[[Path], Dict[str, str]]:
    def _snapshot(root: Path) -> Dict[str, str]:
        return {
            path.relative_to(root).as_posix(): path.read_text(encoding="utf-8")
            for path in sorted(root.rglob("*"))
            if path.is_file()
        }

    return _snapshot

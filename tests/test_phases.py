from __future__ import annotations

import json

import pytest

from cpatch.cancellation import CancellationToken
from cpatch.errors import TaskCancelledError
from cpatch.models import EngineRequestError, EngineResponseShapeError
from cpatch.phases.filter import filter_nodes
from cpatch.phases.generate import generate_edits
from cpatch.structured import UpdateMode


def _texts(payload):
    return [(message["role"], message["content"][0]["text"]) for message in payload["input"]]


def test_filter_nodes_sends_index_as_separate_system_block(make_client) -> None:
    node = {
        "file": "a.py",
        "kind": "Function",
        "name": "foo",
        "description": "Target of the task.",
        "parent_signature": "",
    }
    client, transport = make_client({"nodes": [node]})

    refs = filter_nodes("Make foo return 1", "File: a.py\n    Function: def foo\n", client=client)

    assert [ref.name for ref in refs] == ["foo"]
    messages = _texts(transport.requests[0])
    assert [role for role, _ in messages] == ["system", "system", "user"]
    assert "parent_signature" in messages[0][1]
    assert messages[1][1] == "Project index:\nFile: a.py\n    Function: def foo\n"
    assert messages[2][1] == "Make foo return 1"
    assert transport.requests[0]["text"]["format"]["name"] == "context_filter"


def test_generate_edits_omits_empty_context(make_client) -> None:
    edit = {
        "file_name": "a.py",
        "description": "Return one",
        "code": "def foo():\n    return 1\n",
        "user_message": "foo now returns 1",
        "update_mode": "update_element",
        "parent_signature": None,
        "target_file": None,
    }
    client, transport = make_client({"files": [edit]})

    batch = generate_edits("Make foo return 1", "", client=client)

    assert batch.files[0].mode is UpdateMode.UPDATE_ELEMENT
    assert batch.files[0].target_path == "a.py"
    messages = _texts(transport.requests[0])
    assert [role for role, _ in messages] == ["system", "user"]
    assert "never a diff" in messages[0][1]
    assert transport.requests[0]["text"]["format"]["name"] == "code_response"


def test_generate_edits_includes_context_block(make_client) -> None:
    client, transport = make_client({"files": []})

    batch = generate_edits("task", "File: a.py\nFunction: foo\nContent:\ndef foo(): ...\n-----\n", client=client)

    assert batch.files == []
    messages = _texts(transport.requests[0])
    assert messages[1][1].startswith("Relevant source code:\nFile: a.py")


def test_phase_logs_are_written_on_success_and_failure(make_client, tmp_path) -> None:
    client, _ = make_client({"nodes": []}, EngineRequestError("HTTP 500: boom", status=500, body="boom"))
    logs_root = tmp_path / "logs"

    filter_nodes("first task", "", client=client, logs_root=logs_root)
    with pytest.raises(EngineRequestError):
        generate_edits("second task", "", client=client, logs_root=logs_root)

    entries = [json.loads(path.read_text(encoding="utf-8")) for path in sorted((logs_root / "phases").glob("*.json"))]
    by_phase = {entry["phase"]: entry for entry in entries}
    assert set(by_phase) == {"filter", "generate"}
    assert by_phase["filter"]["result"] == {"nodes": []}
    assert by_phase["filter"]["context"]["user_prompt"] == "first task"
    assert "HTTP 500" in by_phase["generate"]["error"]
    assert by_phase["generate"]["attempts"][0]["raw"] is None


def test_phase_checks_cancellation_before_calling_engine(make_client) -> None:
    client, transport = make_client({"nodes": []})
    token = CancellationToken()
    token.cancel()

    with pytest.raises(TaskCancelledError):
        filter_nodes("task", "", client=client, cancel=token)

    assert transport.requests == []


def test_empty_engine_object_is_a_shape_error(make_client) -> None:
    client, _ = make_client({}, {})

    with pytest.raises(EngineResponseShapeError):
        filter_nodes("Make bar faster", "File: a.py\n", client=client)
    with pytest.raises(EngineResponseShapeError):
        generate_edits("Make bar faster", "", client=client)

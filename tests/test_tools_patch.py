from __future__ import annotations

import ast
import json
import logging

import pytest

from cpatch.cancellation import CancellationToken
from cpatch.errors import ResolutionMiss, TaskCancelledError, WorkspaceWriteError
from cpatch.structured import FileEdit, UpdateMode
from cpatch.tools.patch import PatchAction, PatchApplier, UnmatchedElementPolicy


def _edit(code: str, mode: UpdateMode | None, *, file_name: str = "a.py", **extra) -> FileEdit:
    return FileEdit(
        file_name=file_name,
        description="change",
        code=code,
        user_message="done",
        update_mode=mode,
        **extra,
    )


def _read(workspace, relative: str) -> str:
    return (workspace.root / relative).read_text(encoding="utf-8")


def test_update_element_replaces_declaration_in_place(make_workspace) -> None:
    workspace = make_workspace({"a.py": "def foo():\n    pass"})

    result = PatchApplier(workspace).apply(_edit("def foo():\n    return 1", UpdateMode.UPDATE_ELEMENT))

    assert _read(workspace, "a.py") == "def foo():\n    return 1"
    assert result.action is PatchAction.REPLACED_ELEMENT
    assert result.path == "a.py"


def test_update_element_leaves_other_declarations_untouched(make_workspace) -> None:
    source = "import os\n\n\ndef foo():\n    pass\n\n\ndef keep():\n    return os.sep\n"
    workspace = make_workspace({"a.py": source})

    PatchApplier(workspace).apply(_edit("def foo(value):\n    return value\n", UpdateMode.UPDATE_ELEMENT))

    assert _read(workspace, "a.py") == source.replace("def foo():\n    pass\n", "def foo(value):\n    return value\n")


def test_create_element_appends_member_to_parent(make_workspace) -> None:
    workspace = make_workspace({"a.py": "class C:\n    def m(self):\n        pass"})

    result = PatchApplier(workspace).apply(
        _edit("def n(self):\n    pass", UpdateMode.CREATE_ELEMENT, parent_signature="class C")
    )

    module = ast.parse(_read(workspace, "a.py"))
    cls = module.body[0]
    assert isinstance(cls, ast.ClassDef)
    assert [member.name for member in cls.body] == ["m", "n"]
    assert result.action is PatchAction.APPENDED_MEMBER


def test_create_element_without_parent_appends_to_file(make_workspace) -> None:
    workspace = make_workspace({"a.py": "def foo():\n    pass\n"})

    PatchApplier(workspace).apply(_edit("def bar():\n    return 2\n", UpdateMode.CREATE_ELEMENT))

    assert _read(workspace, "a.py") == "def foo():\n    pass\n\n\ndef bar():\n    return 2\n"


def test_create_element_with_missing_parent_appends_to_file(make_workspace) -> None:
    workspace = make_workspace({"a.py": "def foo():\n    pass\n"})

    result = PatchApplier(workspace).apply(
        _edit("def bar():\n    return 2\n", UpdateMode.CREATE_ELEMENT, parent_signature="class Nope")
    )

    assert _read(workspace, "a.py").endswith("\n\n\ndef bar():\n    return 2\n")
    assert result.action is PatchAction.APPENDED_TO_FILE


def test_update_file_creates_target_file(make_workspace) -> None:
    workspace = make_workspace({"a.py": "def foo():\n    pass\n"})
    code = "def moved():\n    return 'moved'\n"

    result = PatchApplier(workspace).apply(_edit(code, UpdateMode.UPDATE_FILE, target_file="pkg/new_module.py"))

    assert _read(workspace, "pkg/new_module.py") == code
    assert _read(workspace, "a.py") == "def foo():\n    pass\n"
    assert result.created
    assert result.action is PatchAction.CREATED_FILE


def test_missing_update_mode_means_update_file(make_workspace) -> None:
    workspace = make_workspace({"a.py": "def foo():\n    pass\n"})

    PatchApplier(workspace).apply(_edit("VALUE = 1\n", None))

    assert _read(workspace, "a.py") == "VALUE = 1\n"


def test_update_file_is_idempotent(make_workspace) -> None:
    workspace = make_workspace({"a.py": "old\n"})
    applier = PatchApplier(workspace)
    edit = _edit("def foo():\n    return 1\n", UpdateMode.UPDATE_FILE)

    applier.apply(edit)
    first = _read(workspace, "a.py")
    applier.apply(edit)

    assert _read(workspace, "a.py") == first == edit.code


def test_element_modes_create_missing_files(make_workspace) -> None:
    workspace = make_workspace({})

    PatchApplier(workspace).apply(_edit("def foo():\n    pass\n", UpdateMode.UPDATE_ELEMENT, file_name="fresh.py"))

    assert _read(workspace, "fresh.py") == "def foo():\n    pass\n"


def test_update_element_replaces_member_inside_parent(make_workspace) -> None:
    source = "class C:\n    def m(self):\n        pass\n\n    def k(self):\n        return 0\n"
    workspace = make_workspace({"a.py": source})

    result = PatchApplier(workspace).apply(
        _edit("def m(self):\n    return 5\n", UpdateMode.UPDATE_ELEMENT, parent_signature="class C")
    )

    cls = ast.parse(_read(workspace, "a.py")).body[0]
    assert [member.name for member in cls.body] == ["m", "k"]
    returned = cls.body[0].body[0]
    assert isinstance(returned, ast.Return) and returned.value.value == 5
    assert result.action is PatchAction.REPLACED_MEMBER


def test_update_element_appends_new_member_when_absent(make_workspace) -> None:
    workspace = make_workspace({"a.py": "class C:\n    def m(self):\n        pass\n"})

    result = PatchApplier(workspace).apply(
        _edit("def extra(self):\n    return 1\n", UpdateMode.UPDATE_ELEMENT, parent_signature="class C")
    )

    cls = ast.parse(_read(workspace, "a.py")).body[0]
    assert [member.name for member in cls.body] == ["m", "extra"]
    assert result.action is PatchAction.APPENDED_MEMBER


def test_update_element_with_missing_parent_appends_to_file(make_workspace) -> None:
    workspace = make_workspace({"a.py": "def foo():\n    pass\n"})

    PatchApplier(workspace).apply(
        _edit("def baz():\n    return 2\n", UpdateMode.UPDATE_ELEMENT, parent_signature="class Nope")
    )

    assert _read(workspace, "a.py") == "def foo():\n    pass\n\n\ndef baz():\n    return 2\n"


def test_unmatched_element_errors_by_default(make_workspace) -> None:
    workspace = make_workspace({"a.py": "def foo():\n    pass\n"})

    with pytest.raises(ResolutionMiss, match="def baz"):
        PatchApplier(workspace).apply(_edit("def baz():\n    return 2\n", UpdateMode.UPDATE_ELEMENT))

    assert _read(workspace, "a.py") == "def foo():\n    pass\n"


def test_unmatched_element_append_policy(make_workspace) -> None:
    workspace = make_workspace({"a.py": "def foo():\n    pass\n"})
    applier = PatchApplier(workspace, unmatched_element_policy="append")

    result = applier.apply(_edit("def baz():\n    return 2\n", UpdateMode.UPDATE_ELEMENT))

    assert _read(workspace, "a.py") == "def foo():\n    pass\n\n\ndef baz():\n    return 2\n"
    assert result.action is PatchAction.APPENDED_TO_FILE


def test_unmatched_element_replace_file_policy(make_workspace) -> None:
    workspace = make_workspace({"a.py": "def foo():\n    pass\n"})
    applier = PatchApplier(workspace, unmatched_element_policy=UnmatchedElementPolicy.REPLACE_FILE)

    applier.apply(_edit("def baz():\n    return 2\n", UpdateMode.UPDATE_ELEMENT))

    assert _read(workspace, "a.py") == "def baz():\n    return 2\n"


def test_invalid_policy_is_rejected(make_workspace) -> None:
    with pytest.raises(ValueError):
        PatchApplier(make_workspace({}), unmatched_element_policy="guess")


@pytest.mark.parametrize("target", ["../outside.py", "/etc/cpatch-outside.py", ""])
def test_targets_outside_workspace_are_rejected(make_workspace, target: str) -> None:
    workspace = make_workspace({"a.py": "x = 1\n"})

    with pytest.raises(WorkspaceWriteError):
        PatchApplier(workspace).apply(_edit("x = 2\n", UpdateMode.UPDATE_FILE, file_name=target))


def test_absolute_target_inside_workspace_is_relativised(make_workspace) -> None:
    workspace = make_workspace({"pkg/a.py": "x = 1\n"})

    result = PatchApplier(workspace).apply(
        _edit("x = 2\n", UpdateMode.UPDATE_FILE, file_name=str(workspace.root / "pkg" / "a.py"))
    )

    assert result.path == "pkg/a.py"
    assert _read(workspace, "pkg/a.py") == "x = 2\n"


def test_apply_all_continues_after_failed_edit(make_workspace) -> None:
    workspace = make_workspace({"a.py": "def foo():\n    pass\n"})
    applied = []
    edits = [
        _edit("x = 1\n", UpdateMode.UPDATE_FILE, file_name="../escape.py"),
        _edit("def missing():\n    pass\n", UpdateMode.UPDATE_ELEMENT),
        _edit("def foo():\n    return 3\n", UpdateMode.UPDATE_ELEMENT),
    ]

    outcomes = PatchApplier(workspace).apply_all(edits, on_applied=applied.append)

    assert [outcome.ok for outcome in outcomes] == [False, False, True]
    assert isinstance(outcomes[0].error, WorkspaceWriteError)
    assert isinstance(outcomes[1].error, ResolutionMiss)
    assert [result.path for result in applied] == ["a.py"]
    assert _read(workspace, "a.py") == "def foo():\n    return 3\n"


def test_cancelled_apply_leaves_file_untouched(make_workspace) -> None:
    workspace = make_workspace({"a.py": "def foo():\n    pass\n"})
    token = CancellationToken()
    token.cancel()

    with pytest.raises(TaskCancelledError):
        PatchApplier(workspace).apply_all([_edit("x = 1\n", UpdateMode.UPDATE_FILE)], cancel=token)

    assert _read(workspace, "a.py") == "def foo():\n    pass\n"
    assert [path.name for path in workspace.root.iterdir()] == ["a.py"]


def test_patch_events_are_logged_as_json(make_workspace, caplog) -> None:
    workspace = make_workspace({"a.py": "def foo():\n    pass\n"})
    caplog.set_level(logging.INFO, logger="cpatch.telemetry")

    PatchApplier(workspace).apply(_edit("def foo():\n    return 1\n", UpdateMode.UPDATE_ELEMENT))

    events = [json.loads(record.getMessage()) for record in caplog.records if record.name == "cpatch.telemetry"]
    assert events[0]["event"] == "edit_applied"
    assert events[0]["path"] == "a.py"
    assert events[0]["mode"] == "update_element"
    assert events[0]["action"] == "replaced_element"


def test_create_element_under_one_line_class_stays_valid_python(make_workspace) -> None:
    workspace = make_workspace({"a.py": "class C: pass\n"})

    result = PatchApplier(workspace).apply(
        _edit("def n(self):\n    pass", UpdateMode.CREATE_ELEMENT, parent_signature="class C")
    )

    cls = ast.parse(_read(workspace, "a.py")).body[0]
    assert isinstance(cls, ast.ClassDef)
    assert [type(item).__name__ for item in cls.body] == ["Pass", "FunctionDef"]
    assert result.action is PatchAction.APPENDED_MEMBER


def test_unparsable_member_under_one_line_class_goes_to_end_of_file(make_workspace, caplog) -> None:
    workspace = make_workspace({"a.py": "class C: pass\n"})
    caplog.set_level(logging.WARNING, logger="cpatch.tools.patch")

    result = PatchApplier(workspace).apply(
        _edit("def n(self:\n    pass\n", UpdateMode.CREATE_ELEMENT, parent_signature="class C")
    )

    assert _read(workspace, "a.py") == "class C: pass\n\n\ndef n(self:\n    pass\n"
    assert result.action is PatchAction.APPENDED_TO_FILE
    assert "appending to end of file" in caplog.text


def test_update_element_matches_function_behind_multiline_decorator(make_workspace) -> None:
    source = "@pytest.mark.parametrize(\n    'x',\n    [1, 2],\n)\ndef test_foo(x):\n    assert x\n"
    workspace = make_workspace({"a.py": source})
    replacement = "@pytest.mark.parametrize('x', [3])\ndef test_foo(x):\n    assert x == 3\n"

    result = PatchApplier(workspace).apply(_edit(replacement, UpdateMode.UPDATE_ELEMENT))

    assert result.action is PatchAction.REPLACED_ELEMENT
    assert _read(workspace, "a.py") == replacement


def test_update_element_keeps_byte_order_mark(make_workspace) -> None:
    workspace = make_workspace({"a.py": "\ufeffdef foo():\n    pass\n"})

    result = PatchApplier(workspace).apply(_edit("def foo():\n    return 1\n", UpdateMode.UPDATE_ELEMENT))

    assert result.action is PatchAction.REPLACED_ELEMENT
    assert _read(workspace, "a.py") == "\ufeffdef foo():\n    return 1\n"

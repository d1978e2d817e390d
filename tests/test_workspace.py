from __future__ import annotations

import os
import stat

import pytest

from cpatch.errors import WorkspaceWriteError


def test_relative_path_normalises_and_rejects_escapes(make_workspace) -> None:
    workspace = make_workspace({"pkg/a.py": "x = 1\n"})

    assert workspace.relative_path("./pkg/a.py") == "pkg/a.py"
    assert workspace.relative_path("pkg\\a.py") == "pkg/a.py"
    assert workspace.relative_path("pkg/../pkg/a.py") == "pkg/a.py"
    assert workspace.relative_path(workspace.root / "pkg" / "a.py") == "pkg/a.py"
    assert workspace.relative_path("../a.py") is None
    assert workspace.relative_path("   ") is None


def test_read_and_exists(make_workspace) -> None:
    workspace = make_workspace({"a.py": "x = 1\n"})

    assert workspace.exists("a.py")
    assert not workspace.exists("missing.py")
    assert workspace.read_text("a.py") == "x = 1\n"
    assert workspace.read_text("missing.py") is None


def test_create_file_refuses_existing(make_workspace) -> None:
    workspace = make_workspace({"a.py": "x = 1\n"})

    with pytest.raises(WorkspaceWriteError, match="already exists"):
        workspace.create_file("a.py", "x = 2\n")
    workspace.create_file("nested/dir/b.py", "y = 2\n")

    assert workspace.read_text("nested/dir/b.py") == "y = 2\n"


def test_write_text_is_atomic_and_keeps_mode(make_workspace) -> None:
    workspace = make_workspace({"run.py": "print(1)\n"})
    target = workspace.root / "run.py"
    os.chmod(target, 0o755)

    workspace.write_text("run.py", "print(2)\n")

    assert target.read_text(encoding="utf-8") == "print(2)\n"
    assert stat.S_IMODE(target.stat().st_mode) == 0o755
    assert sorted(path.name for path in workspace.root.iterdir()) == ["run.py"]


def test_list_children_is_sorted(make_workspace) -> None:
    workspace = make_workspace({"b.py": "", "a.py": "", "sub/c.py": ""})

    assert [child.name for child in workspace.list_children()] == ["a.py", "b.py", "sub"]
    assert [child.name for child in workspace.list_children("sub")] == ["c.py"]
    assert workspace.list_children("missing") == []

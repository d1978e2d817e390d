"""Prompt templates shared by the filter and generate phases."""

from __future__ import annotations

JSON_RESPONSE_INSTRUCTION = (
    "Return only JSON. Emit a single JSON object that satisfies the documented response schema. "
    "Do not include markdown fences, explanations, or trailing text."
)

FILTER_INSTRUCTION = (
    "You help decide which declarations of a Python project matter for a task. "
    "You receive the task and an index of the project listing every file with its top-level "
    "classes and functions. Return only the declarations that are relevant to the task.\n"
    "Respond with an object holding a `nodes` array. Every node has these fields:\n"
    "- `file`: the file path exactly as written in the index.\n"
    "- `kind`: `Class` or `Function`.\n"
    "- `name`: the declaration name without keyword or parameters.\n"
    "- `description`: a short reason why the declaration helps with the task.\n"
    "- `parent_signature`: when a function is enclosed by another declaration (for example a "
    "method inside a class), the enclosing signature such as `class Foo`; otherwise an empty string."
)

GENERATE_INSTRUCTION = (
    "You are a code generator working on an existing Python project. "
    "Answer the task with a batch of file edits in an object holding a `files` array. Every edit has:\n"
    "- `file_name`: workspace-relative path of the file the edit applies to.\n"
    "- `description`: what the edit changes.\n"
    "- `code`: complete code, never a diff. For `update_file` this is the whole file; for "
    "`update_element` and `create_element` it is one whole declaration including its body.\n"
    "- `user_message`: a short note for the user about this edit.\n"
    "- `update_mode`: `update_file` replaces the whole file, `update_element` replaces the declaration "
    "with the same signature, `create_element` adds a new declaration. Use null for `update_file`.\n"
    "- `parent_signature`: signature of the enclosing class (for example `class Foo`) when the "
    "declaration is a member; null otherwise.\n"
    "- `target_file`: a different path to write to, only when the edit must land in another file; "
    "null otherwise.\n"
    "Rules:\n"
    "- Do not rename existing classes, functions or files unless the task asks for it.\n"
    "- Always send whole declarations, never fragments or diffs.\n"
    "- Prefer editing the files shown in the context over creating new ones.\n"
    "- Give every class and function you write a docstring."
)


def render_index_block(index_text: str) -> str:
    """Wrap the serialized symbol index for its own system message."""
    return f"Project index:\n{index_text}"


def render_context_block(context_text: str) -> str:
    if not context_text.strip():
        return ""
    return f"Relevant source code:\n{context_text}"


__all__ = [
    "FILTER_INSTRUCTION",
    "GENERATE_INSTRUCTION",
    "JSON_RESPONSE_INSTRUCTION",
    "render_context_block",
    "render_index_block",
]

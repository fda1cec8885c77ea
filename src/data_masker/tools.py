"""Named tools for an LLM tool-call dispatcher.

Each tool carries a JSON schema for its arguments and an ``execute``
callable returning a JSON-ready dict:

    {"success": True, ...}              on success
    {"success": False, "error": "..."}  on a masking failure

Tools:
    mask_text              — mask a string
    mask_json              — mask a nested JSON value (rows, objects)
    unmask_text            — restore tokens in a string
    get_masking_stats      — mapping counts for the session
    clear_masking_session  — forget the session's mappings
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Callable

from .errors import MaskingError
from .masker import DataMasker


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    execute: Callable[..., dict[str, Any]]
    parameters: dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}})


def _object_schema(properties: dict[str, Any], required: list[str]) -> dict[str, Any]:
    return {"type": "object", "properties": properties, "required": required}


def _guarded(fn: Callable[..., dict[str, Any]]) -> Callable[..., dict[str, Any]]:
    def run(**kwargs: Any) -> dict[str, Any]:
        try:
            return {"success": True, **fn(**kwargs)}
        except MaskingError as e:
            return {"success": False, "error": str(e)}
    return run


def create_masking_tools(masker: DataMasker, session_id: str) -> list[ToolDefinition]:
    """Bind the masker's public operations to one session as named tools."""

    def mask_text(text: str) -> dict[str, Any]:
        result = masker.mask(session_id, text)
        out: dict[str, Any] = {"text": result.text, "mask_count": result.mask_count}
        if result.failed_rules:
            out["failed_rules"] = list(result.failed_rules)
        return out

    def mask_json(data: Any) -> dict[str, Any]:
        return {"data": masker.mask_value(session_id, data)}

    def unmask_text(text: str) -> dict[str, Any]:
        result = masker.unmask(session_id, text)
        return {
            "text": result.text,
            "unmask_count": result.unmask_count,
            "session_found": result.session_found,
        }

    def get_masking_stats() -> dict[str, Any]:
        return {"stats": masker.get_stats(session_id).to_dict()}

    def clear_masking_session() -> dict[str, Any]:
        masker.clear_session(session_id)
        return {"session_id": session_id}

    text_schema = _object_schema({"text": {"type": "string", "description": "Text to process"}}, ["text"])

    return [
        ToolDefinition(
            name="mask_text",
            description="Mask sensitive values in text before it is sent to a model.",
            execute=_guarded(mask_text),
            parameters=text_schema,
        ),
        ToolDefinition(
            name="mask_json",
            description="Mask every string and number in a JSON value, keeping its shape.",
            execute=_guarded(mask_json),
            parameters=_object_schema({"data": {"description": "Any JSON value"}}, ["data"]),
        ),
        ToolDefinition(
            name="unmask_text",
            description="Restore masked tokens in text to their original values where permitted.",
            execute=_guarded(unmask_text),
            parameters=text_schema,
        ),
        ToolDefinition(
            name="get_masking_stats",
            description="Count masked values in this session by category and by rule.",
            execute=_guarded(get_masking_stats),
        ),
        ToolDefinition(
            name="clear_masking_session",
            description="Forget every masked value recorded for this session.",
            execute=_guarded(clear_masking_session),
        ),
    ]


def invoke_tool(tools: list[ToolDefinition], name: str, arguments: dict[str, Any] | None = None) -> dict[str, Any]:
    """Dispatch a tool call by name.  Unknown names raise KeyError."""
    for tool in tools:
        if tool.name == name:
            return tool.execute(**(arguments or {}))
    raise KeyError(f"unknown tool: {name}")

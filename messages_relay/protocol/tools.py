"""
Tool Schema Helpers

JSON-schema clean-up shared by every backend that receives tool declarations.
"""

from __future__ import annotations

from typing import Any


def remove_uri_format(schema: Any) -> Any:
    """
    Strip `format: "uri"` constraints from a JSON schema.

    Walks nested objects and arrays; every other field is returned untouched.
    The input is never mutated.
    """
    if isinstance(schema, list):
        return [remove_uri_format(item) for item in schema]
    if not isinstance(schema, dict):
        return schema

    cleaned: dict[str, Any] = {}
    for key, value in schema.items():
        if key == "format" and value == "uri":
            continue
        cleaned[key] = remove_uri_format(value)
    return cleaned


def map_tool_choice_to_openai(tool_choice: Any) -> Any:
    """Map a Messages tool_choice to the chat-completions form."""
    if not isinstance(tool_choice, dict):
        return None
    choice_type = tool_choice.get("type")
    if choice_type in {"auto", "none"}:
        return choice_type
    if choice_type == "any":
        return "required"
    if choice_type == "tool" and tool_choice.get("name"):
        return {"type": "function", "function": {"name": tool_choice["name"]}}
    return None


def map_tool_choice_to_gemini(tool_choice: Any) -> dict[str, Any] | None:
    """Map a Messages tool_choice to a Gemini function-calling config."""
    if not isinstance(tool_choice, dict):
        return None
    choice_type = tool_choice.get("type")
    if choice_type == "none":
        return {"function_calling_config": {"mode": "NONE"}}
    if choice_type == "any":
        return {"function_calling_config": {"mode": "ANY"}}
    if choice_type == "tool" and tool_choice.get("name"):
        return {
            "function_calling_config": {
                "mode": "ANY",
                "allowed_function_names": [tool_choice["name"]],
            }
        }
    if choice_type == "auto":
        return {"function_calling_config": {"mode": "AUTO"}}
    return None

"""envelope.py — Response envelope helpers shared by every dispatch path.

Every operation answers with a list of TextContent items. Success and failure
share the shape; failures are recognised by the ERROR_MARKER prefix.
"""
from __future__ import annotations

import json
from typing import Any, Iterable, List, Optional

from mcp.types import TextContent

ERROR_MARKER = "❌"
GUIDANCE_MARKER = "💡"
BULLET = "•"

# Substrings handlers use to report soft failure through their text.
_FAILURE_SIGNATURES = (ERROR_MARKER, "Error", "does not exist", "Failed to")
_NOT_FOUND_SIGNATURE = "does not exist"
_MISSING_PROJECT_SIGNATURES = ("Project file does not exist", "Project does not exist", "Workspace does not exist")


def result_text(data: Any) -> List[TextContent]:
    """Format a result as TextContent for an MCP tool response."""
    if isinstance(data, str):
        return [TextContent(type="text", text=data)]
    return [TextContent(type="text", text=json.dumps(data, indent=2, default=str))]


def bullets(lines: Iterable[str]) -> str:
    return "\n".join(f"{BULLET} {line}" if line else "" for line in lines)


def with_guidance(message: str, guidance: Iterable[str]) -> str:
    lines = [line for line in guidance]
    if not lines:
        return message
    return f"{message}\n\n{GUIDANCE_MARKER} To fix this:\n{bullets(lines)}"


def error_text(message: str, guidance: Optional[Iterable[str]] = None) -> str:
    text = message if message.startswith(ERROR_MARKER) else f"{ERROR_MARKER} {message}"
    return with_guidance(text, guidance or [])


def error_result(message: str, guidance: Optional[Iterable[str]] = None) -> List[TextContent]:
    return result_text(error_text(message, guidance))


def first_text(content: Any) -> Optional[str]:
    """Return the text of the first item when it is textual, else None."""
    if not content:
        return None
    item = content[0]
    if getattr(item, "type", None) != "text":
        return None
    text = getattr(item, "text", None)
    return text if isinstance(text, str) else None


def signals_failure(content: Any) -> bool:
    text = first_text(content)
    if text is None:
        return False
    return any(sig in text for sig in _FAILURE_SIGNATURES)


def signals_missing_project(content: Any, project_path: Optional[str] = None) -> bool:
    """True when the text says the project itself is gone, not some other file."""
    text = first_text(content)
    if not text or _NOT_FOUND_SIGNATURE not in text:
        return False
    if project_path and project_path in text:
        return True
    return any(sig in text for sig in _MISSING_PROJECT_SIGNATURES)

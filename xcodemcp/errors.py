"""errors.py — Error taxonomy and the failure-text classifier."""
from __future__ import annotations

from typing import Iterable, List, Optional, Sequence, Tuple

from .config import HEALTH_CHECK_TOOL
from .envelope import GUIDANCE_MARKER, bullets, error_text, with_guidance


class XcodeMCPError(Exception):
    """Base class for failures the Dispatcher resolves before a handler runs."""


class ParameterError(XcodeMCPError):
    def __init__(self, field: str, examples: Sequence[str] = ()):
        super().__init__(f"Missing required parameter: {field}")
        self.field = field
        self.examples = tuple(examples)

    def render(self) -> str:
        return with_guidance(error_text(str(self)), self.examples)


class UnknownOperationError(XcodeMCPError):
    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}")
        self.name = name

    def render(self) -> str:
        return error_text(
            f"Method not found: {self.name}",
            ["Use list_tools to see the available operations"],
        )


class AdmissionBlocked(XcodeMCPError):
    def __init__(self, operation: str, reason: str, instructions: Iterable[str] = ()):
        super().__init__(reason)
        self.operation = operation
        self.reason = reason
        self.instructions = tuple(instructions)

    def render(self) -> str:
        text = error_text(f"Cannot execute {self.operation}: {self.reason}")
        if self.instructions:
            text += "\n\nRecovery instructions:\n" + bullets(self.instructions)
        return text


class InvalidPathError(XcodeMCPError):
    """A path argument failed validation; `missing` is set when it does not exist."""

    def __init__(self, message: str, guidance: Sequence[str] = (), missing: bool = False):
        super().__init__(message)
        self.guidance = tuple(guidance)
        self.missing = missing

    def render(self) -> str:
        return with_guidance(error_text(str(self)), self.guidance)


class HandlerFailure(XcodeMCPError):
    """Wraps an exception raised by a handler with the operation name."""

    def __init__(self, operation: str, error: BaseException):
        super().__init__(str(error) or error.__class__.__name__)
        self.operation = operation
        self.error = error

    def render(self) -> str:
        return (
            f"{error_text(f'{self.operation} failed: {self}')}\n\n"
            f"{GUIDANCE_MARKER} If this persists, try running '{HEALTH_CHECK_TOOL}' to diagnose potential configuration issues."
        )


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------

_TIMEOUT_WORDS = (" timeout", "timed out", "timeout after")
# Messages that mention a timeout but are transport noise or test/build output.
_TIMEOUT_EXCLUSIONS = (
    "Body Timeout Error",
    "Transport error",
    "SSE error",
    "terminated",
    "'timeout:'",
    "timeout:' in call",
    "argument label",
    "TEST BUILD FAILED",
)

# (needle, headline, guidance) matched before any other rule.
_COMMON_ERRORS: Tuple[Tuple[str, str, Tuple[str, ...]], ...] = (
    (
        "Application isn't running",
        "Xcode is not running",
        (
            "Launch Xcode application",
            "Make sure Xcode is not stuck on a license agreement",
            "Try restarting Xcode if it's already open",
            "Check Activity Monitor for any hanging Xcode processes",
        ),
    ),
    (
        "No active workspace",
        "No active workspace found in Xcode",
        (
            "Open a project in Xcode first",
            "Make sure the project has finished loading",
            "Try closing and reopening the project if it's already open",
            "Check that the project file is not corrupted",
        ),
    ),
    (
        "not allowed assistive access",
        "Permission denied - automation access required",
        (
            "Go to System Preferences → Privacy & Security → Automation",
            "Allow your terminal app to control Xcode",
            "You may need to restart your terminal after granting permission",
            "If using VS Code, allow 'Code' to control Xcode",
        ),
    ),
    (
        "osascript: command not found",
        "macOS scripting tools not available",
        (
            "This MCP server requires macOS",
            "Make sure you're running on a Mac with osascript available",
        ),
    ),
)


def _message(error: object) -> str:
    if isinstance(error, BaseException):
        return str(error) or error.__class__.__name__
    return str(error)


def _is_timeout(message: str) -> bool:
    if not any(word in message for word in _TIMEOUT_WORDS):
        return False
    return not any(excluded in message for excluded in _TIMEOUT_EXCLUSIONS)


def classify(error: object) -> Optional[str]:
    """Return actionable guidance for a known failure shape, or None.

    Rules are checked in order and the first match wins.
    """
    message = _message(error)

    for needle, headline, guidance in _COMMON_ERRORS:
        if needle in message:
            return with_guidance(error_text(headline), guidance)

    if "command not found" in message:
        if "logparser" in message.lower():
            return (
                with_guidance(
                    error_text("XCLogParser not found"),
                    [
                        "Install XCLogParser: brew install xclogparser",
                        "Or download from: https://github.com/MobileNativeFoundation/XCLogParser",
                    ],
                )
                + "\n\nNote: Build operations will work but with limited error details."
            )
        if "osascript" in message:
            lines: List[str] = [
                "This MCP server requires macOS",
                "Ensure you're running on a Mac with system tools available",
                "Try restarting your terminal",
            ]
            return f"{error_text('macOS scripting tools not available')}\n\n{GUIDANCE_MARKER} This indicates a critical system issue:\n{bullets(lines)}"

    if "No such file or directory" in message and "Xcode.app" in message:
        return with_guidance(
            error_text("Xcode application not found"),
            [
                "Install Xcode from the Mac App Store",
                "Ensure Xcode is in /Applications/Xcode.app",
                "Launch Xcode once to complete installation",
            ],
        )

    if _is_timeout(message):
        lines = [
            "Xcode is not responding (try restarting Xcode)",
            "System performance issues",
            "Large project taking longer than expected",
            "Network issues if downloading dependencies",
        ]
        return f"{error_text('Operation timed out')}\n\n{GUIDANCE_MARKER} This might indicate:\n{bullets(lines)}"

    return None


class ErrorClassifier:
    """Object form of classify() for injection into the Dispatcher."""

    def classify(self, error: object) -> Optional[str]:
        return classify(error)

"""paths.py — Path argument normalization and project path validation."""
from __future__ import annotations

import os
from typing import Any, Dict, Optional

from .errors import InvalidPathError

PROJECT_PATH_FIELDS = ("xcodeproj",)
GENERIC_PATH_FIELDS = ("file_path", "xcresult_path", "hierarchy_json_path", "test_plan_path")

PROJECT_EXTENSIONS = (".xcodeproj", ".xcworkspace")
_PROJECT_MARKERS = {
    ".xcodeproj": ("project.pbxproj", "Project"),
    ".xcworkspace": ("contents.xcworkspacedata", "Workspace"),
}


def absolutize(value: str, cwd: Optional[str] = None) -> str:
    if os.path.isabs(value):
        return value
    return os.path.normpath(os.path.join(cwd or os.getcwd(), value))


def validate_project_path(path: str) -> None:
    """Raise InvalidPathError unless path is an existing, intact project or workspace."""
    if not os.path.isabs(path):
        raise InvalidPathError(
            f"Project path must be absolute, got: {path}",
            [
                "Use an absolute path starting with /",
                "Example: /Users/username/MyApp/MyApp.xcodeproj",
                "Avoid relative paths like ./MyApp.xcodeproj",
            ],
        )
    if not os.path.exists(path):
        raise InvalidPathError(
            f"Project file does not exist: {path}",
            [
                f"Check that the path is correct: {path}",
                "Use an absolute path (starting with /)",
                "Make sure the file extension is .xcodeproj or .xcworkspace",
                "Verify the project file hasn't been moved or deleted",
            ],
            missing=True,
        )

    ext = os.path.splitext(path.rstrip("/"))[1]
    if ext not in _PROJECT_MARKERS:
        raise InvalidPathError(
            f"Project path must end with .xcodeproj or .xcworkspace, got: {path}",
            [
                "Point at the .xcodeproj or .xcworkspace bundle, not a folder or source file",
                "Example: /Users/username/MyApp/MyApp.xcodeproj",
            ],
        )

    marker, kind = _PROJECT_MARKERS[ext]
    marker_path = os.path.join(path, marker)
    if not os.path.exists(marker_path):
        noun = kind.lower()
        raise InvalidPathError(
            f"{kind} is missing {marker} file: {marker_path}",
            [
                f"The {noun} file appears to be corrupted or incomplete",
                f"Try recreating the {noun} in Xcode",
                "Check if you have the correct permissions to access the file",
                f"Make sure the {noun} wasn't partially copied",
            ],
        )


def resolve_and_validate_project_path(value: str, cwd: Optional[str] = None) -> str:
    resolved = absolutize(value, cwd)
    validate_project_path(resolved)
    return resolved


def validate_file_path(path: str) -> None:
    if not os.path.isabs(path):
        raise InvalidPathError(
            f"File path must be absolute, got: {path}",
            [
                "Use an absolute path starting with /",
                "Example: /Users/username/MyApp/ViewController.swift",
            ],
        )
    if not os.path.exists(path):
        raise InvalidPathError(
            f"File does not exist: {path}",
            [
                f"Check that the file path is correct: {path}",
                "Make sure the file hasn't been moved or deleted",
                "Verify you have permission to access the file",
            ],
            missing=True,
        )


def normalize_arguments(args: Optional[Dict[str, Any]], cwd: Optional[str] = None) -> Dict[str, Any]:
    """Return a copy of args with path fields made absolute.

    Project path fields are also validated; InvalidPathError propagates.
    Non-string values are left for the required-parameter check to report.
    """
    normalized = dict(args or {})
    for name in PROJECT_PATH_FIELDS:
        value = normalized.get(name)
        if isinstance(value, str) and value.strip():
            normalized[name] = resolve_and_validate_project_path(value.strip(), cwd)
    for name in GENERIC_PATH_FIELDS:
        value = normalized.get(name)
        if isinstance(value, str) and value.strip():
            normalized[name] = absolutize(value.strip(), cwd)
    return normalized

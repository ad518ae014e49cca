"""catalog.py — Canonical operation catalog shared by the MCP and CLI adapters.

Each operation has exactly one input schema. The MCP list_tools response, the
CLI option parser and the Dispatcher's required-parameter check all read from
here.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

from mcp.types import Tool

from .config import HEALTH_CHECK_TOOL

CLEAN_TOOL = "xcode_clean"
OPEN_PROJECT_TOOL = "xcode_open_project"
CLOSE_PROJECT_TOOL = "xcode_close_project"
REFRESH_PROJECT_TOOL = "xcode_refresh_project"

_XCODEPROJ_DESC = (
    "Absolute path to the .xcodeproj file (or .xcworkspace if available) - "
    "e.g., /path/to/project.xcodeproj"
)


def _xcodeproj(description: str = _XCODEPROJ_DESC) -> Dict[str, Any]:
    return {"type": "string", "description": description}


def _xcresult() -> Dict[str, Any]:
    return {"type": "string", "description": "Absolute path to the .xcresult file"}


def _test_id(description: str) -> Dict[str, Any]:
    return {"type": "string", "description": description}


def _string_list(description: str) -> Dict[str, Any]:
    return {"type": "array", "items": {"type": "string"}, "description": description}


# name -> (description, properties, required)
_DEFINITIONS: List[Tuple[str, str, Dict[str, Any], List[str]]] = [
    (
        OPEN_PROJECT_TOOL,
        "Open an Xcode project or workspace",
        {"xcodeproj": _xcodeproj()},
        ["xcodeproj"],
    ),
    (
        CLOSE_PROJECT_TOOL,
        "Close the currently active Xcode project or workspace (automatically stops any running actions first)",
        {"xcodeproj": _xcodeproj()},
        ["xcodeproj"],
    ),
    (
        REFRESH_PROJECT_TOOL,
        "Refresh/reload an Xcode project by closing and reopening it to pick up external changes like modified .xctestplan files",
        {"xcodeproj": _xcodeproj()},
        ["xcodeproj"],
    ),
    (
        "xcode_build",
        "Build a specific Xcode project or workspace with the specified scheme. If destination is not provided, "
        "uses the currently active destination. Can take minutes to hours - do not timeout.",
        {
            "xcodeproj": _xcodeproj(),
            "scheme": {"type": "string", "description": "Name of the scheme to build"},
            "destination": {
                "type": "string",
                "description": "Build destination (optional - uses active destination if not provided)",
            },
        },
        ["xcodeproj", "scheme"],
    ),
    (
        CLEAN_TOOL,
        "Clean the build directory for a specific project",
        {"xcodeproj": _xcodeproj()},
        ["xcodeproj"],
    ),
    (
        "xcode_test",
        "Run tests for a specific project. Optionally run only specific tests or test classes by temporarily "
        "modifying the test plan (automatically restored after completion). Can take minutes to hours - do not timeout.",
        {
            "xcodeproj": _xcodeproj(),
            "destination": {
                "type": "string",
                "description": 'Test destination - e.g., "iPhone 15 Pro Simulator", "iPad Air Simulator"',
            },
            "command_line_arguments": _string_list("Additional command line arguments"),
            "test_plan_path": {
                "type": "string",
                "description": "Optional: Absolute path to .xctestplan file to temporarily modify for selective test execution",
            },
            "selected_tests": _string_list(
                'Optional: Specific test identifiers to run, e.g. "TestAppUITests/testExample". Requires test_plan_path.'
            ),
            "selected_test_classes": _string_list(
                "Optional: Test class names to run (all tests in each class). Requires test_plan_path."
            ),
            "test_target_identifier": {
                "type": "string",
                "description": "Optional: Target identifier for the test target (found in project.pbxproj)",
            },
            "test_target_name": {
                "type": "string",
                "description": 'Optional: Target name for the test target, e.g. "TestAppTests"',
            },
        },
        ["xcodeproj", "destination"],
    ),
    (
        "xcode_build_and_run",
        "Build and run a specific project with the specified scheme. Can run indefinitely - do not timeout.",
        {
            "xcodeproj": _xcodeproj(),
            "scheme": {"type": "string", "description": "Name of the scheme to run"},
            "command_line_arguments": _string_list("Additional command line arguments"),
        },
        ["xcodeproj", "scheme"],
    ),
    (
        "xcode_debug",
        "Start debugging session for a specific project. Can run indefinitely - do not timeout.",
        {
            "xcodeproj": _xcodeproj(),
            "scheme": {"type": "string", "description": "Scheme name"},
            "skip_building": {"type": "boolean", "description": "Whether to skip building"},
        },
        ["xcodeproj", "scheme"],
    ),
    (
        "xcode_stop",
        "Stop the current scheme action for a specific project",
        {"xcodeproj": _xcodeproj()},
        ["xcodeproj"],
    ),
    (
        "xcode_get_schemes",
        "Get list of available schemes for a specific project",
        {"xcodeproj": _xcodeproj()},
        ["xcodeproj"],
    ),
    (
        "xcode_set_active_scheme",
        "Set the active scheme for a specific project",
        {
            "xcodeproj": _xcodeproj(),
            "scheme_name": {"type": "string", "description": "Name of the scheme to activate"},
        },
        ["xcodeproj", "scheme_name"],
    ),
    (
        "xcode_get_run_destinations",
        "Get list of available run destinations for a specific project",
        {"xcodeproj": _xcodeproj()},
        ["xcodeproj"],
    ),
    (
        "xcode_get_workspace_info",
        "Get information about a specific workspace",
        {"xcodeproj": _xcodeproj()},
        ["xcodeproj"],
    ),
    (
        "xcode_get_projects",
        "Get list of projects in a specific workspace",
        {"xcodeproj": _xcodeproj()},
        ["xcodeproj"],
    ),
    (
        "xcode_get_test_targets",
        "Get information about test targets in a project, including names and identifiers",
        {"xcodeproj": _xcodeproj("Absolute path to the .xcodeproj file (or .xcworkspace if available)")},
        ["xcodeproj"],
    ),
    (
        "xcode_open_file",
        "Open a file in Xcode",
        {
            "file_path": {"type": "string", "description": "Absolute path to the file to open"},
            "line_number": {"type": "number", "description": "Optional line number to navigate to"},
        },
        ["file_path"],
    ),
    (
        "find_xcresults",
        "Find all XCResult files for a specific project with timestamps and file information",
        {"xcodeproj": _xcodeproj()},
        ["xcodeproj"],
    ),
    (
        HEALTH_CHECK_TOOL,
        "Perform a comprehensive health check of the XcodeMCP environment and configuration",
        {},
        [],
    ),
    (
        "xcresult_browse",
        "Browse XCResult files - list all tests or show details for a specific test.",
        {
            "xcresult_path": _xcresult(),
            "test_id": _test_id("Optional test ID or index number to show details for a specific test"),
            "include_console": {
                "type": "boolean",
                "description": "Whether to include console output and test activities (only used with test_id)",
                "default": False,
            },
        },
        ["xcresult_path"],
    ),
    (
        "xcresult_browser_get_console",
        "Get console output and test activities for a specific test in an XCResult file.",
        {
            "xcresult_path": _xcresult(),
            "test_id": _test_id("Test ID or index number to get console output for"),
        },
        ["xcresult_path", "test_id"],
    ),
    (
        "xcresult_summary",
        "Get a quick summary of test results from an XCResult file",
        {"xcresult_path": _xcresult()},
        ["xcresult_path"],
    ),
    (
        "xcresult_get_screenshot",
        "Get screenshot from a failed test at specific timestamp - extracts frame from video attachment using ffmpeg",
        {
            "xcresult_path": _xcresult(),
            "test_id": _test_id("Test ID or index number to get screenshot for"),
            "timestamp": {
                "type": "number",
                "description": "Timestamp in seconds when to extract the screenshot. Use a timestamp slightly BEFORE the failure.",
            },
        },
        ["xcresult_path", "test_id", "timestamp"],
    ),
    (
        "xcresult_get_ui_hierarchy",
        "Get UI hierarchy attachment from test. Returns raw accessibility tree, slim AI-readable JSON (default), or full JSON.",
        {
            "xcresult_path": _xcresult(),
            "test_id": _test_id("Test ID or index number to get UI hierarchy for"),
            "timestamp": {
                "type": "number",
                "description": "Optional timestamp in seconds to find the closest UI snapshot",
            },
            "full_hierarchy": {"type": "boolean", "description": "Set to true to get the full hierarchy"},
            "raw_format": {"type": "boolean", "description": "Set to true to get the raw accessibility tree text"},
        },
        ["xcresult_path", "test_id"],
    ),
    (
        "xcresult_get_ui_element",
        "Get full details of a specific UI element by index from a previously exported UI hierarchy JSON file",
        {
            "hierarchy_json_path": {
                "type": "string",
                "description": "Absolute path to the UI hierarchy JSON file saved by xcresult_get_ui_hierarchy",
            },
            "element_index": {"type": "number", "description": "Index of the element to get details for"},
            "include_children": {
                "type": "boolean",
                "description": "Whether to include children in the response. Defaults to false.",
            },
        },
        ["hierarchy_json_path", "element_index"],
    ),
    (
        "xcresult_list_attachments",
        "List all attachments for a specific test - shows attachment names, types, and indices for export",
        {
            "xcresult_path": _xcresult(),
            "test_id": _test_id("Test ID or index number to list attachments for"),
        },
        ["xcresult_path", "test_id"],
    ),
    (
        "xcresult_export_attachment",
        "Export a specific attachment by index - can convert App UI hierarchy attachments to JSON",
        {
            "xcresult_path": _xcresult(),
            "test_id": _test_id("Test ID or index number that contains the attachment"),
            "attachment_index": {
                "type": "number",
                "description": "Index number of the attachment to export (1-based, from xcresult_list_attachments)",
            },
            "convert_to_json": {
                "type": "boolean",
                "description": "If true and attachment is an App UI hierarchy, convert to JSON format",
            },
        },
        ["xcresult_path", "test_id", "attachment_index"],
    ),
]

# Usage examples surfaced with missing-parameter errors.
PARAMETER_EXAMPLES: Dict[str, List[str]] = {
    "xcodeproj": [
        "Specify the absolute path to your .xcodeproj or .xcworkspace file",
        "Example: /Users/username/MyApp/MyApp.xcodeproj",
        "You can drag the project file from Finder to get the path",
    ],
    "scheme": [
        "Specify the scheme name exactly as shown in Xcode",
        "Use 'xcode_get_schemes' to see available schemes",
        "Example: MyApp",
    ],
    "destination": [
        'Specify the test destination (e.g., "iPhone 15 Pro Simulator")',
        "Use 'xcode_get_run_destinations' to see available destinations",
        'Example: "iPad Air Simulator" or "iPhone 16 Pro"',
    ],
    "xcresult_path": [
        "Specify the absolute path to an .xcresult bundle",
        "Use 'find_xcresults' to list result bundles for a project",
    ],
    "test_id": [
        "Specify a test identifier or its index number",
        "Use 'xcresult_browse' to list tests and their indices",
    ],
    "file_path": ["Example: /Users/username/MyApp/ViewController.swift"],
}


class OperationDef:
    __slots__ = ("name", "description", "properties", "required")

    def __init__(self, name: str, description: str, properties: Dict[str, Any], required: List[str]):
        self.name = name
        self.description = description
        self.properties = properties
        self.required = tuple(required)

    def input_schema(self) -> Dict[str, Any]:
        schema: Dict[str, Any] = {"type": "object", "properties": dict(self.properties)}
        if self.required:
            schema["required"] = list(self.required)
        return schema

    def to_tool(self) -> Tool:
        return Tool(name=self.name, description=self.description, inputSchema=self.input_schema())

    def missing_parameter(self, args: Dict[str, Any]) -> Optional[str]:
        """Return the first required argument that is absent or empty."""
        for name in self.required:
            value = args.get(name)
            if value is None or (isinstance(value, str) and not value.strip()):
                return name
        return None


OPERATIONS: Dict[str, OperationDef] = {
    name: OperationDef(name, description, properties, required)
    for name, description, properties, required in _DEFINITIONS
}


def get_operation(name: str, include_clean: bool = True) -> Optional[OperationDef]:
    if name == CLEAN_TOOL and not include_clean:
        return None
    return OPERATIONS.get(name)


def list_operations(include_clean: bool = True) -> List[OperationDef]:
    return [op for op in OPERATIONS.values() if include_clean or op.name != CLEAN_TOOL]


def list_tools(include_clean: bool = True) -> List[Tool]:
    return [op.to_tool() for op in list_operations(include_clean)]

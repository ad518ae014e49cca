#!/usr/bin/env python3
"""xcodecontrol — call XcodeMCP operations directly from a shell.

One subcommand per catalog operation (``xcode_build`` becomes ``build``,
``xcresult_summary`` becomes ``xcresult-summary``). Options come from the
operation's input schema; array options take comma-separated values.

Examples:
  xcodecontrol list-tools
  xcodecontrol build --xcodeproj MyApp.xcodeproj --scheme MyApp
  xcodecontrol test --xcodeproj MyApp.xcodeproj --destination "iPhone 16" \\
      --selected-tests MyAppTests/testLogin,MyAppTests/testLogout
  xcodecontrol --json xcresult-summary --xcresult-path Test.xcresult
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any, Callable, Dict, List, Optional

from mcp.types import TextContent
from pydantic import TypeAdapter

from .catalog import OPERATIONS, list_operations
from .config import INCLUDE_CLEAN, configure_logging
from .dispatcher import Dispatcher
from .envelope import ERROR_MARKER, first_text

LIST_TOOLS_COMMAND = "list-tools"

_ENVELOPE = TypeAdapter(List[TextContent])


def command_name(operation: str) -> str:
    if operation.startswith("xcode_"):
        operation = operation[len("xcode_"):]
    return operation.replace("_", "-")


def _number(value: str) -> Any:
    try:
        return int(value)
    except ValueError:
        return float(value)


def _string_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _add_property(parser: argparse.ArgumentParser, name: str, schema: Dict[str, Any], required: bool) -> None:
    flag = "--" + name.replace("_", "-")
    help_text = schema.get("description", "")
    if required:
        help_text = f"{help_text} (required)".strip()
    kind = schema.get("type")
    if kind == "boolean":
        parser.add_argument(flag, dest=name, action="store_true", default=None, help=help_text)
    elif kind == "number":
        parser.add_argument(flag, dest=name, type=_number, help=help_text)
    elif kind == "array":
        parser.add_argument(flag, dest=name, type=_string_list, metavar="A,B,...", help=help_text)
    else:
        parser.add_argument(flag, dest=name, help=help_text)


def build_parser(include_clean: bool = True) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="xcodecontrol",
        description="Run XcodeMCP operations without an MCP client",
    )
    parser.add_argument("--json", action="store_true", help="Print the raw response envelope as JSON")
    parser.add_argument("--no-clean", action="store_true", help="Disable the xcode_clean operation")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARN, ERROR or SILENT")
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    subparsers.add_parser(LIST_TOOLS_COMMAND, help="List the available operations")
    for operation_def in list_operations(include_clean):
        sub = subparsers.add_parser(
            command_name(operation_def.name), help=operation_def.description, description=operation_def.description
        )
        sub.set_defaults(operation=operation_def.name)
        for name, schema in operation_def.properties.items():
            _add_property(sub, name, schema, name in operation_def.required)
    return parser


def operation_arguments(namespace: argparse.Namespace, operation: str) -> Dict[str, Any]:
    operation_def = OPERATIONS[operation]
    args: Dict[str, Any] = {}
    for name in operation_def.properties:
        value = getattr(namespace, name, None)
        if value is not None:
            args[name] = value
    return args


def _print_tools(include_clean: bool, as_json: bool) -> None:
    operations = list_operations(include_clean)
    if as_json:
        print(json.dumps([op.to_tool().model_dump(exclude_none=True) for op in operations], indent=2))
        return
    for operation_def in operations:
        print(f"{command_name(operation_def.name):32} {operation_def.description}")


def main(argv: Optional[List[str]] = None, dispatcher_factory: Callable[..., Dispatcher] = Dispatcher) -> int:
    parser = build_parser(include_clean=INCLUDE_CLEAN)
    namespace = parser.parse_args(argv)
    include_clean = INCLUDE_CLEAN and not namespace.no_clean
    configure_logging(namespace.log_level)

    if namespace.command == LIST_TOOLS_COMMAND:
        _print_tools(include_clean, namespace.json)
        return 0

    dispatcher = dispatcher_factory(include_clean=include_clean)
    content = asyncio.run(dispatcher.handle(namespace.operation, operation_arguments(namespace, namespace.operation)))

    if namespace.json:
        print(_ENVELOPE.dump_json(content, indent=2, exclude_none=True).decode("utf-8"))
    else:
        for item in content:
            print(getattr(item, "text", ""))
    text = first_text(content) or ""
    return 1 if text.startswith(ERROR_MARKER) else 0


if __name__ == "__main__":
    sys.exit(main())

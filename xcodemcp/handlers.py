"""handlers.py — Name-to-handler registry for the Xcode-facing operations.

The Dispatcher only talks to a ToolHandlers object, so tests can swap in a
fake that records invocations without touching Xcode.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, List

from mcp.types import TextContent

from . import build_tools, project_tools, xcresult_tools
from .errors import UnknownOperationError

Handler = Callable[[Dict[str, Any]], Awaitable[List[TextContent]]]


class ToolHandlers:
    """Interface used by the Dispatcher."""

    async def invoke(self, name: str, args: Dict[str, Any]) -> List[TextContent]:
        raise NotImplementedError

    async def close_project(self, args: Dict[str, Any]) -> List[TextContent]:
        return await self.invoke("xcode_close_project", args)

    async def open_project_and_wait(self, project_path: str) -> List[TextContent]:
        raise NotImplementedError


# -------------------------------------------------------------------
# Handler dispatch map
# -------------------------------------------------------------------

_HANDLERS: Dict[str, Handler] = {
    "xcode_open_project": project_tools.open_project,
    "xcode_close_project": project_tools.close_project,
    "xcode_build": build_tools.build,
    "xcode_clean": build_tools.clean,
    "xcode_test": build_tools.run_tests,
    "xcode_build_and_run": build_tools.build_and_run,
    "xcode_debug": build_tools.debug,
    "xcode_stop": build_tools.stop,
    "xcode_get_schemes": project_tools.get_schemes,
    "xcode_set_active_scheme": project_tools.set_active_scheme,
    "xcode_get_run_destinations": project_tools.get_run_destinations,
    "xcode_get_workspace_info": project_tools.get_workspace_info,
    "xcode_get_projects": project_tools.get_projects,
    "xcode_get_test_targets": project_tools.get_test_targets,
    "xcode_open_file": project_tools.open_file,
    "find_xcresults": build_tools.find_xcresults,
    "xcresult_browse": xcresult_tools.xcresult_browse,
    "xcresult_browser_get_console": xcresult_tools.xcresult_browser_get_console,
    "xcresult_summary": xcresult_tools.xcresult_summary,
    "xcresult_get_screenshot": xcresult_tools.xcresult_get_screenshot,
    "xcresult_get_ui_hierarchy": xcresult_tools.xcresult_get_ui_hierarchy,
    "xcresult_get_ui_element": xcresult_tools.xcresult_get_ui_element,
    "xcresult_list_attachments": xcresult_tools.xcresult_list_attachments,
    "xcresult_export_attachment": xcresult_tools.xcresult_export_attachment,
}


class XcodeHandlers(ToolHandlers):
    """Routes operations to the osascript / xcresulttool backed handlers."""

    def __init__(self, handlers: Dict[str, Handler] = None):
        self.handlers = dict(_HANDLERS if handlers is None else handlers)

    async def invoke(self, name: str, args: Dict[str, Any]) -> List[TextContent]:
        handler = self.handlers.get(name)
        if handler is None:
            raise UnknownOperationError(name)
        return await handler(args)

    async def open_project_and_wait(self, project_path: str) -> List[TextContent]:
        return await project_tools.open_project_and_wait(project_path)

"""build_tools.py — Build-family handlers: build, clean, test, run, debug, stop.

Scheme actions are started through JXA and then polled through the
workspace's last scheme action result until they complete.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import plistlib
import time
from typing import Any, Dict, List, Optional, Tuple

from mcp.types import TextContent

from . import jxa
from .config import (
    ACTION_POLL_INTERVAL_SECONDS,
    ACTION_TIMEOUT_SECONDS,
    DERIVED_DATA_DIR,
    SERVER_NAME,
)
from .envelope import error_result, result_text
from .project_tools import ensure_project_open, select
from .xcresult_tools import summarize

logger = logging.getLogger(SERVER_NAME)

_FINISHED_STATUSES = {"succeeded", "failed", "cancelled", "error occurred"}


# ---------------------------------------------------------------------------
# Scheme actions
# ---------------------------------------------------------------------------


async def start_action(project_path: str, call: str) -> str:
    script = jxa.wrap(
        f"""
        {jxa.workspace_script(project_path)}
        const result = workspace.{call};
        return result ? String(result.id()) : '';
        """
    )
    return await jxa.execute(script)


async def action_status(project_path: str) -> Dict[str, Any]:
    script = jxa.wrap(
        f"""
        {jxa.workspace_script(project_path)}
        const r = workspace.lastSchemeActionResult();
        if (!r) return JSON.stringify({{ completed: false, status: 'not yet started' }});
        const issues = list => (list || []).map(i => {{
          const path = i.filePath ? i.filePath() : null;
          const line = i.startingLineNumber ? i.startingLineNumber() : null;
          return (path ? path + (line ? ':' + line : '') + ': ' : '') + i.message();
        }});
        return JSON.stringify({{
          id: r.id(),
          completed: r.completed(),
          status: r.status(),
          errorMessage: r.errorMessage(),
          errors: issues(r.buildErrors()),
          warnings: issues(r.buildWarnings())
        }});
        """
    )
    return json.loads(await jxa.execute(script))


async def wait_for_action(
    project_path: str,
    action_id: str = "",
    timeout: float = ACTION_TIMEOUT_SECONDS,
    interval: float = ACTION_POLL_INTERVAL_SECONDS,
) -> Dict[str, Any]:
    """Poll until the last scheme action completes; raises TimeoutError.

    When action_id is given, results from an earlier action are ignored.
    """
    deadline = time.monotonic() + timeout
    while True:
        status = await action_status(project_path)
        current = not action_id or str(status.get("id")) == action_id
        if current and (status.get("completed") or status.get("status") in _FINISHED_STATUSES):
            return status
        if time.monotonic() >= deadline:
            raise TimeoutError(f"Scheme action did not finish: timed out after {timeout:g} seconds")
        await asyncio.sleep(interval)


def _describe_target(scheme: Optional[str], destination: Optional[str]) -> str:
    text = f" for scheme '{scheme}'" if scheme else ""
    if destination:
        text += f" and destination '{destination}'"
    return text


def format_build_result(status: Dict[str, Any], scheme: Optional[str], destination: Optional[str]) -> str:
    errors = status.get("errors") or []
    warnings = status.get("warnings") or []
    target = _describe_target(scheme, destination)
    if errors or status.get("status") in ("failed", "error occurred"):
        lines = [f"❌ BUILD FAILED{target} ({len(errors)} errors)", ""]
        if errors:
            lines.append("ERRORS:")
            lines.extend(f"  • {error}" for error in errors)
        elif status.get("errorMessage"):
            lines.append(str(status["errorMessage"]))
        return "\n".join(lines)
    if status.get("status") == "cancelled":
        return f"⚠️ BUILD CANCELLED{target}"
    if warnings:
        lines = [f"⚠️ BUILD COMPLETED WITH WARNINGS{target} ({len(warnings)} warnings)", "", "WARNINGS:"]
        lines.extend(f"  • {warning}" for warning in warnings)
        return "\n".join(lines)
    return f"✅ BUILD SUCCESSFUL{target}"


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def build(args: Dict[str, Any]) -> List[TextContent]:
    project_path = args["xcodeproj"]
    scheme = str(args["scheme"])
    destination = args.get("destination") or None

    await ensure_project_open(project_path)
    failure = await select(project_path, "scheme", scheme)
    if failure:
        return failure
    if destination:
        failure = await select(project_path, "destination", destination)
        if failure:
            return failure

    action_id = await start_action(project_path, "build()")
    logger.info("Build started for %s (scheme %s)", project_path, scheme)
    status = await wait_for_action(project_path, action_id)
    text = format_build_result(status, scheme, destination)
    logger.info("Build finished: %s", text.splitlines()[0])
    return result_text(text)


async def clean(args: Dict[str, Any]) -> List[TextContent]:
    project_path = args["xcodeproj"]
    await ensure_project_open(project_path)
    result_id = await start_action(project_path, "clean()")
    status = await wait_for_action(project_path, result_id)
    return result_text(f"Clean completed. Result ID: {status.get('id') or result_id}")


async def stop(args: Dict[str, Any]) -> List[TextContent]:
    script = jxa.wrap(
        f"""
        {jxa.workspace_script(args['xcodeproj'])}
        workspace.stop();
        return 'Stop command sent';
        """
    )
    return result_text(await jxa.execute(script))


async def debug(args: Dict[str, Any]) -> List[TextContent]:
    project_path = args["xcodeproj"]
    await ensure_project_open(project_path)
    params: Dict[str, Any] = {"scheme": str(args["scheme"])}
    if args.get("skip_building"):
        params["skipBuilding"] = True
    result_id = await start_action(project_path, f"debug({jxa.js(params)})")
    return result_text(f"Debug started. Result ID: {result_id}")


async def build_and_run(args: Dict[str, Any]) -> List[TextContent]:
    project_path = args["xcodeproj"]
    scheme = str(args["scheme"])
    arguments = list(args.get("command_line_arguments") or [])

    await ensure_project_open(project_path)
    failure = await select(project_path, "scheme", scheme)
    if failure:
        return failure

    call = f"run({{withCommandLineArguments: {jxa.js(arguments)}}})" if arguments else "run()"
    result_id = await start_action(project_path, call)
    suffix = f" with arguments {json.dumps(arguments)}" if arguments else ""
    return result_text(f"Run started for scheme '{scheme}'{suffix}. Result ID: {result_id}")


# ---------------------------------------------------------------------------
# Test plans
# ---------------------------------------------------------------------------


def _selection(args: Dict[str, Any]) -> List[str]:
    selected = [str(t) for t in args.get("selected_tests") or []]
    selected.extend(str(c) for c in args.get("selected_test_classes") or [])
    return selected


def apply_test_selection(
    plan_path: str,
    project_path: str,
    target_name: str,
    target_identifier: str,
    selected: List[str],
) -> str:
    """Rewrite the test plan to run only `selected`; returns the original text."""
    with open(plan_path, "r", encoding="utf-8") as fh:
        original = fh.read()
    plan = json.loads(original)
    plan["testTargets"] = [
        {
            "target": {
                "containerPath": f"container:{os.path.basename(project_path)}",
                "identifier": target_identifier,
                "name": target_name,
            },
            "selectedTests": selected,
        }
    ]
    plan.setdefault("version", 1)
    with open(plan_path, "w", encoding="utf-8") as fh:
        json.dump(plan, fh, indent=2)
    # Xcode picks up plan edits on the next filesystem event.
    os.utime(plan_path)
    return original


def restore_test_plan(plan_path: str, original: str) -> None:
    with open(plan_path, "w", encoding="utf-8") as fh:
        fh.write(original)


def _selection_error(args: Dict[str, Any]) -> Optional[List[TextContent]]:
    if not _selection(args):
        return None
    missing = [
        field
        for field in ("test_plan_path", "test_target_name", "test_target_identifier")
        if not args.get(field)
    ]
    if not missing:
        return None
    return error_result(
        f"Selective test execution requires: {', '.join(missing)}",
        [
            "Pass test_plan_path with the absolute path to the .xctestplan file",
            "Use 'xcode_get_test_targets' to find test_target_name and test_target_identifier",
        ],
    )


async def run_tests(args: Dict[str, Any]) -> List[TextContent]:
    project_path = args["xcodeproj"]
    destination = str(args["destination"])
    arguments = list(args.get("command_line_arguments") or [])

    failure = _selection_error(args)
    if failure:
        return failure

    await ensure_project_open(project_path)
    failure = await select(project_path, "destination", destination)
    if failure:
        return failure

    selected = _selection(args)
    plan_path = args.get("test_plan_path")
    original: Optional[str] = None
    if selected and plan_path:
        original = apply_test_selection(
            plan_path, project_path, args["test_target_name"], args["test_target_identifier"], selected
        )
        logger.info("Test plan %s narrowed to %d selection(s)", plan_path, len(selected))

    try:
        before = {path for path, _ in find_xcresult_files(project_path)}
        started = time.time()
        call = f"test({{withCommandLineArguments: {jxa.js(arguments)}}})" if arguments else "test()"
        action_id = await start_action(project_path, call)
        status = await wait_for_action(project_path, action_id)
    finally:
        if original is not None and plan_path:
            restore_test_plan(plan_path, original)
            logger.info("Test plan %s restored", plan_path)

    xcresult = _newest_result(project_path, before, started)
    return result_text(await _format_test_result(status, xcresult, arguments))


def _newest_result(project_path: str, before: set, started: float) -> Optional[str]:
    for path, mtime in find_xcresult_files(project_path):
        if path not in before or mtime >= started - 5:
            return path
    return None


async def _format_test_result(status: Dict[str, Any], xcresult: Optional[str], arguments: List[str]) -> str:
    header = "🧪 TESTS COMPLETED"
    if arguments:
        header += f" with arguments {json.dumps(arguments)}"
    if xcresult is None:
        if status.get("status") == "failed":
            detail = status.get("errorMessage") or "Test execution failed"
            return f"❌ TEST FAILED\n\n{detail}\n\nNote: No XCResult file found for detailed analysis."
        return f"{header}\n\nStatus: {status.get('status', 'completed')}\n\nNote: No XCResult file found for detailed analysis."

    try:
        summary = await summarize(xcresult)
    except Exception as exc:
        logger.warning("Failed to summarize %s: %s", xcresult, exc)
        return (
            f"{header}\n\nXCResult Path: {xcresult}\nStatus: {status.get('status', 'completed')}\n\n"
            f"Note: XCResult parsing failed, but the bundle is available for manual inspection.\n"
            f"Use 'xcresult_browse \"{xcresult}\"' to explore results."
        )
    return f"{header}\n\n{summary}"


# ---------------------------------------------------------------------------
# Result bundles
# ---------------------------------------------------------------------------


def find_derived_data(project_path: str, derived_data_dir: str = DERIVED_DATA_DIR) -> Optional[str]:
    """Locate the DerivedData folder whose info.plist points at project_path."""
    name = os.path.splitext(os.path.basename(project_path.rstrip("/")))[0]
    try:
        candidates = sorted(d for d in os.listdir(derived_data_dir) if d.startswith(f"{name}-"))
    except OSError:
        return None

    fallback = None
    for candidate in candidates:
        full = os.path.join(derived_data_dir, candidate)
        fallback = fallback or full
        try:
            with open(os.path.join(full, "info.plist"), "rb") as fh:
                workspace_path = plistlib.load(fh).get("WorkspacePath")
        except (OSError, plistlib.InvalidFileException, ValueError):
            continue
        if workspace_path in (project_path, project_path.replace(".xcodeproj", ".xcworkspace")):
            return full
    return fallback


def find_xcresult_files(project_path: str, derived_data_dir: str = DERIVED_DATA_DIR) -> List[Tuple[str, float]]:
    """Return (path, mtime) for each .xcresult bundle, newest first."""
    derived = find_derived_data(project_path, derived_data_dir)
    if derived is None:
        return []
    test_logs = os.path.join(derived, "Logs", "Test")
    try:
        names = os.listdir(test_logs)
    except OSError as exc:
        logger.debug("Could not read %s: %s", test_logs, exc)
        return []
    found = []
    for entry in names:
        if not entry.endswith(".xcresult"):
            continue
        full = os.path.join(test_logs, entry)
        try:
            found.append((full, os.stat(full).st_mtime))
        except OSError:
            continue
    return sorted(found, key=lambda item: item[1], reverse=True)


async def find_xcresults(args: Dict[str, Any]) -> List[TextContent]:
    project_path = args["xcodeproj"]
    results = find_xcresult_files(project_path)
    if not results:
        return result_text(
            f"No XCResult files found for project: {project_path}\n\n"
            "Run tests with 'xcode_test' to generate result bundles."
        )
    lines = [f"Found {len(results)} XCResult file(s) for {os.path.basename(project_path)}:", ""]
    for index, (path, mtime) in enumerate(results, start=1):
        stamp = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(mtime))
        lines.append(f"{index}. {os.path.basename(path)}")
        lines.append(f"   Path: {path}")
        lines.append(f"   Modified: {stamp}")
    return result_text("\n".join(lines))

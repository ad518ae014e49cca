"""xcresult_tools.py — Result-bundle handlers backed by `xcrun xcresulttool`."""
from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from typing import Any, Dict, Iterator, List, Optional, Tuple

from mcp.types import TextContent

from .capabilities import CommandError, run_command
from .config import SERVER_NAME, XCRESULT_TIMEOUT_SECONDS
from .envelope import error_result, result_text

logger = logging.getLogger(SERVER_NAME)

EXPORT_DIR = os.path.join(tempfile.gettempdir(), "xcodemcp-attachments")

# xcresulttool occasionally emits non-finite floats that json cannot load.
_BAD_FLOATS = re.compile(r"(?<=[:\[,\s])(-?inf|nan)(?=[,\]\s}])", re.IGNORECASE)

_STATUS_ICONS = {"passed": "✅", "failed": "❌", "skipped": "⏭️", "expected failure": "⚠️"}


def _status_icon(result: str) -> str:
    return _STATUS_ICONS.get((result or "").lower(), "❓")


def _seconds(value: Any) -> float:
    if isinstance(value, dict):
        value = value.get("value")
    return float(value or 0)


def _duration(seconds: float) -> str:
    minutes, remaining = divmod(int(seconds), 60)
    return f"{minutes}m {remaining}s" if minutes else f"{remaining}s"


class XCResultReader:
    """Thin reader over one .xcresult bundle."""

    def __init__(self, path: str, timeout: float = XCRESULT_TIMEOUT_SECONDS):
        self.path = path
        self.timeout = timeout

    async def _tool(self, *args: str, timeout: Optional[float] = None) -> str:
        return await run_command("xcrun", ("xcresulttool",) + args, timeout=timeout or self.timeout)

    async def _json(self, *args: str) -> Any:
        out = await self._tool(*args, "--path", self.path, "--format", "json")
        return json.loads(_BAD_FLOATS.sub("null", out))

    async def summary(self) -> Dict[str, Any]:
        return await self._json("get", "test-results", "summary")

    async def tests(self) -> Dict[str, Any]:
        return await self._json("get", "test-results", "tests")

    async def activities(self, test_id: str) -> Dict[str, Any]:
        return await self._json("get", "test-results", "activities", "--test-id", test_id)

    async def console(self, test_id: str) -> str:
        try:
            out = await self._tool("get", "log", "--path", self.path, "--type", "console", "--test-id", test_id)
        except CommandError as exc:
            return f"Error retrieving console output: {exc}"
        return out.strip() or "No console output available"

    async def export_attachments(self, test_id: str) -> Tuple[str, List[Dict[str, Any]]]:
        """Export a test's attachments; returns (directory, manifest entries)."""
        safe = re.sub(r"[^A-Za-z0-9_.-]+", "_", test_id)
        out_dir = os.path.join(EXPORT_DIR, safe)
        os.makedirs(out_dir, exist_ok=True)
        await self._tool(
            "export", "attachments", "--path", self.path, "--output-path", out_dir, "--test-id", test_id,
        )
        with open(os.path.join(out_dir, "manifest.json"), "r", encoding="utf-8") as fh:
            manifest = json.load(fh)
        attachments: List[Dict[str, Any]] = []
        for entry in manifest:
            attachments.extend(entry.get("attachments", []))
        return out_dir, attachments

    async def find_test(self, test_id_or_index: str) -> Optional[Dict[str, Any]]:
        nodes = (await self.tests()).get("testNodes", [])
        for node in iter_test_cases(nodes):
            if node.get("nodeIdentifier") == test_id_or_index:
                return node
        if str(test_id_or_index).isdigit():
            index = int(test_id_or_index)
            for position, node in enumerate(iter_test_cases(nodes), start=1):
                if position == index:
                    return node
        return None


def iter_test_cases(nodes: List[Dict[str, Any]]) -> Iterator[Dict[str, Any]]:
    for node in nodes:
        if node.get("nodeType") == "Test Case":
            yield node
        yield from iter_test_cases(node.get("children") or [])


def format_summary(summary: Dict[str, Any], path: str) -> str:
    total = summary.get("totalTestCount", 0) or 0
    passed = summary.get("passedTests", 0) or 0
    failed = summary.get("failedTests", 0) or 0
    skipped = summary.get("skippedTests", 0) or 0
    rate = (passed / total * 100) if total else 0.0
    start = _seconds(summary.get("startTime"))
    finish = _seconds(summary.get("finishTime")) or start
    result = summary.get("result", "unknown")

    lines = [
        "📊 Test Results Summary:",
        f"XCResult Path: {path}",
        f"Result: {'❌' if result == 'Failed' else '✅'} {result}",
        f"Total: {total} | Passed: {passed} ✅ | Failed: {failed} ❌ | Skipped: {skipped} ⏭️",
        f"Pass Rate: {rate:.1f}%",
        f"Duration: {_duration(finish - start)}",
    ]
    failures = summary.get("testFailures") or []
    if failures:
        lines.append("")
        lines.append(f"❌ Failed Tests ({len(failures)}):")
        for index, failure in enumerate(failures, start=1):
            lines.append(f"  {index}. {failure.get('testName')} ({failure.get('testIdentifierString')})")
            lines.append(f"     {failure.get('failureText', '')}")
        lines.append("")
        lines.append(f"Use 'xcresult_browse' with xcresult_path \"{path}\" to explore detailed results.")
    return "\n".join(lines)


async def summarize(path: str) -> str:
    return format_summary(await XCResultReader(path).summary(), path)


def _missing_bundle(path: str) -> Optional[List[TextContent]]:
    if not os.path.exists(path):
        return error_result(
            f"XCResult file does not exist: {path}",
            ["Use 'find_xcresults' to list result bundles for a project"],
        )
    if not path.endswith(".xcresult"):
        return error_result(f"Path must be an .xcresult bundle, got: {path}")
    return None


def _test_not_found(test_id: str) -> List[TextContent]:
    return error_result(
        f"Test '{test_id}' not found",
        ["Run xcresult_browse without test_id to see all available tests"],
    )


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def xcresult_summary(args: Dict[str, Any]) -> List[TextContent]:
    path = args["xcresult_path"]
    return _missing_bundle(path) or result_text(await summarize(path))


async def xcresult_browse(args: Dict[str, Any]) -> List[TextContent]:
    path = args["xcresult_path"]
    missing = _missing_bundle(path)
    if missing:
        return missing
    reader = XCResultReader(path)
    test_id = args.get("test_id")

    if not test_id:
        summary = await reader.summary()
        nodes = (await reader.tests()).get("testNodes", [])
        lines = [f"🔍 XCResult Analysis - {path}", "=" * 80, "", format_summary(summary, path), "", "📋 All Tests:", "-" * 80]
        for index, node in enumerate(iter_test_cases(nodes), start=1):
            lines.append(
                f"{index:>4}. {_status_icon(node.get('result', ''))} {node.get('name')} ({node.get('nodeIdentifier', 'unknown')})"
            )
        lines.append("")
        lines.append("Pass test_id (identifier or index) to see details for a single test.")
        return result_text("\n".join(lines))

    node = await reader.find_test(str(test_id))
    if node is None:
        return _test_not_found(str(test_id))
    lines = [
        "🔍 Test Details",
        "=" * 80,
        f"Name: {node.get('name')}",
        f"ID: {node.get('nodeIdentifier', 'unknown')}",
        f"Type: {node.get('nodeType')}",
        f"Result: {_status_icon(node.get('result', ''))} {node.get('result')}",
    ]
    if node.get("duration"):
        lines.append(f"Duration: {node['duration']}")
    failures = [c for c in node.get("children") or [] if c.get("nodeType") == "Failure Message"]
    if failures:
        lines.append("")
        lines.append("📍 Failure Information:")
        for child in failures:
            location, _, message = child.get("name", "").partition(": ")
            lines.append(f"Location: {location}" if message else f"Details: {location}")
            if message:
                lines.append(f"Message: {message}")
    if args.get("include_console") and node.get("nodeIdentifier"):
        lines.append("")
        lines.append("📟 Console Output:")
        lines.append(await reader.console(node["nodeIdentifier"]))
    return result_text("\n".join(lines))


async def xcresult_browser_get_console(args: Dict[str, Any]) -> List[TextContent]:
    path = args["xcresult_path"]
    missing = _missing_bundle(path)
    if missing:
        return missing
    reader = XCResultReader(path)
    node = await reader.find_test(str(args["test_id"]))
    if node is None:
        return _test_not_found(str(args["test_id"]))
    test_id = node.get("nodeIdentifier", str(args["test_id"]))
    console = await reader.console(test_id)
    activities = await reader.activities(test_id)
    titles = list(_activity_titles(activities.get("testRuns", [])))
    text = f"📟 Console Output for {node.get('name')}:\n{console}\n\n🔬 Test Activities:\n"
    text += "\n".join(titles) if titles else "No test activities found"
    return result_text(text)


def _activity_titles(items: List[Dict[str, Any]], depth: int = 0) -> Iterator[str]:
    for item in items:
        if item.get("title"):
            yield f"{'  ' * depth}• {item['title']}"
        yield from _activity_titles(item.get("activities") or [], depth)
        yield from _activity_titles(item.get("childActivities") or [], depth + 1)


def _attachment_name(attachment: Dict[str, Any]) -> str:
    return attachment.get("suggestedHumanReadableName") or attachment.get("exportedFileName") or "attachment"


async def xcresult_list_attachments(args: Dict[str, Any]) -> List[TextContent]:
    path = args["xcresult_path"]
    missing = _missing_bundle(path)
    if missing:
        return missing
    reader = XCResultReader(path)
    node = await reader.find_test(str(args["test_id"]))
    if node is None:
        return _test_not_found(str(args["test_id"]))
    _, attachments = await reader.export_attachments(node["nodeIdentifier"])
    if not attachments:
        return result_text(f"No attachments found for test: {node.get('name')}")
    lines = [f"📎 Attachments for {node.get('name')} ({len(attachments)}):", ""]
    for index, attachment in enumerate(attachments, start=1):
        stamp = attachment.get("timestamp")
        suffix = f" @ {stamp}" if stamp is not None else ""
        lines.append(f"{index}. {_attachment_name(attachment)}{suffix}")
    lines.append("")
    lines.append("Use xcresult_export_attachment with attachment_index to export one.")
    return result_text("\n".join(lines))


async def _attachment_by_index(args: Dict[str, Any]) -> Tuple[Optional[str], Optional[List[TextContent]]]:
    path = args["xcresult_path"]
    missing = _missing_bundle(path)
    if missing:
        return None, missing
    reader = XCResultReader(path)
    node = await reader.find_test(str(args["test_id"]))
    if node is None:
        return None, _test_not_found(str(args["test_id"]))
    out_dir, attachments = await reader.export_attachments(node["nodeIdentifier"])
    index = int(args["attachment_index"])
    if index < 1 or index > len(attachments):
        return None, error_result(
            f"Invalid attachment index {index}. Test has {len(attachments)} attachment(s).",
            ["Use 'xcresult_list_attachments' to see valid indices"],
        )
    return os.path.join(out_dir, attachments[index - 1]["exportedFileName"]), None


async def xcresult_export_attachment(args: Dict[str, Any]) -> List[TextContent]:
    exported, failure = await _attachment_by_index(args)
    if failure:
        return failure
    if args.get("convert_to_json") and exported and "hierarchy" in exported.lower():
        json_path = save_hierarchy_json(exported)
        return result_text(f"Attachment exported and converted to JSON: {json_path}")
    return result_text(f"Attachment exported to: {exported}")


# ---------------------------------------------------------------------------
# UI hierarchy
# ---------------------------------------------------------------------------

_ELEMENT_RE = re.compile(r"^(?P<indent>\s*)→?(?P<type>[A-Za-z]+)(?: \([^)]*\))?, (?P<rest>.*)$")
_LABEL_RE = re.compile(r"label: '(?P<label>[^']*)'")
_IDENT_RE = re.compile(r"identifier: '(?P<ident>[^']*)'")


def parse_ui_hierarchy(text: str) -> List[Dict[str, Any]]:
    """Convert an indented accessibility dump into a flat indexed element list."""
    elements: List[Dict[str, Any]] = []
    stack: List[Tuple[int, int]] = []
    for line in text.splitlines():
        match = _ELEMENT_RE.match(line)
        if not match:
            continue
        depth = len(match.group("indent"))
        while stack and stack[-1][0] >= depth:
            stack.pop()
        label = _LABEL_RE.search(match.group("rest"))
        ident = _IDENT_RE.search(match.group("rest"))
        element = {
            "index": len(elements),
            "type": match.group("type"),
            "label": label.group("label") if label else None,
            "identifier": ident.group("ident") if ident else None,
            "parent": stack[-1][1] if stack else None,
            "raw": match.group("rest"),
            "children": [],
        }
        if stack:
            elements[stack[-1][1]]["children"].append(element["index"])
        elements.append(element)
        stack.append((depth, element["index"]))
    return elements


def slim(elements: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {k: v for k, v in (("i", e["index"]), ("t", e["type"]), ("l", e["label"]), ("id", e["identifier"])) if v is not None}
        for e in elements
    ]


def write_hierarchy_json(source: str, elements: List[Dict[str, Any]]) -> str:
    json_path = os.path.splitext(source)[0] + ".json"
    with open(json_path, "w", encoding="utf-8") as fh:
        json.dump(elements, fh, indent=2)
    return json_path


def save_hierarchy_json(source: str) -> str:
    with open(source, "r", encoding="utf-8", errors="replace") as fh:
        return write_hierarchy_json(source, parse_ui_hierarchy(fh.read()))


async def xcresult_get_ui_hierarchy(args: Dict[str, Any]) -> List[TextContent]:
    path = args["xcresult_path"]
    missing = _missing_bundle(path)
    if missing:
        return missing
    reader = XCResultReader(path)
    node = await reader.find_test(str(args["test_id"]))
    if node is None:
        return _test_not_found(str(args["test_id"]))
    out_dir, attachments = await reader.export_attachments(node["nodeIdentifier"])
    candidates = [a for a in attachments if "hierarchy" in _attachment_name(a).lower()]
    if not candidates:
        return error_result(
            f"No UI hierarchy attachment found for test: {node.get('name')}",
            ["UI hierarchies are recorded for UI tests that capture app state on failure"],
        )
    timestamp = args.get("timestamp")
    if timestamp is not None:
        candidates.sort(key=lambda a: abs(float(a.get("timestamp") or 0) - float(timestamp)))
    source = os.path.join(out_dir, candidates[0]["exportedFileName"])

    with open(source, "r", encoding="utf-8", errors="replace") as fh:
        raw = fh.read()
    if args.get("raw_format"):
        return result_text(raw)
    elements = parse_ui_hierarchy(raw)
    json_path = write_hierarchy_json(source, elements)
    body = elements if args.get("full_hierarchy") else slim(elements)
    return result_text(
        f"UI hierarchy for {node.get('name')} ({len(elements)} elements)\n"
        f"Full JSON saved to: {json_path}\n\n{json.dumps(body, indent=1)}"
    )


async def xcresult_get_ui_element(args: Dict[str, Any]) -> List[TextContent]:
    json_path = args["hierarchy_json_path"]
    if not os.path.exists(json_path):
        return error_result(
            f"UI hierarchy JSON file does not exist: {json_path}",
            ["Run 'xcresult_get_ui_hierarchy' first to save the hierarchy JSON"],
        )
    with open(json_path, "r", encoding="utf-8") as fh:
        elements = json.load(fh)
    index = int(args["element_index"])
    if index < 0 or index >= len(elements):
        return error_result(f"Element index {index} out of range (0-{len(elements) - 1})")
    element = dict(elements[index])
    if args.get("include_children"):
        element["children"] = [elements[i] for i in element.get("children", [])]
    return result_text(element)


# ---------------------------------------------------------------------------
# Screenshots
# ---------------------------------------------------------------------------

_IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".heic")
_VIDEO_EXTENSIONS = (".mp4", ".mov")


async def xcresult_get_screenshot(args: Dict[str, Any]) -> List[TextContent]:
    path = args["xcresult_path"]
    missing = _missing_bundle(path)
    if missing:
        return missing
    reader = XCResultReader(path)
    node = await reader.find_test(str(args["test_id"]))
    if node is None:
        return _test_not_found(str(args["test_id"]))
    out_dir, attachments = await reader.export_attachments(node["nodeIdentifier"])
    timestamp = float(args["timestamp"])

    images = [a for a in attachments if a.get("exportedFileName", "").lower().endswith(_IMAGE_EXTENSIONS)]
    if images:
        images.sort(key=lambda a: abs(float(a.get("timestamp") or 0) - timestamp))
        return result_text(f"Screenshot saved to: {os.path.join(out_dir, images[0]['exportedFileName'])}")

    videos = [a for a in attachments if a.get("exportedFileName", "").lower().endswith(_VIDEO_EXTENSIONS)]
    if not videos:
        return error_result(
            f"No screenshot or video attachments found for test: {node.get('name')}",
            ["Use 'xcresult_list_attachments' to see what the test recorded"],
        )
    video = os.path.join(out_dir, videos[0]["exportedFileName"])
    frame = os.path.join(out_dir, f"frame_{timestamp:g}s.png")
    await run_command(
        "ffmpeg",
        ("-y", "-ss", f"{timestamp:g}", "-i", video, "-frames:v", "1", frame),
        timeout=XCRESULT_TIMEOUT_SECONDS,
    )
    return result_text(f"Screenshot extracted at {timestamp:g}s: {frame}")
"""project_tools.py — Project lifecycle, metadata and navigation handlers.

Each handler takes the normalized argument dict and returns a TextContent
list. Expected failures are reported as text; unexpected ones raise and are
classified by the Dispatcher.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import re
from typing import Any, Dict, List, Optional

from mcp.types import TextContent

from . import jxa
from .capabilities import CommandError, run_command
from .config import PROJECT_LOAD_RETRIES, PROJECT_LOAD_RETRY_DELAY_SECONDS, SERVER_NAME
from .envelope import error_result, result_text, signals_failure, with_guidance
from .errors import InvalidPathError, classify
from .paths import validate_file_path

logger = logging.getLogger(SERVER_NAME)


# ---------------------------------------------------------------------------
# Xcode process and project loading
# ---------------------------------------------------------------------------


async def ensure_xcode_running() -> Optional[List[TextContent]]:
    """Launch Xcode if needed. Returns an error envelope, or None when running."""
    check = jxa.wrap(
        """
        try {
          return Application('Xcode').running() ? 'Xcode is already running' : 'Xcode is not running';
        } catch (error) {
          return 'Xcode is not running: ' + error.message;
        }
        """
    )
    try:
        if "already running" in await jxa.execute(check):
            return None
    except jxa.JXAError as exc:
        logger.debug("Xcode running check failed: %s", exc)

    try:
        developer_dir = (await run_command("xcode-select", ("-p",))).strip()
    except CommandError as exc:
        return error_result(
            f"Failed to determine Xcode path: {exc}",
            ["Ensure Xcode is properly installed and xcode-select is configured"],
        )
    if not developer_dir:
        return error_result(
            "No Xcode installation found",
            [
                "Install Xcode from the Mac App Store",
                "Run: sudo xcode-select -s /Applications/Xcode.app/Contents/Developer",
            ],
        )
    xcode_path = developer_dir.replace("/Contents/Developer", "")

    launch = jxa.wrap(
        f"""
        try {{
          const app = Application({jxa.js(xcode_path)});
          app.launch();
          let attempts = 0;
          while (!app.running() && attempts < 30) {{ delay(1); attempts++; }}
          return app.running()
            ? 'Xcode launched successfully from ' + {jxa.js(xcode_path)}
            : 'Failed to launch Xcode - timed out after 30 seconds';
        }} catch (error) {{
          return 'Failed to launch Xcode: ' + error.message;
        }}
        """
    )
    try:
        launched = await jxa.execute(launch, timeout=60)
    except jxa.JXAError as exc:
        return error_result(f"Failed to launch Xcode: {exc}")
    if "launched successfully" in launched:
        logger.info("%s", launched)
        return None
    return error_result(
        launched,
        ["Manually launching Xcode once", "Checking Xcode installation", "Ensuring sufficient system resources"],
    )


def preferred_project_path(project_path: str) -> str:
    """Prefer a sibling .xcworkspace over the .xcodeproj when one exists."""
    if project_path.endswith(".xcodeproj"):
        workspace = project_path[: -len(".xcodeproj")] + ".xcworkspace"
        if os.path.exists(workspace):
            return workspace
    return project_path


async def open_project(args: Dict[str, Any]) -> List[TextContent]:
    project_path = args["xcodeproj"]
    actual = preferred_project_path(project_path)

    failure = await ensure_xcode_running()
    if failure:
        return failure

    script = f"const app = Application('Xcode');\napp.open({jxa.js(actual)});\n'Project opened successfully';"
    try:
        result = await jxa.execute(script)
    except jxa.JXAError as exc:
        return result_text(f"Failed to open project: {exc}")
    if actual != project_path:
        return result_text(f"Opened workspace instead of project: {result}")
    return result_text(result)


async def wait_for_project_to_load(
    retries: int = PROJECT_LOAD_RETRIES,
    delay: float = PROJECT_LOAD_RETRY_DELAY_SECONDS,
) -> Optional[List[TextContent]]:
    check = jxa.wrap(
        """
        try {
          const workspace = Application('Xcode').activeWorkspaceDocument();
          if (!workspace) return JSON.stringify({ loaded: false, reason: 'No active workspace' });
          const schemes = workspace.schemes();
          if (schemes.length === 0) return JSON.stringify({ loaded: false, reason: 'Schemes not loaded yet' });
          const destinations = workspace.runDestinations();
          return JSON.stringify({ loaded: true, schemes: schemes.length, destinations: destinations.length });
        } catch (error) {
          return JSON.stringify({ loaded: false, reason: error.message });
        }
        """
    )
    last_reason = "unknown"
    for attempt in range(retries):
        try:
            status = json.loads(await jxa.execute(check))
            if status.get("loaded"):
                return None
            last_reason = status.get("reason", last_reason)
        except (jxa.JXAError, ValueError) as exc:
            if attempt == retries - 1:
                return error_result(f"Failed to check project loading status: {exc}")
        if attempt < retries - 1:
            await asyncio.sleep(delay)

    return error_result(
        f"Project failed to load after {retries} attempts ({retries * delay:g}s)\n\nLast status: {last_reason}",
        [
            "Manually opening the project in Xcode",
            "Checking if the project file is corrupted",
            "Ensuring sufficient system resources",
        ],
    )


async def open_project_and_wait(project_path: str) -> List[TextContent]:
    check = jxa.wrap(
        f"""
        try {{
          const workspace = Application('Xcode').activeWorkspaceDocument();
          if (!workspace) return JSON.stringify({{ isOpen: false }});
          if (workspace.path() === {jxa.js(project_path)}) {{
            return JSON.stringify({{ isOpen: true, isLoaded: workspace.schemes().length > 0 }});
          }}
          return JSON.stringify({{ isOpen: false, differentProject: workspace.path() }});
        }} catch (error) {{
          return JSON.stringify({{ isOpen: false, error: error.message }});
        }}
        """
    )
    try:
        status = json.loads(await jxa.execute(check))
        if status.get("isOpen") and status.get("isLoaded"):
            return result_text("Project is already open and loaded")
    except (jxa.JXAError, ValueError) as exc:
        logger.debug("Open-project check failed, opening anyway: %s", exc)

    opened = await open_project({"xcodeproj": project_path})
    if signals_failure(opened):
        return opened

    waited = await wait_for_project_to_load()
    if waited:
        return waited
    return result_text("Project opened and loaded successfully")


async def ensure_project_open(project_path: str) -> None:
    """Best-effort open before a metadata query; failures surface in the query."""
    result = await open_project_and_wait(project_path)
    logger.debug("ensure_project_open(%s): %s", project_path, result[0].text if result else "")


async def close_project(args: Dict[str, Any]) -> List[TextContent]:
    script = jxa.wrap(
        f"""
        try {{
          {jxa.workspace_script(args['xcodeproj'])}
          try {{ workspace.stop(); }} catch (e) {{}}
          workspace.close({{ saving: false }});
          return 'Project close initiated';
        }} catch (error) {{
          if (String(error.message).indexOf('Workspace not found') === 0) {{
            return 'No workspace to close (already closed)';
          }}
          return 'Close completed (may have had dialogs): ' + error.message;
        }}
        """
    )
    return result_text(await jxa.execute(script))


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------


async def get_schemes(args: Dict[str, Any]) -> List[TextContent]:
    project_path = args["xcodeproj"]
    await ensure_project_open(project_path)
    script = jxa.wrap(
        f"""
        {jxa.workspace_script(project_path)}
        const active = workspace.activeScheme();
        const info = workspace.schemes().map(s => ({{
          name: s.name(), id: s.id(), isActive: !!active && s.id() === active.id()
        }}));
        return JSON.stringify(info, null, 2);
        """
    )
    result = await jxa.execute(script)
    try:
        if json.loads(result) == []:
            return result_text("No schemes found in the project")
    except ValueError:
        pass
    return result_text(result)



def _normalize_name(name: str) -> str:
    return re.sub(r"\s+", " ", name.strip().strip("'\""))


def _available_from_error(message: str) -> List[str]:
    match = re.search(r"Available: (\[.*?\])", message)
    if not match:
        return []
    try:
        return [str(item) for item in json.loads(match.group(1))]
    except ValueError:
        return []


def _closest(target: str, candidates: List[str]) -> Optional[str]:
    lowered = target.lower()
    for candidate in candidates:
        if candidate.lower() == lowered:
            return candidate
    for candidate in candidates:
        if lowered in candidate.lower() or candidate.lower() in lowered:
            return candidate
    return None


async def select(project_path: str, kind: str, name: str) -> Optional[List[TextContent]]:
    """Make `name` the active scheme or run destination. Returns an error envelope on failure."""
    collection, prop = {
        "scheme": ("schemes", "activeScheme"),
        "destination": ("runDestinations", "activeRunDestination"),
    }[kind]
    normalized = _normalize_name(name)
    script = jxa.wrap(
        f"""
        {jxa.workspace_script(project_path)}
        const items = workspace.{collection}();
        const names = items.map(i => i.name());
        let target = items.find(i => i.name() === {jxa.js(normalized)});
        if (!target) target = items.find(i => i.name() === {jxa.js(name)});
        if (!target) throw new Error('{kind.capitalize()} not found. Available: ' + JSON.stringify(names));
        workspace.{prop} = target;
        return '{kind.capitalize()} set to ' + target.name();
        """
    )
    try:
        logger.debug("%s", await jxa.execute(script))
        return None
    except jxa.JXAError as exc:
        common = classify(exc)
        if common:
            return result_text(common)
        message = str(exc)
        if "not found" not in message:
            return result_text(f"Failed to set {kind} '{name}': {message}")
        available = _available_from_error(message)
        guidance = [f"Check the {kind} name spelling: '{name}'", f"{kind.capitalize()} names are case-sensitive"]
        if available:
            guidance.append(f"Available {kind}s:")
            guidance.extend(f"  - {item}" for item in available)
        else:
            lister = "xcode_get_schemes" if kind == "scheme" else "xcode_get_run_destinations"
            guidance.append(f"Run '{lister}' to see available {kind}s")
        best = _closest(name, available)
        if best and best != name:
            guidance.append(f"Did you mean '{best}'?")
        return error_result(f"{kind.capitalize()} '{name}' not found", guidance)



async def set_active_scheme(args: Dict[str, Any]) -> List[TextContent]:
    project_path = args["xcodeproj"]
    scheme_name = str(args["scheme_name"])
    await ensure_project_open(project_path)
    failure = await select(project_path, "scheme", scheme_name)
    if failure:
        return failure
    return result_text(f"Active scheme set to: {_normalize_name(scheme_name)}")


async def get_run_destinations(args: Dict[str, Any]) -> List[TextContent]:
    project_path = args["xcodeproj"]
    await ensure_project_open(project_path)
    script = jxa.wrap(
        f"""
        {jxa.workspace_script(project_path)}
        const active = workspace.activeRunDestination();
        const info = workspace.runDestinations().map(d => ({{
          name: d.name(), platform: d.platform(), architecture: d.architecture(),
          isActive: !!active && d.name() === active.name()
        }}));
        return JSON.stringify(info, null, 2);
        """
    )
    result = await jxa.execute(script)
    try:
        if json.loads(result) == []:
            return result_text("No run destinations found for the project")
    except ValueError:
        pass
    return result_text(result)


async def get_workspace_info(args: Dict[str, Any]) -> List[TextContent]:
    project_path = args["xcodeproj"]
    await ensure_project_open(project_path)
    script = jxa.wrap(
        f"""
        {jxa.workspace_script(project_path)}
        return JSON.stringify({{
          name: workspace.name(),
          path: workspace.path(),
          loaded: workspace.loaded(),
          activeScheme: workspace.activeScheme() ? workspace.activeScheme().name() : null,
          activeRunDestination: workspace.activeRunDestination() ? workspace.activeRunDestination().name() : null
        }}, null, 2);
        """
    )
    return result_text(await jxa.execute(script))


async def get_projects(args: Dict[str, Any]) -> List[TextContent]:
    project_path = args["xcodeproj"]
    await ensure_project_open(project_path)
    script = jxa.wrap(
        f"""
        {jxa.workspace_script(project_path)}
        return JSON.stringify(workspace.projects().map(p => ({{ name: p.name(), id: p.id() }})), null, 2);
        """
    )
    return result_text(await jxa.execute(script))


_NATIVE_TARGET_RE = re.compile(
    r"(?P<id>[0-9A-F]{24}) /\* (?P<comment>[^*]+) \*/ = \{\s*isa = PBXNativeTarget;(?P<body>.*?)\n\t\t\};",
    re.DOTALL,
)
_PRODUCT_TYPE_RE = re.compile(r'productType = "(?P<type>[^"]+)";')
_NAME_RE = re.compile(r'\bname = "?(?P<name>[^";]+)"?;')

_TEST_PRODUCT_TYPES = {
    "com.apple.product-type.bundle.unit-test": "Unit Tests",
    "com.apple.product-type.bundle.ui-testing": "UI Tests",
}


def parse_test_targets(pbxproj: str) -> List[Dict[str, str]]:
    """Extract test targets (name, identifier, type) from project.pbxproj text."""
    targets: List[Dict[str, str]] = []
    for match in _NATIVE_TARGET_RE.finditer(pbxproj):
        body = match.group("body")
        product = _PRODUCT_TYPE_RE.search(body)
        if not product or product.group("type") not in _TEST_PRODUCT_TYPES:
            continue
        name = _NAME_RE.search(body)
        targets.append(
            {
                "name": name.group("name").strip() if name else match.group("comment").strip(),
                "identifier": match.group("id"),
                "type": _TEST_PRODUCT_TYPES[product.group("type")],
            }
        )
    return targets


def _pbxproj_path(project_path: str) -> Optional[str]:
    if project_path.endswith(".xcodeproj"):
        return os.path.join(project_path, "project.pbxproj")
    sibling = project_path[: -len(".xcworkspace")] + ".xcodeproj"
    candidate = os.path.join(sibling, "project.pbxproj")
    return candidate if os.path.exists(candidate) else None


async def get_test_targets(args: Dict[str, Any]) -> List[TextContent]:
    project_path = args["xcodeproj"]
    pbxproj = _pbxproj_path(project_path)
    if pbxproj is None:
        return error_result(
            f"Could not locate project.pbxproj for {project_path}",
            ["Pass the .xcodeproj path instead of the workspace"],
        )
    with open(pbxproj, "r", encoding="utf-8", errors="replace") as fh:
        targets = parse_test_targets(fh.read())

    if not targets:
        return result_text(
            with_guidance(
                f"No test targets found in {os.path.basename(project_path)}",
                ["Add a Unit Testing Bundle or UI Testing Bundle target in Xcode"],
            )
        )
    lines = [f"Test targets in {os.path.basename(project_path)}:", ""]
    for target in targets:
        lines.append(f"• {target['name']} ({target['type']})")
        lines.append(f"  Identifier: {target['identifier']}")
    lines.append("")
    lines.append("Use test_target_name and test_target_identifier with xcode_test to run selected tests.")
    return result_text("\n".join(lines))


# ---------------------------------------------------------------------------
# Navigation
# ---------------------------------------------------------------------------


async def open_file(args: Dict[str, Any]) -> List[TextContent]:
    file_path = args["file_path"]
    try:
        validate_file_path(file_path)
    except InvalidPathError as exc:
        return result_text(exc.render())
    line_number = args.get("line_number")
    goto = ""
    if line_number:
        line = int(line_number)
        goto = f"""
        const doc = app.sourceDocuments().find(d => d.path().includes({jxa.js(os.path.basename(file_path))}));
        if (doc) app.hack({{ document: doc, start: {line}, stop: {line} }});
        """
    script = jxa.wrap(
        f"""
        const app = Application('Xcode');
        app.open({jxa.js(file_path)});
        {goto}
        return 'File opened successfully';
        """
    )
    return result_text(await jxa.execute(script))

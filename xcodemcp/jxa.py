"""jxa.py — Run JavaScript for Automation snippets through osascript."""
from __future__ import annotations

import json

from .capabilities import CommandError, CommandTimeout, run_command
from .config import JXA_TIMEOUT_SECONDS


class JXAError(RuntimeError):
    pass


async def execute(script: str, timeout: float = JXA_TIMEOUT_SECONDS) -> str:
    """Run a JXA script and return its trimmed stdout."""
    try:
        out = await run_command("osascript", ("-l", "JavaScript", "-e", script), timeout=timeout)
    except CommandTimeout:
        raise JXAError(f"JXA execution timed out after {timeout:g} seconds")
    except CommandError as exc:
        raise JXAError(f"JXA execution failed: {exc.detail}") from exc
    return out.strip()


def js(value: object) -> str:
    """Encode a Python value as a JavaScript literal."""
    return json.dumps(value)


def workspace_script(project_path: str) -> str:
    """Script prologue binding `workspace` to the open document at project_path."""
    workspace_path = project_path.replace(".xcodeproj", ".xcworkspace")
    project_only = project_path.replace(".xcworkspace", ".xcodeproj")
    return f"""
    const app = Application('Xcode');
    const documents = app.workspaceDocuments();
    let workspace = null;
    for (let i = 0; i < documents.length; i++) {{
      const docPath = documents[i].path();
      if (docPath === {js(project_path)} || docPath === {js(workspace_path)} || docPath === {js(project_only)}) {{
        workspace = documents[i];
        break;
      }}
    }}
    if (!workspace) {{
      throw new Error('Workspace not found for path: ' + {js(project_path)} +
        '. Open workspaces: ' + documents.map(d => d.path()).join(', '));
    }}
    """


def wrap(body: str) -> str:
    return f"(function() {{\n{body}\n}})()"

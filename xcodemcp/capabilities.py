"""capabilities.py — Host capability probing.

The probe checks, once per call to run_all(), whether the machine can perform
Xcode automation: macOS, an Xcode install, osascript (JXA), XCLogParser, and
automation permission for Xcode. Each check yields a CapabilityResult with a
human-readable message and ordered remediation steps.
"""
from __future__ import annotations

import asyncio
import logging
import os
import platform
import shutil
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Mapping, Sequence, Tuple

from .config import (
    CAP_OS,
    CAP_OSASCRIPT,
    CAP_PERMISSIONS,
    CAP_XCLOGPARSER,
    CAP_XCODE,
    PROBE_TIMEOUT_SECONDS,
    SERVER_NAME,
)

logger = logging.getLogger(SERVER_NAME)

CRITICAL_CAPABILITIES: FrozenSet[str] = frozenset({CAP_OS, CAP_OSASCRIPT})
PROBE_ORDER: Tuple[str, ...] = (CAP_OS, CAP_XCODE, CAP_XCLOGPARSER, CAP_OSASCRIPT, CAP_PERMISSIONS)

_XCODE_APP_PATHS = ("/Applications/Xcode.app", "/Applications/Xcode-beta.app")
_XCLOGPARSER_COMMON_PATHS = (
    "/usr/local/bin/xclogparser",
    "/opt/homebrew/bin/xclogparser",
    "/usr/bin/xclogparser",
    "/opt/local/bin/xclogparser",
)


@dataclass(frozen=True)
class CapabilityResult:
    valid: bool
    message: str
    remediation: Tuple[str, ...] = ()
    degraded_mode_available: bool = False
    limitations: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ProbeReport:
    results: Mapping[str, CapabilityResult]
    critical: FrozenSet[str] = field(default=CRITICAL_CAPABILITIES)

    def failures(self) -> List[str]:
        return [name for name, res in self.results.items() if not res.valid]


class CapabilityProbe:
    """Interface consumed by EnvironmentAssessment and the health report."""

    async def run_all(self) -> ProbeReport:
        raise NotImplementedError


class CommandError(RuntimeError):
    def __init__(self, message: str, detail: str = ""):
        super().__init__(message)
        self.detail = detail or message


class CommandTimeout(CommandError):
    pass


async def run_command(
    command: str,
    args: Sequence[str] = (),
    timeout: float = PROBE_TIMEOUT_SECONDS,
) -> str:
    """Run a command and return stdout; raise CommandError on failure."""
    logger.debug("exec %s %s", command, " ".join(args))
    try:
        proc = await asyncio.create_subprocess_exec(
            command,
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise CommandError(f"Failed to start command: {exc}") from exc

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise CommandTimeout(f"Command timed out after {timeout:g} seconds: {command}")

    if proc.returncode != 0:
        detail = stderr.decode("utf-8", "replace").strip() or "No error details"
        raise CommandError(f"Command failed with exit code {proc.returncode}: {detail}", detail)
    return stdout.decode("utf-8", "replace")


class HostCapabilityProbe(CapabilityProbe):
    """Probe the local machine with short-lived subprocesses."""

    def __init__(self, timeout: float = PROBE_TIMEOUT_SECONDS):
        self.timeout = timeout

    async def run_all(self) -> ProbeReport:
        results: Dict[str, CapabilityResult] = {
            CAP_OS: self.check_os(),
            CAP_XCODE: await self.check_xcode(),
            CAP_XCLOGPARSER: await self.check_xclogparser(),
            CAP_OSASCRIPT: await self.check_osascript(),
            CAP_PERMISSIONS: await self.check_permissions(),
        }
        return ProbeReport(results=results, critical=CRITICAL_CAPABILITIES)

    async def _run(self, command: str, *args: str) -> str:
        return await run_command(command, args, timeout=self.timeout)

    # --- individual checks ---

    def check_os(self) -> CapabilityResult:
        if platform.system() != "Darwin":
            return CapabilityResult(
                valid=False,
                message="XcodeMCP requires macOS to operate",
                remediation=(
                    "This MCP server only works on macOS",
                    "Xcode and its automation features are macOS-exclusive",
                    "Consider using this server on a Mac or macOS virtual machine",
                ),
            )
        return CapabilityResult(valid=True, message="macOS environment detected")

    async def check_xcode(self) -> CapabilityResult:
        candidates = list(_XCODE_APP_PATHS)
        try:
            candidates.extend(
                os.path.join("/Applications", name)
                for name in sorted(os.listdir("/Applications"))
                if name.startswith("Xcode-") and name.endswith(".app")
            )
        except OSError:
            pass

        xcode_path = next((p for p in candidates if os.path.exists(p)), None)
        if xcode_path is None:
            return CapabilityResult(
                valid=False,
                message="Xcode not found in /Applications",
                remediation=(
                    "Download and install Xcode from the Mac App Store",
                    "Ensure Xcode is installed in /Applications/Xcode.app",
                    "Launch Xcode once to complete installation and accept license",
                    "If using Xcode beta, ensure it is in /Applications/Xcode-beta.app",
                ),
            )

        try:
            version = await self._xcode_version(xcode_path)
        except CommandError as exc:
            return CapabilityResult(
                valid=False,
                message=f"Xcode found but appears to be corrupted or not properly installed: {exc}",
                remediation=(
                    "Try launching Xcode manually to complete setup",
                    "Accept the license agreement if prompted",
                    "Install additional components if requested",
                    "Consider reinstalling Xcode if problems persist",
                ),
            )
        return CapabilityResult(valid=True, message=f"Xcode found at {xcode_path} (version {version})")

    async def _xcode_version(self, xcode_path: str) -> str:
        info_plist = os.path.join(xcode_path, "Contents", "Info.plist")
        if not os.path.exists(info_plist):
            raise CommandError("Info.plist not found")
        try:
            out = await self._run("defaults", "read", info_plist, "CFBundleShortVersionString")
        except CommandError:
            out = await self._run(
                "plutil", "-extract", "CFBundleShortVersionString", "raw", info_plist
            )
        return out.strip()

    async def check_xclogparser(self) -> CapabilityResult:
        location = shutil.which("xclogparser")
        details: List[str] = []
        if location:
            try:
                version = (await self._run(location, "version")).strip()
                return CapabilityResult(valid=True, message=f"XCLogParser found ({version})")
            except CommandError as exc:
                details.append(f"xclogparser found at {location} but failed to execute")
                details.append(f"Error: {exc}")
        else:
            details.append("xclogparser not found in PATH")
            for candidate in _XCLOGPARSER_COMMON_PATHS:
                if os.path.isfile(candidate):
                    if os.access(candidate, os.X_OK):
                        details.append(
                            f'Found at {candidate} but not in PATH: export PATH="$PATH:{os.path.dirname(candidate)}"'
                        )
                    else:
                        details.append(f"File exists but not executable: chmod +x {candidate}")
                    break

        return CapabilityResult(
            valid=False,
            message="XCLogParser not found or not executable",
            remediation=(
                "Install XCLogParser using Homebrew: brew install xclogparser",
                "Or download from GitHub: https://github.com/MobileNativeFoundation/XCLogParser",
                "Ensure xclogparser is in your PATH",
                "Note: Build log parsing will be unavailable without XCLogParser",
            )
            + tuple(details),
            degraded_mode_available=True,
            limitations=("Build logs cannot be parsed", "Error details from builds will be limited"),
        )

    async def check_osascript(self) -> CapabilityResult:
        try:
            out = await self._run("osascript", "-l", "JavaScript", "-e", '"test"')
            if out.strip() == "test":
                return CapabilityResult(valid=True, message="JavaScript for Automation (JXA) is available")
        except CommandError:
            pass
        return CapabilityResult(
            valid=False,
            message="JavaScript for Automation (JXA) not available",
            remediation=(
                "Ensure you are running on macOS (osascript is a macOS system tool)",
                "Check if JavaScript for Automation is enabled in System Preferences",
                "Try running \"osascript -l JavaScript -e '\"test\"'\" manually",
                "This is a critical component - the server cannot function without it",
            ),
        )

    async def check_permissions(self) -> CapabilityResult:
        try:
            out = await self._run("osascript", "-l", "JavaScript", "-e", 'Application("Xcode").version()')
            if out.strip():
                return CapabilityResult(valid=True, message="Xcode automation permissions are working")
            failure = "No version returned from Xcode"
        except CommandError as exc:
            failure = str(exc)

        lowered = failure.lower()
        if "not allowed assistive access" in lowered or "not authorized" in lowered or "permission" in lowered:
            return CapabilityResult(
                valid=False,
                message="Automation permissions not granted",
                remediation=(
                    "Open System Preferences → Privacy & Security → Automation",
                    "Find your terminal application (Terminal, iTerm, VS Code, etc.)",
                    'Enable permission to control "Xcode"',
                    "You may need to restart your terminal after granting permission",
                ),
            )
        if "application isn't running" in lowered:
            return CapabilityResult(
                valid=False,
                message="Cannot test permissions - Xcode not running",
                remediation=(
                    "Launch Xcode to test automation permissions",
                    "Permissions will be validated when Xcode operations are attempted",
                ),
                degraded_mode_available=True,
                limitations=("Permission validation deferred until Xcode operations",),
            )
        return CapabilityResult(
            valid=False,
            message=f"Permission check failed: {failure}",
            remediation=(
                "Ensure Xcode is properly installed",
                "Try launching Xcode manually first",
                "Check System Preferences → Privacy & Security → Automation",
                "Grant permission for your terminal to control Xcode",
            ),
        )


def unavailable_features(results: Mapping[str, CapabilityResult]) -> List[str]:
    """Features lost given a set of probe results."""
    features: List[str] = []
    xclogparser = results.get(CAP_XCLOGPARSER)
    if xclogparser is not None and not xclogparser.valid:
        features.append("Build log parsing and detailed error reporting")
    xcode = results.get(CAP_XCODE)
    if xcode is not None and not xcode.valid:
        features.append("All Xcode operations (build, test, run, debug)")
    permissions = results.get(CAP_PERMISSIONS)
    if permissions is not None and not permissions.valid:
        features.append("Xcode automation (may work after granting permissions)")
    return features

"""admission.py — Decide whether an operation may run in the current environment.

Every catalog operation except the health check has one entry in
CLASSIFICATIONS. An entry names the operation family and the capabilities it
depends on, in the priority order they are checked. A HARD_BLOCK requirement
that failed refuses the operation; a SOFT_DEGRADE requirement that failed only
marks it degraded. The first block wins, and a degrade is returned only when
no requirement blocks.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .assessment import Assessment
from .config import CAP_OSASCRIPT, CAP_PERMISSIONS, CAP_XCLOGPARSER, CAP_XCODE, HEALTH_CHECK_TOOL

HEALTH_CHECK_INSTRUCTION = "Run the 'xcode_health_check' tool for detailed recovery instructions."


class Family(str, enum.Enum):
    PROJECT = "project"
    BUILD = "build"
    METADATA = "metadata"
    NAVIGATION = "navigation"
    XCRESULT = "xcresult"


class OnMissing(str, enum.Enum):
    HARD_BLOCK = "hard_block"
    SOFT_DEGRADE = "soft_degrade"


Requirement = Tuple[str, OnMissing]


@dataclass(frozen=True)
class OperationClassification:
    family: Family
    requirements: Tuple[Requirement, ...]

    def requires(self, capability: str) -> bool:
        return any(name == capability for name, _ in self.requirements)


@dataclass(frozen=True)
class AdmissionDecision:
    blocked: bool = False
    degraded: bool = False
    reason: Optional[str] = None
    instructions: Tuple[str, ...] = ()


ALLOW = AdmissionDecision()

# ---------------------------------------------------------------------------
# Static classification table
# ---------------------------------------------------------------------------

_AUTOMATION: Tuple[Requirement, ...] = (
    (CAP_XCODE, OnMissing.HARD_BLOCK),
    (CAP_OSASCRIPT, OnMissing.HARD_BLOCK),
)
_BUILD: Tuple[Requirement, ...] = _AUTOMATION + (
    (CAP_PERMISSIONS, OnMissing.HARD_BLOCK),
    (CAP_XCLOGPARSER, OnMissing.SOFT_DEGRADE),
)
_XCRESULT: Tuple[Requirement, ...] = ((CAP_XCODE, OnMissing.HARD_BLOCK),)
_NAVIGATION: Tuple[Requirement, ...] = ((CAP_OSASCRIPT, OnMissing.HARD_BLOCK),)


def _table() -> Dict[str, OperationClassification]:
    groups = {
        Family.PROJECT: (
            ("xcode_open_project", "xcode_close_project", "xcode_refresh_project"),
            _AUTOMATION,
        ),
        Family.BUILD: (
            ("xcode_build", "xcode_clean", "xcode_test", "xcode_build_and_run", "xcode_debug", "xcode_stop"),
            _BUILD,
        ),
        Family.METADATA: (
            (
                "xcode_get_schemes",
                "xcode_set_active_scheme",
                "xcode_get_run_destinations",
                "xcode_get_workspace_info",
                "xcode_get_projects",
                "xcode_get_test_targets",
            ),
            _AUTOMATION,
        ),
        Family.NAVIGATION: (("xcode_open_file",), _NAVIGATION),
        Family.XCRESULT: (
            (
                "find_xcresults",
                "xcresult_browse",
                "xcresult_browser_get_console",
                "xcresult_summary",
                "xcresult_get_screenshot",
                "xcresult_get_ui_hierarchy",
                "xcresult_get_ui_element",
                "xcresult_list_attachments",
                "xcresult_export_attachment",
            ),
            _XCRESULT,
        ),
    }
    table: Dict[str, OperationClassification] = {}
    for family, (names, requirements) in groups.items():
        for name in names:
            table[name] = OperationClassification(family=family, requirements=requirements)
    return table


CLASSIFICATIONS: Dict[str, OperationClassification] = _table()

# capability -> (reason, fallback instructions when the probe offered none)
_BLOCK_REASONS: Dict[str, Tuple[str, Tuple[str, ...]]] = {
    CAP_XCODE: (
        "Xcode is not properly installed or accessible",
        ("Install Xcode from the Mac App Store", "Launch Xcode once to complete installation"),
    ),
    CAP_OSASCRIPT: (
        "JavaScript for Automation (JXA) is not available",
        ("This tool requires macOS", "Ensure osascript is available"),
    ),
    CAP_PERMISSIONS: (
        "Automation permissions not granted",
        ("Grant automation permissions in System Preferences",),
    ),
}

_DEGRADE_REASONS: Dict[str, Tuple[str, Tuple[str, ...]]] = {
    CAP_XCLOGPARSER: (
        "XCLogParser not available - build results will have limited detail",
        ("Install XCLogParser with: brew install xclogparser",),
    ),
}

_XCRESULT_TOOLING = (
    "XCResult tools require Xcode Command Line Tools for xcresulttool",
    ("Install Xcode Command Line Tools: xcode-select --install", "Or install full Xcode from the Mac App Store"),
)


class AdmissionPolicy:
    """Maps (operation, assessment) to an AdmissionDecision."""

    def __init__(self, classifications: Optional[Dict[str, OperationClassification]] = None):
        self.classifications = CLASSIFICATIONS if classifications is None else classifications

    def check(self, name: str, assessment: Assessment) -> AdmissionDecision:
        if name == HEALTH_CHECK_TOOL:
            return ALLOW
        if assessment.overall_valid:
            return ALLOW
        if not assessment.can_operate_degraded:
            return self._critical_block(assessment)

        classification = self.classifications.get(name)
        if classification is None:
            return ALLOW

        degrade: Optional[AdmissionDecision] = None
        for capability, on_missing in classification.requirements:
            if not assessment.failed(capability):
                continue
            result = assessment.capability(capability)
            if on_missing is OnMissing.SOFT_DEGRADE:
                if degrade is None:
                    reason, fallback = _DEGRADE_REASONS.get(
                        capability, (f"{capability} is not available", ())
                    )
                    degrade = AdmissionDecision(
                        degraded=True,
                        reason=reason,
                        instructions=(result.remediation if result and result.remediation else fallback),
                    )
                continue
            # A permission check deferred because Xcode was not running is not a block.
            if capability == CAP_PERMISSIONS and result is not None and result.degraded_mode_available:
                continue
            if classification.family is Family.XCRESULT and capability == CAP_XCODE:
                reason, instructions = _XCRESULT_TOOLING
                return AdmissionDecision(blocked=True, reason=reason, instructions=instructions)
            reason, fallback = _BLOCK_REASONS.get(capability, (f"{capability} is not available", ()))
            return AdmissionDecision(
                blocked=True,
                reason=reason,
                instructions=(result.remediation if result and result.remediation else fallback),
            )

        return degrade or ALLOW

    def _critical_block(self, assessment: Assessment) -> AdmissionDecision:
        messages = []
        for name in sorted(assessment.critical_failures):
            result = assessment.capability(name)
            messages.append(result.message if result is not None and result.message else "Unknown failure")
        return AdmissionDecision(
            blocked=True,
            reason="Critical environment failures detected.\n\n" + ", ".join(messages),
            instructions=(HEALTH_CHECK_INSTRUCTION,),
        )

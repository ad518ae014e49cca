"""health.py — Human-readable environment health report."""
from __future__ import annotations

from typing import List, Optional

from .assessment import Assessment
from .capabilities import CapabilityProbe, HostCapabilityProbe, unavailable_features
from .config import SERVER_VERSION


def format_report(assessment: Assessment) -> str:
    lines: List[str] = [
        "XcodeMCP Configuration Health Check",
        "=" * 40,
        "",
        "XcodeMCP Environment Validation Report",
        "",
    ]
    if assessment.overall_valid:
        lines.append("✅ All systems operational")
    elif assessment.can_operate_degraded:
        lines.append("⚠️  Can operate with limitations")
    else:
        lines.append("❌ Critical failures detected - server cannot operate")
    lines.append("")

    for name, result in assessment.per_capability.items():
        status = "✅" if result.valid else "❌"
        lines.append(f"{status} {name.upper()}: {result.message or 'Status unknown'}")
        if not result.valid and result.remediation:
            lines.append("   Recovery instructions:")
            lines.extend(f"   • {step}" for step in result.remediation)
            lines.append("")
    lines.append("")

    if not assessment.overall_valid:
        lines.append("IMMEDIATE ACTIONS REQUIRED:")
        for name in sorted(assessment.critical_failures):
            result = assessment.capability(name)
            lines.append(f"\n{name.upper()} FAILURE:")
            if result is not None:
                lines.extend(f"• {step}" for step in result.remediation)
        if assessment.non_critical_failures:
            lines.append("\nOPTIONAL IMPROVEMENTS:")
            for name in sorted(assessment.non_critical_failures):
                result = assessment.capability(name)
                lines.append(f"\n{name.upper()}:")
                if result is not None:
                    lines.extend(f"• {step}" for step in result.remediation)

    features = unavailable_features(assessment.per_capability)
    if features:
        lines.append("\nLIMITED FUNCTIONALITY:")
        lines.extend(f"• {feature}" for feature in features)

    lines.append(f"\nXcodeMCP version {SERVER_VERSION}")
    return "\n".join(lines)


class HealthReporter:
    """Runs a fresh probe on every report; the admission cache is left alone."""

    def __init__(self, probe: Optional[CapabilityProbe] = None):
        self.probe = probe or HostCapabilityProbe()

    async def report(self) -> str:
        try:
            assessment = Assessment.from_report(await self.probe.run_all())
        except Exception as exc:
            assessment = Assessment.probe_failed(exc)
        return format_report(assessment)

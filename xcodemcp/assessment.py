"""assessment.py — Cached verdict on what the host environment can do.

The assessment is computed lazily on first use and then reused for the life of
the service. A capability fixed mid-session is only noticed after reset().
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import FrozenSet, Mapping, Optional

from .capabilities import CapabilityProbe, CapabilityResult, HostCapabilityProbe, ProbeReport
from .config import CAP_PROBE, SERVER_NAME

logger = logging.getLogger(SERVER_NAME)


@dataclass(frozen=True)
class Assessment:
    overall_valid: bool
    can_operate_degraded: bool
    critical_failures: FrozenSet[str] = frozenset()
    non_critical_failures: FrozenSet[str] = frozenset()
    per_capability: Mapping[str, CapabilityResult] = field(default_factory=dict)

    @property
    def verdict(self) -> str:
        if self.overall_valid:
            return "PASSED"
        return "DEGRADED" if self.can_operate_degraded else "FAILED"

    def capability(self, name: str) -> Optional[CapabilityResult]:
        return self.per_capability.get(name)

    def failed(self, name: str) -> bool:
        """True when the capability was probed and did not pass."""
        result = self.per_capability.get(name)
        return result is not None and not result.valid

    @classmethod
    def from_report(cls, report: ProbeReport) -> "Assessment":
        failures = report.failures()
        critical = frozenset(name for name in failures if name in report.critical)
        non_critical = frozenset(name for name in failures if name not in report.critical)
        return cls(
            overall_valid=not failures,
            can_operate_degraded=not critical,
            critical_failures=critical,
            non_critical_failures=non_critical,
            per_capability=dict(report.results),
        )

    @classmethod
    def probe_failed(cls, error: BaseException) -> "Assessment":
        return cls(
            overall_valid=False,
            can_operate_degraded=False,
            critical_failures=frozenset({CAP_PROBE}),
            non_critical_failures=frozenset(),
            per_capability={
                CAP_PROBE: CapabilityResult(
                    valid=False,
                    message=f"Environment validation failed: {error}",
                    remediation=("Run the 'xcode_health_check' tool to diagnose the environment",),
                )
            },
        )


class EnvironmentAssessment:
    """Owns the cached Assessment produced from a CapabilityProbe."""

    def __init__(self, probe: Optional[CapabilityProbe] = None):
        self.probe = probe or HostCapabilityProbe()
        self.probe_count = 0
        self._cached: Optional[Assessment] = None
        self._lock = asyncio.Lock()

    @property
    def cached(self) -> Optional[Assessment]:
        return self._cached

    def reset(self) -> None:
        self._cached = None

    async def get(self) -> Assessment:
        if self._cached is not None:
            return self._cached
        async with self._lock:
            if self._cached is None:
                self._cached = await self._compute()
            return self._cached

    async def _compute(self) -> Assessment:
        self.probe_count += 1
        try:
            report = await self.probe.run_all()
            assessment = Assessment.from_report(report)
        except Exception as exc:
            logger.error("Environment validation failed: %s", exc)
            return Assessment.probe_failed(exc)

        logger.info("Environment validation: %s", assessment.verdict)
        for name in sorted(assessment.critical_failures | assessment.non_critical_failures):
            result = assessment.per_capability.get(name)
            message = result.message if result is not None else "Status unknown"
            logger.warning("  %s: %s", name, message)
        return assessment

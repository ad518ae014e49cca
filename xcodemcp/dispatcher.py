"""dispatcher.py — Admission-and-dispatch engine shared by the MCP server and the CLI.

Every call runs the same pipeline: path normalization, the exempt health
check, the catalog lookup, admission against the cached environment
assessment, required-parameter checks, routing and session bookkeeping.
Nothing raised below this layer reaches the transport; every outcome is a
TextContent list.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from mcp.types import TextContent

from .admission import AdmissionPolicy
from .assessment import EnvironmentAssessment
from .catalog import (
    CLOSE_PROJECT_TOOL,
    OPEN_PROJECT_TOOL,
    PARAMETER_EXAMPLES,
    REFRESH_PROJECT_TOOL,
    get_operation,
)
from .config import HEALTH_CHECK_TOOL, INCLUDE_CLEAN, SERVER_NAME
from .envelope import first_text, result_text, signals_failure, signals_missing_project
from .errors import (
    AdmissionBlocked,
    ErrorClassifier,
    HandlerFailure,
    InvalidPathError,
    ParameterError,
    UnknownOperationError,
)
from .handlers import ToolHandlers, XcodeHandlers
from .health import HealthReporter
from .paths import normalize_arguments

logger = logging.getLogger(SERVER_NAME)

CLOSE_ATTEMPTED_TEXT = "Project close attempted - may have completed with dialogs"


class SessionState:
    """Mutable per-server state. Only the Dispatcher writes to it."""

    def __init__(self, include_destructive_ops: bool = INCLUDE_CLEAN):
        self.current_project_path: Optional[str] = None
        self.include_destructive_ops = include_destructive_ops

    def __repr__(self) -> str:
        return (
            f"SessionState(current_project_path={self.current_project_path!r}, "
            f"include_destructive_ops={self.include_destructive_ops!r})"
        )


# ---------------------------------------------------------------------------
# Handler outcomes
# ---------------------------------------------------------------------------


class Outcome:
    __slots__ = ("content",)

    def __init__(self, content: List[TextContent]):
        self.content = content


class Ok(Outcome):
    """Handler returned content without a failure marker."""


class SoftFail(Outcome):
    """Handler returned content carrying a failure marker."""


class Err(Outcome):
    """Handler raised; `error` is the original exception."""

    __slots__ = ("error",)

    def __init__(self, error: BaseException):
        super().__init__([])
        self.error = error


def tag(content: List[TextContent]) -> Outcome:
    return SoftFail(content) if signals_failure(content) else Ok(content)


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class Dispatcher:
    def __init__(
        self,
        assessment: Optional[EnvironmentAssessment] = None,
        policy: Optional[AdmissionPolicy] = None,
        handlers: Optional[ToolHandlers] = None,
        health: Optional[HealthReporter] = None,
        classifier: Optional[ErrorClassifier] = None,
        include_clean: bool = INCLUDE_CLEAN,
        cwd: Optional[str] = None,
    ):
        self.assessment = assessment or EnvironmentAssessment()
        self.policy = policy or AdmissionPolicy()
        self.handlers = handlers or XcodeHandlers()
        self.health = health or HealthReporter()
        self.classifier = classifier or ErrorClassifier()
        self.session = SessionState(include_destructive_ops=include_clean)
        self.cwd = cwd
        self._lock = asyncio.Lock()

    @property
    def current_project_path(self) -> Optional[str]:
        return self.session.current_project_path

    async def handle(self, name: str, raw_args: Optional[Dict[str, Any]] = None) -> List[TextContent]:
        async with self._lock:
            try:
                return await self._handle(name, raw_args)
            except Exception as exc:
                logger.exception("tool call failed: %s", name)
                return self._render_failure(name, exc)

    async def _handle(self, name: str, raw_args: Optional[Dict[str, Any]]) -> List[TextContent]:
        try:
            args = normalize_arguments(raw_args, cwd=self.cwd)
        except InvalidPathError as exc:
            if exc.missing:
                self.session.current_project_path = None
            logger.warning("Rejected %s: %s", name, exc)
            return result_text(exc.render())

        if name == HEALTH_CHECK_TOOL:
            return result_text(await self.health.report())

        op = get_operation(name, include_clean=self.session.include_destructive_ops)
        if op is None:
            return result_text(UnknownOperationError(name).render())

        decision = self.policy.check(name, await self.assessment.get())
        if decision.blocked:
            blocked = AdmissionBlocked(name, decision.reason, decision.instructions)
            logger.warning("Blocked %s: %s", name, decision.reason)
            return result_text(blocked.render())
        if decision.degraded:
            logger.warning("Running %s in degraded mode: %s", name, decision.reason)

        missing = op.missing_parameter(args)
        if missing:
            return result_text(ParameterError(missing, PARAMETER_EXAMPLES.get(missing, ())).render())

        outcome = await self._route(name, args)
        return self._settle(name, args, outcome)

    async def _route(self, name: str, args: Dict[str, Any]) -> Outcome:
        try:
            if name == REFRESH_PROJECT_TOOL:
                return tag(await self._refresh(args))
            return tag(await self.handlers.invoke(name, args))
        except Exception as exc:
            logger.exception("tool call failed: %s", name)
            return Err(exc)

    async def _refresh(self, args: Dict[str, Any]) -> List[TextContent]:
        project_path = args["xcodeproj"]
        await self.handlers.close_project(args)
        reopened = await self.handlers.open_project_and_wait(project_path)
        text = first_text(reopened)
        return result_text(f"Project refreshed: {text if text is not None else 'Completed'}")

    def _settle(self, name: str, args: Dict[str, Any], outcome: Outcome) -> List[TextContent]:
        if isinstance(outcome, Err):
            if name == CLOSE_PROJECT_TOOL:
                self.session.current_project_path = None
                return result_text(CLOSE_ATTEMPTED_TEXT)
            return self._render_failure(name, outcome.error)

        if name == CLOSE_PROJECT_TOOL:
            self.session.current_project_path = None
        elif isinstance(outcome, SoftFail):
            project_path = args.get("xcodeproj")
            if project_path and signals_missing_project(outcome.content, project_path):
                self.session.current_project_path = None
        elif name in (OPEN_PROJECT_TOOL, REFRESH_PROJECT_TOOL):
            self.session.current_project_path = args.get("xcodeproj")
        return outcome.content

    def _render_failure(self, name: str, error: BaseException) -> List[TextContent]:
        guidance = self.classifier.classify(error)
        if guidance:
            return result_text(guidance)
        return result_text(HandlerFailure(name, error).render())

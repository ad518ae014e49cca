import asyncio

from xcodemcp import xcresult_tools
from xcodemcp.assessment import EnvironmentAssessment
from xcodemcp.capabilities import PROBE_ORDER, CapabilityProbe, CapabilityResult, ProbeReport
from xcodemcp.dispatcher import CLOSE_ATTEMPTED_TEXT, Dispatcher, Err, Ok, SoftFail, tag
from xcodemcp.envelope import result_text
from xcodemcp.handlers import ToolHandlers, XcodeHandlers


def _run(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _healthy(**overrides):
    results = {name: CapabilityResult(valid=True, message=f"{name} ok") for name in PROBE_ORDER}
    results.update(overrides)
    return results


class _FakeProbe(CapabilityProbe):
    def __init__(self, results):
        self.results = results
        self.calls = 0

    async def run_all(self):
        self.calls += 1
        return ProbeReport(results=self.results)


class _FakeHandlers(ToolHandlers):
    def __init__(self, responses=None, errors=None):
        self.responses = responses or {}
        self.errors = errors or {}
        self.calls = []

    async def invoke(self, name, args):
        self.calls.append((name, args))
        if name in self.errors:
            raise self.errors[name]
        return result_text(self.responses.get(name, f"{name} done"))

    async def open_project_and_wait(self, project_path):
        self.calls.append(("open_and_wait", {"xcodeproj": project_path}))
        return result_text(self.responses.get("open_and_wait", "Project opened successfully"))


class _FakeHealth:
    def __init__(self):
        self.calls = 0

    async def report(self):
        self.calls += 1
        return "XcodeMCP Configuration Health Check"


def _dispatcher(results=None, handlers=None, include_clean=True, cwd=None):
    probe = _FakeProbe(_healthy() if results is None else results)
    return Dispatcher(
        assessment=EnvironmentAssessment(probe),
        handlers=handlers or _FakeHandlers(),
        health=_FakeHealth(),
        include_clean=include_clean,
        cwd=cwd,
    )


def _project(tmp_path, name="App.xcodeproj"):
    project = tmp_path / name
    project.mkdir()
    (project / "project.pbxproj").write_text("// !$*UTF8*$!\n")
    return str(project)


def _text(content):
    assert len(content) == 1
    return content[0].text


# ---------------------------------------------------------------------------
# Catalog and parameters
# ---------------------------------------------------------------------------


def test_unknown_operation_is_method_not_found_without_probing():
    dispatcher = _dispatcher()
    text = _text(_run(dispatcher.handle("xcode_teleport", {})))
    assert text.startswith("❌ Method not found: xcode_teleport")
    assert dispatcher.assessment.probe_count == 0
    assert dispatcher.handlers.calls == []


def test_clean_is_unknown_when_destructive_ops_disabled(tmp_path):
    dispatcher = _dispatcher(include_clean=False)
    text = _text(_run(dispatcher.handle("xcode_clean", {"xcodeproj": _project(tmp_path)})))
    assert text.startswith("❌ Method not found: xcode_clean")
    assert dispatcher.handlers.calls == []


def test_clean_routes_when_enabled(tmp_path):
    dispatcher = _dispatcher(include_clean=True)
    _run(dispatcher.handle("xcode_clean", {"xcodeproj": _project(tmp_path)}))
    assert [name for name, _ in dispatcher.handlers.calls] == ["xcode_clean"]


def test_missing_required_parameter_includes_example(tmp_path):
    dispatcher = _dispatcher()
    text = _text(_run(dispatcher.handle("xcode_build", {"xcodeproj": _project(tmp_path)})))
    assert text.startswith("❌ Missing required parameter: scheme")
    assert "💡 To fix this:" in text
    assert dispatcher.handlers.calls == []


def test_blank_required_parameter_is_missing(tmp_path):
    dispatcher = _dispatcher()
    text = _text(_run(dispatcher.handle("xcode_build", {"xcodeproj": _project(tmp_path), "scheme": "  "})))
    assert text.startswith("❌ Missing required parameter: scheme")


# ---------------------------------------------------------------------------
# Path normalization
# ---------------------------------------------------------------------------


def test_nonexistent_project_path_is_rejected_and_session_cleared(tmp_path):
    dispatcher = _dispatcher()
    project = _project(tmp_path)
    _run(dispatcher.handle("xcode_open_project", {"xcodeproj": project}))
    assert dispatcher.current_project_path == project

    missing = str(tmp_path / "Gone.xcodeproj")
    text = _text(_run(dispatcher.handle("xcode_build", {"xcodeproj": missing, "scheme": "App"})))
    assert text.startswith(f"❌ Project file does not exist: {missing}")
    assert dispatcher.current_project_path is None
    assert [name for name, _ in dispatcher.handlers.calls] == ["xcode_open_project"]


def test_project_without_pbxproj_is_rejected(tmp_path):
    broken = tmp_path / "Broken.xcodeproj"
    broken.mkdir()
    dispatcher = _dispatcher()
    text = _text(_run(dispatcher.handle("xcode_get_schemes", {"xcodeproj": str(broken)})))
    assert "missing project.pbxproj" in text
    assert dispatcher.handlers.calls == []


def test_relative_paths_resolve_against_cwd(tmp_path):
    _project(tmp_path)
    dispatcher = _dispatcher(cwd=str(tmp_path))
    _run(dispatcher.handle("xcode_get_schemes", {"xcodeproj": "App.xcodeproj"}))
    _run(dispatcher.handle("xcresult_summary", {"xcresult_path": "Run.xcresult"}))
    (_, schemes_args), (_, summary_args) = dispatcher.handlers.calls
    assert schemes_args["xcodeproj"] == str(tmp_path / "App.xcodeproj")
    assert summary_args["xcresult_path"] == str(tmp_path / "Run.xcresult")


def test_raw_arguments_are_not_mutated(tmp_path):
    _project(tmp_path)
    dispatcher = _dispatcher(cwd=str(tmp_path))
    raw = {"xcodeproj": "App.xcodeproj"}
    _run(dispatcher.handle("xcode_get_schemes", raw))
    assert raw == {"xcodeproj": "App.xcodeproj"}


# ---------------------------------------------------------------------------
# Admission
# ---------------------------------------------------------------------------


def test_health_check_is_exempt_from_admission():
    results = _healthy(os=CapabilityResult(valid=False, message="XcodeMCP requires macOS to operate"))
    dispatcher = _dispatcher(results)
    text = _text(_run(dispatcher.handle("xcode_health_check", {})))
    assert text == "XcodeMCP Configuration Health Check"
    assert dispatcher.health.calls == 1
    assert dispatcher.assessment.probe_count == 0


def test_critical_failure_blocks_everything_else(tmp_path):
    results = _healthy(osascript=CapabilityResult(valid=False, message="JavaScript for Automation (JXA) not available"))
    dispatcher = _dispatcher(results)
    text = _text(_run(dispatcher.handle("xcode_get_schemes", {"xcodeproj": _project(tmp_path)})))
    assert text.startswith("❌ Cannot execute xcode_get_schemes: Critical environment failures detected.")
    assert "JavaScript for Automation (JXA) not available" in text
    assert "• Run the 'xcode_health_check' tool for detailed recovery instructions." in text
    assert dispatcher.handlers.calls == []


def test_xcode_failure_blocks_build_and_metadata(tmp_path):
    results = _healthy(xcode=CapabilityResult(valid=False, message="Xcode not found", remediation=("Install Xcode",)))
    dispatcher = _dispatcher(results)
    project = _project(tmp_path)
    for name, args in (
        ("xcode_build", {"xcodeproj": project, "scheme": "App"}),
        ("xcode_get_schemes", {"xcodeproj": project}),
    ):
        text = _text(_run(dispatcher.handle(name, args)))
        assert text.startswith(f"❌ Cannot execute {name}: Xcode is not properly installed or accessible")
        assert "Recovery instructions:\n• Install Xcode" in text
    assert dispatcher.handlers.calls == []


def test_xcode_failure_blocks_xcresult_with_command_line_tools_guidance():
    results = _healthy(xcode=CapabilityResult(valid=False, message="Xcode not found"))
    dispatcher = _dispatcher(results)
    text = _text(_run(dispatcher.handle("xcresult_summary", {"xcresult_path": "/tmp/Run.xcresult"})))
    assert "XCResult tools require Xcode Command Line Tools" in text
    assert "xcode-select --install" in text


def test_xclogparser_failure_degrades_build_family(tmp_path):
    results = _healthy(xclogparser=CapabilityResult(valid=False, message="XCLogParser not found"))
    handlers = _FakeHandlers(responses={"xcode_build": "✅ BUILD SUCCESSFUL"})
    dispatcher = _dispatcher(results, handlers=handlers)
    text = _text(_run(dispatcher.handle("xcode_build", {"xcodeproj": _project(tmp_path), "scheme": "App"})))
    assert text == "✅ BUILD SUCCESSFUL"
    assert [name for name, _ in handlers.calls] == ["xcode_build"]


def test_permission_block_wins_over_degrade(tmp_path):
    results = _healthy(
        xclogparser=CapabilityResult(valid=False, message="XCLogParser not found"),
        permissions=CapabilityResult(valid=False, message="Automation permissions not granted"),
    )
    dispatcher = _dispatcher(results)
    text = _text(_run(dispatcher.handle("xcode_build", {"xcodeproj": _project(tmp_path), "scheme": "App"})))
    assert text.startswith("❌ Cannot execute xcode_build: Automation permissions not granted")


def test_assessment_is_probed_once_across_calls(tmp_path):
    dispatcher = _dispatcher()
    project = _project(tmp_path)
    _run(dispatcher.handle("xcode_get_schemes", {"xcodeproj": project}))
    _run(dispatcher.handle("xcode_get_projects", {"xcodeproj": project}))
    assert dispatcher.assessment.probe_count == 1


# ---------------------------------------------------------------------------
# Routing and session bookkeeping
# ---------------------------------------------------------------------------


def test_open_sets_and_close_clears_current_project(tmp_path):
    dispatcher = _dispatcher()
    project = _project(tmp_path)
    _run(dispatcher.handle("xcode_open_project", {"xcodeproj": project}))
    assert dispatcher.current_project_path == project
    _run(dispatcher.handle("xcode_close_project", {"xcodeproj": project}))
    assert dispatcher.current_project_path is None


def test_failed_open_leaves_session_untouched(tmp_path):
    handlers = _FakeHandlers(responses={"xcode_open_project": "Failed to open project: nope"})
    dispatcher = _dispatcher(handlers=handlers)
    _run(dispatcher.handle("xcode_open_project", {"xcodeproj": _project(tmp_path)}))
    assert dispatcher.current_project_path is None


def test_soft_failure_with_missing_project_clears_session(tmp_path):
    handlers = _FakeHandlers(responses={"xcode_get_schemes": "❌ Workspace does not exist"})
    dispatcher = _dispatcher(handlers=handlers)
    project = _project(tmp_path)
    _run(dispatcher.handle("xcode_open_project", {"xcodeproj": project}))
    text = _text(_run(dispatcher.handle("xcode_get_schemes", {"xcodeproj": project})))
    assert text == "❌ Workspace does not exist"
    assert dispatcher.current_project_path is None


def test_missing_result_bundle_keeps_current_project(tmp_path):
    async def _open(args):
        return result_text("Project opened successfully")

    handlers = XcodeHandlers({"xcode_open_project": _open, "xcresult_summary": xcresult_tools.xcresult_summary})
    dispatcher = _dispatcher(handlers=handlers)
    project = _project(tmp_path)
    _run(dispatcher.handle("xcode_open_project", {"xcodeproj": project}))

    missing = str(tmp_path / "Gone.xcresult")
    text = _text(_run(dispatcher.handle("xcresult_summary", {"xcresult_path": missing})))
    assert text.startswith("❌ XCResult file does not exist")
    assert dispatcher.current_project_path == project


def test_unrelated_missing_file_on_project_call_keeps_current_project(tmp_path):
    handlers = _FakeHandlers(responses={"xcode_get_test_targets": "❌ Test plan does not exist: /tmp/App.xctestplan"})
    dispatcher = _dispatcher(handlers=handlers)
    project = _project(tmp_path)
    _run(dispatcher.handle("xcode_open_project", {"xcodeproj": project}))
    _run(dispatcher.handle("xcode_get_test_targets", {"xcodeproj": project}))
    assert dispatcher.current_project_path == project


def test_refresh_closes_then_reopens_and_embeds_text(tmp_path):
    handlers = _FakeHandlers(responses={"open_and_wait": "Project opened successfully"})
    dispatcher = _dispatcher(handlers=handlers)
    project = _project(tmp_path)
    text = _text(_run(dispatcher.handle("xcode_refresh_project", {"xcodeproj": project})))
    assert text == "Project refreshed: Project opened successfully"
    assert [name for name, _ in handlers.calls] == ["xcode_close_project", "open_and_wait"]
    assert dispatcher.current_project_path == project


def test_refresh_keeps_empty_reopen_text(tmp_path):
    handlers = _FakeHandlers(responses={"open_and_wait": ""})
    dispatcher = _dispatcher(handlers=handlers)
    text = _text(_run(dispatcher.handle("xcode_refresh_project", {"xcodeproj": _project(tmp_path)})))
    assert text == "Project refreshed: "


def test_close_exception_becomes_soft_message(tmp_path):
    handlers = _FakeHandlers(errors={"xcode_close_project": RuntimeError("dialog appeared")})
    dispatcher = _dispatcher(handlers=handlers)
    project = _project(tmp_path)
    _run(dispatcher.handle("xcode_open_project", {"xcodeproj": project}))
    text = _text(_run(dispatcher.handle("xcode_close_project", {"xcodeproj": project})))
    assert text == CLOSE_ATTEMPTED_TEXT
    assert dispatcher.current_project_path is None


# ---------------------------------------------------------------------------
# Backstop
# ---------------------------------------------------------------------------


def test_handler_timeout_is_classified(tmp_path):
    handlers = _FakeHandlers(errors={"xcode_build": RuntimeError("JXA execution timed out after 30 seconds")})
    dispatcher = _dispatcher(handlers=handlers)
    text = _text(_run(dispatcher.handle("xcode_build", {"xcodeproj": _project(tmp_path), "scheme": "App"})))
    assert text.startswith("❌ Operation timed out")
    assert "💡 This might indicate:" in text


def test_unclassified_handler_error_points_to_health_check(tmp_path):
    handlers = _FakeHandlers(errors={"xcode_build": ValueError("boom")})
    dispatcher = _dispatcher(handlers=handlers)
    text = _text(_run(dispatcher.handle("xcode_build", {"xcodeproj": _project(tmp_path), "scheme": "App"})))
    assert text.startswith("❌ xcode_build failed: boom")
    assert "xcode_health_check" in text


def test_test_build_failure_with_timeout_wording_is_not_a_timeout(tmp_path):
    error = RuntimeError("TEST BUILD FAILED: assertion timeout: expected 5")
    handlers = _FakeHandlers(errors={"xcode_test": error})
    dispatcher = _dispatcher(handlers=handlers)
    args = {"xcodeproj": _project(tmp_path), "destination": "iPhone 16"}
    text = _text(_run(dispatcher.handle("xcode_test", args)))
    assert text.startswith("❌ xcode_test failed: TEST BUILD FAILED: assertion timeout: expected 5")
    assert "Operation timed out" not in text


def test_concurrent_calls_share_one_probe(tmp_path):
    dispatcher = _dispatcher()
    project = _project(tmp_path)

    async def _both():
        return await asyncio.gather(
            dispatcher.handle("xcode_get_schemes", {"xcodeproj": project}),
            dispatcher.handle("xcode_get_projects", {"xcodeproj": project}),
        )

    first, second = _run(_both())
    assert _text(first) == "xcode_get_schemes done"
    assert _text(second) == "xcode_get_projects done"
    assert dispatcher.assessment.probe_count == 1


def test_tag_splits_ok_and_soft_failure():
    assert isinstance(tag(result_text("✅ BUILD SUCCESSFUL")), Ok)
    assert isinstance(tag(result_text("❌ BUILD FAILED")), SoftFail)
    assert isinstance(tag(result_text("Failed to open project")), SoftFail)
    assert Err(RuntimeError("x")).content == []

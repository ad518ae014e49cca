import asyncio
from unittest.mock import patch

import pytest

from xcodemcp import capabilities
from xcodemcp.capabilities import (
    CommandError,
    CommandTimeout,
    CapabilityResult,
    HostCapabilityProbe,
    run_command,
    unavailable_features,
)


def _run(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _fake_command(outputs):
    """Build a run_command replacement keyed by the script argument."""

    async def _fake(command, args=(), timeout=None):
        key = args[-1] if args else command
        result = outputs[key]
        if isinstance(result, Exception):
            raise result
        return result

    return _fake


# ---------------------------------------------------------------------------
# run_command
# ---------------------------------------------------------------------------


def test_run_command_returns_stdout():
    assert _run(run_command("sh", ("-c", "echo hello"))).strip() == "hello"


def test_run_command_failure_carries_stderr_detail():
    with pytest.raises(CommandError) as info:
        _run(run_command("sh", ("-c", "echo broken >&2; exit 3")))
    assert "exit code 3" in str(info.value)
    assert info.value.detail == "broken"


def test_run_command_timeout():
    with pytest.raises(CommandTimeout) as info:
        _run(run_command("sh", ("-c", "sleep 5"), timeout=0.1))
    assert "timed out after 0.1 seconds" in str(info.value)


def test_run_command_missing_binary():
    with pytest.raises(CommandError) as info:
        _run(run_command("definitely-not-a-real-binary-xcodemcp"))
    assert "Failed to start command" in str(info.value)


# ---------------------------------------------------------------------------
# Host probe
# ---------------------------------------------------------------------------


def test_check_os_requires_darwin():
    probe = HostCapabilityProbe()
    with patch.object(capabilities.platform, "system", return_value="Linux"):
        result = probe.check_os()
    assert not result.valid
    assert result.message == "XcodeMCP requires macOS to operate"
    with patch.object(capabilities.platform, "system", return_value="Darwin"):
        assert probe.check_os().valid


def test_check_osascript_expects_echo():
    probe = HostCapabilityProbe()
    with patch.object(capabilities, "run_command", _fake_command({'"test"': "test\n"})):
        assert _run(probe.check_osascript()).valid
    with patch.object(capabilities, "run_command", _fake_command({'"test"': CommandError("nope")})):
        result = _run(probe.check_osascript())
    assert not result.valid
    assert result.remediation


def test_check_permissions_deferred_when_xcode_not_running():
    failure = CommandError("Command failed with exit code 1: Error: Application isn't running. (-600)")
    probe = HostCapabilityProbe()
    with patch.object(capabilities, "run_command", _fake_command({'Application("Xcode").version()': failure})):
        result = _run(probe.check_permissions())
    assert not result.valid
    assert result.degraded_mode_available
    assert result.limitations


def test_check_permissions_denied():
    failure = CommandError("execution error: Not authorized to send Apple events to Xcode. (-1743)")
    probe = HostCapabilityProbe()
    with patch.object(capabilities, "run_command", _fake_command({'Application("Xcode").version()': failure})):
        result = _run(probe.check_permissions())
    assert result.message == "Automation permissions not granted"
    assert not result.degraded_mode_available


def test_check_xclogparser_missing(monkeypatch):
    monkeypatch.setattr(capabilities.shutil, "which", lambda _name: None)
    monkeypatch.setattr(capabilities.os.path, "isfile", lambda _path: False)
    result = _run(HostCapabilityProbe().check_xclogparser())
    assert not result.valid
    assert any("brew install xclogparser" in step for step in result.remediation)


def test_unavailable_features_lists_lost_functionality():
    results = {
        "xcode": CapabilityResult(valid=False, message="missing"),
        "xclogparser": CapabilityResult(valid=False, message="missing"),
        "permissions": CapabilityResult(valid=True, message="ok"),
    }
    features = unavailable_features(results)
    assert "Build log parsing and detailed error reporting" in features
    assert "All Xcode operations (build, test, run, debug)" in features
    assert len(features) == 2

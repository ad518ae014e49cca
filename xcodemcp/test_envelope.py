from xcodemcp.envelope import (
    error_result,
    error_text,
    first_text,
    result_text,
    signals_failure,
    signals_missing_project,
    with_guidance,
)


def test_result_text_wraps_strings_and_serializes_data():
    assert result_text("hello")[0].text == "hello"
    assert result_text("hello")[0].type == "text"
    assert '"count": 2' in result_text({"count": 2})[0].text


def test_error_text_adds_marker_once():
    assert error_text("Broken") == "❌ Broken"
    assert error_text("❌ Broken") == "❌ Broken"


def test_guidance_block_shape():
    text = with_guidance("❌ Broken", ["Do this", "Then that"])
    assert text == "❌ Broken\n\n💡 To fix this:\n• Do this\n• Then that"
    assert with_guidance("❌ Broken", []) == "❌ Broken"


def test_failure_detection():
    assert signals_failure(error_result("Nope"))
    assert signals_failure(result_text("Failed to open project"))
    assert signals_failure(result_text("Error: workspace busy"))
    assert not signals_failure(result_text("Project opened successfully"))
    assert not signals_failure([])


def test_missing_project_detection():
    assert signals_missing_project(result_text("❌ Project file does not exist: /a.xcodeproj"))
    assert not signals_missing_project(result_text("❌ Failed"))
    assert not signals_missing_project(result_text("❌ XCResult file does not exist: /tmp/Run.xcresult"))
    assert not signals_missing_project(result_text("❌ File does not exist: /src/A.swift"), "/p/App.xcodeproj")
    assert signals_missing_project(result_text("Open failed: /p/App.xcodeproj does not exist"), "/p/App.xcodeproj")


def test_first_text_handles_empty_content():
    assert first_text([]) is None
    assert first_text(None) is None
    assert first_text(result_text("a")) == "a"

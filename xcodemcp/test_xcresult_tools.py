import asyncio
import json
from unittest.mock import patch

from xcodemcp import xcresult_tools
from xcodemcp.xcresult_tools import (
    XCResultReader,
    format_summary,
    iter_test_cases,
    parse_ui_hierarchy,
    slim,
)

HIERARCHY = """Attributes: Application, pid: 4242, label: 'Demo'
Element subtree:
 →Application, 0x600000c8c000, pid: 4242, label: 'Demo'
    Window (Main), 0x600000c8c1c0, {{0.0, 0.0}, {390.0, 844.0}}
      Other, 0x600000c8c380, {{0.0, 0.0}, {390.0, 844.0}}
        Button, 0x600000c8c540, {{20.0, 700.0}, {350.0, 44.0}}, identifier: 'login', label: 'Log In'
        StaticText, 0x600000c8c700, {{20.0, 100.0}, {350.0, 20.0}}, label: 'Welcome'
      Keyboard, 0x600000c8c8c0, {{0.0, 500.0}, {390.0, 344.0}}
"""

TESTS = {
    "testNodes": [
        {
            "nodeType": "Test Plan",
            "name": "App",
            "children": [
                {
                    "nodeType": "Unit test bundle",
                    "name": "AppTests",
                    "children": [
                        {
                            "nodeType": "Test Suite",
                            "name": "LoginTests",
                            "children": [
                                {
                                    "nodeType": "Test Case",
                                    "name": "testLogin()",
                                    "nodeIdentifier": "LoginTests/testLogin()",
                                    "result": "Passed",
                                },
                                {
                                    "nodeType": "Test Case",
                                    "name": "testLogout()",
                                    "nodeIdentifier": "LoginTests/testLogout()",
                                    "result": "Failed",
                                    "children": [
                                        {
                                            "nodeType": "Failure Message",
                                            "name": "LoginTests.swift:42: XCTAssertTrue failed",
                                        }
                                    ],
                                },
                            ],
                        }
                    ],
                }
            ],
        }
    ]
}


def _run(coro):
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _bundle(tmp_path):
    bundle = tmp_path / "Run.xcresult"
    bundle.mkdir()
    return str(bundle)


def test_parse_ui_hierarchy_builds_parent_links():
    elements = parse_ui_hierarchy(HIERARCHY)
    types = [e["type"] for e in elements]
    assert types == ["Application", "Window", "Other", "Button", "StaticText", "Keyboard"]

    app = elements[0]
    assert app["parent"] is None
    assert app["label"] == "Demo"
    button = elements[3]
    assert button["identifier"] == "login"
    assert button["label"] == "Log In"
    assert button["parent"] == 2
    assert elements[2]["children"] == [3, 4]
    assert elements[5]["parent"] == 1


def test_slim_drops_missing_fields():
    compact = slim(parse_ui_hierarchy(HIERARCHY))
    assert compact[1] == {"i": 1, "t": "Window"}
    assert compact[3] == {"i": 3, "t": "Button", "l": "Log In", "id": "login"}


def test_iter_test_cases_walks_nested_nodes():
    names = [node["name"] for node in iter_test_cases(TESTS["testNodes"])]
    assert names == ["testLogin()", "testLogout()"]


def test_format_summary():
    summary = {
        "result": "Failed",
        "totalTestCount": 4,
        "passedTests": 3,
        "failedTests": 1,
        "skippedTests": 0,
        "startTime": 100.0,
        "finishTime": 175.5,
        "testFailures": [
            {
                "testName": "testLogout()",
                "testIdentifierString": "LoginTests/testLogout()",
                "failureText": "XCTAssertTrue failed",
            }
        ],
    }
    text = format_summary(summary, "/tmp/Run.xcresult")
    assert "Result: ❌ Failed" in text
    assert "Total: 4 | Passed: 3 ✅ | Failed: 1 ❌ | Skipped: 0 ⏭️" in text
    assert "Pass Rate: 75.0%" in text
    assert "Duration: 1m 15s" in text
    assert "1. testLogout() (LoginTests/testLogout())" in text


def test_reader_cleans_non_finite_floats():
    async def _fake(command, args=(), timeout=None):
        return '{"duration": inf, "values": [1, nan]}'

    with patch.object(xcresult_tools, "run_command", _fake):
        data = _run(XCResultReader("/tmp/Run.xcresult").summary())
    assert data == {"duration": None, "values": [1, None]}


def test_find_test_by_identifier_and_index():
    async def _tests(self):
        return TESTS

    with patch.object(XCResultReader, "tests", _tests):
        reader = XCResultReader("/tmp/Run.xcresult")
        assert _run(reader.find_test("LoginTests/testLogout()"))["name"] == "testLogout()"
        assert _run(reader.find_test("1"))["name"] == "testLogin()"
        assert _run(reader.find_test("9")) is None


def test_browse_single_test_shows_failure_location(tmp_path):
    async def _tests(self):
        return TESTS

    with patch.object(XCResultReader, "tests", _tests):
        text = _run(xcresult_tools.xcresult_browse({"xcresult_path": _bundle(tmp_path), "test_id": "2"}))[0].text
    assert "Name: testLogout()" in text
    assert "Location: LoginTests.swift:42" in text
    assert "Message: XCTAssertTrue failed" in text


def test_browse_unknown_test(tmp_path):
    async def _tests(self):
        return TESTS

    with patch.object(XCResultReader, "tests", _tests):
        text = _run(xcresult_tools.xcresult_browse({"xcresult_path": _bundle(tmp_path), "test_id": "Nope"}))[0].text
    assert text.startswith("❌ Test 'Nope' not found")


def test_missing_bundle_is_reported(tmp_path):
    text = _run(xcresult_tools.xcresult_summary({"xcresult_path": str(tmp_path / "Gone.xcresult")}))[0].text
    assert text.startswith("❌ XCResult file does not exist")


def test_get_ui_element_reads_saved_json(tmp_path):
    elements = parse_ui_hierarchy(HIERARCHY)
    json_path = xcresult_tools.write_hierarchy_json(str(tmp_path / "hierarchy.txt"), elements)

    text = _run(
        xcresult_tools.xcresult_get_ui_element(
            {"hierarchy_json_path": json_path, "element_index": 2, "include_children": True}
        )
    )[0].text
    element = json.loads(text)
    assert element["type"] == "Other"
    assert [child["type"] for child in element["children"]] == ["Button", "StaticText"]

    out_of_range = _run(xcresult_tools.xcresult_get_ui_element({"hierarchy_json_path": json_path, "element_index": 99}))
    assert out_of_range[0].text.startswith("❌ Element index 99 out of range")


def test_export_attachment_index_validation(tmp_path):
    async def _tests(self):
        return TESTS

    async def _export(self, test_id):
        return str(tmp_path), [{"exportedFileName": "shot.png", "suggestedHumanReadableName": "Screenshot"}]

    with patch.object(XCResultReader, "tests", _tests), patch.object(XCResultReader, "export_attachments", _export):
        args = {"xcresult_path": _bundle(tmp_path), "test_id": "1", "attachment_index": 2}
        text = _run(xcresult_tools.xcresult_export_attachment(args))[0].text
        assert text.startswith("❌ Invalid attachment index 2. Test has 1 attachment(s).")

        args["attachment_index"] = 1
        text = _run(xcresult_tools.xcresult_export_attachment(args))[0].text
        assert text == f"Attachment exported to: {tmp_path / 'shot.png'}"

"""xcodemcp — Xcode automation over the Model Context Protocol.

Provides:
    - Environment assessment of macOS, Xcode, osascript, XCLogParser and automation permission
    - Per-operation admission (allow, degrade, block) against that assessment
    - A single Dispatcher shared by the MCP stdio server and the xcodecontrol CLI
    - Build, test, project and xcresult handlers driven through osascript and xcrun
"""

__version__ = "2.0.0"

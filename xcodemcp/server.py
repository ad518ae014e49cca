#!/usr/bin/env python3
"""XcodeMCP server — Xcode build, test and result-bundle tools over MCP.

Exposes the operation catalog as MCP tools on stdio. Every call goes through
the Dispatcher, which owns admission, parameter checks and error rendering,
so the SDK's own input-schema validation is turned off.

Transport: stdio
"""

from __future__ import annotations

import asyncio
import logging

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from .catalog import list_tools as catalog_tools
from .config import INCLUDE_CLEAN, SERVER_NAME, SERVER_VERSION, configure_logging
from .dispatcher import Dispatcher

logger = logging.getLogger(SERVER_NAME)


def build_server(dispatcher: Dispatcher) -> Server:
    app = Server(SERVER_NAME, version=SERVER_VERSION)

    @app.list_tools()
    async def list_tools() -> list[Tool]:
        return catalog_tools(include_clean=dispatcher.session.include_destructive_ops)

    @app.call_tool(validate_input=False)
    async def call_tool(name: str, arguments: dict) -> list[TextContent]:
        return await dispatcher.handle(name, arguments or {})

    return app


# ===================================================================
# ENTRY POINT
# ===================================================================


async def serve(dispatcher: Dispatcher = None) -> None:
    dispatcher = dispatcher or Dispatcher(include_clean=INCLUDE_CLEAN)
    logger.info("[START] XcodeMCP server v%s", SERVER_VERSION)

    # Validate the environment up front so problems show in the log before
    # the first tool call; the result is cached for admission.
    assessment = await dispatcher.assessment.get()
    if not assessment.can_operate_degraded:
        logger.error("XcodeMCP cannot operate: critical capabilities are missing. Run xcode_health_check for details.")
    elif not assessment.overall_valid:
        logger.warning("XcodeMCP starting in degraded mode")

    app = build_server(dispatcher)
    async with stdio_server() as (read_stream, write_stream):
        await app.run(read_stream, write_stream, app.create_initialization_options())


def main() -> None:
    configure_logging()
    asyncio.run(serve())


if __name__ == "__main__":
    main()

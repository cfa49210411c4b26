"""MCP Memory Server -- MCP tool server over stdio (and HTTP via http_server)."""

import asyncio
import contextvars
import logging
import sys
from typing import Optional

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from mcp_memory.config import Settings
from mcp_memory.server.handlers import HANDLERS
from mcp_memory.server.tool_schemas import TOOL_SCHEMAS

logger = logging.getLogger("mcp_memory.server")

server = Server("mcp-memory")

# Namespace of the request being served. The HTTP app sets it from the URL
# path; stdio falls back to MEMORY_NAMESPACE.
current_namespace: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "current_namespace", default=None
)


def resolve_namespace() -> Optional[str]:
    return current_namespace.get() or Settings.from_env().default_namespace


@server.list_tools()
async def list_tools() -> list[Tool]:
    """Return the memory tools."""
    return [
        Tool(
            name=schema["name"],
            description=schema["description"],
            inputSchema=schema["inputSchema"],
        )
        for schema in TOOL_SCHEMAS
    ]


@server.call_tool()
async def call_tool(name: str, arguments: dict) -> list[TextContent]:
    """Dispatch tool call to the appropriate handler."""
    handler = HANDLERS.get(name)
    if not handler:
        return [TextContent(type="text", text=f"Unknown tool: {name}")]

    namespace = resolve_namespace()
    if not namespace:
        return [TextContent(type="text", text="No namespace: set MEMORY_NAMESPACE or use /{namespace}/mcp")]

    result = await handler(arguments or {}, namespace)
    content_list = result.get("content", [{}])
    text = content_list[0].get("text", str(result)) if content_list else str(result)
    return [TextContent(type="text", text=text)]


async def main():
    """Entry point for the stdio MCP server."""
    logging.basicConfig(level=logging.WARNING, stream=sys.stderr)
    logger.info("Starting MCP memory server (namespace=%s)...", resolve_namespace())

    async with stdio_server() as (read_stream, write_stream):
        await server.run(
            read_stream,
            write_stream,
            server.create_initialization_options(),
        )


if __name__ == "__main__":
    asyncio.run(main())

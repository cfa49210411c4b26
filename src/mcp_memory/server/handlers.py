"""
MCP Memory Handlers -- Maps tool names to async handler functions.

Each handler takes the tool arguments and the caller's namespace, delegates
to the MemoryEngine from mcp_memory.bridge, and returns an MCP-compatible
response dict.
"""

import logging
from typing import Any, Dict

from mcp_memory.errors import MemoryStoreError

logger = logging.getLogger("mcp_memory.server.handlers")


# ============================================================================
# Response Helpers
# ============================================================================


def mcp_response(text: str) -> dict:
    """Build a successful MCP response."""
    return {"content": [{"type": "text", "text": str(text)}]}


def mcp_error(text: str) -> dict:
    """Build an error MCP response."""
    return {"content": [{"type": "text", "text": text}], "isError": True}


def format_hits(hits) -> str:
    if not hits:
        return "No relevant memories found."
    return "Found memories:\n" + "\n".join(f"{h.content} (score: {h.score:.4f})" for h in hits)


# ============================================================================
# Handler: addToMCPMemory
# ============================================================================


async def handle_add_memory(arguments: dict, namespace: str) -> dict:
    """Store a statement for the caller."""
    content = arguments.get("thingToRemember") or ""
    if not isinstance(content, str) or not content.strip():
        return mcp_error("Failed to remember: thingToRemember is required")

    try:
        from mcp_memory.bridge import get_engine

        memory_id = await get_engine().remember(content, namespace)
    except MemoryStoreError as e:
        logger.error("addToMCPMemory failed: %s", e)
        return mcp_error(f"Failed to remember: {e}")

    logger.info("Memory %s stored for namespace %s", memory_id, namespace)
    return mcp_response("Remembered: " + content)


# ============================================================================
# Handler: searchMCPMemory
# ============================================================================


async def handle_search_memory(arguments: dict, namespace: str) -> dict:
    """Semantic search over the caller's memories."""
    query_text = arguments.get("informationToGet") or ""
    if not isinstance(query_text, str) or not query_text.strip():
        return mcp_error("Failed to search memories: informationToGet is required")

    try:
        from mcp_memory.bridge import get_engine

        hits = await get_engine().search(query_text, namespace)
    except MemoryStoreError as e:
        logger.error("searchMCPMemory failed: %s", e)
        return mcp_error(f"Failed to search memories: {e}")

    logger.debug("Search returned %d matches for namespace %s", len(hits), namespace)
    return mcp_response(format_hits(hits))


HANDLERS: Dict[str, Any] = {
    "addToMCPMemory": handle_add_memory,
    "searchMCPMemory": handle_search_memory,
}

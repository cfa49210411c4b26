"""MCP Memory server tests -- tool registry, handlers, and call_tool dispatch."""
import pytest

from mcp_memory.errors import RecordStoreError
from mcp_memory.server.handlers import HANDLERS, format_hits, mcp_error, mcp_response
from mcp_memory.server.tool_schemas import TOOL_SCHEMAS


# ============================================================================
# Schema / Registry Tests
# ============================================================================


def test_all_tools_have_handlers():
    """Every tool in TOOL_SCHEMAS should have a handler."""
    for schema in TOOL_SCHEMAS:
        assert schema["name"] in HANDLERS, f"Missing handler for {schema['name']}"


def test_tool_schemas_valid():
    for schema in TOOL_SCHEMAS:
        assert schema["description"]
        assert schema["inputSchema"]["type"] == "object"
        assert len(schema["inputSchema"]["required"]) == 1
    assert {s["name"] for s in TOOL_SCHEMAS} == {"addToMCPMemory", "searchMCPMemory"}


def test_response_helpers():
    assert mcp_response("ok") == {"content": [{"type": "text", "text": "ok"}]}
    err = mcp_error("bad")
    assert err["isError"] is True
    assert err["content"][0]["text"] == "bad"


def test_format_hits_empty():
    assert format_hits([]) == "No relevant memories found."


# ============================================================================
# Handlers
# ============================================================================


def _text(result):
    return result["content"][0]["text"]


@pytest.mark.usefixtures("bridge_engine")
class TestHandlers:
    @pytest.mark.asyncio
    async def test_add_memory(self, engine):
        result = await HANDLERS["addToMCPMemory"]({"thingToRemember": "I like dark roast coffee"}, "alice")
        assert not result.get("isError")
        assert _text(result) == "Remembered: I like dark roast coffee"
        assert [r.content for r in await engine.list_all("alice")] == ["I like dark roast coffee"]

    @pytest.mark.asyncio
    async def test_add_memory_requires_text(self):
        result = await HANDLERS["addToMCPMemory"]({"thingToRemember": "  "}, "alice")
        assert result["isError"] is True
        assert _text(result).startswith("Failed to remember:")

    @pytest.mark.asyncio
    async def test_add_memory_store_failure(self, engine, monkeypatch):
        def broken(*args, **kwargs):
            raise RecordStoreError("disk I/O error", operation="record insert")

        await engine.list_all("alice")
        monkeypatch.setattr(engine.records, "insert", broken)
        result = await HANDLERS["addToMCPMemory"]({"thingToRemember": "I like tea"}, "alice")
        assert result["isError"] is True
        assert "Failed to remember:" in _text(result)
        assert "disk I/O error" in _text(result)

    @pytest.mark.asyncio
    async def test_search_memory_found(self):
        await HANDLERS["addToMCPMemory"]({"thingToRemember": "I like dark roast coffee"}, "alice")
        result = await HANDLERS["searchMCPMemory"]({"informationToGet": "coffee preference"}, "alice")
        text = _text(result)
        assert text.startswith("Found memories:\n")
        assert "I like dark roast coffee (score: 0." in text

    @pytest.mark.asyncio
    async def test_search_memory_none(self):
        await HANDLERS["addToMCPMemory"]({"thingToRemember": "I like tea"}, "bob")
        result = await HANDLERS["searchMCPMemory"]({"informationToGet": "coffee preference"}, "bob")
        assert _text(result) == "No relevant memories found."

    @pytest.mark.asyncio
    async def test_search_is_namespace_scoped(self):
        await HANDLERS["addToMCPMemory"]({"thingToRemember": "I like dark roast coffee"}, "alice")
        result = await HANDLERS["searchMCPMemory"]({"informationToGet": "coffee"}, "bob")
        assert _text(result) == "No relevant memories found."

    @pytest.mark.asyncio
    async def test_search_requires_query(self):
        result = await HANDLERS["searchMCPMemory"]({}, "alice")
        assert result["isError"] is True


# ============================================================================
# call_tool dispatch
# ============================================================================


@pytest.mark.usefixtures("bridge_engine")
class TestCallTool:
    @pytest.mark.asyncio
    async def test_list_tools(self):
        from mcp_memory.server.mcp_server import list_tools

        tools = await list_tools()
        assert [t.name for t in tools] == ["addToMCPMemory", "searchMCPMemory"]

    @pytest.mark.asyncio
    async def test_uses_context_namespace(self, engine):
        from mcp_memory.server.mcp_server import call_tool, current_namespace

        token = current_namespace.set("carol")
        try:
            out = await call_tool("addToMCPMemory", {"thingToRemember": "I like espresso"})
        finally:
            current_namespace.reset(token)
        assert out[0].text == "Remembered: I like espresso"
        assert len(await engine.list_all("carol")) == 1

    @pytest.mark.asyncio
    async def test_falls_back_to_env_namespace(self, engine, monkeypatch):
        from mcp_memory.server.mcp_server import call_tool

        monkeypatch.setenv("MEMORY_NAMESPACE", "dave")
        await call_tool("addToMCPMemory", {"thingToRemember": "I like tea"})
        assert len(await engine.list_all("dave")) == 1

    @pytest.mark.asyncio
    async def test_no_namespace(self):
        from mcp_memory.server.mcp_server import call_tool

        out = await call_tool("searchMCPMemory", {"informationToGet": "tea"})
        assert "No namespace" in out[0].text

    @pytest.mark.asyncio
    async def test_unknown_tool(self):
        from mcp_memory.server.mcp_server import call_tool

        out = await call_tool("nope", {})
        assert out[0].text == "Unknown tool: nope"

"""MCP Memory HTTP Server -- memory management routes plus Streamable HTTP MCP.

Routes:
    GET    /{namespace}/memories              list a namespace's memories, newest first
    PUT    /{namespace}/memories/{memory_id}  replace content (JSON body {"content": ...})
    DELETE /{namespace}/memories/{memory_id}  forget a memory
    GET    /health
    GET    /.well-known/mcp.json              server card
    *      /{namespace}/mcp                   MCP endpoint, tools scoped to the namespace

Engine errors map to HTTP status: ValidationError 400, NotFoundError 404,
anything else 500.
"""

import contextlib
import logging
from collections.abc import AsyncIterator

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Mount, Route
from starlette.types import Receive, Scope, Send

from mcp.server.streamable_http_manager import StreamableHTTPSessionManager

from mcp_memory.errors import MemoryStoreError, NotFoundError, ValidationError

logger = logging.getLogger("mcp_memory.server.http")


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"success": False, "error": message}, status_code=status_code)


def _status_for(exc: MemoryStoreError) -> int:
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    return 500


def create_http_app(server, api_key: str | None = None) -> Starlette:
    """Create a Starlette ASGI app serving the memory routes and the MCP server.

    Args:
        server: The MCP Server instance from mcp_server.py.
        api_key: Optional API key for authentication. None disables auth.
    """
    from mcp_memory.bridge import get_engine
    from mcp_memory.server.mcp_server import current_namespace

    session_manager = StreamableHTTPSessionManager(
        app=server,
        json_response=True,
        stateless=True,
    )

    def _authorized(request: Request) -> bool:
        if not api_key:
            return True
        provided = request.headers.get("x-api-key") or request.query_params.get("api_key")
        return provided == api_key

    async def mcp_asgi_app(scope: Scope, receive: Receive, send: Send) -> None:
        """ASGI app for /{namespace}/mcp -- delegates to StreamableHTTPSessionManager."""
        request = Request(scope, receive)
        if not _authorized(request):
            response = JSONResponse({"error": "Unauthorized"}, status_code=401)
            await response(scope, receive, send)
            return
        token = current_namespace.set(scope.get("path_params", {}).get("namespace"))
        try:
            await session_manager.handle_request(scope, receive, send)
        finally:
            current_namespace.reset(token)

    async def list_memories(request: Request):
        if not _authorized(request):
            return _error("Unauthorized", 401)
        namespace = request.path_params["namespace"]
        try:
            records = await get_engine().list_all(namespace)
        except MemoryStoreError as e:
            logger.error("Listing memories for %s failed: %s", namespace, e)
            return _error("Failed to retrieve memories", _status_for(e))
        return JSONResponse({"success": True, "memories": [r.to_dict() for r in records]})

    async def update_memory(request: Request):
        if not _authorized(request):
            return _error("Unauthorized", 401)
        namespace = request.path_params["namespace"]
        memory_id = request.path_params["memory_id"]
        try:
            body = await request.json()
        except ValueError as e:
            logger.warning("Unparseable update body for %s: %s", memory_id, e)
            return _error("Failed to parse request body", 400)
        content = body.get("content") if isinstance(body, dict) else None
        if not isinstance(content, str) or not content.strip():
            return _error("Invalid or missing content in request body", 400)

        try:
            change = await get_engine().update(memory_id, namespace, content.strip())
        except MemoryStoreError as e:
            logger.error("Updating memory %s for %s failed: %s", memory_id, namespace, e)
            return _error(str(e), _status_for(e))
        return JSONResponse({"success": True, **change.to_dict()})

    async def delete_memory(request: Request):
        if not _authorized(request):
            return _error("Unauthorized", 401)
        namespace = request.path_params["namespace"]
        memory_id = request.path_params["memory_id"]
        try:
            change = await get_engine().forget(memory_id, namespace)
        except MemoryStoreError as e:
            logger.error("Deleting memory %s for %s failed: %s", memory_id, namespace, e)
            return _error("Failed to delete memory", _status_for(e))
        return JSONResponse({"success": True, **change.to_dict()})

    async def health(request: Request):
        return JSONResponse({"status": "ok", "server": "mcp-memory"})

    async def server_card(request: Request):
        from mcp_memory import __version__
        from mcp_memory.server.tool_schemas import TOOL_SCHEMAS

        return JSONResponse({
            "name": "mcp-memory",
            "version": __version__,
            "description": "Per-user semantic memory for AI agents",
            "transports": [
                {"type": "streamable-http", "url": "/{namespace}/mcp"},
                {"type": "stdio", "command": "mcp-memory serve"},
            ],
            "tools": [schema["name"] for schema in TOOL_SCHEMAS],
        })

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        async with session_manager.run():
            yield

    app = Starlette(
        routes=[
            Route("/health", endpoint=health),
            Route("/.well-known/mcp.json", endpoint=server_card),
            Route("/{namespace}/memories", endpoint=list_memories, methods=["GET"]),
            Route("/{namespace}/memories/{memory_id}", endpoint=update_memory, methods=["PUT"]),
            Route("/{namespace}/memories/{memory_id}", endpoint=delete_memory, methods=["DELETE"]),
            Mount("/{namespace}/mcp", app=mcp_asgi_app),
        ],
        lifespan=lifespan,
    )
    return app


async def run_http(host: str, port: int, api_key: str | None) -> None:
    """Create the HTTP app around the MCP server and run uvicorn."""
    import uvicorn

    from mcp_memory.server.mcp_server import server

    app = create_http_app(server, api_key=api_key)
    config = uvicorn.Config(app, host=host, port=port, log_level="info")
    srv = uvicorn.Server(config)
    await srv.serve()

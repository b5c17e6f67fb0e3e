"""
HTTP front end for the Conduit MCP client.

Every route maps onto one registry, dispatcher or orchestrator call.
Errors are returned as {"success": false, "error": {...}} bodies.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from conduit_mcp import __version__
from conduit_mcp.app import ConduitApp
from conduit_mcp.errors import ConduitError, NotConnectedError
from conduit_mcp.mcp.server_registry import ServerCapabilities
from conduit_mcp.utils.logging import get_logger

logger = get_logger(__name__)


class ToolCallRequest(BaseModel):
    arguments: Optional[Dict[str, Any]] = None
    args: Optional[Dict[str, Any]] = None

    def resolved_arguments(self) -> Dict[str, Any]:
        if self.arguments is not None:
            return self.arguments
        return self.args or {}


class PromptRequest(BaseModel):
    arguments: Dict[str, str] = Field(default_factory=dict)


class QueryRequest(BaseModel):
    query: Optional[str] = None
    server: Optional[str] = None


def _dump(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


def error_response(status_code: int, error: ConduitError, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error.to_dict(), **extra},
    )


def configure_exception_handlers(api: FastAPI) -> None:
    """Map ConduitError subclasses onto HTTP status codes."""

    @api.exception_handler(ConduitError)
    async def conduit_error_handler(request: Request, exc: ConduitError) -> JSONResponse:
        if isinstance(exc, NotConnectedError):
            return error_response(404, exc)
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return error_response(500, exc)


def _conduit(request: Request) -> ConduitApp:
    return request.app.state.conduit


def _capabilities(conduit: ConduitApp, server_name: str) -> ServerCapabilities:
    capabilities = conduit.registry.get(server_name)
    if capabilities is None:
        raise NotConnectedError(server_name)
    return capabilities


def create_api(conduit_app: ConduitApp, manage_lifecycle: bool = True) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        conduit_app: The application whose servers the routes expose.
        manage_lifecycle: If True, the FastAPI lifespan enters conduit_app.run(),
            connecting servers on startup and disconnecting them on shutdown.
            Pass False when the caller already runs the app.
    """

    @asynccontextmanager
    async def lifespan(api: FastAPI):
        if manage_lifecycle:
            async with conduit_app.run():
                logger.info(f"Serving {len(conduit_app.connected_servers)} connected server(s)")
                yield
        else:
            yield

    api = FastAPI(title="Conduit MCP", version=__version__, lifespan=lifespan)
    api.state.conduit = conduit_app
    configure_exception_handlers(api)

    @api.get("/api/health")
    async def health(request: Request):
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "connectedServers": _conduit(request).registry.list_ids(),
            "version": __version__,
        }

    @api.get("/api/servers")
    async def list_servers(request: Request):
        servers = _conduit(request).registry.get_all()
        return {"servers": {name: _dump(caps) for name, caps in servers.items()}}

    @api.get("/api/servers/{server_name}")
    async def get_server(server_name: str, request: Request):
        return _dump(_capabilities(_conduit(request), server_name))

    @api.get("/api/servers/{server_name}/tools")
    async def list_tools(server_name: str, request: Request):
        capabilities = _capabilities(_conduit(request), server_name)
        return {"tools": [_dump(tool) for tool in capabilities.tools]}

    @api.get("/api/servers/{server_name}/resources")
    async def list_resources(server_name: str, request: Request):
        capabilities = _capabilities(_conduit(request), server_name)
        return {"resources": [_dump(resource) for resource in capabilities.resources]}

    @api.get("/api/servers/{server_name}/prompts")
    async def list_prompts(server_name: str, request: Request):
        capabilities = _capabilities(_conduit(request), server_name)
        return {"prompts": [_dump(prompt) for prompt in capabilities.prompts]}

    @api.post("/api/servers/{server_name}/tools/{tool_name}")
    async def call_tool(
        server_name: str,
        tool_name: str,
        request: Request,
        body: Optional[ToolCallRequest] = None,
    ):
        arguments = body.resolved_arguments() if body else {}
        context = {"serverName": server_name, "toolName": tool_name, "arguments": arguments}
        try:
            result = await _conduit(request).dispatcher.call_tool(server_name, tool_name, arguments)
        except NotConnectedError as e:
            return error_response(404, e, **context)
        except ConduitError as e:
            logger.error(f"Tool call {server_name}.{tool_name} failed: {e}")
            return error_response(500, e, **context)
        return {"success": True, "result": _dump(result), **context}

    @api.get("/api/servers/{server_name}/resources/{uri:path}")
    async def read_resource(server_name: str, uri: str, request: Request):
        context = {"serverName": server_name, "uri": uri}
        try:
            result = await _conduit(request).dispatcher.read_resource(server_name, uri)
        except NotConnectedError as e:
            return error_response(404, e, **context)
        except ConduitError as e:
            logger.error(f"Reading {uri} from {server_name} failed: {e}")
            return error_response(500, e, **context)
        return {"success": True, "result": _dump(result), **context}

    @api.post("/api/servers/{server_name}/prompts/{prompt_name}")
    async def get_prompt(
        server_name: str,
        prompt_name: str,
        request: Request,
        body: Optional[PromptRequest] = None,
    ):
        arguments = body.arguments if body else {}
        context = {"serverName": server_name, "promptName": prompt_name}
        try:
            result = await _conduit(request).dispatcher.get_prompt(
                server_name, prompt_name, arguments or None
            )
        except NotConnectedError as e:
            return error_response(404, e, **context)
        except ConduitError as e:
            return error_response(500, e, **context)
        return {"success": True, "result": _dump(result), **context}

    @api.post("/api/servers/{server_name}/ping")
    async def ping(server_name: str, request: Request):
        alive = await _conduit(request).dispatcher.is_alive(server_name)
        return {"success": True, "alive": alive, "serverName": server_name}

    @api.post("/api/query")
    async def query(body: QueryRequest, request: Request):
        context = {"query": body.query, "server": body.server or "all"}
        if not body.query:
            return JSONResponse(
                status_code=400,
                content={
                    "success": False,
                    "error": {"type": "ValidationError", "message": "Query is required"},
                },
            )
        try:
            response = await _conduit(request).orchestrator.query(
                body.query, preferred_server=body.server
            )
        except ConduitError as e:
            logger.error(f"Query failed: {e}")
            return error_response(500, e, **context)
        return {"success": True, "response": response, **context}

    @api.get("/api/tools")
    async def list_all_tools(request: Request):
        tools = _conduit(request).registry.list_all_tools()
        return {"tools": {name: [_dump(tool) for tool in server_tools] for name, server_tools in tools.items()}}

    @api.get("/api/resources")
    async def list_all_resources(request: Request):
        resources = _conduit(request).registry.list_all_resources()
        return {
            "resources": {
                name: [_dump(resource) for resource in server_resources] for name, server_resources in resources.items()
            }
        }

    @api.get("/api/tools/find/{tool_name}")
    async def find_tool(tool_name: str, request: Request):
        matches = _conduit(request).registry.find_tool(tool_name)
        return {
            "toolName": tool_name,
            "found": bool(matches),
            "results": [{"server": server_name, "tool": _dump(tool)} for server_name, tool in matches],
        }

    return api

"""MCP method dispatch for one server instance shared by all sessions."""
from typing import Any, Awaitable, Callable, Dict
import structlog

from deepreasoning_node import __version__
from deepreasoning_node.errors import JsonRpcError
from deepreasoning_node.mcp.protocol import (
    INVALID_PARAMS,
    LATEST_PROTOCOL_VERSION,
    METHOD_NOT_FOUND,
    SUPPORTED_PROTOCOL_VERSIONS,
    RequestContext,
)
from deepreasoning_node.tools.registry import ToolRegistry

logger = structlog.get_logger()

SERVER_INFO = {
    "name": "local-deepreasoning-node",
    "title": "Local DeepReasoning Knowledge Node",
    "version": __version__,
}

SERVER_CAPABILITIES = {
    "tools": {"listChanged": False},
    "logging": {},
}

Handler = Callable[[Dict[str, Any], RequestContext], Awaitable[Dict[str, Any]]]


def negotiate_protocol_version(requested: Any) -> str:
    """Echo a supported client version, otherwise offer the latest one."""
    if requested in SUPPORTED_PROTOCOL_VERSIONS:
        return requested
    return LATEST_PROTOCOL_VERSION


class McpServer:
    """Routes JSON-RPC requests to their method handlers."""

    def __init__(self, registry: ToolRegistry):
        self.registry = registry
        self._handlers: Dict[str, Handler] = {
            "initialize": self._initialize,
            "ping": self._ping,
            "tools/list": self._list_tools,
            "tools/call": self._call_tool,
        }

    async def dispatch(
        self, method: str, params: Dict[str, Any], context: RequestContext
    ) -> Dict[str, Any]:
        """Run the handler for ``method``.

        Raises:
            JsonRpcError: METHOD_NOT_FOUND for unknown methods, INVALID_PARAMS
                for malformed parameters
        """
        handler = self._handlers.get(method)
        if handler is None:
            raise JsonRpcError(METHOD_NOT_FOUND, f"Method not found: {method}")
        return await handler(params, context)

    async def _initialize(self, params: Dict[str, Any], context: RequestContext) -> Dict[str, Any]:
        requested = params.get("protocolVersion")
        version = negotiate_protocol_version(requested)
        context.channel.protocol_version = version

        client_info = params.get("clientInfo") or {}
        logger.info(
            "mcp_initialize",
            client=client_info.get("name"),
            requested_version=requested,
            protocol_version=version,
        )

        return {
            "protocolVersion": version,
            "capabilities": SERVER_CAPABILITIES,
            "serverInfo": SERVER_INFO,
        }

    async def _ping(self, params: Dict[str, Any], context: RequestContext) -> Dict[str, Any]:
        return {}

    async def _list_tools(self, params: Dict[str, Any], context: RequestContext) -> Dict[str, Any]:
        return {"tools": self.registry.list_definitions()}

    async def _call_tool(self, params: Dict[str, Any], context: RequestContext) -> Dict[str, Any]:
        name = params.get("name")
        arguments = params.get("arguments", {})

        if not isinstance(name, str) or not name:
            raise JsonRpcError(INVALID_PARAMS, "Invalid params: 'name' must be a non-empty string")
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            raise JsonRpcError(INVALID_PARAMS, "Invalid params: 'arguments' must be an object")

        outcome = await self.registry.execute_tool(name, arguments, context)
        return outcome.to_call_result()

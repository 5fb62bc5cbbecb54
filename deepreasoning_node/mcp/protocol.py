"""JSON-RPC 2.0 message shapes and constants for the MCP transport."""
import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Optional, Union
from pydantic import BaseModel, ConfigDict, StrictInt, StrictStr, ValidationError

from deepreasoning_node.cancellation import CancellationToken
from deepreasoning_node.errors import JsonRpcError

if TYPE_CHECKING:
    from deepreasoning_node.mcp.channel import SessionChannel

JSONRPC_VERSION = "2.0"
SESSION_HEADER = "mcp-session-id"

LATEST_PROTOCOL_VERSION = "2025-06-18"
SUPPORTED_PROTOCOL_VERSIONS = ("2025-06-18", "2025-03-26", "2024-11-05")

# JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
SESSION_ERROR = -32000

RequestId = Union[StrictStr, StrictInt]


class JsonRpcMessage(BaseModel):
    """Any inbound JSON-RPC message: request, notification or response."""

    model_config = ConfigDict(extra="allow")

    jsonrpc: str
    id: Optional[RequestId] = None
    method: Optional[str] = None
    params: Optional[Dict[str, Any]] = None
    result: Optional[Any] = None
    error: Optional[Dict[str, Any]] = None

    @property
    def is_request(self) -> bool:
        return self.method is not None and self.id is not None

    @property
    def is_notification(self) -> bool:
        return self.method is not None and self.id is None

    @property
    def is_response(self) -> bool:
        return self.method is None and self.id is not None


def parse_message(body: Any) -> JsonRpcMessage:
    """Validate a decoded request body as one JSON-RPC message.

    Raises:
        JsonRpcError: INVALID_REQUEST if the body is not a JSON-RPC 2.0 object
    """
    if not isinstance(body, dict):
        raise JsonRpcError(INVALID_REQUEST, "Invalid Request: expected a JSON-RPC object")

    try:
        message = JsonRpcMessage.model_validate(body)
    except ValidationError as e:
        raise JsonRpcError(INVALID_REQUEST, "Invalid Request", data=str(e)) from e

    if message.jsonrpc != JSONRPC_VERSION:
        raise JsonRpcError(INVALID_REQUEST, "Invalid Request: jsonrpc must be '2.0'")

    if message.method is None and message.id is None:
        raise JsonRpcError(INVALID_REQUEST, "Invalid Request: missing method")

    return message


def is_initialize_request(body: Any) -> bool:
    return (
        isinstance(body, dict)
        and body.get("jsonrpc") == JSONRPC_VERSION
        and body.get("method") == "initialize"
        and body.get("id") is not None
    )


def make_response(request_id: Any, result: Dict[str, Any]) -> Dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def make_error(request_id: Any, code: int, message: str, data: Any = None) -> Dict[str, Any]:
    error: Dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": JSONRPC_VERSION, "error": error, "id": request_id}


def make_notification(method: str, params: Dict[str, Any]) -> Dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "method": method, "params": params}


def format_sse(message: Dict[str, Any]) -> bytes:
    """Encode one JSON-RPC message as a server-sent event frame."""
    return f"event: message\ndata: {json.dumps(message, ensure_ascii=False)}\n\n".encode("utf-8")


SSE_KEEPALIVE_FRAME = b": keep-alive\n\n"

INVALID_SESSION_PAYLOAD = make_error(None, SESSION_ERROR, "Invalid session. Initialize first.")
INTERNAL_ERROR_PAYLOAD = make_error(None, INTERNAL_ERROR, "Internal server error")


@dataclass
class RequestContext:
    """Per-request state handed to method handlers and tools."""

    request_id: Any
    cancel: CancellationToken
    channel: "SessionChannel"
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def progress_token(self) -> Optional[Union[str, int]]:
        return self.meta.get("progressToken")

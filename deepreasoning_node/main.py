"""Quart application serving the knowledge node over MCP streamable HTTP."""
import asyncio
import json
import logging
import sys

from quart import Blueprint, Quart, current_app, jsonify, make_response, request
import structlog

from deepreasoning_node import config
from deepreasoning_node.errors import JsonRpcError, KnowledgeBaseNotFoundError, SessionError
from deepreasoning_node.llm_client import OllamaClient
from deepreasoning_node.mcp.protocol import (
    INTERNAL_ERROR_PAYLOAD,
    INVALID_SESSION_PAYLOAD,
    PARSE_ERROR,
    SESSION_HEADER,
    make_error,
    parse_message,
)
from deepreasoning_node.mcp.server import McpServer
from deepreasoning_node.mcp.transport_manager import TransportManager
from deepreasoning_node.rag.knowledge_base import KnowledgeBaseIndex
from deepreasoning_node.tools import build_registry

# Configure structured logging
logging.basicConfig(format="%(message)s", stream=sys.stdout, level=config.LOG_LEVEL)
structlog.configure(
    processors=[
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = structlog.get_logger()

MISSING_SESSION_TEXT = "Missing or unknown mcp-session-id header"

SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

bp = Blueprint("mcp", __name__)


def _services():
    return current_app.extensions["deepreasoning"]


def _wants_event_stream() -> bool:
    return "text/event-stream" in request.headers.get("Accept", "")


def _model_available(name: str, models) -> bool:
    """Match a configured model name against Ollama's tagged model list.

    An untagged name such as ``bge-m3`` refers to ``bge-m3:latest``.
    """
    if name in models:
        return True
    return ":" not in name and f"{name}:latest" in models


async def _event_stream_response(frames, session_id: str):
    response = await make_response(frames, 200, {**SSE_HEADERS, SESSION_HEADER: session_id})
    response.timeout = None
    return response


@bp.route("/messages", methods=["POST"])
async def post_message():
    """Accept one JSON-RPC message for a session.

    Initialize requests create the session and return its id in the
    ``mcp-session-id`` header. Requests are answered with JSON, or over a
    per-request event stream when the client accepts ``text/event-stream``;
    notifications are acknowledged with 202.
    """
    transport: TransportManager = _services()["transport"]

    raw = await request.get_data(as_text=True)
    try:
        body = json.loads(raw)
    except ValueError as e:
        logger.warning("message_parse_failed", error=str(e))
        return jsonify(make_error(None, PARSE_ERROR, "Parse error")), 400

    try:
        message = parse_message(body)
    except JsonRpcError as e:
        request_id = body.get("id") if isinstance(body, dict) else None
        return jsonify(make_error(request_id, e.code, e.message, e.data)), 400

    session_id = request.headers.get(SESSION_HEADER)
    channel = await transport.ensure_channel(session_id, body)
    if channel is None:
        return jsonify(INVALID_SESSION_PAYLOAD), 400

    try:
        if message.is_request and message.method != "initialize" and _wants_event_stream():
            keepalive = _services()["sse_keepalive"]
            return await _event_stream_response(
                channel.stream_request(message, keepalive), channel.session_id
            )

        response = await channel.handle_message(message)

    except SessionError as e:
        logger.info("message_rejected_closed_session", session_id=session_id, error=str(e))
        return jsonify(INVALID_SESSION_PAYLOAD), 400

    except Exception as e:
        logger.exception("message_handling_failed", session_id=session_id, error=str(e))
        return jsonify(INTERNAL_ERROR_PAYLOAD), 500

    headers = {SESSION_HEADER: channel.session_id} if channel.session_id else {}
    if response is None:
        return "", 202, headers
    return jsonify(response), 200, headers


@bp.route("/sse", methods=["GET"])
async def open_event_stream():
    """Open the session's standalone server-to-client event stream."""
    transport: TransportManager = _services()["transport"]

    channel = await transport.get(request.headers.get(SESSION_HEADER))
    if channel is None:
        return MISSING_SESSION_TEXT, 400

    try:
        stream = channel.open_event_stream()
    except SessionError as e:
        return str(e), 409

    keepalive = _services()["sse_keepalive"]
    return await _event_stream_response(
        channel.event_frames(stream, keepalive), channel.session_id
    )


@bp.route("/messages", methods=["DELETE"])
async def delete_session():
    """Tear a session down, aborting its in-flight calls."""
    transport: TransportManager = _services()["transport"]

    session_id = request.headers.get(SESSION_HEADER)
    if not session_id or not await transport.close_session(session_id):
        return MISSING_SESSION_TEXT, 400

    return "", 200


@bp.route("/healthz")
async def healthz():
    """Liveness probe with index and session counters."""
    services = _services()
    knowledge_base: KnowledgeBaseIndex = services["knowledge_base"]
    gateway: OllamaClient = services["gateway"]

    return jsonify({
        "status": "ok",
        "knowledgeBasePath": str(knowledge_base.root_dir),
        "embeddings": gateway.embedding_model,
        "llm": gateway.chat_model,
        "chunks": knowledge_base.size,
        "sessions": services["transport"].session_count,
    })


@bp.route("/health/ready")
async def health_ready():
    """Readiness probe - check if app can serve requests.

    Checks:
    - Ollama service is reachable
    - Chat and embedding models are available
    """
    gateway: OllamaClient = _services()["gateway"]
    checks = {
        "status": "healthy",
        "ollama": False,
        "models": False,
    }

    try:
        models = await gateway.list_models()
        checks["ollama"] = True

        missing = [
            name for name in (gateway.chat_model, gateway.embedding_model)
            if not _model_available(name, models)
        ]
        if missing:
            checks["status"] = "unhealthy"
            checks["error"] = f"Missing models: {', '.join(missing)}"
        else:
            checks["models"] = True

        status_code = 200 if checks["status"] == "healthy" else 503
        return jsonify(checks), status_code

    except Exception as e:
        logger.error("health_check_failed", error=str(e))
        checks["status"] = "unhealthy"
        checks["error"] = str(e)
        return jsonify(checks), 503


def create_app(
    knowledge_base: KnowledgeBaseIndex = None,
    gateway: OllamaClient = None,
    request_timeout: float = None,
    sse_keepalive: float = None,
) -> Quart:
    """Build the Quart application and its services.

    Args:
        knowledge_base: Index to serve (default: built over config.KNOWLEDGE_BASE_PATH)
        gateway: Ollama client used for embeddings and generation
        request_timeout: Per-request deadline in seconds (default from config)
        sse_keepalive: Seconds between keep-alive frames on idle event streams

    Returns:
        Configured Quart app; warm-up runs before serving starts

    Raises:
        KnowledgeBaseNotFoundError: If the knowledge base root is missing
    """
    gateway = gateway or OllamaClient()
    knowledge_base = knowledge_base or KnowledgeBaseIndex(config.KNOWLEDGE_BASE_PATH, gateway)
    knowledge_base.ensure_root()
    if request_timeout is None:
        request_timeout = config.REQUEST_TIMEOUT

    server = McpServer(build_registry(knowledge_base, gateway))
    transport = TransportManager(server, request_timeout=request_timeout or None)

    app = Quart(__name__)
    app.config["MAX_CONTENT_LENGTH"] = config.MAX_BODY_BYTES
    app.extensions["deepreasoning"] = {
        "knowledge_base": knowledge_base,
        "gateway": gateway,
        "server": server,
        "transport": transport,
        "sse_keepalive": config.SSE_KEEPALIVE_SECONDS if sse_keepalive is None else sse_keepalive,
    }
    app.register_blueprint(bp)

    @app.before_serving
    async def warm_up_index():
        stats = await knowledge_base.warm_up()
        logger.info("server_ready", chunks=knowledge_base.size, files_failed=stats.files_failed)

    @app.after_serving
    async def close_sessions():
        await transport.close_all()

    @app.errorhandler(404)
    async def not_found(error):
        """Handle 404 errors."""
        return jsonify({"error": "Not found"}), 404

    return app


def run() -> None:
    """Serve the app with hypercorn on config.HOST:config.PORT."""
    from hypercorn.asyncio import serve
    from hypercorn.config import Config

    gateway = OllamaClient()
    knowledge_base = KnowledgeBaseIndex(config.KNOWLEDGE_BASE_PATH, gateway)
    try:
        app = create_app(knowledge_base=knowledge_base, gateway=gateway)
    except KnowledgeBaseNotFoundError as e:
        logger.error("knowledge_base_missing", error=str(e))
        sys.exit(1)

    hypercorn_config = Config()
    hypercorn_config.bind = [f"{config.HOST}:{config.PORT}"]
    hypercorn_config.accesslog = None

    logger.info(
        "server_starting",
        host=config.HOST,
        port=config.PORT,
        knowledge_base=str(knowledge_base.root_dir),
        llm=gateway.chat_model,
        embeddings=gateway.embedding_model,
    )
    asyncio.run(serve(app, hypercorn_config))


if __name__ == "__main__":
    run()

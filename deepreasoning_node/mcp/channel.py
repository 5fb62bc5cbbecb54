"""Session channel: one client's binding of request/response and event streams.

A channel starts UNBOUND, becomes INITIALIZED when it answers an
``initialize`` request (at which point it is given its session id), and ends
CLOSED. Requests arrive through ``handle_message``; server-to-client messages
leave through ``send``, which prefers the event stream opened for the related
request and falls back to the session's standalone event stream.
"""
import asyncio
import uuid
from enum import Enum
from functools import partial
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Set
import structlog

from deepreasoning_node.cancellation import CancellationToken
from deepreasoning_node.errors import JsonRpcError, SessionError
from deepreasoning_node.mcp.protocol import (
    INTERNAL_ERROR,
    INVALID_REQUEST,
    SESSION_ERROR,
    SSE_KEEPALIVE_FRAME,
    JsonRpcMessage,
    RequestContext,
    format_sse,
    make_error,
    make_response,
)

logger = structlog.get_logger()


class SessionState(str, Enum):
    UNBOUND = "unbound"
    INITIALIZED = "initialized"
    CLOSED = "closed"


class EventStream:
    """Queue of outbound messages rendered as server-sent event frames."""

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def put(self, message: Dict[str, Any]) -> bool:
        if self.closed:
            return False
        self._queue.put_nowait(message)
        return True

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._queue.put_nowait(None)

    async def frames(self, keepalive: float = 0) -> AsyncIterator[bytes]:
        """Yield encoded frames until the stream is closed.

        With a positive ``keepalive`` a comment frame is sent whenever no
        message arrived for that many seconds.
        """
        while True:
            try:
                if keepalive > 0:
                    message = await asyncio.wait_for(self._queue.get(), timeout=keepalive)
                else:
                    message = await self._queue.get()
            except asyncio.TimeoutError:
                yield SSE_KEEPALIVE_FRAME
                continue

            if message is None:
                return
            yield format_sse(message)


class SessionChannel:
    """Duplex transport bound to one MCP session."""

    def __init__(
        self,
        server,
        on_initialized: Optional[Callable[["SessionChannel"], Awaitable[None]]] = None,
        on_close: Optional[Callable[[str], Awaitable[None]]] = None,
        request_timeout: Optional[float] = None,
        session_id_factory: Callable[[], str] = None,
    ):
        self.server = server
        self.session_id: Optional[str] = None
        self.state = SessionState.UNBOUND
        self.protocol_version: Optional[str] = None
        self.cancel = CancellationToken()
        self.request_timeout = request_timeout

        self._on_initialized = on_initialized
        self._on_close = on_close
        self._session_id_factory = session_id_factory or (lambda: uuid.uuid4().hex)
        self._in_flight: Dict[Any, CancellationToken] = {}
        self._standalone: Optional[EventStream] = None
        self._request_streams: Dict[Any, EventStream] = {}
        self._tasks: Set[asyncio.Task] = set()

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    @property
    def has_event_stream(self) -> bool:
        return self._standalone is not None and not self._standalone.closed

    async def handle_message(self, message: JsonRpcMessage) -> Optional[Dict[str, Any]]:
        """Process one inbound message.

        Returns:
            The JSON-RPC response for requests, None for notifications and
            client responses

        Raises:
            SessionError: If the channel is already closed
        """
        if self.state is SessionState.CLOSED:
            raise SessionError("Session is closed")

        if message.is_request:
            return await self._handle_request(message)

        if message.is_notification:
            self._handle_notification(message)
        else:
            logger.debug("client_response_ignored", session_id=self.session_id, id=message.id)
        return None

    async def _handle_request(self, message: JsonRpcMessage) -> Dict[str, Any]:
        is_initialize = message.method == "initialize"

        if is_initialize and self.state is not SessionState.UNBOUND:
            return make_error(message.id, INVALID_REQUEST, "Session already initialized")
        if not is_initialize and self.state is SessionState.UNBOUND:
            return make_error(message.id, SESSION_ERROR, "Invalid session. Initialize first.")
        if message.id in self._in_flight:
            return make_error(message.id, INVALID_REQUEST, f"Duplicate request id: {message.id}")

        params = message.params or {}
        meta = params.get("_meta")
        request_cancel = self.cancel.child()
        if self.request_timeout:
            request_cancel.cancel_after(self.request_timeout)
        self._in_flight[message.id] = request_cancel

        context = RequestContext(
            request_id=message.id,
            cancel=request_cancel,
            channel=self,
            meta=meta if isinstance(meta, dict) else {},
        )

        logger.debug(
            "session_request_started",
            session_id=self.session_id,
            method=message.method,
            id=message.id,
        )

        try:
            result = await self.server.dispatch(message.method, params, context)
        except JsonRpcError as e:
            logger.info(
                "session_request_rejected",
                session_id=self.session_id,
                method=message.method,
                code=e.code,
                error=e.message,
            )
            return make_error(message.id, e.code, e.message, e.data)
        finally:
            self._in_flight.pop(message.id, None)
            request_cancel.release()

        if is_initialize:
            await self._bind()

        return make_response(message.id, result)

    async def _bind(self) -> None:
        self.session_id = self._session_id_factory()
        self.state = SessionState.INITIALIZED
        logger.info("session_initialized", session_id=self.session_id)
        if self._on_initialized is not None:
            await self._on_initialized(self)

    def _handle_notification(self, message: JsonRpcMessage) -> None:
        params = message.params or {}

        if message.method == "notifications/cancelled":
            self.cancel_request(
                params.get("requestId"),
                reason=params.get("reason") or "client_cancelled",
            )
        elif message.method == "notifications/initialized":
            logger.info("session_client_ready", session_id=self.session_id)
        else:
            logger.debug(
                "notification_ignored",
                session_id=self.session_id,
                method=message.method,
            )

    def cancel_request(self, request_id: Any, reason: str = "cancelled") -> bool:
        """Fire the cancellation token of an in-flight request."""
        token = self._in_flight.get(request_id)
        if token is None:
            return False
        token.cancel(reason)
        logger.info(
            "session_request_cancelled",
            session_id=self.session_id,
            id=request_id,
            reason=reason,
        )
        return True

    async def send(self, message: Dict[str, Any], related_request_id: Any = None) -> bool:
        """Queue a server-to-client message.

        Returns:
            False if no event stream is open and the message was dropped

        Raises:
            SessionError: If the channel is closed
        """
        if self.state is SessionState.CLOSED:
            raise SessionError("Session is closed")

        stream = None
        if related_request_id is not None:
            stream = self._request_streams.get(related_request_id)
        if stream is None or stream.closed:
            stream = self._standalone

        if stream is None or not stream.put(message):
            logger.debug(
                "session_message_dropped",
                session_id=self.session_id,
                method=message.get("method"),
            )
            return False
        return True

    def open_event_stream(self) -> EventStream:
        """Attach the standalone event stream.

        Raises:
            SessionError: If the session is not initialized or already has one
        """
        if self.state is not SessionState.INITIALIZED:
            raise SessionError("Session is not initialized")
        if self.has_event_stream:
            raise SessionError("An event stream is already open for this session")

        self._standalone = EventStream()
        logger.info("event_stream_opened", session_id=self.session_id)
        return self._standalone

    async def event_frames(self, stream: EventStream, keepalive: float = 0) -> AsyncIterator[bytes]:
        """Render the standalone stream; a transport failure closes the session."""
        try:
            async for frame in stream.frames(keepalive):
                yield frame
        except asyncio.CancelledError:
            logger.info("event_stream_disconnected", session_id=self.session_id)
            raise
        except Exception as e:
            logger.error(
                "event_stream_failed",
                session_id=self.session_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            await self.close("transport_error")
            raise
        finally:
            stream.close()
            if self._standalone is stream:
                self._standalone = None

    async def stream_request(self, message: JsonRpcMessage, keepalive: float = 0) -> AsyncIterator[bytes]:
        """Answer a request over its own event stream.

        Notifications related to the request are interleaved before the final
        response. If the client goes away first, the request is cancelled.
        """
        stream = EventStream()
        # A duplicate id is rejected by handle_message and must not capture
        # the notifications of the request already running under that id.
        if message.id not in self._in_flight and message.id not in self._request_streams:
            self._request_streams[message.id] = stream

        task = asyncio.ensure_future(self.handle_message(message))
        self._tasks.add(task)
        task.add_done_callback(partial(self._finish_request_stream, message.id, stream))

        try:
            async for frame in stream.frames(keepalive):
                yield frame
        finally:
            stream.close()
            if self._request_streams.get(message.id) is stream:
                del self._request_streams[message.id]
            if not task.done():
                self.cancel_request(message.id, reason="client_disconnected")

    def _finish_request_stream(self, request_id: Any, stream: EventStream, task: asyncio.Task) -> None:
        self._tasks.discard(task)

        if task.cancelled():
            stream.close()
            return

        error = task.exception()
        if error is not None:
            logger.error(
                "session_request_failed",
                session_id=self.session_id,
                id=request_id,
                error=str(error),
                error_type=type(error).__name__,
            )
            stream.put(make_error(request_id, INTERNAL_ERROR, "Internal server error"))
        else:
            response = task.result()
            if response is not None:
                stream.put(response)
        stream.close()

    async def close(self, reason: str = "closed") -> None:
        """Tear the session down. Only the first call has any effect."""
        if self.state is SessionState.CLOSED:
            return

        self.state = SessionState.CLOSED
        self.cancel.cancel(reason)

        streams = list(self._request_streams.values())
        if self._standalone is not None:
            streams.append(self._standalone)
        for stream in streams:
            stream.close()
        self._request_streams.clear()
        self._standalone = None

        logger.info("session_closed", session_id=self.session_id, reason=reason)

        if self.session_id is not None and self._on_close is not None:
            await self._on_close(self.session_id)

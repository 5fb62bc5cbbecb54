"""Registry of live sessions keyed by ``mcp-session-id``."""
import asyncio
from typing import Any, Dict, Optional
import structlog

from deepreasoning_node.mcp.channel import SessionChannel
from deepreasoning_node.mcp.protocol import is_initialize_request

logger = structlog.get_logger()


class TransportManager:
    """Maps session ids to their channels.

    A channel is registered once it has answered ``initialize`` and removes
    itself when it closes, whatever closed it. All access to the map goes
    through one lock.
    """

    def __init__(self, server, request_timeout: Optional[float] = None):
        self.server = server
        self.request_timeout = request_timeout
        self._channels: Dict[str, SessionChannel] = {}
        self._lock = asyncio.Lock()

    @property
    def session_count(self) -> int:
        return len(self._channels)

    async def ensure_channel(self, session_id: Optional[str], body: Any) -> Optional[SessionChannel]:
        """Resolve the channel for an inbound POST.

        Args:
            session_id: Value of the session header, if any
            body: Decoded request body

        Returns:
            The known session's channel, a fresh unbound channel for an
            initialize request, or None when the request cannot be routed
        """
        if session_id:
            channel = await self.get(session_id)
            if channel is not None:
                return channel

        if is_initialize_request(body):
            return self._create_channel()

        logger.warning("session_rejected", session_id=session_id)
        return None

    async def get(self, session_id: Optional[str]) -> Optional[SessionChannel]:
        if not session_id:
            return None
        async with self._lock:
            return self._channels.get(session_id)

    async def close_session(self, session_id: str) -> bool:
        """Tear down a known session.

        Returns:
            False if the session id is unknown
        """
        channel = await self.get(session_id)
        if channel is None:
            return False
        await channel.close("session_deleted")
        return True

    async def close_all(self) -> None:
        async with self._lock:
            channels = list(self._channels.values())
        for channel in channels:
            await channel.close("server_shutdown")
        logger.info("sessions_closed", count=len(channels))

    def _create_channel(self) -> SessionChannel:
        return SessionChannel(
            self.server,
            on_initialized=self._register,
            on_close=self._deregister,
            request_timeout=self.request_timeout,
        )

    async def _register(self, channel: SessionChannel) -> None:
        async with self._lock:
            self._channels[channel.session_id] = channel
            count = len(self._channels)
        logger.info("session_registered", session_id=channel.session_id, sessions=count)

    async def _deregister(self, session_id: str) -> None:
        async with self._lock:
            removed = self._channels.pop(session_id, None)
            count = len(self._channels)
        if removed is not None:
            logger.info("session_deregistered", session_id=session_id, sessions=count)

"""Progress notifications correlated to an in-flight request."""
from typing import Any, Optional, Union
import structlog

from deepreasoning_node.cancellation import CancellationToken
from deepreasoning_node.mcp.protocol import make_notification

logger = structlog.get_logger()

ProgressToken = Union[str, int]


class ProgressEmitter:
    """Turns generated text into ``notifications/progress`` messages.

    Without a progress token the emitter does nothing. Delivery is
    best-effort: a failed send is logged and generation carries on. Once the
    call's cancellation token fires no further notifications go out.
    """

    def __init__(
        self,
        channel,
        progress_token: Optional[ProgressToken],
        related_request_id: Any,
        cancel: Optional[CancellationToken] = None,
    ):
        self.channel = channel
        self.progress_token = progress_token
        self.related_request_id = related_request_id
        self.cancel = cancel
        self.counter = 0

    @property
    def enabled(self) -> bool:
        return self.progress_token is not None

    async def emit(self, message: str) -> bool:
        """Send one progress notification.

        Returns:
            True if the notification was handed to an open event stream
        """
        if not self.enabled or not message or not message.strip():
            return False

        if self.cancel is not None and self.cancel.cancelled:
            return False

        self.counter += 1
        notification = make_notification(
            "notifications/progress",
            {
                "progressToken": self.progress_token,
                "progress": self.counter,
                "message": message,
            },
        )

        try:
            return await self.channel.send(
                notification, related_request_id=self.related_request_id
            )
        except Exception as e:
            logger.warning(
                "progress_notification_failed",
                request_id=self.related_request_id,
                progress=self.counter,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

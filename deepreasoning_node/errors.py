"""Exception types raised across the knowledge node."""
from typing import Any, Optional


class NodeError(RuntimeError):
    """Base class for knowledge node failures."""


class KnowledgeBaseNotFoundError(NodeError):
    """The configured knowledge base directory does not exist."""


class ExtractionError(NodeError):
    """Text could not be extracted from a source document."""


class GatewayError(NodeError):
    """A call to the model-serving endpoint failed."""


class EmbeddingError(GatewayError):
    """Embedding request failed or returned an empty vector."""


class GenerationError(GatewayError):
    """Chat stream could not be opened or broke mid-stream."""


class GenerationCancelled(NodeError):
    """Generation was aborted by its cancellation token."""


class SessionError(NodeError):
    """A session channel cannot accept the requested operation."""


class JsonRpcError(NodeError):
    """Error surfaced to the peer as a JSON-RPC error object."""

    def __init__(self, code: int, message: str, data: Optional[Any] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

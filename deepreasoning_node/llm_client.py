"""Ollama client wrapper for embeddings and streamed chat generation."""
import asyncio
import json
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional
import httpx
import structlog

from deepreasoning_node import config
from deepreasoning_node.cancellation import CancellationToken
from deepreasoning_node.errors import EmbeddingError, GenerationCancelled, GenerationError

logger = structlog.get_logger()

ChunkHandler = Callable[[str], Awaitable[None]]


class _AbortableLineStream:
    """Line reader over a streaming response whose pending read can be aborted.

    ``abort`` may be called from a cancellation listener at any time; the read
    currently in flight is cancelled and the reader reports end of stream.
    """

    def __init__(self, response: httpx.Response):
        self._lines = response.aiter_lines()
        self._pending: Optional[asyncio.Task] = None
        self.aborted = False

    def abort(self) -> None:
        self.aborted = True
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()

    async def _read(self) -> str:
        return await self._lines.__anext__()

    async def next_line(self) -> Optional[str]:
        if self.aborted:
            return None

        self._pending = asyncio.ensure_future(self._read())
        try:
            return await self._pending
        except StopAsyncIteration:
            return None
        except asyncio.CancelledError:
            # Our own abort ends the stream; cancellation of the caller propagates.
            current = asyncio.current_task()
            if self.aborted and (current is None or not current.cancelling()):
                return None
            raise
        finally:
            self._pending = None


class OllamaClient:
    """Async client for the Ollama embedding and chat APIs."""

    def __init__(
        self,
        base_url: str = None,
        chat_model: str = None,
        embedding_model: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Ollama client.

        Args:
            base_url: Ollama API base URL (defaults to config.OLLAMA_HOST)
            chat_model: Generation model (defaults to config.OLLAMA_MODEL)
            embedding_model: Embedding model (defaults to config.EMBEDDING_MODEL)
            timeout: Request timeout in seconds (defaults to config.HTTP_TIMEOUT)
            transport: Optional httpx transport, used by tests
        """
        self.base_url = (base_url or config.OLLAMA_HOST).rstrip("/")
        self.chat_model = chat_model or config.OLLAMA_MODEL
        self.embedding_model = embedding_model or config.EMBEDDING_MODEL
        self.timeout = timeout if timeout is not None else config.HTTP_TIMEOUT
        self._transport = transport

    def _client(self, timeout: httpx.Timeout = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout or self.timeout,
            transport=self._transport,
        )

    async def embed(self, text: str) -> List[float]:
        """Generate an embedding vector for a text.

        Args:
            text: Text to embed

        Returns:
            Embedding vector, empty for blank input (no request is made)

        Raises:
            EmbeddingError: On transport errors or an empty embedding
        """
        if not text or not text.strip():
            return []

        payload = {
            "model": self.embedding_model,
            "prompt": text,
        }

        try:
            async with self._client() as client:
                logger.debug(
                    "ollama_embedding_request",
                    model=self.embedding_model,
                    prompt_length=len(text),
                )

                response = await client.post(
                    f"{self.base_url}/api/embeddings",
                    json=payload,
                )
                response.raise_for_status()
                data = response.json()

            embedding = data.get("embedding") or []
            if not embedding:
                raise EmbeddingError(
                    "Embedding vector is empty. Is the model loaded in Ollama?"
                )

            logger.debug(
                "ollama_embedding_response",
                model=self.embedding_model,
                dimension=len(embedding),
            )
            return [float(value) for value in embedding]

        except (httpx.HTTPError, ValueError, AttributeError, EmbeddingError) as e:
            logger.error(
                "ollama_embedding_error",
                model=self.embedding_model,
                base_url=self.base_url,
                error=str(e),
            )
            raise EmbeddingError(
                f"Failed to create embedding via Ollama ({self.embedding_model}) "
                f"at {self.base_url}: {e}"
            ) from e

    async def stream_chat(
        self,
        messages: List[Dict[str, str]],
        cancel: CancellationToken,
        model: str = None,
    ) -> AsyncIterator[str]:
        """Stream a chat completion token by token.

        The stream is aborted as soon as ``cancel`` fires; iteration then ends
        without error and the connection is released.

        Args:
            messages: List of message dicts with 'role' and 'content'
            cancel: Cancellation token scoping the stream
            model: Model to use (defaults to the configured chat model)

        Yields:
            Non-empty content tokens in arrival order

        Raises:
            GenerationCancelled: If cancellation fired before the stream started
            GenerationError: If the stream cannot be opened or breaks mid-way
        """
        model = model or self.chat_model

        if cancel.cancelled:
            raise GenerationCancelled("Request aborted before generation started")

        payload = {
            "model": model,
            "messages": messages,
            "stream": True,
            "keep_alive": config.OLLAMA_KEEP_ALIVE,
            "options": {
                "temperature": config.GENERATION_TEMPERATURE,
                "num_ctx": config.GENERATION_NUM_CTX,
            },
        }

        # Tokens may be minutes apart on a cold model; deadlines come from ``cancel``.
        async with self._client(httpx.Timeout(self.timeout, read=None)) as client:
            request = client.build_request(
                "POST", f"{self.base_url}/api/chat", json=payload
            )
            try:
                response = await client.send(request, stream=True)
            except httpx.HTTPError as e:
                logger.error("ollama_connection_error", error=str(e), base_url=self.base_url)
                raise GenerationError(self._stream_failure(model, e)) from e

            if response.is_error:
                await response.aread()
                await response.aclose()
                detail = f"HTTP {response.status_code}: {response.text[:200]}"
                logger.error(
                    "ollama_http_error",
                    status_code=response.status_code,
                    model=model,
                )
                raise GenerationError(self._stream_failure(model, detail))

            if cancel.cancelled:
                await response.aclose()
                raise GenerationCancelled("Request aborted before generation started")

            stream = _AbortableLineStream(response)
            cancel.add_listener(stream.abort)

            logger.info(
                "ollama_chat_stream_opened",
                model=model,
                message_count=len(messages),
            )

            token_count = 0
            try:
                while True:
                    line = await stream.next_line()
                    if line is None:
                        break
                    if not line.strip():
                        continue

                    try:
                        data = json.loads(line)
                    except ValueError as e:
                        raise GenerationError(
                            self._stream_failure(model, f"malformed stream line: {e}")
                        ) from e

                    if data.get("error"):
                        raise GenerationError(self._stream_failure(model, data["error"]))

                    token = (data.get("message") or {}).get("content") or ""
                    if token:
                        token_count += 1
                        yield token

                    if data.get("done"):
                        break

            except httpx.HTTPError as e:
                logger.error("ollama_stream_error", error=str(e), model=model)
                raise GenerationError(self._stream_failure(model, e)) from e

            finally:
                cancel.remove_listener(stream.abort)
                await response.aclose()
                logger.info(
                    "ollama_chat_stream_closed",
                    model=model,
                    tokens=token_count,
                    aborted=stream.aborted,
                )

    async def stream_response(
        self,
        messages: List[Dict[str, str]],
        cancel: CancellationToken,
        on_chunk: Optional[ChunkHandler] = None,
        model: str = None,
    ) -> str:
        """Stream a chat completion and return the trimmed full text.

        ``on_chunk`` is awaited with every token. A failing handler is logged
        and does not interrupt the stream. After a mid-stream cancellation the
        partial text is returned.
        """
        accumulator = []

        async for token in self.stream_chat(messages, cancel, model=model):
            accumulator.append(token)
            if on_chunk is None:
                continue
            try:
                await on_chunk(token)
            except Exception as e:
                logger.warning(
                    "generation_chunk_handler_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )

        return "".join(accumulator).strip()

    async def list_models(self) -> List[str]:
        """List all available Ollama models.

        Returns:
            List of model names

        Raises:
            httpx.HTTPError: On API errors
        """
        try:
            async with self._client(httpx.Timeout(5.0)) as client:
                response = await client.get(f"{self.base_url}/api/tags")
                response.raise_for_status()
                data = response.json()
                return [m["name"] for m in data.get("models", [])]
        except httpx.HTTPError as e:
            logger.error("ollama_list_models_error", error=str(e))
            raise

    def _stream_failure(self, model: str, error) -> str:
        return (
            f"Failed to stream generation via Ollama ({model}) "
            f"at {self.base_url}: {error}"
        )

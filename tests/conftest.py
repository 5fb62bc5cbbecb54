"""Pytest configuration and shared fakes for the knowledge node tests.

Configures:
- pytest-asyncio runs async tests in auto mode (see pyproject.toml)
- Deterministic embedder, generation gateway and session channel fakes
"""
import asyncio
from typing import Any, Dict, List, Optional

import pytest

from deepreasoning_node.cancellation import CancellationToken
from deepreasoning_node.errors import GenerationCancelled
from deepreasoning_node.rag.cache_store import VectorCacheStore
from deepreasoning_node.rag.chunker import TextChunker
from deepreasoning_node.rag.knowledge_base import KnowledgeBaseIndex

VOCABULARY = ("alpha", "beta", "gamma", "delta")


class FakeEmbedder:
    """Bag-of-words embedder over a fixed vocabulary; records every call."""

    def __init__(self, fail_on: Optional[str] = None):
        self.calls: List[str] = []
        self.fail_on = fail_on

    async def embed(self, text: str) -> List[float]:
        if not text or not text.strip():
            return []
        self.calls.append(text)
        if self.fail_on and self.fail_on in text:
            raise RuntimeError(f"embedding failed for {self.fail_on}")
        words = text.lower().split()
        return [float(words.count(word)) for word in VOCABULARY] + [0.1]


class FakeGateway:
    """Generation gateway yielding scripted tokens.

    With ``hang=True`` it blocks before the first token until the token is
    cancelled, then ends the stream like the real client does.
    """

    chat_model = "fake-llm"
    embedding_model = "fake-embed"

    def __init__(self, tokens=None, hang: bool = False, error: Exception = None, models=None):
        self.tokens = list(tokens or [])
        self.hang = hang
        self.error = error
        self.models = list(models or [])
        self.messages: List[List[Dict[str, str]]] = []

    async def stream_chat(self, messages, cancel: CancellationToken, model: str = None):
        self.messages.append(messages)
        if cancel.cancelled:
            raise GenerationCancelled("Request aborted before generation started")
        if self.error is not None:
            raise self.error
        if self.hang:
            await cancel.wait()
            return
        for token in self.tokens:
            if cancel.cancelled:
                return
            yield token
            await asyncio.sleep(0)

    async def stream_response(self, messages, cancel: CancellationToken, on_chunk=None, model: str = None):
        parts = []
        async for token in self.stream_chat(messages, cancel, model=model):
            parts.append(token)
            if on_chunk is not None:
                await on_chunk(token)
        return "".join(parts).strip()

    async def list_models(self) -> List[str]:
        return self.models


class FakeChannel:
    """Session channel stand-in that records outbound messages."""

    def __init__(self, fail: bool = False):
        self.sent: List[Dict[str, Any]] = []
        self.related: List[Any] = []
        self.fail = fail

    async def send(self, message: Dict[str, Any], related_request_id: Any = None) -> bool:
        if self.fail:
            raise ConnectionError("stream gone")
        self.sent.append(message)
        self.related.append(related_request_id)
        return True


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def knowledge_dir(tmp_path):
    root = tmp_path / "kb"
    root.mkdir()
    return root


@pytest.fixture
def cache_store(tmp_path):
    return VectorCacheStore(tmp_path / "storage.json")


@pytest.fixture
def make_index(knowledge_dir, cache_store):
    """Factory for an index over ``knowledge_dir`` with small chunks."""

    def factory(embedder, **kwargs):
        kwargs.setdefault("cache_store", cache_store)
        kwargs.setdefault("chunker", TextChunker(chunk_size=40, chunk_overlap=10))
        kwargs.setdefault("max_concurrency", 2)
        return KnowledgeBaseIndex(knowledge_dir, embedder, **kwargs)

    return factory

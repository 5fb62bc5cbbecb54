"""Retrieval-augmented reasoning tool.

Flow for one call: retrieve the closest chunks, build a two-turn prompt
around them, stream the generation and relay every token as a progress
notification, then return the full answer.
"""
from typing import Dict, List, Sequence
from pydantic import BaseModel, Field
import structlog

from deepreasoning_node import config
from deepreasoning_node.errors import GenerationCancelled
from deepreasoning_node.mcp.progress import ProgressEmitter
from deepreasoning_node.mcp.protocol import RequestContext
from deepreasoning_node.rag.models import VectorChunk
from deepreasoning_node.tools.registry import (
    CancelledResult,
    ErrorResult,
    TextResult,
    Tool,
    ToolOutcome,
)

logger = structlog.get_logger()

TOOL_NAME = "deep_reasoning_search"

SYSTEM_PROMPT = (
    "You are a reasoning model answering on behalf of a local knowledge base. "
    "Always cite the source file names when answering. "
    "If context is empty, say you cannot find supporting evidence."
)

NO_CONTEXT_FALLBACK = "No related files were found."
ABORTED_BEFORE_START = "Request aborted before generation started"
ABORTED_MID_STREAM = "Request aborted during generation"


class DeepReasoningInput(BaseModel):
    query: str = Field(..., description="Question to research in the local knowledge base")


def format_context(chunks: Sequence[VectorChunk]) -> str:
    """Render retrieved chunks as numbered, source-attributed snippets."""
    return "\n\n".join(
        f"Source {i}: {chunk.file_name}\nPath: {chunk.file_path}\nSnippet: {chunk.content}"
        for i, chunk in enumerate(chunks, 1)
    )


def build_messages(query: str, chunks: Sequence[VectorChunk]) -> List[Dict[str, str]]:
    context = format_context(chunks) or NO_CONTEXT_FALLBACK
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": f"Query:\n{query}\n\nContext:\n{context}"},
    ]


class DeepReasoningTool:
    """Glues retrieval, generation and progress relay into one tool call."""

    def __init__(self, knowledge_base, gateway, top_k: int = None):
        """Initialize the tool.

        Args:
            knowledge_base: Index exposing ``query_similar(text, top_k)``
            gateway: Client exposing ``stream_response(messages, cancel, on_chunk)``
            top_k: Chunks retrieved per query (default from config)
        """
        self.knowledge_base = knowledge_base
        self.gateway = gateway
        self.top_k = top_k or config.RETRIEVAL_TOP_K

    def as_tool(self) -> Tool:
        return Tool(
            name=TOOL_NAME,
            title="Deep Reasoning Search",
            description=(
                "Use a local reasoning model to answer a question from the "
                "indexed knowledge base files, citing the files it relied on."
            ),
            input_model=DeepReasoningInput,
            handler=self.run,
        )

    async def run(self, args: DeepReasoningInput, context: RequestContext) -> ToolOutcome:
        call_cancel = context.cancel.child()
        emitter = ProgressEmitter(
            context.channel,
            context.progress_token,
            context.request_id,
            cancel=call_cancel,
        )
        log = logger.bind(request_id=context.request_id)

        try:
            log.info("reasoning_retrieving", query_length=len(args.query))
            chunks = await self.knowledge_base.query_similar(args.query, self.top_k)

            if call_cancel.cancelled:
                raise GenerationCancelled(ABORTED_BEFORE_START)

            log.info("reasoning_generating", sources=len(chunks))
            answer = await self.gateway.stream_response(
                build_messages(args.query, chunks),
                call_cancel,
                on_chunk=emitter.emit,
            )

            if call_cancel.cancelled:
                log.info(
                    "reasoning_cancelled",
                    reason=call_cancel.reason,
                    partial_length=len(answer),
                )
                return CancelledResult(ABORTED_MID_STREAM)

            log.info(
                "reasoning_done",
                answer_length=len(answer),
                progress_notifications=emitter.counter,
            )
            return TextResult(answer)

        except GenerationCancelled as e:
            log.info("reasoning_cancelled", reason=call_cancel.reason, error=str(e))
            return CancelledResult(str(e))

        except Exception as e:
            log.error("reasoning_failed", error=str(e), error_type=type(e).__name__)
            return ErrorResult(f"Failed to complete reasoning: {e}")

        finally:
            call_cancel.release()

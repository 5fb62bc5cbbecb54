"""Tools package - builds the registry exposed over ``tools/list``."""
from deepreasoning_node.tools.deep_reasoning import DeepReasoningTool
from deepreasoning_node.tools.registry import (
    CancelledResult,
    ErrorResult,
    TextResult,
    Tool,
    ToolOutcome,
    ToolRegistry,
)


def build_registry(knowledge_base, gateway) -> ToolRegistry:
    """Create a registry holding the knowledge base tools."""
    registry = ToolRegistry()
    registry.register(DeepReasoningTool(knowledge_base, gateway).as_tool())
    return registry


__all__ = [
    "build_registry",
    "CancelledResult",
    "DeepReasoningTool",
    "ErrorResult",
    "TextResult",
    "Tool",
    "ToolOutcome",
    "ToolRegistry",
]

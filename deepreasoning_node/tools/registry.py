"""Tool registry for MCP ``tools/list`` and ``tools/call``.

Tools declare a pydantic input model; arguments are validated before the
handler runs. Handlers return one of the outcome variants below, which map
onto the MCP CallToolResult shape.
"""
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union
from pydantic import BaseModel, ValidationError
import structlog

from deepreasoning_node.mcp.protocol import RequestContext

logger = structlog.get_logger()


def _text_result(text: str, is_error: bool) -> Dict[str, Any]:
    return {"content": [{"type": "text", "text": text}], "isError": is_error}


@dataclass(frozen=True)
class TextResult:
    """Successful tool output."""
    text: str

    def to_call_result(self) -> Dict[str, Any]:
        return _text_result(self.text, False)


@dataclass(frozen=True)
class ErrorResult:
    """Domain-level tool failure, still a well-formed response."""
    message: str

    def to_call_result(self) -> Dict[str, Any]:
        return _text_result(self.message, True)


@dataclass(frozen=True)
class CancelledResult:
    """The call was aborted; MCP has no cancelled outcome so it reads as an error."""
    message: str

    def to_call_result(self) -> Dict[str, Any]:
        return _text_result(self.message, True)


ToolOutcome = Union[TextResult, ErrorResult, CancelledResult]
ToolHandler = Callable[[BaseModel, RequestContext], Awaitable[ToolOutcome]]


@dataclass
class Tool:
    """Tool definition with input schema and handler."""
    name: str
    title: str
    description: str
    input_model: type[BaseModel]
    handler: ToolHandler

    def definition(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "title": self.title,
            "description": self.description,
            "inputSchema": self.input_model.model_json_schema(),
        }


class ToolRegistry:
    """Registry for available tools."""

    def __init__(self):
        self.tools: Dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        """Register a tool."""
        self.tools[tool.name] = tool
        logger.info("tool_registered", tool_name=tool.name)

    def get_tool(self, name: str) -> Optional[Tool]:
        """Get a tool by name."""
        return self.tools.get(name)

    def list_definitions(self) -> List[Dict[str, Any]]:
        """Tool definitions as advertised by ``tools/list``."""
        return [tool.definition() for tool in self.tools.values()]

    async def execute_tool(
        self, tool_name: str, args: Dict[str, Any], context: RequestContext
    ) -> ToolOutcome:
        """Execute a tool with the given arguments.

        Args:
            tool_name: Name of the tool to execute
            args: Arguments to pass to the tool
            context: Request context carrying cancellation and progress data

        Returns:
            The tool's outcome; lookup, validation and handler failures are
            reported as ErrorResult
        """
        tool = self.get_tool(tool_name)

        if not tool:
            logger.error("tool_not_found", tool_name=tool_name)
            return ErrorResult(f"Tool '{tool_name}' not found")

        try:
            validated_input = tool.input_model(**args)
        except ValidationError as e:
            logger.warning("tool_arguments_invalid", tool_name=tool_name, error=str(e))
            return ErrorResult(f"Invalid arguments for tool '{tool_name}': {e}")

        try:
            outcome = await tool.handler(validated_input, context)
        except Exception as e:
            logger.exception("tool_execution_failed", tool_name=tool_name, error=str(e))
            return ErrorResult(f"Tool execution failed: {str(e)}")

        logger.info(
            "tool_executed",
            tool_name=tool_name,
            outcome=type(outcome).__name__,
        )
        return outcome

"""Local DeepReasoning knowledge node: an MCP server answering questions from a folder of documents."""

__version__ = "0.1.0"

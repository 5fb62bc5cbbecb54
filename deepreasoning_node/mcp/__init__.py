"""MCP session transport: JSON-RPC framing, session channels and method dispatch."""

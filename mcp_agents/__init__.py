"""mcp-agents — expose command-line AI assistants as MCP tools over stdio."""

__version__ = "0.3.0"

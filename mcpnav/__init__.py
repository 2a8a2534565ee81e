"""mcp-nav: route natural-language queries to remote MCP tools via the Responses API."""

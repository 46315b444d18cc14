"""Infrastructure layer: MCP transports and their supporting services."""

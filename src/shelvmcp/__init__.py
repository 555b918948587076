"""Shelv MCP server: expose Shelv document shelves to MCP clients."""

__version__ = "0.1.0"

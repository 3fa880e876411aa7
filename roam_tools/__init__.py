"""Roam Research tools: a CLI and an MCP server over Roam Desktop's Local API."""

__version__ = "0.4.2"

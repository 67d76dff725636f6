"""Parley: a chat client for OpenAI-compatible endpoints with built-in and MCP tools."""

__version__ = "0.1.0"

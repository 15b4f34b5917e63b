"""MCP server exposing one Asana project, and nothing else, to an AI agent."""

__version__ = "0.1.0"

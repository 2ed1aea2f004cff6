"""Google Calendar MCP server with scope-aware recurring event edits."""

__version__ = "0.1.0"

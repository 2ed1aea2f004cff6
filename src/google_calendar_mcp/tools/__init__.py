"""Tool operations: each takes a ``CalendarApi`` and returns a JSON-ready dict."""

"""Process-wide infrastructure shared by the server and CLI."""

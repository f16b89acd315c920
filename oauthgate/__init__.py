"""OAuth2 authorization-code gate for session-based web applications."""

__version__ = "0.3.0"

"""Request-recording WSGI middleware with a built-in inspection dashboard."""

__version__ = "0.1.0"
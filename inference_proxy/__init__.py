"""HTTP reverse proxy for a single OpenAI-compatible inference upstream."""

__version__ = "1.0.0"

"""Shared helpers for logging and tracing."""

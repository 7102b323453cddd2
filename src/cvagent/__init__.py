"""Streaming chat orchestration core for the CV assistant."""

__version__ = "0.4.0"

__all__ = ["__version__"]

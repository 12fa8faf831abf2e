"""Gemini RAG tool gateway."""

__version__ = "2.1.0"

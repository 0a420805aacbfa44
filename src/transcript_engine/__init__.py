"""Conversation branch resolution and streaming correlation engine."""

__version__ = "0.1.0"

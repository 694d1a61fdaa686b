"""Duplex real-time voice sessions with Gemini Live characters."""

__version__ = "0.1.0"

"""Automatic AI replies to Threads mentions."""

__version__ = "1.0.0"

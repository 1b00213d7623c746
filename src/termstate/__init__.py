"""Discover, capture and restore terminal sessions."""

__version__ = "0.1.0"

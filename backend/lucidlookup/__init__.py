"""Cached lookup service for the LUCID packaging register."""

__version__ = "1.0.0"

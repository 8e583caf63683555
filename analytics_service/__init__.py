"""Windowed analytics over the order streams."""

__version__ = "0.1.0"

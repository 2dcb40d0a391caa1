"""Lenor - chat companion message memory."""

__version__ = "0.1.0"

"""Registration and capacity consistency engine for Evently."""

__version__ = "1.0.0"

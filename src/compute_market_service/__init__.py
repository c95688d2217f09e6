"""Compute marketplace service: task lifecycle and usage-based settlement."""

__version__ = "0.1.0"

"""Consentry: cookie consent lifecycle and enforcement."""

__version__ = "1.0.0"

"""Apoyo API: edge-cached, credit-gated recruiting backend core."""

__version__ = "0.1.0"

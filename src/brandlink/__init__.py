"""Brandlink - branded custom domains for short links."""

__version__ = "0.4.0"

"""Marketguard: sign-in and layered access control for the marketplace."""

__version__ = "0.1.0"

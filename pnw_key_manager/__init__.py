"""Encrypted PnW API key management for the alliance dashboard."""

__version__ = "1.0.0"

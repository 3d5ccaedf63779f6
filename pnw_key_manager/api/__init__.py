"""HTTP surface for the credential operations."""

from .app import create_app

__all__ = ["create_app"]

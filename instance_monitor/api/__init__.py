"""HTTP surface of the instance monitor."""

from .app import create_app

__all__ = ["create_app"]

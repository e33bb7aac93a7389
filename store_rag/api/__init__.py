"""
HTTP surface for the store knowledge core.
"""

from .app import app, create_app

__all__ = ["app", "create_app"]

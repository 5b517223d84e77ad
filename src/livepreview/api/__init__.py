# src/livepreview/api/__init__.py
"""HTTP API for the live preview service."""

from .app import create_app
from .routes import router, status_for

__all__ = ["create_app", "router", "status_for"]

"""
FastAPI server module for reasonloop.
"""

from .main import app, create_app

__all__ = ["app", "create_app"]

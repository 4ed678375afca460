"""
HTTP Interface

FastAPI application factory for the timeline server.
"""

from .server import create_app

__all__ = ['create_app']

"""
API module for LiveDetect.

Provides FastAPI control server for the live detection loop.
"""

from .server import create_app, start_server

__all__ = [
    "create_app",
    "start_server",
]

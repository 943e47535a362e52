"""API Package.

FastAPI server for the ERP Migration Intelligence toolkit.
"""

from api.server import create_app, app

__all__ = [
    "create_app",
    "app",
]

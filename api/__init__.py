"""API Package.

FastAPI server for the commerce sync engine.
"""

from api.server import create_app

__all__ = [
    "create_app",
]

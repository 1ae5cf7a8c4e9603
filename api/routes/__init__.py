"""API Routes Package."""

from api.routes import health, sync, financials

__all__ = [
    "health",
    "sync",
    "financials",
]

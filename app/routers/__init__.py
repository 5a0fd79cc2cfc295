"""
Compliance Cloud - Routers Package

FastAPI route handlers.

Routers:
- compliance: scores, bundle progress and on-demand refresh
"""

from app.routers import compliance

__all__ = ["compliance"]

"""
FastAPI comment receiver.

Provides:
- POST /comment - Comment form submission
- GET /health - Liveness check
"""

from staticomment.api.app import create_app

__all__ = ["create_app"]

"""
SheAid HTTP gateway.

FastAPI wrapper around the engine: lifecycle transitions, reconciled entity
views and project ledgers over REST.
"""

from .app import create_app
from .routes import router

__all__ = ["create_app", "router"]

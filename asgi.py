"""
asgi.py -- ASGI entry point for Stallmarket.

Run with:  uvicorn asgi:app --reload

Kept separate from api/main.py so process managers and the CLI share one
import path for the application object.
"""

from api.main import app

__all__ = ["app"]

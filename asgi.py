"""
asgi.py -- ASGI entry point for the E-Tax API.

Run with:  uvicorn asgi:app --reload

Kept separate from api/main.py so deployment tooling has one stable import
path while the application module is free to grow.
"""

from api.main import app

__all__ = ["app"]

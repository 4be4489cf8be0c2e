"""
asgi.py -- ASGI entry point for Notekeeper auth.

Run with:  uvicorn asgi:app --reload

The notes resource and the web front-end are separate services; they accept
the bearer tokens issued here.
"""

from api.main import app

__all__ = ["app"]

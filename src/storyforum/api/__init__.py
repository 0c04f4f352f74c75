"""FastAPI application exposing the discussion engine endpoints."""

from .app import create_app

__all__ = ["create_app"]

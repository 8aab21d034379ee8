"""Installable entry point for the Entertainment Hub service.

The application itself lives in the ``app`` package; this package re-exports
it so ``uvicorn entertainment_hub:app`` works after installation.
"""

from __future__ import annotations

from app.main import app, create_app

__all__ = ["app", "create_app"]

"""Shared dependency: engine reference set by app.py during create_app()."""

from __future__ import annotations

from fastapi import HTTPException


_engine = None


def set_engine(engine):
    """Called by app.py to inject the engine (or a fake) reference."""
    global _engine
    _engine = engine


def get_engine():
    """Return the current engine or raise 503 if unavailable."""
    if _engine is None or _engine.shutting_down:
        raise HTTPException(503, "Engine is not running")
    return _engine

"""Common FastAPI dependencies."""

from __future__ import annotations

from fastapi import Request

from examprep.db.session import get_db
from examprep.services.engine import Engine, build_engine


def get_engine(request: Request) -> Engine:
    """The engine owned by the running app (built lazily if startup did not run)."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        engine = build_engine()
        request.app.state.engine = engine
    return engine


__all__ = ["get_db", "get_engine"]

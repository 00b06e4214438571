"""
Health endpoint for the Taskboard automation backend.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.orm import Session

from ...core.db import get_db
from ...core.timeutil import utcnow


router = APIRouter(prefix="/api/v1/health", tags=["health"])


@router.get("")
def health(request: Request, db: Session = Depends(get_db)) -> dict:
    db_ok = True
    try:
        db.execute(text("SELECT 1"))
    except Exception:
        db_ok = False
    runtime = getattr(request.app.state, "automation", None)
    watchdog = getattr(request.app.state, "due_date_thread", None)
    return {
        "status": "ok" if db_ok else "degraded",
        "timestamp_utc": utcnow().isoformat(),
        "database": db_ok,
        "automation": {
            "enabled": runtime is not None,
            "mode": runtime.mode if runtime is not None else None,
            "max_depth": runtime.engine.max_depth if runtime is not None else None,
        },
        "due_date_watchdog": bool(watchdog is not None and watchdog.is_alive()),
    }

"""
Due-date watchdog that raises ``due_date_passed`` events for overdue tasks.
"""

from __future__ import annotations

import datetime
import logging
import threading
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.db import SessionLocal
from ..models.task import Task
from .task_events import AutomationEvent, EventSource


logger = logging.getLogger("due_date_watchdog")

MIN_INTERVAL_SEC = 10


def scan_overdue_tasks(
    db: Session,
    source: Optional[EventSource],
    now: Optional[datetime.datetime] = None,
) -> int:
    """
    Flag every overdue, not yet flagged task and emit one event per task.

    Returns the number of tasks flagged. Events are emitted after the flags
    are committed so a handler failure never re-raises the same event.
    """
    now = now or datetime.datetime.now(datetime.timezone.utc)
    tasks = (
        db.query(Task)
        .filter(
            Task.due_date.isnot(None),
            Task.due_date <= now,
            Task.due_date_flagged_at.is_(None),
        )
        .order_by(Task.due_date.asc())
        .all()
    )
    if not tasks:
        return 0

    events: list[AutomationEvent] = []
    for task in tasks:
        task.due_date_flagged_at = now
        db.add(task)
        events.append(AutomationEvent.due_date_passed(task_id=task.id, project_id=task.project_id))
    db.commit()
    logger.info("Flagged %s overdue task(s)", len(events))

    if source is not None:
        for event in events:
            source.emit(event)
    return len(events)


def run_due_date_watchdog(
    stop_event: threading.Event,
    source: EventSource,
    *,
    session_factory: Callable[[], Session] = SessionLocal,
    interval_sec: Optional[int] = None,
) -> None:
    interval = interval_sec if interval_sec is not None else settings.due_date_watchdog_interval_sec
    interval = max(MIN_INTERVAL_SEC, int(interval))
    logger.info("Due-date watchdog started (interval=%ss)", interval)
    while not stop_event.is_set():
        try:
            with session_factory() as db:
                scan_overdue_tasks(db, source)
        except Exception as exc:
            logger.exception("Due-date watchdog cycle failed: %s", exc)
        stop_event.wait(interval)
    logger.info("Due-date watchdog stopped")

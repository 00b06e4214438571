"""
Notification outbox helpers.

Automation notifications are not delivered inline: they are written to the
``notification_outbox`` table and picked up by the worker process.
"""

from __future__ import annotations

import logging
import uuid
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..models.notification_outbox import NotificationOutbox


logger = logging.getLogger("notification_outbox")


def build_dedupe_key(
    recipient_id: str,
    *,
    event_id: Optional[str] = None,
    rule_id: Optional[int] = None,
) -> Optional[str]:
    if not event_id:
        return None
    return f"{event_id}:{rule_id if rule_id is not None else '-'}:{recipient_id}"


def enqueue_notification(
    db: Session,
    recipient_id: str,
    message: str,
    *,
    project_id: Optional[str] = None,
    task_id: Optional[str] = None,
    rule_id: Optional[int] = None,
    event_id: Optional[str] = None,
    commit: Optional[Callable[[Session], None]] = None,
) -> Optional[NotificationOutbox]:
    """
    Queue one notification. Returns the new row, or None when the same
    event/rule/recipient combination was already queued. ``commit`` replaces
    ``db.commit()`` for callers that must veto the write.
    """
    recipient = (recipient_id or "").strip()
    if not recipient:
        raise ValueError("recipient_id is required")
    dedupe_key = build_dedupe_key(recipient, event_id=event_id, rule_id=rule_id)
    if dedupe_key:
        existing = db.query(NotificationOutbox).filter(NotificationOutbox.dedupe_key == dedupe_key).first()
        if existing:
            logger.info("Notification already queued dedupe_key=%s", dedupe_key)
            return None
    row = NotificationOutbox(
        dedupe_key=dedupe_key or f"adhoc:{uuid.uuid4()}",
        recipient_id=recipient,
        message=message,
        project_id=project_id,
        task_id=task_id,
        rule_id=rule_id,
        status="PENDING",
        attempts=0,
    )
    db.add(row)
    if commit is not None:
        commit(db)
    else:
        db.commit()
    db.refresh(row)
    logger.info(
        "Notification queued id=%s recipient=%s rule_id=%s task_id=%s",
        row.id,
        recipient,
        rule_id,
        task_id,
    )
    return row

"""
Outbox worker for sending automation notifications with retries.
"""

from __future__ import annotations

import datetime
import logging
from typing import Optional

import requests
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..core.config import Settings, settings
from ..models.notification_outbox import NotificationOutbox


logger = logging.getLogger("notification_worker")


class NotificationProvider:
    def send(self, outbox: NotificationOutbox) -> Optional[str]:
        raise NotImplementedError


class LogNotificationProvider(NotificationProvider):
    def send(self, outbox: NotificationOutbox) -> Optional[str]:
        logging.getLogger("notifications").info(
            "Log notification to=%s task_id=%s rule_id=%s message=%s",
            outbox.recipient_id,
            outbox.task_id,
            outbox.rule_id,
            outbox.message,
        )
        return None


class WebhookNotificationProvider(NotificationProvider):
    """POSTs each notification as JSON to a configured URL."""

    def __init__(self, url: str, *, timeout_sec: float = 5.0) -> None:
        if not url:
            raise RuntimeError("Webhook URL is empty")
        self.url = url
        self.timeout_sec = timeout_sec

    def send(self, outbox: NotificationOutbox) -> Optional[str]:
        payload = {
            "id": outbox.id,
            "recipient_id": outbox.recipient_id,
            "message": outbox.message,
            "project_id": outbox.project_id,
            "task_id": outbox.task_id,
            "rule_id": outbox.rule_id,
        }
        try:
            response = requests.post(self.url, json=payload, timeout=self.timeout_sec)
        except requests.RequestException as exc:
            raise RuntimeError(f"Webhook request failed: {exc}") from exc
        if response.status_code // 100 != 2:
            raise RuntimeError(f"Webhook send failed status={response.status_code} detail={response.text[:500]}")
        try:
            data = response.json()
        except ValueError:
            return None
        if isinstance(data, dict) and data.get("id") is not None:
            return str(data["id"])
        return None


def build_provider(current: Settings | None = None) -> NotificationProvider:
    current = current or settings
    url = (current.notify_webhook_url or "").strip()
    if url:
        provider: NotificationProvider = WebhookNotificationProvider(url, timeout_sec=current.notify_webhook_timeout_sec)
    else:
        logger.warning("NOTIFY_WEBHOOK_URL missing; using LogNotificationProvider.")
        provider = LogNotificationProvider()
    logger.info("Provider selected: %s", type(provider).__name__)
    return provider


def _backoff_seconds(attempt: int) -> int:
    schedule = [60, 300, 900, 3600, 21600]
    idx = min(max(attempt - 1, 0), len(schedule) - 1)
    return schedule[idx]


def process_outbox_batch(
    db: Session,
    *,
    provider: Optional[NotificationProvider] = None,
    max_attempts: int = 5,
    batch_size: int = 50,
) -> int:
    provider = provider or build_provider()
    now = datetime.datetime.now(datetime.timezone.utc)

    query = (
        db.query(NotificationOutbox)
        .filter(
            NotificationOutbox.status.in_(["PENDING", "RETRYING"]),
            or_(NotificationOutbox.next_retry_at.is_(None), NotificationOutbox.next_retry_at <= now),
        )
        .order_by(NotificationOutbox.created_at.asc())
        .limit(batch_size)
    )
    if db.bind and db.bind.dialect.name == "postgresql":
        query = query.with_for_update(skip_locked=True)

    rows = query.all()
    processed = 0

    for row in rows:
        # Claim the row before sending so a crash mid-send is retried later.
        try:
            row.attempts = int(row.attempts or 0) + 1
            row.status = "RETRYING"
            row.next_retry_at = now + datetime.timedelta(seconds=30)
            row.updated_at = now
            db.add(row)
            db.commit()
        except Exception as exc:
            db.rollback()
            logger.warning("Failed to mark outbox retrying id=%s err=%s", row.id, exc)
            continue

        try:
            message_id = provider.send(row)
            row.status = "SENT"
            row.provider_message_id = message_id
            row.sent_at = datetime.datetime.now(datetime.timezone.utc)
            row.last_error = None
            row.next_retry_at = None
        except Exception as exc:
            row.last_error = str(exc)
            logger.warning(
                "Notification send failed id=%s recipient=%s rule_id=%s attempts=%s err=%s",
                row.id,
                row.recipient_id,
                row.rule_id,
                row.attempts,
                exc,
            )
            if row.attempts >= max_attempts:
                row.status = "FAILED"
                row.next_retry_at = None
            else:
                row.status = "RETRYING"
                row.next_retry_at = datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(
                    seconds=_backoff_seconds(row.attempts)
                )

        try:
            db.add(row)
            db.commit()
            processed += 1
        except Exception as exc:
            db.rollback()
            logger.warning("Failed to update outbox id=%s err=%s", row.id, exc)

    return processed

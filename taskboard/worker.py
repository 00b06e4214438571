"""
Notification worker process entrypoint.

    python -m taskboard.worker
"""

from __future__ import annotations

import logging
import os
import time

from .core.config import settings
from .core.db import SessionLocal
from .core.logging_config import setup_logging
from .services.notification_worker import build_provider, process_outbox_batch


logger = logging.getLogger("worker")


def main() -> int:
    setup_logging()
    logger.info("Worker booted (pid=%s)", os.getpid())
    interval = max(1, int(settings.worker_interval_sec))
    provider = build_provider(settings)
    logger.info("Worker started interval=%ss", interval)

    while True:
        try:
            with SessionLocal() as db:
                sent = process_outbox_batch(
                    db,
                    provider=provider,
                    max_attempts=settings.notify_max_attempts,
                    batch_size=settings.notify_batch_size,
                )
            if sent:
                logger.info("Processed %s outbox row(s)", sent)
            time.sleep(interval)
        except KeyboardInterrupt:
            return 0
        except Exception:
            logger.exception("Worker loop error")
            time.sleep(interval)


if __name__ == "__main__":
    raise SystemExit(main())

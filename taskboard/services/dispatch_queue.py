"""
Asynchronous per-project dispatch.

Each project gets its own FIFO queue drained by one worker thread, so
events of one project are dispatched in arrival order while different
projects proceed in parallel.
"""

from __future__ import annotations

import concurrent.futures
import logging
import queue
import threading
from typing import Optional

from .rule_engine import DispatchEngine, DispatchReport
from .task_events import AutomationEvent


logger = logging.getLogger("dispatch_queue")

_STOP = object()


class ProjectDispatcher:
    def __init__(self, engine: DispatchEngine, *, idle_timeout_sec: float = 60.0) -> None:
        self.engine = engine
        self.idle_timeout_sec = idle_timeout_sec
        self._queues: dict[str, queue.Queue] = {}
        self._threads: dict[str, threading.Thread] = {}
        self._lock = threading.Lock()
        self._stopped = False

    def submit(self, event: AutomationEvent) -> "concurrent.futures.Future[DispatchReport]":
        future: concurrent.futures.Future = concurrent.futures.Future()
        with self._lock:
            if self._stopped:
                future.set_exception(RuntimeError("Dispatcher is stopped"))
                return future
            q = self._queues.get(event.project_id)
            if q is None:
                q = queue.Queue()
                self._queues[event.project_id] = q
            q.put((event, future))
            thread = self._threads.get(event.project_id)
            if thread is None or not thread.is_alive():
                thread = threading.Thread(
                    target=self._worker,
                    args=(event.project_id, q),
                    name=f"automation-{event.project_id[:8]}",
                    daemon=True,
                )
                self._threads[event.project_id] = thread
                thread.start()
        return future

    def handle_event(self, event: AutomationEvent) -> "concurrent.futures.Future[DispatchReport]":
        return self.submit(event)

    def _worker(self, project_id: str, q: queue.Queue) -> None:
        while True:
            try:
                item = q.get(timeout=self.idle_timeout_sec)
            except queue.Empty:
                with self._lock:
                    # Retire only if nothing arrived between the timeout and taking the lock.
                    if q.empty():
                        self._threads.pop(project_id, None)
                        self._queues.pop(project_id, None)
                        return
                continue
            if item is _STOP:
                return
            event, future = item
            if not future.set_running_or_notify_cancel():
                continue
            try:
                future.set_result(self.engine.dispatch(event))
            except Exception as exc:
                logger.exception("Dispatch worker failed project_id=%s: %s", project_id, exc)
                future.set_exception(exc)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        with self._lock:
            self._stopped = True
            queues = list(self._queues.values())
            threads = list(self._threads.values())
        for q in queues:
            q.put(_STOP)
        for thread in threads:
            thread.join(timeout)
        logger.info("Project dispatcher stopped (%s workers)", len(threads))

"""
Wiring for the automation subsystem.

``build_runtime`` assembles the event source, the SQL-backed collaborators,
the action executor and the dispatch engine from settings. The FastAPI app
keeps one runtime on ``app.state``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..core.config import Settings, settings
from ..core.db import SessionLocal
from .dispatch_queue import ProjectDispatcher
from .rule_actions import ActionExecutor, OutboxNotifier, SqlBadgeAwarder, SqlTaskGateway
from .rule_engine import DispatchEngine
from .task_events import EventSource


logger = logging.getLogger("automation")


@dataclass
class AutomationRuntime:
    source: EventSource
    engine: DispatchEngine
    executor: ActionExecutor
    dispatcher: Optional[ProjectDispatcher] = None

    @property
    def mode(self) -> str:
        return "async" if self.dispatcher is not None else "sync"

    def shutdown(self) -> None:
        if self.dispatcher is not None:
            self.dispatcher.stop()
        self.executor.shutdown()
        logger.info("Automation runtime stopped")


def build_runtime(
    session_factory: Callable[[], Session] = SessionLocal,
    current: Settings | None = None,
) -> AutomationRuntime:
    current = current or settings
    executor = ActionExecutor(
        SqlTaskGateway(session_factory),
        OutboxNotifier(session_factory),
        SqlBadgeAwarder(session_factory) if current.enable_badges else None,
        timeout_sec=current.automation_action_timeout_sec,
        max_workers=current.automation_action_workers,
    )
    engine = DispatchEngine(session_factory, executor, max_depth=current.automation_max_cascade_depth)
    source = EventSource()
    dispatcher: Optional[ProjectDispatcher] = None
    if current.automation_dispatch_mode == "async":
        dispatcher = ProjectDispatcher(engine)
        source.subscribe(dispatcher.handle_event)
    else:
        source.subscribe(engine.handle_event)
    logger.info(
        "Automation runtime ready mode=%s max_depth=%s action_timeout=%ss badges=%s",
        current.automation_dispatch_mode,
        engine.max_depth,
        executor.timeout_sec,
        current.enable_badges,
    )
    return AutomationRuntime(source=source, engine=engine, executor=executor, dispatcher=dispatcher)

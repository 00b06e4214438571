"""
Event source adapter between task mutations and the automation engine.

Task updates no longer call into the automation code directly. Instead the
mutation helpers below compare old and new values, build typed
``AutomationEvent`` objects and hand them to an ``EventSource``; the
dispatch engine (or the per-project dispatcher) subscribes to that source.
"""

from __future__ import annotations

import datetime
import enum
import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from sqlalchemy.orm import Session

from ..core.errors import log_exception
from ..core.timeutil import ensure_utc, utcnow
from ..models.project import Project
from ..models.task import Task
from .automation_errors import NotFound


logger = logging.getLogger("task_events")


class EventKind(str, enum.Enum):
    TASK_STATUS_CHANGE = "task_status_change"
    TASK_ASSIGNED = "task_assigned"
    DUE_DATE_PASSED = "due_date_passed"


@dataclass(frozen=True)
class AutomationEvent:
    """A task state transition that may satisfy zero or more rules."""

    kind: EventKind
    task_id: str
    project_id: str
    old_status: Optional[str] = None
    new_status: Optional[str] = None
    old_assignee: Optional[str] = None
    new_assignee: Optional[str] = None
    caused_by_rule_id: Optional[int] = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime.datetime = field(default_factory=utcnow)

    @classmethod
    def status_changed(
        cls,
        *,
        task_id: str,
        project_id: str,
        old_status: Optional[str],
        new_status: str,
        caused_by_rule_id: Optional[int] = None,
    ) -> "AutomationEvent":
        return cls(
            kind=EventKind.TASK_STATUS_CHANGE,
            task_id=task_id,
            project_id=project_id,
            old_status=old_status,
            new_status=new_status,
            caused_by_rule_id=caused_by_rule_id,
        )

    @classmethod
    def assigned(
        cls,
        *,
        task_id: str,
        project_id: str,
        old_assignee: Optional[str],
        new_assignee: Optional[str],
    ) -> "AutomationEvent":
        return cls(
            kind=EventKind.TASK_ASSIGNED,
            task_id=task_id,
            project_id=project_id,
            old_assignee=old_assignee,
            new_assignee=new_assignee,
        )

    @classmethod
    def due_date_passed(cls, *, task_id: str, project_id: str) -> "AutomationEvent":
        return cls(kind=EventKind.DUE_DATE_PASSED, task_id=task_id, project_id=project_id)

    def describe(self) -> str:
        if self.kind is EventKind.TASK_STATUS_CHANGE:
            detail = f"{self.old_status!r}->{self.new_status!r}"
        elif self.kind is EventKind.TASK_ASSIGNED:
            detail = f"{self.old_assignee!r}->{self.new_assignee!r}"
        else:
            detail = "due"
        return f"{self.kind.value}[task={self.task_id} project={self.project_id} {detail}]"


EventHandler = Callable[[AutomationEvent], Any]


class EventSource:
    """Fan-out point for automation events.

    ``emit`` calls every subscriber in subscription order and returns their
    results. A failing subscriber is logged and does not stop the others,
    and never propagates into the code that mutated the task.
    """

    def __init__(self) -> None:
        self._handlers: List[EventHandler] = []
        self._lock = threading.Lock()

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        with self._lock:
            self._handlers.append(handler)

        def _unsubscribe() -> None:
            with self._lock:
                if handler in self._handlers:
                    self._handlers.remove(handler)

        return _unsubscribe

    def emit(self, event: AutomationEvent) -> list:
        with self._lock:
            handlers = list(self._handlers)
        if not handlers:
            logger.debug("No subscribers for %s", event.describe())
        results = []
        for handler in handlers:
            try:
                results.append(handler(event))
            except Exception as exc:
                log_exception(logger, "Event handler failed", extra={"event": event.describe()}, exc=exc)
        return results


_UNSET: Any = object()


@dataclass
class TaskUpdateResult:
    task: Task
    events: list[AutomationEvent]
    results: list


def _project_statuses(db: Session, project_id: str) -> list[str]:
    project = db.get(Project, project_id)
    if not project:
        raise NotFound("project", project_id)
    return list(project.statuses or [])


def update_task(
    db: Session,
    source: Optional[EventSource],
    task_id: str,
    *,
    status: Optional[str] = None,
    assignee_id: Any = _UNSET,
    due_date: Any = _UNSET,
) -> TaskUpdateResult:
    """
    Apply a task update coming from outside the automation engine.

    Commits the change, then emits a status-change event when the status
    actually changed and an assignment event when the assignee changed.
    Pass ``assignee_id=None`` to clear the assignment.
    """
    task = db.get(Task, task_id)
    if not task:
        raise NotFound("task", task_id)
    if status is not None and status not in _project_statuses(db, task.project_id):
        raise ValueError(f"Status must be one of the project statuses, got {status!r}")

    old_status = task.status
    old_assignee = task.assignee_id
    if status is not None:
        task.status = status
    if assignee_id is not _UNSET:
        task.assignee_id = assignee_id
    if due_date is not _UNSET:
        due_date = ensure_utc(due_date)
        # Re-sending the same due date keeps the overdue flag.
        if due_date != ensure_utc(task.due_date):
            task.due_date = due_date
            task.due_date_flagged_at = None
    db.add(task)
    db.commit()
    db.refresh(task)

    events: list[AutomationEvent] = []
    if status is not None and status != old_status:
        events.append(
            AutomationEvent.status_changed(
                task_id=task.id,
                project_id=task.project_id,
                old_status=old_status,
                new_status=status,
            )
        )
    if assignee_id is not _UNSET and (assignee_id or None) != (old_assignee or None):
        events.append(
            AutomationEvent.assigned(
                task_id=task.id,
                project_id=task.project_id,
                old_assignee=old_assignee,
                new_assignee=assignee_id,
            )
        )

    results: list = []
    if source is not None:
        for event in events:
            results.extend(source.emit(event))
    return TaskUpdateResult(task=task, events=events, results=results)


def create_task(
    db: Session,
    source: Optional[EventSource],
    project_id: str,
    title: str,
    *,
    status: Optional[str] = None,
    assignee_id: Optional[str] = None,
    due_date: Optional[datetime.datetime] = None,
    description: Optional[str] = None,
    created_by: Optional[str] = None,
) -> TaskUpdateResult:
    """
    Create a task, then raise the assignment event when it starts with an
    assignee. The status defaults to the project's first status.
    """
    statuses = _project_statuses(db, project_id)
    if not (title or "").strip():
        raise ValueError("Task title must be non-empty")
    if status is None:
        if not statuses:
            raise ValueError(f"Project {project_id} defines no statuses")
        status = statuses[0]
    elif status not in statuses:
        raise ValueError(f"Status must be one of the project statuses, got {status!r}")

    task = Task(
        project_id=project_id,
        title=title.strip(),
        description=description,
        status=status,
        assignee_id=assignee_id or None,
        due_date=ensure_utc(due_date),
        created_by=created_by,
    )
    db.add(task)
    db.commit()
    db.refresh(task)
    logger.info("Task created task_id=%s project_id=%s assignee=%s", task.id, project_id, task.assignee_id)

    events: list[AutomationEvent] = []
    results = emit_task_created(source, task, events)
    return TaskUpdateResult(task=task, events=events, results=results)


def emit_task_created(
    source: Optional[EventSource],
    task: Task,
    events: Optional[list[AutomationEvent]] = None,
) -> list:
    """Raise the assignment event for a task created with an assignee."""
    if not task.assignee_id:
        return []
    event = AutomationEvent.assigned(
        task_id=task.id,
        project_id=task.project_id,
        old_assignee=None,
        new_assignee=task.assignee_id,
    )
    if events is not None:
        events.append(event)
    if source is None:
        return []
    return source.emit(event)

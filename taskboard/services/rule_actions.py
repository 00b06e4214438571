"""
Action execution for matched automation rules.

Each action type is implemented against a small collaborator interface
(task gateway, notifier, badge awarder) so the executor can be driven by
the SQL-backed collaborators in production and by fakes in tests.
"""

from __future__ import annotations

import concurrent.futures
import contextlib
import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Iterator, Optional

from sqlalchemy.orm import Session

from ..core.errors import log_exception
from ..models.badge import UserBadge
from ..models.project import Project
from ..models.task import Task
from ..schemas.rule import AssignBadgeAction, ChangeStatusAction, SendNotificationAction
from .automation_errors import ActionFailed, NotFound
from .notification_outbox import enqueue_notification
from .rule_store import RuleSnapshot
from .task_events import AutomationEvent

if TYPE_CHECKING:
    from .rule_engine import ExecutionContext


logger = logging.getLogger("rule_actions")


@dataclass(frozen=True)
class TaskState:
    task_id: str
    project_id: str
    status: str
    previous_status: Optional[str]
    assignee_id: Optional[str] = None


class ActionCancelled(Exception):
    pass


class CancelToken:
    """
    Shared by the executor and the collaborator running one timed action.

    Collaborators commit inside ``commit_guard()``. After ``cancel()`` the
    guard refuses to commit; after a commit ``cancel()`` returns False and
    the action's result stands.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.cancelled = False
        self.committed = False

    def cancel(self) -> bool:
        with self._lock:
            if self.committed:
                return False
            self.cancelled = True
            return True

    @contextlib.contextmanager
    def commit_guard(self) -> Iterator[None]:
        with self._lock:
            if self.cancelled:
                raise ActionCancelled("action abandoned before commit")
            yield
            self.committed = True


def commit_unless_cancelled(db: Session, cancel: Optional[CancelToken]) -> None:
    if cancel is None:
        db.commit()
        return
    try:
        with cancel.commit_guard():
            db.commit()
    except ActionCancelled:
        db.rollback()
        raise


class TaskGateway:
    def update_status(self, task_id: str, new_status: str, *, cancel: Optional[CancelToken] = None) -> TaskState:
        raise NotImplementedError

    def get_assignee(self, task_id: str) -> Optional[str]:
        raise NotImplementedError


class Notifier:
    def notify(
        self,
        recipient_id: str,
        message: str,
        *,
        task_id: Optional[str] = None,
        project_id: Optional[str] = None,
        rule_id: Optional[int] = None,
        event_id: Optional[str] = None,
        cancel: Optional[CancelToken] = None,
    ) -> None:
        raise NotImplementedError


class BadgeAwarder:
    def award(
        self,
        user_id: str,
        badge_type: str,
        *,
        task_id: Optional[str] = None,
        rule_id: Optional[int] = None,
        cancel: Optional[CancelToken] = None,
    ) -> None:
        raise NotImplementedError


@dataclass
class ActionResult:
    action_type: str
    performed: bool
    detail: str = ""
    events: list[AutomationEvent] = field(default_factory=list)


class ActionExecutor:
    """
    Performs the action of a matched rule.

    ``execute`` either returns an ``ActionResult`` or raises ``ActionFailed``;
    when a timeout is configured the action runs on a small worker pool and
    is abandoned (and reported as failed) once the timeout elapses.
    """

    def __init__(
        self,
        tasks: TaskGateway,
        notifier: Optional[Notifier] = None,
        badges: Optional[BadgeAwarder] = None,
        *,
        timeout_sec: Optional[float] = None,
        max_workers: int = 4,
    ) -> None:
        self.tasks = tasks
        self.notifier = notifier
        self.badges = badges
        self.timeout_sec = timeout_sec if timeout_sec and timeout_sec > 0 else None
        self._pool: Optional[concurrent.futures.ThreadPoolExecutor] = None
        if self.timeout_sec is not None:
            self._pool = concurrent.futures.ThreadPoolExecutor(
                max_workers=max(1, max_workers),
                thread_name_prefix="automation-action",
            )

    def execute(
        self,
        rule: RuleSnapshot,
        event: AutomationEvent,
        context: Optional["ExecutionContext"] = None,
    ) -> ActionResult:
        action_type = rule.action.type
        if self._pool is None:
            try:
                return self._perform(rule, event, None)
            except ActionFailed:
                raise
            except Exception as exc:
                raise ActionFailed(rule.id, action_type, exc) from exc

        token = CancelToken()
        future = self._pool.submit(self._perform, rule, event, token)
        try:
            try:
                return future.result(timeout=self.timeout_sec)
            except concurrent.futures.TimeoutError as exc:
                future.cancel()
                if token.cancel():
                    raise ActionFailed(rule.id, action_type, f"timed out after {self.timeout_sec}s") from exc
                # The write landed before the deadline was enforced; keep its result.
                logger.info("Action committed at the deadline rule_id=%s type=%s", rule.id, action_type)
                return future.result()
        except ActionFailed:
            raise
        except Exception as exc:
            raise ActionFailed(rule.id, action_type, exc) from exc

    def shutdown(self) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=False, cancel_futures=True)

    def _perform(self, rule: RuleSnapshot, event: AutomationEvent, cancel: Optional[CancelToken]) -> ActionResult:
        action = rule.action
        if isinstance(action, ChangeStatusAction):
            return self._change_status(rule, action, event, cancel)
        if isinstance(action, AssignBadgeAction):
            return self._assign_badge(rule, action, event, cancel)
        if isinstance(action, SendNotificationAction):
            return self._send_notification(rule, action, event, cancel)
        raise ActionFailed(rule.id, str(getattr(action, "type", "unknown")), "unsupported action type")

    def _change_status(
        self, rule: RuleSnapshot, action: ChangeStatusAction, event: AutomationEvent, cancel: Optional[CancelToken]
    ) -> ActionResult:
        new_status = action.data.new_status
        state = self.tasks.update_status(event.task_id, new_status, cancel=cancel)
        if state.previous_status == state.status:
            return ActionResult(action.type, performed=False, detail=f"status already {new_status!r}")
        logger.info(
            "Task status changed by automation task_id=%s rule_id=%s %r->%r",
            event.task_id,
            rule.id,
            state.previous_status,
            state.status,
        )
        follow_up = AutomationEvent.status_changed(
            task_id=state.task_id,
            project_id=state.project_id,
            old_status=state.previous_status,
            new_status=state.status,
            caused_by_rule_id=rule.id,
        )
        return ActionResult(
            action.type,
            performed=True,
            detail=f"{state.previous_status!r}->{state.status!r}",
            events=[follow_up],
        )

    def _assign_badge(
        self, rule: RuleSnapshot, action: AssignBadgeAction, event: AutomationEvent, cancel: Optional[CancelToken]
    ) -> ActionResult:
        badge_type = action.data.badge_type
        if self.badges is None:
            logger.info("Badge collaborator absent; skipping badge=%s rule_id=%s task_id=%s", badge_type, rule.id, event.task_id)
            return ActionResult(action.type, performed=False, detail="badge collaborator absent")
        assignee = self.tasks.get_assignee(event.task_id)
        if not assignee:
            logger.info("No assignee for badge=%s rule_id=%s task_id=%s", badge_type, rule.id, event.task_id)
            return ActionResult(action.type, performed=False, detail="no assignee")
        try:
            self.badges.award(assignee, badge_type, task_id=event.task_id, rule_id=rule.id, cancel=cancel)
        except ActionCancelled:
            raise
        except Exception as exc:
            log_exception(
                logger,
                "Badge award failed",
                extra={"rule_id": rule.id, "task_id": event.task_id, "user_id": assignee},
                exc=exc,
            )
            return ActionResult(action.type, performed=False, detail=f"badge award failed: {exc}")
        return ActionResult(action.type, performed=True, detail=f"badge {badge_type!r} -> {assignee}")

    def _send_notification(
        self, rule: RuleSnapshot, action: SendNotificationAction, event: AutomationEvent, cancel: Optional[CancelToken]
    ) -> ActionResult:
        message = action.data.message
        recipient = action.data.recipient_id or self.tasks.get_assignee(event.task_id)
        if not recipient:
            logger.info("No recipient for notification rule_id=%s task_id=%s", rule.id, event.task_id)
            return ActionResult(action.type, performed=False, detail="no recipient")
        if self.notifier is None:
            logger.info("Notifier absent; dropping notification rule_id=%s recipient=%s", rule.id, recipient)
            return ActionResult(action.type, performed=False, detail="notifier absent")
        try:
            self.notifier.notify(
                recipient,
                message,
                task_id=event.task_id,
                project_id=event.project_id,
                rule_id=rule.id,
                event_id=event.event_id,
                cancel=cancel,
            )
        except ActionCancelled:
            raise
        except Exception as exc:
            log_exception(
                logger,
                "Notification dispatch failed",
                extra={"rule_id": rule.id, "task_id": event.task_id, "recipient": recipient},
                exc=exc,
            )
            return ActionResult(action.type, performed=False, detail=f"notification failed: {exc}")
        return ActionResult(action.type, performed=True, detail=f"notified {recipient}")


class SqlTaskGateway(TaskGateway):
    """Task mutations backed by the tasks table, one short session per call."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self.session_factory = session_factory

    def update_status(self, task_id: str, new_status: str, *, cancel: Optional[CancelToken] = None) -> TaskState:
        with self.session_factory() as db:
            task = db.get(Task, task_id)
            if not task:
                raise NotFound("task", task_id)
            project = db.get(Project, task.project_id)
            if not project:
                raise NotFound("project", task.project_id)
            if new_status not in (project.statuses or []):
                raise ValueError(f"Status {new_status!r} is not defined for project {project.id}")
            previous = task.status
            if previous != new_status:
                task.status = new_status
                db.add(task)
                commit_unless_cancelled(db, cancel)
            return TaskState(
                task_id=task.id,
                project_id=task.project_id,
                status=new_status,
                previous_status=previous,
                assignee_id=task.assignee_id,
            )

    def get_assignee(self, task_id: str) -> Optional[str]:
        with self.session_factory() as db:
            task = db.get(Task, task_id)
            if not task:
                raise NotFound("task", task_id)
            return task.assignee_id


class OutboxNotifier(Notifier):
    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self.session_factory = session_factory

    def notify(
        self,
        recipient_id: str,
        message: str,
        *,
        task_id: Optional[str] = None,
        project_id: Optional[str] = None,
        rule_id: Optional[int] = None,
        event_id: Optional[str] = None,
        cancel: Optional[CancelToken] = None,
    ) -> None:
        with self.session_factory() as db:
            enqueue_notification(
                db,
                recipient_id,
                message,
                project_id=project_id,
                task_id=task_id,
                rule_id=rule_id,
                event_id=event_id,
                commit=lambda session: commit_unless_cancelled(session, cancel),
            )


class SqlBadgeAwarder(BadgeAwarder):
    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self.session_factory = session_factory

    def award(
        self,
        user_id: str,
        badge_type: str,
        *,
        task_id: Optional[str] = None,
        rule_id: Optional[int] = None,
        cancel: Optional[CancelToken] = None,
    ) -> None:
        with self.session_factory() as db:
            db.add(UserBadge(user_id=user_id, badge_type=badge_type, task_id=task_id, rule_id=rule_id))
            commit_unless_cancelled(db, cancel)
        logger.info("Badge awarded user_id=%s badge=%s task_id=%s rule_id=%s", user_id, badge_type, task_id, rule_id)

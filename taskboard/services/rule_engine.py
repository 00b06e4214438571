"""
Dispatch engine for project automation rules.

An incoming task event is matched against the active rules of its project
and trigger type, in creation order. Each matched rule's action runs to
completion, including any cascade of follow-up events it produces, before
the next rule is considered. A chain of cascaded dispatches shares one
``ExecutionContext`` so every rule fires at most once per chain and the
chain stops at ``max_depth``.
"""

from __future__ import annotations

import contextlib
import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional

from sqlalchemy.orm import Session

from ..core.errors import log_exception
from .automation_errors import ActionFailed, CascadeLimitExceeded
from .rule_actions import ActionExecutor
from .rule_conditions import is_candidate, matches
from .rule_store import RuleSnapshot, list_active_rules, snapshot_rule
from .task_events import AutomationEvent, EventKind


logger = logging.getLogger("rule_engine")

MAX_CASCADE_DEPTH = 5

FIRED = "fired"
FAILED = "failed"
SKIPPED = "skipped"


@dataclass(frozen=True)
class ExecutionContext:
    chain_id: str
    depth: int = 0
    fired_rule_ids: set[int] = field(default_factory=set, compare=False)

    @classmethod
    def root(cls) -> "ExecutionContext":
        return cls(chain_id=str(uuid.uuid4()))

    def descend(self) -> "ExecutionContext":
        # The fired set is shared by the whole chain.
        return ExecutionContext(chain_id=self.chain_id, depth=self.depth + 1, fired_rule_ids=self.fired_rule_ids)


@dataclass
class RuleOutcome:
    rule_id: int
    rule_name: str
    status: str
    depth: int
    event_kind: str
    detail: str = ""


@dataclass
class DispatchReport:
    chain_id: str
    outcomes: list[RuleOutcome] = field(default_factory=list)
    truncated: bool = False
    load_errors: int = 0

    def _ids(self, status: str) -> list[int]:
        return [o.rule_id for o in self.outcomes if o.status == status]

    @property
    def fired(self) -> list[int]:
        return self._ids(FIRED)

    @property
    def failed(self) -> list[int]:
        return self._ids(FAILED)

    @property
    def skipped(self) -> list[int]:
        return self._ids(SKIPPED)

    def summary(self) -> dict:
        return {
            "chain_id": self.chain_id,
            "fired": self.fired,
            "failed": self.failed,
            "skipped": self.skipped,
            "truncated": self.truncated,
        }


class ProjectLocks:
    """One re-entrant lock per project id."""

    def __init__(self) -> None:
        self._locks: dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def lock_for(self, project_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(project_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[project_id] = lock
            return lock

    @contextlib.contextmanager
    def hold(self, project_id: str) -> Iterator[None]:
        lock = self.lock_for(project_id)
        with lock:
            yield


class DispatchEngine:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        executor: ActionExecutor,
        *,
        max_depth: int = MAX_CASCADE_DEPTH,
        locks: Optional[ProjectLocks] = None,
    ) -> None:
        if max_depth < 1:
            raise ValueError("max_depth must be at least 1")
        self.session_factory = session_factory
        self.executor = executor
        self.max_depth = max_depth
        self.locks = locks or ProjectLocks()

    def handle_event(self, event: AutomationEvent) -> DispatchReport:
        """``EventSource`` subscriber entry point."""
        return self.dispatch(event)

    def dispatch(self, event: AutomationEvent, context: Optional[ExecutionContext] = None) -> DispatchReport:
        context = context or ExecutionContext.root()
        report = DispatchReport(chain_id=context.chain_id)
        with self.locks.hold(event.project_id):
            self._dispatch(event, context, report)
        if report.outcomes or report.truncated:
            logger.info(
                "Dispatch complete chain=%s event=%s fired=%s failed=%s skipped=%s truncated=%s",
                report.chain_id,
                event.describe(),
                report.fired,
                report.failed,
                report.skipped,
                report.truncated,
            )
        return report

    def _load_rules(self, event: AutomationEvent) -> list[RuleSnapshot]:
        snapshots: list[RuleSnapshot] = []
        with self.session_factory() as db:
            rows = list_active_rules(db, event.project_id, EventKind(event.kind).value)
            for row in rows:
                try:
                    snapshots.append(snapshot_rule(row))
                except Exception as exc:
                    log_exception(
                        logger,
                        "Skipping unreadable rule",
                        extra={"rule_id": row.id, "project_id": row.project_id},
                        exc=exc,
                    )
        return snapshots

    def _dispatch(self, event: AutomationEvent, context: ExecutionContext, report: DispatchReport) -> None:
        if context.depth >= self.max_depth:
            warning = CascadeLimitExceeded(context.depth, self.max_depth, context.chain_id)
            logger.warning("%s; dropping %s", warning, event.describe())
            report.truncated = True
            return

        try:
            rules = self._load_rules(event)
        except Exception as exc:
            log_exception(logger, "Failed to load automation rules", extra={"event": event.describe()}, exc=exc)
            report.load_errors += 1
            return

        kind = EventKind(event.kind).value
        for rule in rules:
            if not is_candidate(rule, event) or not matches(rule.trigger, event):
                continue
            if rule.id in context.fired_rule_ids:
                logger.debug("Rule already fired in chain=%s rule_id=%s", context.chain_id, rule.id)
                report.outcomes.append(RuleOutcome(rule.id, rule.name, SKIPPED, context.depth, kind, "already fired"))
                continue

            context.fired_rule_ids.add(rule.id)
            try:
                result = self.executor.execute(rule, event, context)
            except ActionFailed as exc:
                log_exception(
                    logger,
                    "Automation action failed",
                    extra={"rule_id": rule.id, "chain": context.chain_id, "event": event.describe()},
                    exc=exc,
                )
                report.outcomes.append(RuleOutcome(rule.id, rule.name, FAILED, context.depth, kind, str(exc.cause)))
                continue
            except Exception as exc:
                log_exception(
                    logger,
                    "Unexpected automation error",
                    extra={"rule_id": rule.id, "chain": context.chain_id, "event": event.describe()},
                    exc=exc,
                )
                report.outcomes.append(RuleOutcome(rule.id, rule.name, FAILED, context.depth, kind, str(exc)))
                continue

            report.outcomes.append(RuleOutcome(rule.id, rule.name, FIRED, context.depth, kind, result.detail))
            for follow_up in result.events:
                self._dispatch(follow_up, context.descend(), report)

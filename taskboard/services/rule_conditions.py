"""
Condition evaluation for automation rules.

Pure functions only: no database access, no logging side effects beyond
debug output, safe to call from any thread.
"""

from __future__ import annotations

import logging

from ..schemas.rule import DueDatePassedTrigger, StatusChangeTrigger, TaskAssignedTrigger, TriggerSpec
from .rule_store import RuleSnapshot
from .task_events import AutomationEvent, EventKind


logger = logging.getLogger("rule_conditions")


def _status_change_matches(trigger: StatusChangeTrigger, event: AutomationEvent) -> bool:
    cond = trigger.condition
    # An empty condition matches every status change.
    if cond.new_status is not None and cond.new_status != event.new_status:
        return False
    if cond.old_status is not None and cond.old_status != event.old_status:
        return False
    return True


def _assignment_matches(trigger: TaskAssignedTrigger, event: AutomationEvent) -> bool:
    if event.new_assignee is None:
        # Unassignment has no new assignee to compare against.
        logger.debug("Skipping task_assigned trigger for unassignment task=%s", event.task_id)
        return False
    user_id = trigger.condition.user_id
    return user_id is None or str(user_id) == str(event.new_assignee)


def matches(trigger: TriggerSpec, event: AutomationEvent) -> bool:
    """Return True when ``event`` satisfies ``trigger``."""
    if trigger.type != EventKind(event.kind).value:
        return False
    if isinstance(trigger, StatusChangeTrigger):
        return _status_change_matches(trigger, event)
    if isinstance(trigger, TaskAssignedTrigger):
        return _assignment_matches(trigger, event)
    if isinstance(trigger, DueDatePassedTrigger):
        return True
    return False


def is_candidate(rule: RuleSnapshot, event: AutomationEvent) -> bool:
    """Only active rules whose trigger type equals the event kind are considered."""
    return rule.is_active and rule.trigger.type == EventKind(event.kind).value

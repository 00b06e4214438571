"""
Durable store for project automation rules.

Every write goes through the validation below, which is the only place
trigger and action types are checked against the closed sets of known
types. Readers (the dispatch engine in particular) trust stored rules.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from pydantic import BaseModel
from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.orm import Session

from ..core.timeutil import utcnow
from ..models.project import Project
from ..models.rule import AutomationRule
from ..schemas.rule import (
    ACTION_TYPES,
    TRIGGER_TYPES,
    ActionSpec,
    TriggerSpec,
    action_adapter,
    dump_spec,
    trigger_adapter,
)
from .automation_errors import InvalidAction, InvalidTrigger, NotFound, ValidationError


logger = logging.getLogger("rule_store")

_UNSET: Any = object()


@dataclass(frozen=True)
class RuleSnapshot:
    """Immutable view of a rule as loaded for one dispatch pass."""

    id: int
    project_id: str
    name: str
    trigger: TriggerSpec
    action: ActionSpec
    is_active: bool = True


def _as_mapping(raw: Any) -> dict:
    if isinstance(raw, BaseModel):
        return raw.model_dump(exclude_none=True, by_alias=True)
    if isinstance(raw, Mapping):
        return {k: v for k, v in raw.items() if v is not None}
    return {}


def _schema_errors(exc: SchemaValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts)


def parse_trigger(raw: Any) -> TriggerSpec:
    data = _as_mapping(raw)
    trigger_type = data.get("type")
    if trigger_type not in TRIGGER_TYPES:
        raise InvalidTrigger(f"Invalid trigger type: {trigger_type!r}")
    try:
        return trigger_adapter.validate_python(data)
    except SchemaValidationError as exc:
        raise InvalidTrigger(f"Invalid {trigger_type} condition: {_schema_errors(exc)}") from exc


def parse_action(raw: Any) -> ActionSpec:
    data = _as_mapping(raw)
    action_type = data.get("type")
    if action_type not in ACTION_TYPES:
        raise InvalidAction(f"Invalid action type: {action_type!r}")
    try:
        return action_adapter.validate_python(data)
    except SchemaValidationError as exc:
        raise InvalidAction(f"Invalid {action_type} data: {_schema_errors(exc)}") from exc


def _clean_name(name: Any) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Rule name is required")
    return name.strip()


def create_rule(
    db: Session,
    project_id: str,
    name: str,
    trigger: Any,
    action: Any,
    created_by: str,
    *,
    is_active: bool = True,
) -> AutomationRule:
    clean_name = _clean_name(name)
    trigger_spec = parse_trigger(trigger)
    action_spec = parse_action(action)
    if not created_by:
        raise ValidationError("Rule creator is required")
    rule = AutomationRule(
        project_id=project_id,
        name=clean_name,
        trigger_type=trigger_spec.type,
        trigger=dump_spec(trigger_spec),
        action=dump_spec(action_spec),
        created_by=created_by,
        is_active=is_active,
    )
    db.add(rule)
    db.commit()
    db.refresh(rule)
    logger.info(
        "Rule created id=%s project_id=%s trigger=%s action=%s",
        rule.id,
        project_id,
        trigger_spec.type,
        action_spec.type,
    )
    return rule


def get_rule(db: Session, rule_id: int) -> AutomationRule:
    rule = db.get(AutomationRule, rule_id)
    if not rule:
        raise NotFound("rule", rule_id)
    return rule


def update_rule(
    db: Session,
    rule_id: int,
    *,
    name: Any = _UNSET,
    trigger: Any = _UNSET,
    action: Any = _UNSET,
    is_active: Any = _UNSET,
) -> AutomationRule:
    """Partial update; fields left unset keep their stored value."""
    rule = get_rule(db, rule_id)
    # Validate everything before touching the row so a bad field leaves it intact.
    clean_name = _clean_name(name) if name is not _UNSET and name is not None else None
    trigger_spec = parse_trigger(trigger) if trigger is not _UNSET and trigger is not None else None
    action_spec = parse_action(action) if action is not _UNSET and action is not None else None
    if clean_name is not None:
        rule.name = clean_name
    if trigger_spec is not None:
        rule.trigger_type = trigger_spec.type
        rule.trigger = dump_spec(trigger_spec)
    if action_spec is not None:
        rule.action = dump_spec(action_spec)
    if isinstance(is_active, bool):
        rule.is_active = is_active
    rule.updated_at = utcnow()
    db.add(rule)
    db.commit()
    db.refresh(rule)
    return rule


def set_rule_active(db: Session, rule_id: int, active: bool) -> AutomationRule:
    return update_rule(db, rule_id, is_active=bool(active))


def delete_rule(db: Session, rule_id: int) -> None:
    rule = get_rule(db, rule_id)
    db.delete(rule)
    db.commit()
    logger.info("Rule deleted id=%s project_id=%s", rule_id, rule.project_id)


def list_rules(
    db: Session,
    project_id: str,
    *,
    offset: int = 0,
    limit: Optional[int] = None,
) -> tuple[list[AutomationRule], int]:
    query = db.query(AutomationRule).filter(AutomationRule.project_id == project_id)
    total = query.count()
    query = query.order_by(AutomationRule.id.asc()).offset(offset)
    if limit is not None:
        query = query.limit(limit)
    return query.all(), total


def list_active_rules(db: Session, project_id: str, trigger_type: str) -> list[AutomationRule]:
    """Active rules of one trigger type for a project, in creation order."""
    # Joining the project drops rules left behind by a deleted project.
    return (
        db.query(AutomationRule)
        .join(Project, Project.id == AutomationRule.project_id)
        .filter(
            AutomationRule.project_id == project_id,
            AutomationRule.trigger_type == trigger_type,
            AutomationRule.is_active == True,  # noqa: E712
        )
        .order_by(AutomationRule.id.asc())
        .all()
    )


def snapshot_rule(rule: AutomationRule) -> RuleSnapshot:
    return RuleSnapshot(
        id=rule.id,
        project_id=rule.project_id,
        name=rule.name,
        trigger=trigger_adapter.validate_python(rule.trigger),
        action=action_adapter.validate_python(rule.action),
        is_active=bool(rule.is_active),
    )

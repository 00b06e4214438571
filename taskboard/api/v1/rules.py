"""
API endpoints for managing project automation rules.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from ...core.auth import UserContext, get_current_user, require_project_member, require_project_owner
from ...core.db import get_db
from ...core.pagination import DEFAULT_PAGE_SIZE, clamp_page_size, set_pagination_headers
from ...models.rule import AutomationRule
from ...schemas.rule import RuleActiveUpdate, RuleCreate, RuleOut, RuleUpdate
from ...services import rule_store
from ...services.automation_errors import NotFound, ValidationError


router = APIRouter(prefix="/api/v1", tags=["automations"])


def _to_rule_out(rule: AutomationRule) -> dict:
    return RuleOut.model_validate(rule).model_dump(by_alias=True, mode="json")


def _load_rule(db: Session, rule_id: int) -> AutomationRule:
    try:
        return rule_store.get_rule(db, rule_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Automation rule not found")


@router.get("/projects/{project_id}/automations", response_model=dict)
def list_project_automations(
    project_id: str,
    response: Response,
    page: int = Query(1, ge=1),
    page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1),
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
) -> dict:
    require_project_member(db, project_id, user)
    page_size = clamp_page_size(page_size)
    rules, total = rule_store.list_rules(db, project_id, offset=(page - 1) * page_size, limit=page_size)
    set_pagination_headers(response, total=total, page=page, page_size=page_size)
    return {
        "items": [_to_rule_out(r) for r in rules],
        "total": total,
        "page": page,
        "page_size": page_size,
    }


@router.post("/projects/{project_id}/automations", status_code=201)
def create_project_automation(
    project_id: str,
    payload: RuleCreate,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
) -> dict:
    require_project_owner(db, project_id, user)
    try:
        rule = rule_store.create_rule(
            db,
            project_id,
            payload.name,
            payload.trigger,
            payload.action,
            user.user_id,
            is_active=payload.is_active,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return _to_rule_out(rule)


@router.get("/automations/{rule_id}")
def get_automation(
    rule_id: int,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
) -> dict:
    rule = _load_rule(db, rule_id)
    require_project_member(db, rule.project_id, user)
    return _to_rule_out(rule)


@router.put("/automations/{rule_id}")
def update_automation(
    rule_id: int,
    payload: RuleUpdate,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
) -> dict:
    rule = _load_rule(db, rule_id)
    require_project_owner(db, rule.project_id, user)
    changes = {field: getattr(payload, field) for field in payload.model_fields_set}
    try:
        rule = rule_store.update_rule(db, rule_id, **changes)
    except NotFound:
        raise HTTPException(status_code=404, detail="Automation rule not found")
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return _to_rule_out(rule)


@router.patch("/automations/{rule_id}/active")
def set_automation_active(
    rule_id: int,
    payload: RuleActiveUpdate,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
) -> dict:
    rule = _load_rule(db, rule_id)
    require_project_owner(db, rule.project_id, user)
    try:
        rule = rule_store.set_rule_active(db, rule_id, payload.is_active)
    except NotFound:
        raise HTTPException(status_code=404, detail="Automation rule not found")
    return _to_rule_out(rule)


@router.delete("/automations/{rule_id}")
def delete_automation(
    rule_id: int,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
) -> dict:
    rule = _load_rule(db, rule_id)
    require_project_owner(db, rule.project_id, user)
    try:
        rule_store.delete_rule(db, rule_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="Automation rule not found")
    return {"status": "deleted", "id": rule_id}

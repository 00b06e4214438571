"""
Caller identity and project-scoped authorization checks.

Authentication happens in front of this service: the gateway forwards the
authenticated user id in ``X-User-Id``. The helpers here only decide
whether that user may read or mutate a project's automations.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException
from sqlalchemy.orm import Session

from ..models.project import Project, ProjectMember


@dataclass
class UserContext:
    user_id: str
    username: Optional[str] = None


def get_current_user(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    x_user_name: Optional[str] = Header(None, alias="X-User-Name"),
) -> UserContext:
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Missing caller identity")
    return UserContext(user_id=user_id, username=x_user_name)


def _get_project(db: Session, project_id: str) -> Project:
    project = db.get(Project, project_id)
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


def is_project_member(db: Session, project: Project, user: UserContext) -> bool:
    if project.owner_id == user.user_id:
        return True
    row = (
        db.query(ProjectMember)
        .filter(ProjectMember.project_id == project.id, ProjectMember.user_id == user.user_id)
        .first()
    )
    return row is not None


def require_project_member(db: Session, project_id: str, user: UserContext) -> Project:
    project = _get_project(db, project_id)
    if not is_project_member(db, project, user):
        raise HTTPException(status_code=403, detail="Access denied: you are not a member of this project")
    return project


def require_project_owner(db: Session, project_id: str, user: UserContext) -> Project:
    project = _get_project(db, project_id)
    if project.owner_id != user.user_id:
        raise HTTPException(status_code=403, detail="Access denied: you are not the owner of this project")
    return project

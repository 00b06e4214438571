"""
SQLAlchemy model base class for the Taskboard backend.

This package defines ORM models for projects, tasks, automation rules and
the collaborator tables the automation engine writes to (badges and the
notification outbox). All models should inherit from the declarative
`Base` defined here.
"""

from __future__ import annotations

from sqlalchemy import JSON
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.dialects.postgresql import JSONB


@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return compiler.process(JSON(), **kw)


from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""

    pass


from .project import Project, ProjectMember  # noqa: E402,F401
from .task import Task  # noqa: E402,F401
from .rule import AutomationRule  # noqa: E402,F401
from .badge import UserBadge  # noqa: E402,F401
from .notification_outbox import NotificationOutbox  # noqa: E402,F401

__all__ = [
    "Base",

    # Projects / Tasks
    "Project",
    "ProjectMember",
    "Task",

    # Automations
    "AutomationRule",

    # Collaborators
    "UserBadge",
    "NotificationOutbox",
]

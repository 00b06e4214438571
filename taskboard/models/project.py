"""
ORM models for projects and their members.

A project owns its tasks and automation rules. The owner is the only
user allowed to change automations; members may read them.
"""

from __future__ import annotations

from datetime import datetime
import uuid

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.timeutil import utcnow
from . import Base


DEFAULT_STATUSES = ["To Do", "In Progress", "Done"]


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        index=True,
        default=lambda: str(uuid.uuid4()),
    )
    title: Mapped[str] = mapped_column(String(256))
    owner_id: Mapped[str] = mapped_column(String(36), index=True)
    statuses: Mapped[list] = mapped_column(JSONB, default=lambda: list(DEFAULT_STATUSES))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    members: Mapped[list[ProjectMember]] = relationship(
        "ProjectMember", back_populates="project", cascade="all, delete-orphan"
    )


class ProjectMember(Base):
    __tablename__ = "project_members"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    project_id: Mapped[str] = mapped_column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), index=True)
    user_id: Mapped[str] = mapped_column(String(36), index=True)
    role: Mapped[str] = mapped_column(String(16), default="member")  # owner | member

    project: Mapped[Project] = relationship("Project", back_populates="members")

    __table_args__ = (UniqueConstraint("project_id", "user_id", name="uq_project_members_project_user"),)

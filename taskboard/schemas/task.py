"""
Pydantic schemas for task updates.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class TaskCreate(BaseModel):
    title: str
    description: Optional[str] = None
    status: Optional[str] = None
    assignee_id: Optional[str] = Field(default=None, alias="assigneeId")
    due_date: Optional[datetime] = Field(default=None, alias="dueDate")

    model_config = ConfigDict(populate_by_name=True)


class TaskUpdate(BaseModel):
    status: Optional[str] = None
    # Sending assignee_id: null unassigns; omitting it leaves the assignee alone.
    assignee_id: Optional[str] = Field(default=None, alias="assigneeId")
    due_date: Optional[datetime] = Field(default=None, alias="dueDate")

    model_config = ConfigDict(populate_by_name=True)


class TaskOut(BaseModel):
    id: str
    project_id: str = Field(serialization_alias="projectId")
    title: str
    description: Optional[str] = None
    status: str
    assignee_id: Optional[str] = Field(default=None, serialization_alias="assigneeId")
    due_date: Optional[datetime] = Field(default=None, serialization_alias="dueDate")
    updated_at: Optional[datetime] = Field(default=None, serialization_alias="updatedAt")

    model_config = ConfigDict(from_attributes=True)


class AutomationSummary(BaseModel):
    mode: str
    events: list[str] = Field(default_factory=list)
    reports: list[Dict[str, Any]] = Field(default_factory=list)

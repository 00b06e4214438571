"""
Pydantic schemas for automation rules.

Triggers and actions are tagged unions keyed by ``type``; each variant
carries a typed condition or data payload. The wire form keeps the
camelCase keys clients already send (``newStatus``, ``userId`` ...).

``RuleCreate`` / ``RuleUpdate`` deliberately accept any ``{type, ...}``
object: the rule store is the single place that validates trigger and
action types, so an unknown type surfaces as a store validation error.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


TRIGGER_TYPES = ("task_status_change", "task_assigned", "due_date_passed")
ACTION_TYPES = ("assign_badge", "change_status", "send_notification")

DEFAULT_NOTIFICATION_MESSAGE = "Task notification"


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid", frozen=True)


# --- Trigger conditions ---------------------------------------------------


class StatusChangeCondition(_Payload):
    old_status: Optional[str] = Field(default=None, alias="oldStatus")
    new_status: Optional[str] = Field(default=None, alias="newStatus")


class AssignmentCondition(_Payload):
    user_id: Optional[str] = Field(default=None, alias="userId")


class StatusChangeTrigger(_Payload):
    type: Literal["task_status_change"] = "task_status_change"
    condition: StatusChangeCondition = Field(default_factory=StatusChangeCondition)


class TaskAssignedTrigger(_Payload):
    type: Literal["task_assigned"] = "task_assigned"
    condition: AssignmentCondition = Field(default_factory=AssignmentCondition)


class DueDatePassedTrigger(_Payload):
    type: Literal["due_date_passed"] = "due_date_passed"
    # Ignored when matching; kept as given.
    condition: Dict[str, Any] = Field(default_factory=dict)


TriggerSpec = Annotated[
    Union[StatusChangeTrigger, TaskAssignedTrigger, DueDatePassedTrigger],
    Field(discriminator="type"),
]


# --- Action data ----------------------------------------------------------


class ChangeStatusData(_Payload):
    new_status: str = Field(alias="newStatus", min_length=1)


class AssignBadgeData(_Payload):
    badge_type: str = Field(alias="badgeType", min_length=1)


class SendNotificationData(_Payload):
    message: str = DEFAULT_NOTIFICATION_MESSAGE
    recipient_id: Optional[str] = Field(default=None, alias="recipientId")


class ChangeStatusAction(_Payload):
    type: Literal["change_status"] = "change_status"
    data: ChangeStatusData


class AssignBadgeAction(_Payload):
    type: Literal["assign_badge"] = "assign_badge"
    data: AssignBadgeData


class SendNotificationAction(_Payload):
    type: Literal["send_notification"] = "send_notification"
    data: SendNotificationData = Field(default_factory=SendNotificationData)


ActionSpec = Annotated[
    Union[ChangeStatusAction, AssignBadgeAction, SendNotificationAction],
    Field(discriminator="type"),
]

trigger_adapter: TypeAdapter = TypeAdapter(TriggerSpec)
action_adapter: TypeAdapter = TypeAdapter(ActionSpec)


def dump_spec(spec: BaseModel) -> dict:
    """Canonical JSON form used for persistence and API output."""
    return spec.model_dump(by_alias=True, exclude_none=True, mode="json")


# --- HTTP payloads --------------------------------------------------------


class TriggerIn(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Any = None
    condition: Any = None


class ActionIn(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: Any = None
    data: Any = None


class RuleCreate(BaseModel):
    name: str
    trigger: TriggerIn
    action: ActionIn
    is_active: bool = Field(default=True, alias="isActive")

    model_config = ConfigDict(populate_by_name=True)


class RuleUpdate(BaseModel):
    name: Optional[str] = None
    trigger: Optional[TriggerIn] = None
    action: Optional[ActionIn] = None
    is_active: Optional[bool] = Field(default=None, alias="isActive")

    model_config = ConfigDict(populate_by_name=True)


class RuleActiveUpdate(BaseModel):
    is_active: bool = Field(alias="isActive")

    model_config = ConfigDict(populate_by_name=True)


class RuleOut(BaseModel):
    id: int
    project_id: str = Field(serialization_alias="projectId")
    name: str
    trigger: Dict[str, Any]
    action: Dict[str, Any]
    created_by: str = Field(serialization_alias="createdBy")
    is_active: bool = Field(serialization_alias="isActive")
    created_at: Optional[datetime] = Field(default=None, serialization_alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, serialization_alias="updatedAt")

    model_config = ConfigDict(from_attributes=True)

"""
Task endpoints.

Creating or updating a task is what drives automations: the change is
committed first, then the resulting status/assignment events are emitted to
the automation runtime. In sync mode the response includes what the rules did.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ...core.auth import UserContext, get_current_user, require_project_member
from ...core.db import get_db
from ...models.task import Task
from ...schemas.task import AutomationSummary, TaskCreate, TaskOut, TaskUpdate
from ...services.automation_errors import NotFound
from ...services.rule_engine import DispatchReport
from ...services.task_events import TaskUpdateResult, create_task, update_task


router = APIRouter(prefix="/api/v1", tags=["tasks"])


def _event_source(request: Request):
    runtime = getattr(request.app.state, "automation", None)
    return runtime, (runtime.source if runtime is not None else None)


def _task_response(db: Session, runtime, result: TaskUpdateResult) -> dict:
    db.refresh(result.task)
    summary = AutomationSummary(
        mode=runtime.mode if runtime is not None else "disabled",
        events=[event.describe() for event in result.events],
        reports=[r.summary() for r in result.results if isinstance(r, DispatchReport)],
    )
    return {
        "task": TaskOut.model_validate(result.task).model_dump(by_alias=True, mode="json"),
        "automation": summary.model_dump(),
    }


@router.post("/projects/{project_id}/tasks", status_code=201)
def post_task(
    project_id: str,
    payload: TaskCreate,
    request: Request,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
) -> dict:
    require_project_member(db, project_id, user)
    runtime, source = _event_source(request)
    try:
        result = create_task(
            db,
            source,
            project_id,
            payload.title,
            status=payload.status,
            assignee_id=payload.assignee_id,
            due_date=payload.due_date,
            description=payload.description,
            created_by=user.user_id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return _task_response(db, runtime, result)


@router.put("/tasks/{task_id}")
def put_task(
    task_id: str,
    payload: TaskUpdate,
    request: Request,
    db: Session = Depends(get_db),
    user: UserContext = Depends(get_current_user),
) -> dict:
    task = db.get(Task, task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    require_project_member(db, task.project_id, user)

    runtime, source = _event_source(request)
    # Only fields present in the body are applied.
    changes = {field: getattr(payload, field) for field in payload.model_fields_set & {"assignee_id", "due_date"}}
    try:
        result = update_task(db, source, task_id, status=payload.status, **changes)
    except NotFound:
        raise HTTPException(status_code=404, detail="Task not found")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return _task_response(db, runtime, result)

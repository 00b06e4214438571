"""Seed a demo project with tasks and a few automation rules."""

from __future__ import annotations

import logging
import os

from taskboard.core.db import SessionLocal
from taskboard.models.project import DEFAULT_STATUSES, Project, ProjectMember
from taskboard.services import rule_store
from taskboard.services.automation import build_runtime
from taskboard.services.task_events import create_task


logger = logging.getLogger("scripts.seed_demo_data")

DEMO_RULES = [
    (
        "Notify assignee when work starts",
        {"type": "task_status_change", "condition": {"newStatus": "In Progress"}},
        {"type": "send_notification", "data": {"message": "Work has started on your task"}},
    ),
    (
        "Badge on completion",
        {"type": "task_status_change", "condition": {"newStatus": "Done"}},
        {"type": "assign_badge", "data": {"badgeType": "finisher"}},
    ),
    (
        "Welcome new assignee",
        {"type": "task_assigned", "condition": {}},
        {"type": "send_notification", "data": {"message": "You have been assigned a task"}},
    ),
    (
        "Reopen overdue work",
        {"type": "due_date_passed", "condition": {}},
        {"type": "change_status", "data": {"newStatus": "In Progress"}},
    ),
]


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    owner_id = os.getenv("SEED_OWNER_ID", "demo-owner")
    member_id = os.getenv("SEED_MEMBER_ID", "demo-member")

    runtime = build_runtime(SessionLocal)
    try:
        with SessionLocal() as db:
            existing = db.query(Project).filter(Project.title == "Demo board").first()
            if existing:
                logger.info("Demo project already present id=%s", existing.id)
                return
            project = Project(title="Demo board", owner_id=owner_id, statuses=list(DEFAULT_STATUSES))
            db.add(project)
            db.flush()
            db.add(ProjectMember(project_id=project.id, user_id=owner_id, role="owner"))
            db.add(ProjectMember(project_id=project.id, user_id=member_id, role="member"))
            db.commit()
            for name, trigger, action in DEMO_RULES:
                try:
                    rule_store.create_rule(db, project.id, name, trigger, action, owner_id)
                except Exception as exc:
                    logger.warning("Seed rule failed name=%s: %s", name, exc)
            # Created after the rules so the assignment rule greets the seeded assignee.
            create_task(db, runtime.source, project.id, "Write onboarding guide", created_by=owner_id)
            create_task(
                db,
                runtime.source,
                project.id,
                "Review release checklist",
                assignee_id=member_id,
                created_by=owner_id,
            )
            logger.info("Demo seed complete project_id=%s", project.id)
    finally:
        runtime.shutdown()


if __name__ == "__main__":
    main()

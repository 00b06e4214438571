import os
import tempfile
from pathlib import Path

# Lightweight local database and no background threads for the whole test run.
_DB_PATH = Path(tempfile.gettempdir()) / f"taskboard_test_{os.getpid()}.db"
os.environ.setdefault("DATABASE_URL", f"sqlite+pysqlite:///{_DB_PATH}")
os.environ.setdefault("AUTO_CREATE_DB", "true")
os.environ.setdefault("AUTO_RUN_MIGRATIONS", "false")
os.environ.setdefault("ENABLE_DUE_DATE_WATCHDOG", "false")
os.environ.setdefault("AUTOMATION_DISPATCH_MODE", "sync")
os.environ.setdefault("TASKBOARD_ENV", "dev")

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from taskboard.models import Base  # noqa: E402
from taskboard.models.project import DEFAULT_STATUSES, Project, ProjectMember  # noqa: E402
from taskboard.models.task import Task  # noqa: E402


def make_session_factory():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True, expire_on_commit=False)


def create_project(db, *, owner_id="owner-1", statuses=None, members=()) -> Project:
    project = Project(title="Board", owner_id=owner_id, statuses=list(statuses or DEFAULT_STATUSES))
    db.add(project)
    db.flush()
    for user_id in members:
        db.add(ProjectMember(project_id=project.id, user_id=user_id))
    db.commit()
    db.refresh(project)
    return project


def create_task(db, project: Project, *, status=None, assignee_id=None, due_date=None) -> Task:
    task = Task(
        project_id=project.id,
        title="Task",
        status=status or project.statuses[0],
        assignee_id=assignee_id,
        due_date=due_date,
    )
    db.add(task)
    db.commit()
    db.refresh(task)
    return task


@pytest.fixture
def session_factory():
    return make_session_factory()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()

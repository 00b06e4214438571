import concurrent.futures

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from conftest import create_project, create_task
from taskboard.core.config import Settings
from taskboard.models import Base
from taskboard.models.badge import UserBadge
from taskboard.services import rule_store
from taskboard.services.automation import build_runtime
from taskboard.services.rule_engine import DispatchReport
from taskboard.services.task_events import update_task


def _seed(session_factory):
    with session_factory() as db:
        project = create_project(db)
        task = create_task(db, project, assignee_id="alice")
        rule = rule_store.create_rule(
            db,
            project.id,
            "finisher badge",
            {"type": "task_status_change", "condition": {"newStatus": "Done"}},
            {"type": "assign_badge", "data": {"badgeType": "finisher"}},
            project.owner_id,
        )
    return task, rule


def test_sync_runtime_dispatches_inline(session_factory):
    task, rule = _seed(session_factory)
    runtime = build_runtime(session_factory, Settings(automation_dispatch_mode="sync", automation_action_timeout_sec=0))
    try:
        with session_factory() as db:
            result = update_task(db, runtime.source, task.id, status="Done")
        [report] = result.results
        assert isinstance(report, DispatchReport)
        assert report.fired == [rule.id]
        with session_factory() as db:
            assert [b.user_id for b in db.query(UserBadge).all()] == ["alice"]
    finally:
        runtime.shutdown()


def test_badges_can_be_disabled(session_factory):
    task, rule = _seed(session_factory)
    runtime = build_runtime(
        session_factory,
        Settings(automation_dispatch_mode="sync", automation_action_timeout_sec=0, enable_badges=False),
    )
    try:
        with session_factory() as db:
            result = update_task(db, runtime.source, task.id, status="Done")
        [report] = result.results
        assert report.outcomes[0].detail == "badge collaborator absent"
        with session_factory() as db:
            assert db.query(UserBadge).count() == 0
    finally:
        runtime.shutdown()


def test_async_runtime_returns_futures(tmp_path):
    # Dispatch runs on its own thread, so use a file database with real connections.
    engine = create_engine(f"sqlite+pysqlite:///{tmp_path / 'async.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(engine)
    session_factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    task, rule = _seed(session_factory)
    runtime = build_runtime(session_factory, Settings(automation_dispatch_mode="async", automation_action_timeout_sec=0))
    assert runtime.mode == "async"
    try:
        with session_factory() as db:
            result = update_task(db, runtime.source, task.id, status="Done")
        [future] = result.results
        assert isinstance(future, concurrent.futures.Future)
        report = future.result(timeout=5)
        assert report.fired == [rule.id]
    finally:
        runtime.shutdown()

import datetime
import threading

from conftest import create_project, create_task
from taskboard.models.task import Task
from taskboard.services.due_date_watchdog import run_due_date_watchdog, scan_overdue_tasks
from taskboard.services.task_events import EventKind, EventSource, update_task


NOW = datetime.datetime(2026, 3, 1, 12, 0, tzinfo=datetime.timezone.utc)


def _collecting_source():
    source = EventSource()
    seen = []
    source.subscribe(seen.append)
    return source, seen


def test_overdue_task_flagged_once(db):
    project = create_project(db)
    overdue = create_task(db, project, due_date=NOW - datetime.timedelta(hours=1))
    create_task(db, project, due_date=NOW + datetime.timedelta(days=1))
    create_task(db, project)
    source, seen = _collecting_source()

    assert scan_overdue_tasks(db, source, NOW) == 1
    assert scan_overdue_tasks(db, source, NOW) == 0

    [event] = seen
    assert event.kind is EventKind.DUE_DATE_PASSED
    assert event.task_id == overdue.id
    assert db.get(Task, overdue.id).due_date_flagged_at is not None


def test_new_due_date_rearms_watchdog(db):
    project = create_project(db)
    task = create_task(db, project, due_date=NOW - datetime.timedelta(hours=1))
    source, seen = _collecting_source()
    scan_overdue_tasks(db, source, NOW)

    update_task(db, None, task.id, due_date=NOW + datetime.timedelta(hours=1))
    later = NOW + datetime.timedelta(hours=2)
    assert scan_overdue_tasks(db, source, later) == 1
    assert len(seen) == 2


def test_watchdog_loop_stops(session_factory):
    with session_factory() as db:
        project = create_project(db)
        create_task(db, project, due_date=datetime.datetime(2020, 1, 1, tzinfo=datetime.timezone.utc))
    source, seen = _collecting_source()
    stop_event = threading.Event()
    thread = threading.Thread(
        target=run_due_date_watchdog,
        args=(stop_event, source),
        kwargs={"session_factory": session_factory, "interval_sec": 10},
        daemon=True,
    )
    thread.start()
    # The first cycle runs immediately.
    for _ in range(50):
        if seen:
            break
        threading.Event().wait(0.05)
    stop_event.set()
    thread.join(timeout=5)

    assert not thread.is_alive()
    assert len(seen) == 1


def test_resending_same_due_date_keeps_flag(db):
    project = create_project(db)
    due = NOW - datetime.timedelta(hours=1)
    task = create_task(db, project, due_date=due)
    source, seen = _collecting_source()
    assert scan_overdue_tasks(db, source, NOW) == 1

    update_task(db, None, task.id, due_date=due)
    # Same instant expressed in another offset.
    update_task(db, None, task.id, due_date=due.astimezone(datetime.timezone(datetime.timedelta(hours=5))))

    assert scan_overdue_tasks(db, source, NOW + datetime.timedelta(hours=1)) == 0
    assert len(seen) == 1
    assert db.get(Task, task.id).due_date_flagged_at is not None

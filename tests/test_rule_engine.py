import logging

from conftest import create_project, create_task
from taskboard.models.task import Task
from taskboard.services import rule_store
from taskboard.services.rule_actions import ActionExecutor, ActionResult, Notifier, SqlTaskGateway
from taskboard.services.rule_engine import DispatchEngine, ExecutionContext, ProjectLocks
from taskboard.services.task_events import AutomationEvent


class RecordingNotifier(Notifier):
    def __init__(self):
        self.calls = []

    def notify(self, recipient_id, message, **kwargs):
        self.calls.append((recipient_id, message))


class RecordingExecutor(ActionExecutor):
    """Real executor that also records which rules ran, in order."""

    def __init__(self, *args, before=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.executed = []
        self.before = before

    def execute(self, rule, event, context=None):
        self.executed.append(rule.id)
        if self.before:
            self.before(rule)
        return super().execute(rule, event, context)


def _engine(session_factory, notifier=None, *, max_depth=5, before=None):
    executor = RecordingExecutor(SqlTaskGateway(session_factory), notifier, before=before)
    return DispatchEngine(session_factory, executor, max_depth=max_depth), executor


def _status_rule(db, project, new_status, action, name="rule"):
    return rule_store.create_rule(
        db,
        project.id,
        name,
        {"type": "task_status_change", "condition": {"newStatus": new_status} if new_status else {}},
        action,
        project.owner_id,
    )


def _change_to(status):
    return {"type": "change_status", "data": {"newStatus": status}}


def _moved(task, old, new):
    return AutomationEvent.status_changed(task_id=task.id, project_id=task.project_id, old_status=old, new_status=new)


def test_rules_run_in_creation_order(session_factory):
    with session_factory() as db:
        project = create_project(db)
        task = create_task(db, project, assignee_id="alice")
        ids = [_status_rule(db, project, None, {"type": "send_notification"}, name=f"r{i}").id for i in range(3)]
    engine, executor = _engine(session_factory, RecordingNotifier())

    report = engine.dispatch(_moved(task, "To Do", "Done"))

    assert executor.executed == ids
    assert report.fired == ids
    assert not report.truncated


def test_cascade_fires_downstream_rule_exactly_once(session_factory):
    with session_factory() as db:
        project = create_project(db, statuses=["To Do", "Review", "Done"])
        task = create_task(db, project, status="Review", assignee_id="alice")
        promote = _status_rule(db, project, "Review", _change_to("Done"), name="promote")
        announce = _status_rule(db, project, "Done", {"type": "send_notification", "data": {"message": "shipped"}})
    notifier = RecordingNotifier()
    engine, executor = _engine(session_factory, notifier)

    report = engine.dispatch(_moved(task, "To Do", "Review"))

    assert executor.executed == [promote.id, announce.id]
    assert notifier.calls == [("alice", "shipped")]
    with session_factory() as db:
        assert db.get(Task, task.id).status == "Done"
    assert report.fired == [promote.id, announce.id]


def test_cascade_runs_before_next_rule(session_factory):
    with session_factory() as db:
        project = create_project(db, statuses=["To Do", "Review", "Done"])
        task = create_task(db, project, status="Review", assignee_id="alice")
        first = _status_rule(db, project, "Review", _change_to("Done"), name="first")
        second = _status_rule(db, project, "Review", {"type": "send_notification"}, name="second")
        downstream = _status_rule(db, project, "Done", {"type": "send_notification"}, name="downstream")
    engine, executor = _engine(session_factory, RecordingNotifier())

    engine.dispatch(_moved(task, "To Do", "Review"))

    assert executor.executed == [first.id, downstream.id, second.id]


def test_ping_pong_rules_terminate(session_factory):
    with session_factory() as db:
        project = create_project(db)
        task = create_task(db, project, status="In Progress")
        forward = _status_rule(db, project, "In Progress", _change_to("Done"), name="forward")
        back = _status_rule(db, project, "Done", _change_to("In Progress"), name="back")
    engine, executor = _engine(session_factory)

    report = engine.dispatch(_moved(task, "To Do", "In Progress"))

    assert executor.executed == [forward.id, back.id]
    assert report.skipped == [forward.id]
    assert len(executor.executed) <= engine.max_depth


def test_depth_guard_stops_long_chain(session_factory, caplog):
    statuses = [f"s{i}" for i in range(8)]
    with session_factory() as db:
        project = create_project(db, statuses=statuses)
        task = create_task(db, project, status="s1")
        chain = [_status_rule(db, project, f"s{i}", _change_to(f"s{i + 1}"), name=f"step{i}").id for i in range(1, 7)]
    engine, executor = _engine(session_factory, max_depth=5)
    caplog.set_level(logging.WARNING)

    report = engine.dispatch(_moved(task, "s0", "s1"))

    assert executor.executed == chain[:5]
    assert report.truncated
    assert any("reached limit" in rec.message for rec in caplog.records)
    with session_factory() as db:
        assert db.get(Task, task.id).status == "s6"


def test_rule_deleted_mid_dispatch_still_runs_from_snapshot(session_factory):
    with session_factory() as db:
        project = create_project(db)
        task = create_task(db, project, assignee_id="alice")
        first = _status_rule(db, project, None, {"type": "send_notification"}, name="first")
        second = _status_rule(db, project, None, {"type": "send_notification"}, name="second")

    def _delete_second(rule):
        if rule.id == first.id:
            with session_factory() as db:
                rule_store.delete_rule(db, second.id)

    notifier = RecordingNotifier()
    engine, executor = _engine(session_factory, notifier, before=_delete_second)
    report = engine.dispatch(_moved(task, "To Do", "Done"))

    assert executor.executed == [first.id, second.id]
    assert len(notifier.calls) == 2
    assert report.fired == [first.id, second.id]


def test_failed_action_does_not_stop_other_rules(session_factory, caplog):
    with session_factory() as db:
        project = create_project(db)
        task = create_task(db, project, assignee_id="alice")
        broken = _status_rule(db, project, None, _change_to("Archived"), name="broken")
        notify = _status_rule(db, project, None, {"type": "send_notification"}, name="notify")
    notifier = RecordingNotifier()
    engine, _ = _engine(session_factory, notifier)
    caplog.set_level(logging.ERROR)

    report = engine.dispatch(_moved(task, "To Do", "Done"))

    assert report.failed == [broken.id]
    assert report.fired == [notify.id]
    assert notifier.calls == [("alice", "Task notification")]
    assert any("Automation action failed" in rec.message for rec in caplog.records)


def test_assignment_notifies_new_assignee(session_factory):
    with session_factory() as db:
        project = create_project(db)
        task = create_task(db, project, assignee_id="bob")
        rule = rule_store.create_rule(
            db,
            project.id,
            "welcome",
            {"type": "task_assigned", "condition": {}},
            {"type": "send_notification", "data": {"message": "welcome"}},
            project.owner_id,
        )
    notifier = RecordingNotifier()
    engine, _ = _engine(session_factory, notifier)

    assigned = AutomationEvent.assigned(task_id=task.id, project_id=project.id, old_assignee=None, new_assignee="bob")
    unassigned = AutomationEvent.assigned(task_id=task.id, project_id=project.id, old_assignee="bob", new_assignee=None)

    assert engine.dispatch(assigned).fired == [rule.id]
    assert engine.dispatch(unassigned).fired == []
    assert notifier.calls == [("bob", "welcome")]


def test_inactive_rule_and_other_projects_ignored(session_factory):
    with session_factory() as db:
        project = create_project(db)
        other = create_project(db)
        task = create_task(db, project, assignee_id="alice")
        rule = _status_rule(db, project, None, {"type": "send_notification"})
        _status_rule(db, other, None, {"type": "send_notification"})
        rule_store.set_rule_active(db, rule.id, False)
    engine, executor = _engine(session_factory, RecordingNotifier())

    report = engine.dispatch(_moved(task, "To Do", "Done"))

    assert executor.executed == []
    assert report.outcomes == []


def test_deleted_project_dispatches_nothing(session_factory):
    with session_factory() as db:
        project = create_project(db)
        task = create_task(db, project, assignee_id="alice")
        _status_rule(db, project, None, {"type": "send_notification"})
        event = _moved(task, "To Do", "Done")
        db.delete(project)
        db.commit()
    engine, executor = _engine(session_factory, RecordingNotifier())

    assert engine.dispatch(event).outcomes == []
    assert executor.executed == []


def test_load_failure_is_logged_not_raised(caplog):
    def _broken_factory():
        raise RuntimeError("database unavailable")

    executor = ActionExecutor(SqlTaskGateway(_broken_factory))
    engine = DispatchEngine(_broken_factory, executor)
    caplog.set_level(logging.ERROR)

    report = engine.dispatch(AutomationEvent.due_date_passed(task_id="t1", project_id="p1"))

    assert report.load_errors == 1
    assert report.outcomes == []
    assert any("Failed to load automation rules" in rec.message for rec in caplog.records)


def test_context_descend_shares_fired_set():
    root = ExecutionContext.root()
    child = root.descend()
    child.fired_rule_ids.add(3)
    assert child.depth == 1
    assert child.chain_id == root.chain_id
    assert 3 in root.fired_rule_ids


def test_project_locks_are_per_project():
    locks = ProjectLocks()
    assert locks.lock_for("a") is locks.lock_for("a")
    assert locks.lock_for("a") is not locks.lock_for("b")
    with locks.hold("a"):
        with locks.hold("a"):
            pass


def test_custom_executor_results_are_reported(session_factory):
    class NoopExecutor(ActionExecutor):
        def execute(self, rule, event, context=None):
            return ActionResult(rule.action.type, performed=False, detail="noop")

    with session_factory() as db:
        project = create_project(db)
        task = create_task(db, project)
        rule = _status_rule(db, project, None, {"type": "send_notification"})
    engine = DispatchEngine(session_factory, NoopExecutor(SqlTaskGateway(session_factory)))

    report = engine.dispatch(_moved(task, "To Do", "Done"))

    assert report.fired == [rule.id]
    assert report.outcomes[0].detail == "noop"
    assert report.summary()["fired"] == [rule.id]

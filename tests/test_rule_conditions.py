from taskboard.schemas.rule import trigger_adapter
from taskboard.services.rule_conditions import is_candidate, matches
from taskboard.services.rule_store import RuleSnapshot, parse_action
from taskboard.services.task_events import AutomationEvent


def _trigger(raw):
    return trigger_adapter.validate_python(raw)


def _status_event(old, new):
    return AutomationEvent.status_changed(task_id="t1", project_id="p1", old_status=old, new_status=new)


def test_empty_status_condition_matches_every_change():
    trigger = _trigger({"type": "task_status_change", "condition": {}})
    assert matches(trigger, _status_event("To Do", "Done"))
    assert matches(trigger, _status_event("Done", "To Do"))


def test_new_status_condition():
    trigger = _trigger({"type": "task_status_change", "condition": {"newStatus": "Done"}})
    assert matches(trigger, _status_event("In Progress", "Done"))
    assert not matches(trigger, _status_event("To Do", "In Progress"))


def test_old_and_new_status_both_required():
    trigger = _trigger({"type": "task_status_change", "condition": {"oldStatus": "To Do", "newStatus": "Done"}})
    assert matches(trigger, _status_event("To Do", "Done"))
    assert not matches(trigger, _status_event("In Progress", "Done"))


def test_assignment_condition():
    any_user = _trigger({"type": "task_assigned", "condition": {}})
    alice_only = _trigger({"type": "task_assigned", "condition": {"userId": "alice"}})
    to_alice = AutomationEvent.assigned(task_id="t1", project_id="p1", old_assignee=None, new_assignee="alice")
    to_bob = AutomationEvent.assigned(task_id="t1", project_id="p1", old_assignee="alice", new_assignee="bob")

    assert matches(any_user, to_alice)
    assert matches(alice_only, to_alice)
    assert not matches(alice_only, to_bob)


def test_unassignment_never_matches():
    trigger = _trigger({"type": "task_assigned", "condition": {}})
    event = AutomationEvent.assigned(task_id="t1", project_id="p1", old_assignee="alice", new_assignee=None)
    assert not matches(trigger, event)


def test_due_date_always_matches():
    trigger = _trigger({"type": "due_date_passed", "condition": {"anything": 1}})
    assert matches(trigger, AutomationEvent.due_date_passed(task_id="t1", project_id="p1"))


def test_kind_mismatch_is_false():
    trigger = _trigger({"type": "task_status_change", "condition": {}})
    event = AutomationEvent.assigned(task_id="t1", project_id="p1", old_assignee=None, new_assignee="alice")
    assert not matches(trigger, event)


def test_is_candidate_requires_active_rule_of_event_kind():
    trigger = _trigger({"type": "task_status_change", "condition": {}})
    action = parse_action({"type": "send_notification"})
    active = RuleSnapshot(id=1, project_id="p1", name="r", trigger=trigger, action=action)
    inactive = RuleSnapshot(id=2, project_id="p1", name="r", trigger=trigger, action=action, is_active=False)
    event = _status_event("To Do", "Done")

    assert is_candidate(active, event)
    assert not is_candidate(inactive, event)
    assert not is_candidate(active, AutomationEvent.due_date_passed(task_id="t1", project_id="p1"))

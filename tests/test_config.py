import logging

import pytest

from taskboard.core.config import Settings, env_flag, get_app_env, validate_runtime_settings


def test_cascade_depth_below_one_is_rejected():
    with pytest.raises(RuntimeError):
        validate_runtime_settings(Settings(automation_max_cascade_depth=0))


def test_unknown_dispatch_mode_falls_back_to_sync(caplog):
    current = Settings(automation_dispatch_mode="parallel")
    caplog.set_level(logging.ERROR)
    validate_runtime_settings(current)
    assert current.automation_dispatch_mode == "sync"


def test_negative_timeout_disables_timeouts():
    current = Settings(automation_action_timeout_sec=-1)
    validate_runtime_settings(current)
    assert current.automation_action_timeout_sec == 0


def test_prod_warns_about_sqlite(monkeypatch, caplog):
    monkeypatch.setenv("TASKBOARD_ENV", "prod")
    caplog.set_level(logging.WARNING)
    validate_runtime_settings(Settings(database_url="sqlite:///tmp.db", notify_webhook_url="https://x"))
    assert any("SQLite in prod" in rec.message for rec in caplog.records)


def test_env_helpers(monkeypatch):
    monkeypatch.setenv("TASKBOARD_ENV", "staging")
    assert get_app_env() == "dev"
    monkeypatch.setenv("SOME_FLAG", "yes")
    assert env_flag("SOME_FLAG", "false") is True
    monkeypatch.setenv("SOME_FLAG", "0")
    assert env_flag("SOME_FLAG") is False

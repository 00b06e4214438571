"""
Entry point for the Taskboard automation backend.

This script creates the FastAPI application, includes all API routers and
wires the automation runtime. Run with:

    uvicorn taskboard.main:app --reload

"""

from __future__ import annotations

import logging
import threading

from fastapi import FastAPI

from .api import api_router
from .core.config import env_flag, get_app_env, settings
from .core.db import SessionLocal, engine
from .core.errors import log_exception
from .core.logging_config import setup_logging
from .models import Base
from .scripts.run_migrations import run_migrations_to_head
from .services.automation import build_runtime
from .services.due_date_watchdog import run_due_date_watchdog


def create_app() -> FastAPI:
    setup_logging()
    app = FastAPI(title="Taskboard Automations", version="0.1.0")
    app.include_router(api_router)
    app.state.automation = build_runtime(SessionLocal, settings)
    app.state.due_date_stop = None
    app.state.due_date_thread = None

    @app.on_event("startup")
    def _init_db() -> None:
        logger = logging.getLogger("startup")
        env = get_app_env()
        if env_flag("AUTO_CREATE_DB", "true"):
            try:
                Base.metadata.create_all(bind=engine)
            except Exception as exc:
                log_exception(logger, "DB create_all failed", exc=exc)
                if env == "prod":
                    raise
        if env_flag("AUTO_RUN_MIGRATIONS", "true"):
            try:
                run_migrations_to_head()
            except Exception as exc:
                log_exception(logger, "DB migrations failed", exc=exc)
                if env == "prod":
                    raise
        if env_flag("ENABLE_DUE_DATE_WATCHDOG", "true"):
            stop_event = threading.Event()
            thread = threading.Thread(
                target=run_due_date_watchdog,
                args=(stop_event, app.state.automation.source),
                daemon=True,
                name="due-date-watchdog",
            )
            thread.start()
            app.state.due_date_stop = stop_event
            app.state.due_date_thread = thread

    @app.on_event("shutdown")
    def _shutdown() -> None:
        stop_event = getattr(app.state, "due_date_stop", None)
        if stop_event:
            stop_event.set()
        thread = getattr(app.state, "due_date_thread", None)
        if thread:
            thread.join(timeout=5)
        runtime = getattr(app.state, "automation", None)
        if runtime:
            runtime.shutdown()

    return app


app = create_app()

"""
Service layer for the Taskboard automation backend.

This package contains the automation rule store, condition evaluation,
action execution and the dispatch engine, plus the due-date watchdog and
notification outbox that feed and drain it.
"""

from .automation import AutomationRuntime, build_runtime
from .rule_engine import DispatchEngine, DispatchReport, ExecutionContext

__all__ = ["AutomationRuntime", "build_runtime", "DispatchEngine", "DispatchReport", "ExecutionContext"]

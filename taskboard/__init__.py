"""Taskboard backend with the project automation rule engine."""

__version__ = "0.1.0"

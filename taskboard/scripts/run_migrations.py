"""
Run Alembic migrations to head.

Usage:
    python -m taskboard.scripts.run_migrations
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

from ..core.config import settings


logger = logging.getLogger("migrations")

LEGACY_BASELINE_REVISION = "20261001_01"


def _build_alembic_config() -> Config:
    project_root = Path(__file__).resolve().parents[2]
    alembic_ini = project_root / "alembic.ini"
    if not alembic_ini.exists():
        raise FileNotFoundError(f"alembic.ini not found at {alembic_ini}")
    cfg = Config(str(alembic_ini))
    cfg.set_main_option("script_location", str(project_root / "alembic"))
    cfg.set_main_option("sqlalchemy.url", os.getenv("DATABASE_URL") or settings.database_url)
    # Keep the application's logging setup intact when run in-process.
    cfg.attributes["configure_logger"] = False
    return cfg


def _needs_legacy_bootstrap(cfg: Config) -> bool:
    db_url = cfg.get_main_option("sqlalchemy.url")
    if not db_url:
        return False
    engine = create_engine(db_url)
    try:
        tables = set(inspect(engine).get_table_names())
    finally:
        engine.dispose()
    if "alembic_version" in tables:
        return False
    # Databases built via SQLAlchemy create_all() have no Alembic state yet.
    return any(name in tables for name in {"projects", "tasks", "automation_rules"})


def run_migrations_to_head() -> None:
    cfg = _build_alembic_config()
    if _needs_legacy_bootstrap(cfg):
        logger.info("Stamping existing schema at %s", LEGACY_BASELINE_REVISION)
        command.stamp(cfg, LEGACY_BASELINE_REVISION)
    command.upgrade(cfg, "head")


def main() -> int:
    try:
        run_migrations_to_head()
    except Exception as exc:
        print(exc)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

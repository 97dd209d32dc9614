"""Health check endpoint."""
from __future__ import annotations

import logging
from pathlib import Path

from alembic.config import Config
from alembic.script import ScriptDirectory
from fastapi import APIRouter
from sqlalchemy import text

from trustdesk.config import AppInfo, get_settings
from trustdesk.db import get_engine
from trustdesk.services.scheduler_lock import describe_scheduler_lock, is_scheduler_active, last_sweeps

router = APIRouter(prefix="/health", tags=["health"])
logger = logging.getLogger(__name__)

ALEMBIC_INI = Path(__file__).resolve().parents[2] / "alembic.ini"


def _db_status() -> str:
    """Return 'ok' if the DB is reachable, 'error' otherwise."""

    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return "ok"
    except Exception:  # noqa: BLE001
        logger.exception("DB health check failed")
        return "error"


def _expected_migration_head() -> str | None:
    try:
        config = Config(str(ALEMBIC_INI))
        config.set_main_option("script_location", str(ALEMBIC_INI.parent / "alembic"))
        return ScriptDirectory.from_config(config).get_current_head()
    except Exception:  # noqa: BLE001
        logger.exception("Failed to load Alembic head revision")
        return None


def _migrations_status() -> tuple[bool, str]:
    expected_head = _expected_migration_head()
    try:
        with get_engine().connect() as conn:
            current = conn.execute(text("SELECT version_num FROM alembic_version")).scalar()
    except Exception:  # noqa: BLE001
        logger.exception("Migration check failed")
        return False, "unknown"
    if expected_head is None:
        return False, "unknown"
    if current == expected_head:
        return True, "up_to_date"
    return False, "out_of_date"


def _scheduler_lock_status() -> dict[str, object]:
    try:
        return describe_scheduler_lock()
    except Exception:  # noqa: BLE001
        logger.exception("Scheduler lock check failed")
        return {"status": "unknown", "owner": None}


@router.get("", summary="Health check")
def healthcheck() -> dict[str, object]:
    settings = get_settings()
    db_status = _db_status()
    db_ok = db_status == "ok"
    migration_ok, migration_status = _migrations_status() if db_ok else (False, "unknown")
    return {
        "status": "ok" if db_ok and migration_ok else "degraded",
        "version": AppInfo().version,
        "env": settings.app_env,
        "db_ok": db_ok,
        "db_status": db_status,
        "migrations_ok": migration_ok,
        "migrations_status": migration_status,
        "scheduler_config_enabled": bool(settings.SCHEDULER_ENABLED),
        "scheduler_running": is_scheduler_active(),
        "scheduler_sweeps": last_sweeps(),
        "scheduler_lock": _scheduler_lock_status() if db_ok else {"status": "unknown", "owner": None},
    }

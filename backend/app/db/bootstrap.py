from __future__ import annotations

import logging

from sqlalchemy import inspect, text

import app.models  # noqa: F401
from app.db.base import Base
from app.db.session import engine

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS: dict[str, set[str]] = {
    "academic_setups": {"id", "name", "is_active"},
    "academic_setup_subjects": {
        "id",
        "academic_setup_id",
        "subject_id",
        "block_number",
        "needs_lab",
        "parallel_subject_ids",
        "assigned_faculty_id",
    },
    "academic_setup_faculty": {"id", "academic_setup_id", "user_id", "max_units", "preferred_day_off"},
    "rooms": {"id", "name", "capacity", "room_type"},
    "time_slots": {"id", "day_group", "start_time", "end_time"},
    "schedules": {"id", "academic_setup_id", "status", "generation_metadata"},
    "schedule_entries": {
        "id",
        "schedule_id",
        "session_group_id",
        "slots_span",
        "custom_start_time",
        "custom_end_time",
        "has_conflict",
        "conflict_reason",
    },
}

# Columns added after the first schedule_entries release.
_SCHEDULE_ENTRY_PATCHES = {
    "slots_span": "INTEGER NOT NULL DEFAULT 1",
    "custom_start_time": "VARCHAR(5)",
    "custom_end_time": "VARCHAR(5)",
    "parallel_display_code": "VARCHAR(300)",
}


def _ensure_schedule_entry_columns() -> None:
    with engine.begin() as connection:
        inspector = inspect(connection)
        if "schedule_entries" not in set(inspector.get_table_names()):
            return
        column_names = {item["name"] for item in inspector.get_columns("schedule_entries")}
        for column_name, ddl in _SCHEDULE_ENTRY_PATCHES.items():
            if column_name in column_names:
                continue
            connection.execute(text(f"ALTER TABLE schedule_entries ADD COLUMN {column_name} {ddl}"))
            logger.info("SCHEMA PATCH | table=schedule_entries | column=%s", column_name)


def missing_schema(connection) -> tuple[list[str], dict[str, list[str]]]:
    inspector = inspect(connection)
    table_names = set(inspector.get_table_names())
    missing_tables = sorted(name for name in REQUIRED_COLUMNS if name not in table_names)
    missing_columns: dict[str, list[str]] = {}
    for table_name, required in REQUIRED_COLUMNS.items():
        if table_name not in table_names:
            continue
        existing = {item["name"] for item in inspector.get_columns(table_name)}
        missing = sorted(required - existing)
        if missing:
            missing_columns[table_name] = missing
    return missing_tables, missing_columns


def _assert_required_columns() -> None:
    with engine.begin() as connection:
        missing_tables, missing_columns = missing_schema(connection)
    if missing_tables:
        raise RuntimeError(f"Missing required tables: {', '.join(missing_tables)}")
    if missing_columns:
        flattened = [f"{table}.{column}" for table, columns in missing_columns.items() for column in columns]
        raise RuntimeError(f"Missing required columns: {', '.join(flattened)}")


def ensure_runtime_schema_compatibility() -> None:
    try:
        # Ensure missing tables are present before additive compatibility patches.
        Base.metadata.create_all(bind=engine)
        _ensure_schedule_entry_columns()
        _assert_required_columns()
    except Exception as exc:  # pragma: no cover - runtime environment dependent
        logger.exception("Runtime schema compatibility bootstrap failed")
        raise RuntimeError("Runtime schema compatibility bootstrap failed") from exc

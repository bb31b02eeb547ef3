"""Bring fieldattend database files up to the current schema version.

Migrations are forward-only. Each step is a list of SQL statements applied in
the same transaction as the version bump, so a file is never left between two
versions. New schema changes get a new step at the end of MIGRATIONS; existing
steps are never edited once released.
"""

import logging
import sqlite3

from fieldattend.model import schema


logger = logging.getLogger(__name__)


SCHEMA_VERSION_TABLE = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER NOT NULL,
    applied_on TEXT NOT NULL DEFAULT (datetime('now'))
);
"""


MIGRATIONS: list[tuple[int, list[str]]] = [
    (
        1,
        [
            schema.SESSION_TABLE_SCHEMA,
            schema.CLASS_ASSIGNMENT_TABLE_SCHEMA,
            schema.STUDENT_TABLE_SCHEMA,
            schema.PERIOD_TABLE_SCHEMA,
            schema.ACTIVITY_TABLE_SCHEMA,
            schema.ATTENDANCE_TABLE_SCHEMA,
        ],
    ),
    (
        2,
        [
            schema.ATTENDANCE_STATUS_INDEX,
            schema.ATTENDANCE_CAPTURE_INDEX,
            schema.UPLOAD_STATUS_TRIGGER,
        ],
    ),
]


def current_version(conn: sqlite3.Connection) -> int:
    """Highest migration version applied to the database, 0 if none."""
    row = conn.execute("SELECT MAX(version) AS version FROM schema_version;").fetchone()
    return row[0] or 0


def apply_migrations(conn: sqlite3.Connection) -> int:
    """Apply every pending migration step.

    The caller must hold a write transaction on conn.

    Returns:
        Schema version after migrating.
    """
    conn.execute(SCHEMA_VERSION_TABLE)
    version = current_version(conn)
    for step_version, statements in MIGRATIONS:
        if step_version <= version:
            continue
        logger.info("Migrating database schema to version %d", step_version)
        for statement in statements:
            conn.execute(statement)
        conn.execute(
            "INSERT INTO schema_version (version) VALUES (?);", (step_version,)
        )
        version = step_version
    return version

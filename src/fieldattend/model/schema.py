"""Database enumerations and table definitions.

## Session
Singleton row for the logged-in teacher. Its existence is the login gate.

## Reference tables
Class assignments, students, periods, and activities. Always replaced together
by a bulk refresh, never edited one row at a time.

## Attendance events
Signed attendance, one row per student, activity, and date. Rows start out
pending and flip to uploaded once the server acknowledges them. The
activity_id and student_id columns are not declared as foreign keys because a
bulk refresh deletes and reloads the reference tables while events survive.
"""

import enum


NO_GPS = "no GPS"
"""Coordinates value stored when no location could be acquired."""

PLACEHOLDER = "N/A"
"""Stored in place of missing text fields from the server snapshot."""


class UploadStatus(enum.IntEnum):
    """Upload state of an attendance event."""

    PENDING = 0
    UPLOADED = 1


SESSION_TABLE_SCHEMA = """
CREATE TABLE IF NOT EXISTS session (
          session_id INTEGER PRIMARY KEY CHECK (session_id = 1),
            identity TEXT NOT NULL,
        display_name TEXT NOT NULL,
      location_label TEXT NOT NULL,
           last_sync TEXT
);
"""

CLASS_ASSIGNMENT_TABLE_SCHEMA = """
CREATE TABLE IF NOT EXISTS class_assignments (
    assignment_id INTEGER PRIMARY KEY AUTOINCREMENT,
     municipality TEXT NOT NULL,
           center TEXT NOT NULL,
            grade TEXT NOT NULL
);
"""

STUDENT_TABLE_SCHEMA = """
CREATE TABLE IF NOT EXISTS students (
      student_id TEXT PRIMARY KEY,
       full_name TEXT NOT NULL,
          gender TEXT NOT NULL,
           grade TEXT NOT NULL,
          center TEXT NOT NULL,
    municipality TEXT NOT NULL
);
"""

PERIOD_TABLE_SCHEMA = """
CREATE TABLE IF NOT EXISTS periods (
     period_id INTEGER PRIMARY KEY,
          name TEXT NOT NULL,
    start_date TEXT NOT NULL,
      end_date TEXT NOT NULL
);
"""

ACTIVITY_TABLE_SCHEMA = """
CREATE TABLE IF NOT EXISTS activities (
      activity_id INTEGER PRIMARY KEY,
        period_id INTEGER NOT NULL,
             name TEXT NOT NULL,
    activity_type TEXT NOT NULL,
     logframe_tag TEXT NOT NULL,
      FOREIGN KEY (period_id) REFERENCES periods (period_id)
);
"""

ATTENDANCE_TABLE_SCHEMA = """
CREATE TABLE IF NOT EXISTS attendance_events (
         event_id INTEGER PRIMARY KEY AUTOINCREMENT,
      activity_id INTEGER NOT NULL,
       student_id TEXT NOT NULL,
       event_date TEXT NOT NULL,
     period_label TEXT NOT NULL,
        signature TEXT NOT NULL,
      captured_at TEXT NOT NULL,
      coordinates TEXT NOT NULL,
    upload_status INTEGER NOT NULL DEFAULT 0 CHECK (upload_status IN (0, 1))
);
"""

ATTENDANCE_STATUS_INDEX = """
CREATE INDEX IF NOT EXISTS attendance_status_idx
    ON attendance_events (upload_status, activity_id);
"""

ATTENDANCE_CAPTURE_INDEX = """
CREATE INDEX IF NOT EXISTS attendance_capture_idx
    ON attendance_events (activity_id, event_date, student_id);
"""

UPLOAD_STATUS_TRIGGER = """
CREATE TRIGGER IF NOT EXISTS upload_status_forward_only
BEFORE UPDATE OF upload_status ON attendance_events
  WHEN OLD.upload_status = 1 AND NEW.upload_status <> 1
BEGIN
    SELECT RAISE(ABORT, 'uploaded attendance cannot return to pending');
END;
"""

TABLE_NAMES = [
    "attendance_events",
    "activities",
    "periods",
    "students",
    "class_assignments",
    "session",
]
"""Data tables in child-before-parent order, safe for deletes."""

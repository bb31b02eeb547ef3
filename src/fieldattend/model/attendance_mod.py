"""Database attendance_events table and associated queries.

An attendance event is recorded when a student signs for an activity. It
consists of a student_id, activity_id, event date, the compressed signature,
GPS coordinates, and an upload status. Events start out pending. They become
uploaded once the server acknowledges them, and never go back.

Only one event may exist per student, activity, and date. The capture method
checks for an existing row inside the same write transaction as the insert.
"""

import dataclasses
import datetime
from typing import Any, TYPE_CHECKING

import polars as pl

from fieldattend.model import roster_mod, schema


if TYPE_CHECKING:
    from fieldattend.model import database


RETENTION_DAYS = 50
"""Uploaded events older than this many days are swept from the device."""

_EVENT_COLUMNS = """
        event_id, activity_id, student_id, event_date, period_label, signature,
        captured_at, coordinates, upload_status
"""


class AlreadyCaptured(Exception):
    """The student already signed for this activity today."""


@dataclasses.dataclass
class AttendanceEvent:
    """A signed attendance record."""

    event_id: int | None
    activity_id: int
    student_id: str
    event_date: datetime.date
    period_label: str
    signature: str
    captured_at: datetime.datetime
    coordinates: str
    upload_status: schema.UploadStatus

    def __init__(
        self,
        event_id: int | None,
        activity_id: int,
        student_id: str,
        event_date: datetime.date | str,
        period_label: str,
        signature: str,
        captured_at: datetime.datetime | str,
        coordinates: str = schema.NO_GPS,
        upload_status: int | schema.UploadStatus = schema.UploadStatus.PENDING,
    ) -> None:
        """Convert dates and status to Python types."""
        if isinstance(event_date, str):
            event_date = datetime.date.fromisoformat(event_date)
        if isinstance(captured_at, str):
            captured_at = datetime.datetime.fromisoformat(captured_at)
        self.event_id = event_id
        self.activity_id = activity_id
        self.student_id = student_id
        self.event_date = event_date
        self.period_label = period_label
        self.signature = signature
        self.captured_at = captured_at
        self.coordinates = coordinates
        self.upload_status = schema.UploadStatus(upload_status)

    @property
    def is_pending(self) -> bool:
        return self.upload_status == schema.UploadStatus.PENDING

    @property
    def key(self) -> tuple[str, int, datetime.date]:
        """Natural key: student, activity, and date."""
        return (self.student_id, self.activity_id, self.event_date)

    def capture(self, dbase: "database.DBase") -> int:
        """Insert the event as pending.

        Returns:
            The event_id of the new row.

        Raises:
            AlreadyCaptured: If the student already has an event for this
                activity and date.
        """
        exists_query = """
                SELECT 1
                  FROM attendance_events
                 WHERE student_id = :student_id
                   AND activity_id = :activity_id
                   AND event_date = :event_date;
        """
        insert_query = """
                INSERT INTO attendance_events
                            (activity_id, student_id, event_date, period_label,
                            signature, captured_at, coordinates, upload_status)
                     VALUES (:activity_id, :student_id, :event_date,
                            :period_label, :signature, :captured_at,
                            :coordinates, :upload_status);
        """
        params = {
            "activity_id": self.activity_id,
            "student_id": self.student_id,
            "event_date": self.event_date,
            "period_label": self.period_label,
            "signature": self.signature,
            "captured_at": self.captured_at,
            "coordinates": self.coordinates,
            "upload_status": int(schema.UploadStatus.PENDING),
        }
        with dbase.transaction() as conn:
            if conn.execute(exists_query, params).fetchone() is not None:
                raise AlreadyCaptured(
                    f"Student {self.student_id} already signed for activity "
                    f"{self.activity_id} on {self.event_date.isoformat()}."
                )
            cursor = conn.execute(insert_query, params)
        self.event_id = cursor.lastrowid
        self.upload_status = schema.UploadStatus.PENDING
        return self.event_id

    @staticmethod
    def undo(
        dbase: "database.DBase",
        student_id: str,
        activity_id: int,
        today: datetime.date | None = None,
    ) -> bool:
        """Delete a student's signature for an activity, captured today.

        Events from earlier days cannot be undone.

        Return True if an event was deleted.
        """
        if today is None:
            today = datetime.date.today()
        query = """
                DELETE FROM attendance_events
                      WHERE student_id = ?
                        AND activity_id = ?
                        AND event_date = ?;
        """
        with dbase.transaction() as conn:
            cursor = conn.execute(query, (student_id, activity_id, today))
        return cursor.rowcount > 0

    @staticmethod
    def captured_student_ids(
        dbase: "database.DBase", activity_id: int, event_date: datetime.date
    ) -> set[str]:
        """Student IDs that already signed for an activity on a date."""
        query = """
                SELECT student_id
                  FROM attendance_events
                 WHERE activity_id = ?
                   AND event_date = ?;
        """
        conn = dbase.get_db_connection()
        student_ids = {
            row["student_id"] for row in conn.execute(query, (activity_id, event_date))
        }
        conn.close()
        return student_ids

    @staticmethod
    def mark_uploaded(dbase: "database.DBase", event_ids: list[int]) -> int:
        """Flip pending events to uploaded in one transaction.

        Returns:
            Number of events that changed status.
        """
        if not event_ids:
            return 0
        query = """
                UPDATE attendance_events
                   SET upload_status = :uploaded
                 WHERE event_id = :event_id
                   AND upload_status = :pending;
        """
        updated = 0
        with dbase.transaction() as conn:
            for event_id in event_ids:
                cursor = conn.execute(
                    query,
                    {
                        "event_id": event_id,
                        "uploaded": int(schema.UploadStatus.UPLOADED),
                        "pending": int(schema.UploadStatus.PENDING),
                    },
                )
                updated += cursor.rowcount
        return updated

    @staticmethod
    def list_all_pending(dbase: "database.DBase") -> list["AttendanceEvent"]:
        """All pending events, in capture order."""
        query = f"""
                SELECT {_EVENT_COLUMNS}
                  FROM attendance_events
                 WHERE upload_status = ?
              ORDER BY event_id;
        """
        conn = dbase.get_db_connection(as_dict=True)
        events = [
            AttendanceEvent(**row)
            for row in conn.execute(query, (int(schema.UploadStatus.PENDING),))
        ]
        conn.close()
        return events

    @staticmethod
    def list_pending_for_activity(
        dbase: "database.DBase", activity_id: int
    ) -> list["AttendanceEvent"]:
        """Pending events for one activity, in capture order."""
        query = f"""
                SELECT {_EVENT_COLUMNS}
                  FROM attendance_events
                 WHERE upload_status = ?
                   AND activity_id = ?
              ORDER BY event_id;
        """
        conn = dbase.get_db_connection(as_dict=True)
        events = [
            AttendanceEvent(**row)
            for row in conn.execute(
                query, (int(schema.UploadStatus.PENDING), activity_id)
            )
        ]
        conn.close()
        return events

    @staticmethod
    def count_pending(dbase: "database.DBase") -> int:
        """Number of events waiting to be uploaded."""
        conn = dbase.get_db_connection()
        result = conn.execute(
            "SELECT COUNT(*) AS pending FROM attendance_events WHERE upload_status = ?;",
            (int(schema.UploadStatus.PENDING),),
        ).fetchone()
        conn.close()
        return result["pending"]

    @staticmethod
    def count_pending_by_activity(
        dbase: "database.DBase", period_id: int
    ) -> list["ActivityPending"]:
        """Activities of a period with the number of pending events for each."""
        query = """
                SELECT a.activity_id, a.period_id, a.name, a.activity_type,
                       a.logframe_tag,
                       (SELECT COUNT(*)
                          FROM attendance_events AS e
                         WHERE e.activity_id = a.activity_id
                           AND e.upload_status = :pending) AS pending_count
                  FROM activities AS a
                 WHERE a.period_id = :period_id
              ORDER BY a.activity_id;
        """
        conn = dbase.get_db_connection(as_dict=True)
        rows = conn.execute(
            query,
            {"period_id": period_id, "pending": int(schema.UploadStatus.PENDING)},
        ).fetchall()
        conn.close()
        return [
            ActivityPending(
                activity=roster_mod.Activity(
                    **{k: v for k, v in row.items() if k != "pending_count"}
                ),
                pending_count=row["pending_count"],
            )
            for row in rows
        ]

    @staticmethod
    def sweep_uploaded(
        dbase: "database.DBase",
        today: datetime.date | None = None,
        retention_days: int = RETENTION_DAYS,
    ) -> int:
        """Delete uploaded events dated before the retention horizon.

        Pending events are kept no matter how old they are.

        Returns:
            Number of events deleted.
        """
        if today is None:
            today = datetime.date.today()
        cutoff = today - datetime.timedelta(days=retention_days)
        query = """
                DELETE FROM attendance_events
                      WHERE upload_status = ?
                        AND event_date < ?;
        """
        with dbase.transaction() as conn:
            cursor = conn.execute(
                query, (int(schema.UploadStatus.UPLOADED), cutoff)
            )
        return cursor.rowcount

    @staticmethod
    def get_dataframe(dbase: "database.DBase") -> pl.DataFrame:
        """Get a Polars dataframe of attendance events, without signatures."""
        query = """
                SELECT event_id, activity_id, student_id, event_date,
                       period_label, captured_at, coordinates, upload_status
                  FROM attendance_events
              ORDER BY event_id;
        """
        conn = dbase.get_db_connection()
        dframe = pl.read_database(query, conn)
        conn.close()
        return dframe

    def to_wire(self) -> dict[str, Any]:
        """Convert the event to the record format the server accepts."""
        return {
            "id_nnaj": self.student_id,
            "actividad_id": self.activity_id,
            "fecha": self.event_date.isoformat(),
            "mes": self.period_label,
            "firma": self.signature,
            "timestamp_registro": self.captured_at.isoformat(sep=" "),
            "coordenadas": self.coordinates,
        }


@dataclasses.dataclass
class ActivityPending:
    """An activity with its count of events awaiting upload."""

    activity: roster_mod.Activity
    pending_count: int

"""Replace the local reference tables with the server's snapshot.

Runs on login and when the teacher asks to refresh data. The snapshot is
validated before anything is written. The session row and all four reference
tables are then replaced in one transaction, so readers see either the old
data or the new data, never a mix. Attendance events are not touched.

Snapshot format::

    {"status": "ok",
     "docente": {"nombre": ...},
     "asignaciones": [{"municipio", "centro", "grado"}],
     "estudiantes": [{"id_nnaj", "nombre_completo", "genero", "grado_actual",
                      "centro_educativo", "municipio"}],
     "periodos": [{"id", "nombre", "fecha_inicio", "fecha_fin",
                   "lista_actividades": [{"id", "nombre_actividad",
                                          "tipo_actividad", "marco_logico"}]}]}
"""

import asyncio
import dataclasses
import datetime
import logging
from typing import Any, Protocol, TYPE_CHECKING

from fieldattend.model import api, roster_mod, schema, session_mod


if TYPE_CHECKING:
    from fieldattend.model import database


logger = logging.getLogger(__name__)

REFERENCE_TABLES = ["activities", "periods", "students", "class_assignments"]
"""Deleted in this order so activities go before the periods they reference."""


class SnapshotSource(Protocol):
    async def fetch_snapshot(self, identity: str) -> dict[str, Any]: ...


@dataclasses.dataclass
class Snapshot:
    """Validated reference data from the server."""

    teacher_name: str
    assignments: list[roster_mod.ClassAssignment]
    students: list[roster_mod.Student]
    periods: list[roster_mod.Period]
    activities: list[roster_mod.Activity]

    def counts(self) -> dict[str, int]:
        return {
            "assignments": len(self.assignments),
            "students": len(self.students),
            "periods": len(self.periods),
            "activities": len(self.activities),
        }


def _text(value: Any) -> str:
    """Trimmed text, or the placeholder for missing and blank values."""
    if value is None:
        return schema.PLACEHOLDER
    value = str(value).strip()
    return value if value else schema.PLACEHOLDER


def _int_id(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _records(payload: dict[str, Any], key: str) -> list[dict[str, Any]]:
    """Optional list of records; anything else counts as empty."""
    records = payload.get(key)
    if not isinstance(records, list):
        return []
    return [record for record in records if isinstance(record, dict)]


def parse_snapshot(payload: dict[str, Any]) -> Snapshot:
    """Validate a snapshot and convert it to reference records.

    Records without a usable identifier are skipped.

    Raises:
        ServerRejected: If the payload has an error status.
        MalformedResponse: If the student list is missing or not a list.
    """
    if payload.get("status") == "error":
        raise api.ServerRejected(
            payload.get("mensaje") or "The server refused the request."
        )
    if not isinstance(payload.get("estudiantes"), list):
        raise api.MalformedResponse("The snapshot has no student list.")

    teacher = payload.get("docente")
    teacher_name = _text(teacher.get("nombre") if isinstance(teacher, dict) else None)

    assignments = [
        roster_mod.ClassAssignment(
            municipality=_text(record.get("municipio")),
            center=_text(record.get("centro")),
            grade=_text(record.get("grado")),
        )
        for record in _records(payload, "asignaciones")
    ]

    students = []
    for record in _records(payload, "estudiantes"):
        student_id = record.get("id_nnaj")
        if student_id is None or not str(student_id).strip():
            logger.warning("Skipping student without id: %s", record.get("nombre_completo"))
            continue
        students.append(
            roster_mod.Student(
                student_id=str(student_id).strip(),
                full_name=_text(record.get("nombre_completo")),
                gender=_text(record.get("genero")),
                grade=_text(record.get("grado_actual")),
                center=_text(record.get("centro_educativo")),
                municipality=_text(record.get("municipio")),
            )
        )

    periods = []
    activities = []
    for record in _records(payload, "periodos"):
        period_id = _int_id(record.get("id"))
        if period_id is None:
            logger.warning("Skipping period without id: %s", record.get("nombre"))
            continue
        periods.append(
            roster_mod.Period(
                period_id=period_id,
                name=_text(record.get("nombre")),
                start_date=_text(record.get("fecha_inicio")),
                end_date=_text(record.get("fecha_fin")),
            )
        )
        for activity in _records(record, "lista_actividades"):
            activity_id = _int_id(activity.get("id"))
            if activity_id is None:
                logger.warning(
                    "Skipping activity without id: %s",
                    activity.get("nombre_actividad"),
                )
                continue
            activities.append(
                roster_mod.Activity(
                    activity_id=activity_id,
                    period_id=period_id,
                    name=_text(activity.get("nombre_actividad")),
                    activity_type=_text(activity.get("tipo_actividad")),
                    logframe_tag=_text(activity.get("marco_logico")),
                )
            )

    return Snapshot(teacher_name, assignments, students, periods, activities)


def replace_reference_data(
    dbase: "database.DBase",
    identity: str,
    snapshot: Snapshot,
    location_label: str,
    synced_at: datetime.datetime | None = None,
) -> None:
    """Write the session and reference tables in a single transaction."""
    if synced_at is None:
        synced_at = datetime.datetime.now()
    session = session_mod.Session(
        identity, snapshot.teacher_name, location_label, synced_at
    )
    with dbase.transaction() as conn:
        session.replace(conn)
        for table in REFERENCE_TABLES:
            conn.execute(f"DELETE FROM {table};")
        for assignment in snapshot.assignments:
            assignment.insert(conn)
        for student in snapshot.students:
            student.insert(conn)
        for period in snapshot.periods:
            period.insert(conn)
        for activity in snapshot.activities:
            activity.insert(conn)
    logger.info("Reference data replaced: %s", snapshot.counts())


async def refresh(
    dbase: "database.DBase",
    client: SnapshotSource,
    identity: str,
    location_label: str,
) -> Snapshot:
    """Download the teacher's snapshot and replace the reference tables.

    Nothing is written if the download or validation fails.
    """
    payload = await client.fetch_snapshot(identity)
    snapshot = parse_snapshot(payload)
    await asyncio.to_thread(
        replace_reference_data, dbase, identity, snapshot, location_label
    )
    return snapshot

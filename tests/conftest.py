"""Pytest fixtures."""

import copy
import datetime
import json
import pathlib
import shutil
from collections.abc import Callable
from typing import Any, Optional

import pytest

from fieldattend import config
from fieldattend.model import api, attendance_mod, database, refresh


TEST_FOLDER = pathlib.Path(__file__).parent
DATA_FOLDER = TEST_FOLDER / "data"
OUTPUT_FOLDER = TEST_FOLDER / "output"
TEACHER_IDENTITY = "0801199012345"


class FakeServer:
    """Stands in for api.ApiClient without touching the network.

    Batches are counted from 1 across the life of the fake. The batch whose
    number equals fail_on_batch raises error instead of being accepted.
    """

    def __init__(
        self,
        snapshot: Optional[dict[str, Any]] = None,
        fail_on_batch: Optional[int] = None,
        error: Optional[Exception] = None,
    ) -> None:
        self.snapshot = snapshot
        self.fail_on_batch = fail_on_batch
        self.error = api.RequestTimeout("timed out") if error is None else error
        self.snapshot_requests: list[str] = []
        self.accepted: list[list[dict[str, Any]]] = []
        self.attempts = 0

    async def fetch_snapshot(self, identity: str) -> dict[str, Any]:
        self.snapshot_requests.append(identity)
        if self.snapshot is None:
            raise api.NetworkUnreachable("No internet connection.")
        return copy.deepcopy(self.snapshot)

    async def post_attendance(self, records: list[dict[str, Any]]) -> dict[str, Any]:
        self.attempts += 1
        if self.attempts == self.fail_on_batch:
            raise self.error
        self.accepted.append(records)
        return {"status": "ok"}


class FakeProbe:
    """Reachability check with a fixed answer."""

    def __init__(self, reachable: bool = True) -> None:
        self.reachable = reachable
        self.checks = 0

    async def is_reachable(self) -> bool:
        self.checks += 1
        return self.reachable


@pytest.fixture()
def empty_output_folder() -> pathlib.Path:
    """Create an empty output folder prior to each test."""
    if OUTPUT_FOLDER.exists():
        for item in OUTPUT_FOLDER.iterdir():
            if item.is_dir():
                shutil.rmtree(item, ignore_errors=True)
            else:
                item.unlink()
    else:
        OUTPUT_FOLDER.mkdir(parents=True)
    return OUTPUT_FOLDER


@pytest.fixture
def empty_database(empty_output_folder: pathlib.Path) -> database.DBase:
    """An empty fieldattend database, with tables created."""
    dbase = database.DBase(empty_output_folder / "testdatabase.db")
    dbase.initialize()
    return dbase


@pytest.fixture
def snapshot_data() -> dict[str, Any]:
    """Server snapshot as a dictionary, as returned by the GET endpoint."""
    with open(DATA_FOLDER / "snapshot.json") as jfile:
        return json.load(jfile)


@pytest.fixture
def full_dbase(
    empty_database: database.DBase, snapshot_data: dict[str, Any]
) -> database.DBase:
    """Database with a session and reference data, but no attendance."""
    snapshot = refresh.parse_snapshot(snapshot_data)
    refresh.replace_reference_data(
        empty_database, TEACHER_IDENTITY, snapshot, "Active teacher"
    )
    return empty_database


@pytest.fixture
def server(snapshot_data: dict[str, Any]) -> FakeServer:
    """Fake server that serves the test snapshot and accepts every batch."""
    return FakeServer(snapshot=snapshot_data)


@pytest.fixture
def probe() -> FakeProbe:
    """Reachability check that reports the internet as reachable."""
    return FakeProbe(reachable=True)


@pytest.fixture
def settings(empty_output_folder: pathlib.Path) -> config.Settings:
    """Settings that point at the output folder and skip batch pauses."""
    return config.Settings(
        db_path=empty_output_folder / "app.db",
        batch_pause=0.0,
        gps_timeout=0.2,
    )


@pytest.fixture
def make_events() -> Callable[..., list[attendance_mod.AttendanceEvent]]:
    """Factory that captures pending events for distinct students."""

    def _make_events(
        dbase: database.DBase,
        count: int,
        activity_id: int = 101,
        event_date: Optional[datetime.date] = None,
        first: int = 1,
    ) -> list[attendance_mod.AttendanceEvent]:
        if event_date is None:
            event_date = datetime.date.today()
        events = []
        for number in range(first, first + count):
            event = attendance_mod.AttendanceEvent(
                event_id=None,
                activity_id=activity_id,
                student_id=f"NNAJ-{number:03}",
                event_date=event_date,
                period_label="Primer trimestre",
                signature="data:image/webp;base64,UklGRg==",
                captured_at=datetime.datetime.combine(
                    event_date, datetime.time(9, 30)
                ),
                coordinates="14.0723,-87.1921",
            )
            event.capture(dbase)
            events.append(event)
        return events

    return _make_events

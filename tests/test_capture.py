"""Test signature capture."""

import asyncio
import datetime

import pytest

from fieldattend.model import attendance_mod, capture, database, schema


SIGNATURE = "data:image/png;base64,iVBORw0KGgo="
COMPACT = "data:image/webp;base64,UklGRg=="
NOW = datetime.datetime(2026, 3, 12, 10, 15, 42, 123456)


async def fast_compress(raw: str) -> str:
    return COMPACT


async def broken_compress(raw: str) -> str:
    raise capture.CompressionError("canvas unavailable")


async def good_fix() -> capture.Coordinates:
    return capture.Coordinates(14.0723, -87.1921)


async def no_fix() -> None:
    return None


async def slow_fix() -> capture.Coordinates:
    await asyncio.sleep(5)
    return capture.Coordinates(0.0, 0.0)


async def denied_fix() -> capture.Coordinates:
    raise capture.LocationError("permission denied")


def capture_one(dbase: database.DBase, **kwargs) -> attendance_mod.AttendanceEvent:
    params = {
        "student_id": "NNAJ-001",
        "activity_id": 101,
        "period_label": "Primer trimestre",
        "raw_signature": SIGNATURE,
        "compress": fast_compress,
        "locate": good_fix,
        "gps_timeout": 0.1,
        "now": NOW,
    }
    params.update(kwargs)
    return asyncio.run(capture.capture_signature(dbase, **params))


def test_capture_signature(full_dbase: database.DBase) -> None:
    """A signature becomes a pending event with compressed image and GPS."""
    # Act
    event = capture_one(full_dbase)
    # Assert
    stored = attendance_mod.AttendanceEvent.list_all_pending(full_dbase)
    assert [e.event_id for e in stored] == [event.event_id]
    assert stored[0].signature == COMPACT
    assert stored[0].coordinates == "14.0723,-87.1921"
    assert stored[0].event_date == datetime.date(2026, 3, 12)
    assert stored[0].captured_at == datetime.datetime(2026, 3, 12, 10, 15, 42)


@pytest.mark.parametrize("locate", [slow_fix, denied_fix, no_fix])
def test_missing_gps(full_dbase: database.DBase, locate) -> None:
    """Slow, refused, or empty GPS readings store the no-GPS sentinel."""
    # Act
    event = capture_one(full_dbase, locate=locate)
    # Assert
    assert event.coordinates == schema.NO_GPS


def test_compression_failure_keeps_raw_signature(full_dbase: database.DBase) -> None:
    """If compression fails the original image is stored."""
    # Act
    event = capture_one(full_dbase, compress=broken_compress)
    # Assert
    stored = attendance_mod.AttendanceEvent.list_all_pending(full_dbase)
    assert event.signature == SIGNATURE
    assert stored[0].signature == SIGNATURE


@pytest.mark.parametrize("raw_signature", ["", "   "])
def test_empty_signature(full_dbase: database.DBase, raw_signature: str) -> None:
    """Confirming without a signature is refused."""
    # Act, Assert
    with pytest.raises(capture.EmptySignature):
        capture_one(full_dbase, raw_signature=raw_signature)
    assert attendance_mod.AttendanceEvent.count_pending(full_dbase) == 0


def test_duplicate_rejected_before_gps(full_dbase: database.DBase) -> None:
    """A second signature is refused without waiting for GPS."""
    # Arrange
    capture_one(full_dbase)
    calls = []

    async def counting_fix() -> capture.Coordinates:
        calls.append(1)
        return capture.Coordinates(1.0, 2.0)

    # Act, Assert
    with pytest.raises(attendance_mod.AlreadyCaptured):
        capture_one(full_dbase, locate=counting_fix)
    assert calls == []
    assert attendance_mod.AttendanceEvent.count_pending(full_dbase) == 1


def test_missing_period_label(full_dbase: database.DBase) -> None:
    """Events captured outside any period get a fixed label."""
    # Act
    event = capture_one(full_dbase, period_label=None)
    # Assert
    assert event.period_label == capture.NO_PERIOD
    assert event.to_wire()["mes"] == capture.NO_PERIOD

"""Record a student's signature as a pending attendance event.

Drawing the signature, compressing the image, and reading GPS belong to the
device. They are passed in as awaitables:

* ``compress(raw_signature) -> compact_signature`` may raise CompressionError,
  in which case the raw image is stored so the signature is not lost.
* ``locate() -> Coordinates | None`` may raise LocationError. It gets at most
  gps_timeout seconds, after which the event is stored with the "no GPS"
  sentinel.
"""

import asyncio
import dataclasses
import datetime
import logging
from collections.abc import Awaitable, Callable
from typing import Optional, TYPE_CHECKING

from fieldattend.model import attendance_mod, schema


if TYPE_CHECKING:
    from fieldattend.model import database


logger = logging.getLogger(__name__)

GPS_TIMEOUT = 4.0
NO_PERIOD = "No period"


class EmptySignature(ValueError):
    """The student confirmed without signing."""


class LocationError(Exception):
    """The device could not provide a location."""


class CompressionError(Exception):
    """The signature image could not be compressed."""


@dataclasses.dataclass
class Coordinates:
    latitude: float
    longitude: float

    def __str__(self) -> str:
        return f"{self.latitude},{self.longitude}"


Locator = Callable[[], Awaitable[Optional[Coordinates]]]
Compressor = Callable[[str], Awaitable[str]]


async def read_coordinates(locate: Locator, timeout: float = GPS_TIMEOUT) -> str:
    """Coordinates as "lat,lon" text, or the no-GPS sentinel."""
    try:
        coordinates = await asyncio.wait_for(locate(), timeout)
    except asyncio.TimeoutError:
        logger.info("No GPS fix within %g seconds", timeout)
        return schema.NO_GPS
    except LocationError as err:
        logger.info("GPS unavailable: %s", err)
        return schema.NO_GPS
    return schema.NO_GPS if coordinates is None else str(coordinates)


async def compress_signature(compress: Compressor, raw_signature: str) -> str:
    """Compressed signature, or the raw one if compression fails."""
    try:
        return await compress(raw_signature)
    except CompressionError as err:
        logger.warning("Keeping uncompressed signature: %s", err)
        return raw_signature


async def capture_signature(
    dbase: "database.DBase",
    student_id: str,
    activity_id: int,
    period_label: str | None,
    raw_signature: str,
    compress: Compressor,
    locate: Locator,
    gps_timeout: float = GPS_TIMEOUT,
    now: datetime.datetime | None = None,
) -> attendance_mod.AttendanceEvent:
    """Store a signature as a pending attendance event for today.

    Raises:
        EmptySignature: If raw_signature is blank.
        AlreadyCaptured: If the student already signed for the activity today.
    """
    if not raw_signature or not raw_signature.strip():
        raise EmptySignature("Please sign before confirming.")
    if now is None:
        now = datetime.datetime.now()
    now = now.replace(microsecond=0)
    today = now.date()
    # Fail fast before waiting on GPS; capture() checks again when inserting.
    if student_id in await asyncio.to_thread(
        attendance_mod.AttendanceEvent.captured_student_ids, dbase, activity_id, today
    ):
        raise attendance_mod.AlreadyCaptured(
            f"Student {student_id} already signed for this activity today."
        )
    coordinates = await read_coordinates(locate, gps_timeout)
    signature = await compress_signature(compress, raw_signature)
    event = attendance_mod.AttendanceEvent(
        event_id=None,
        activity_id=activity_id,
        student_id=student_id,
        event_date=today,
        period_label=period_label or NO_PERIOD,
        signature=signature,
        captured_at=now,
        coordinates=coordinates,
    )
    await asyncio.to_thread(event.capture, dbase)
    logger.info("Captured attendance for %s, activity %d", student_id, activity_id)
    return event

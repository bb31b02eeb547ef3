"""Upload pending attendance events in fixed-size batches.

Batches go out one at a time, in capture order. Each acknowledged batch is
marked uploaded in its own transaction before the next one is sent, so a
failure part way through leaves earlier batches uploaded and the rest pending.
The first failure stops the run; retrying later resends only what is still
pending.

A batch the server accepted but whose acknowledgment was lost (for example a
timeout after the server committed) stays pending and is sent again on retry.
The server treats student, activity, and date as the record key, so a resend
updates the existing record instead of adding a duplicate.
"""

import asyncio
import dataclasses
import logging
from collections.abc import Sequence
from typing import Any, Protocol, TypeVar, TYPE_CHECKING

from fieldattend.model import api, attendance_mod


if TYPE_CHECKING:
    from fieldattend.model import database


logger = logging.getLogger(__name__)

BATCH_SIZE = 20
"""Records per request, small enough for weak rural uplinks."""
BATCH_PAUSE = 0.5
"""Seconds to wait between batches."""

T = TypeVar("T")


class AttendanceSender(Protocol):
    async def post_attendance(
        self, records: list[dict[str, Any]]
    ) -> dict[str, Any]: ...


@dataclasses.dataclass
class UploadSummary:
    """Progress of an upload run."""

    total: int
    """Events handed to the uploader."""
    uploaded: int = 0
    """Events acknowledged by the server and marked uploaded."""
    batches: int = 0
    """Number of batches the events were split into."""
    batches_sent: int = 0
    """Batches acknowledged by the server."""

    @property
    def complete(self) -> bool:
        return self.uploaded == self.total

    def __str__(self) -> str:
        return f"{self.uploaded} of {self.total} uploaded"


class PartialUploadFailure(api.SyncError):
    """A batch failed; earlier batches were uploaded, the rest are pending."""

    summary: UploadSummary
    failed_batch: int
    """One-based number of the batch that failed."""
    cause: Exception

    def __init__(
        self, summary: UploadSummary, failed_batch: int, cause: Exception
    ) -> None:
        self.summary = summary
        self.failed_batch = failed_batch
        self.cause = cause
        super().__init__(
            f"Batch {failed_batch} of {summary.batches} failed ({cause}); "
            f"{summary}. Sync again to upload the rest."
        )


def partition(items: Sequence[T], size: int) -> list[list[T]]:
    """Split items into consecutive lists of at most size items."""
    if size < 1:
        raise ValueError(f"Batch size must be at least 1, got {size}.")
    return [list(items[start : start + size]) for start in range(0, len(items), size)]


class BatchUploader:
    """Deliver attendance events to the server and record the result."""

    def __init__(
        self,
        dbase: "database.DBase",
        client: AttendanceSender,
        batch_size: int = BATCH_SIZE,
        pause: float = BATCH_PAUSE,
    ) -> None:
        self.dbase = dbase
        self.client = client
        self.batch_size = batch_size
        self.pause = pause

    async def upload(
        self, events: Sequence[attendance_mod.AttendanceEvent]
    ) -> UploadSummary:
        """Upload events and mark them uploaded as the server acknowledges them.

        Returns:
            Summary of a run in which every batch succeeded.

        Raises:
            PartialUploadFailure: When a batch fails. Its summary tells how
                many events were uploaded before the failure.
        """
        batches = partition(events, self.batch_size)
        summary = UploadSummary(total=len(events), batches=len(batches))
        if not batches:
            return summary
        for number, batch in enumerate(batches, start=1):
            if number > 1:
                await asyncio.sleep(self.pause)
            logger.info(
                "Sending batch %d/%d (%d records)", number, len(batches), len(batch)
            )
            try:
                await self.client.post_attendance([event.to_wire() for event in batch])
            except api.SyncError as err:
                logger.warning("Batch %d failed: %s", number, err)
                raise PartialUploadFailure(summary, number, err) from err
            await asyncio.to_thread(
                attendance_mod.AttendanceEvent.mark_uploaded,
                self.dbase,
                [event.event_id for event in batch],
            )
            summary.uploaded += len(batch)
            summary.batches_sent += 1
        logger.info("Upload finished: %s", summary)
        return summary

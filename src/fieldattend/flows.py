"""User-initiated actions and the messages shown for them.

FieldAttend is the composition root. It owns the store handle, the server
client, and the reachability probe, and hands them to the model code. Each
action returns a FlowResult instead of raising, so a failed sync or a server
outage produces a message for the user rather than a crash. Auto-sync is not
an action; see fieldattend.model.connectivity. Database calls go through
asyncio.to_thread, as everywhere else in async code.
"""

import asyncio
import dataclasses
import datetime
import logging
import sqlite3
from typing import Optional

from fieldattend import config
from fieldattend.model import (
    api,
    attendance_mod,
    capture,
    connectivity,
    database,
    refresh,
    session_gate,
    session_mod,
    uploader,
)


logger = logging.getLogger(__name__)

RECOVERABLE_ERRORS = (
    api.SyncError,
    database.DBaseError,
    sqlite3.Error,
    session_mod.SessionError,
    session_gate.LogoutBlocked,
    attendance_mod.AlreadyCaptured,
    capture.EmptySignature,
)


@dataclasses.dataclass
class FlowResult:
    """Outcome of a user action."""

    ok: bool
    message: str
    summary: Optional[uploader.UploadSummary] = None


def describe_error(err: Exception) -> str:
    """Message for the user explaining why an action failed."""
    if isinstance(err, database.StoreUnavailable):
        return "The local database could not be opened. Close and reopen the app."
    if isinstance(err, uploader.PartialUploadFailure):
        if isinstance(err.cause, api.RequestTimeout):
            return (
                f"The connection is too slow. {err.summary}. "
                "Sync again to upload the rest."
            )
        return str(err)
    if isinstance(err, api.NetworkUnreachable):
        return "No internet connection. Connect and try again."
    if isinstance(err, api.RequestTimeout):
        return str(err)
    if isinstance(err, api.ServerRejected):
        return f"The server rejected the request: {err}"
    if isinstance(err, session_mod.SessionError):
        return "You are not logged in. Log in to download your data."
    if isinstance(err, sqlite3.Error):
        return f"Local database error: {err}"
    return str(err)


class FieldAttend:
    """Attendance client wired to one database file and one server."""

    settings: config.Settings
    store: database.Store
    client: api.ApiClient
    probe: connectivity.Reachability

    def __init__(
        self,
        settings: config.Settings,
        store: Optional[database.Store] = None,
        client: Optional[api.ApiClient] = None,
        probe: Optional[connectivity.Reachability] = None,
    ) -> None:
        if settings.db_path is None:
            raise config.ConfigError(
                "No database path configured.",
                config.ConfigError.ErrorType.PATH_DOES_NOT_EXIST,
            )
        self.settings = settings
        self.store = database.Store(settings.db_path) if store is None else store
        self.client = (
            api.ApiClient(settings.endpoint_url, settings.request_timeout)
            if client is None
            else client
        )
        self.probe = (
            connectivity.ReachabilityProbe(
                settings.reachability_url,
                settings.reachability_timeout,
                expected_status=settings.reachability_status,
            )
            if probe is None
            else probe
        )

    def make_monitor(self) -> connectivity.ConnectivityMonitor:
        """Connectivity monitor that auto-syncs with this client's settings."""
        return connectivity.ConnectivityMonitor(
            self.store,
            self.client,
            self.probe,
            batch_size=self.settings.batch_size,
            batch_pause=self.settings.batch_pause,
        )

    def _uploader(self, dbase: database.DBase) -> uploader.BatchUploader:
        return uploader.BatchUploader(
            dbase,
            self.client,
            batch_size=self.settings.batch_size,
            pause=self.settings.batch_pause,
        )

    async def login(self, identity: str) -> FlowResult:
        """Download the teacher's data and start a session."""
        identity = identity.strip()
        if not identity:
            return FlowResult(False, "Enter your identity number.")
        try:
            dbase = await self.store.open()
            snapshot = await refresh.refresh(
                dbase, self.client, identity, self.settings.location_label
            )
            await asyncio.to_thread(self._sweep, dbase)
        except RECOVERABLE_ERRORS as err:
            logger.error("Login failed: %s", err)
            return FlowResult(False, describe_error(err))
        return FlowResult(
            True,
            f"Welcome, {snapshot.teacher_name}. Downloaded "
            f"{len(snapshot.students)} students and "
            f"{len(snapshot.activities)} activities.",
        )

    async def refresh_data(self) -> FlowResult:
        """Download the logged-in teacher's data again."""
        try:
            dbase = await self.store.open()
            session = await asyncio.to_thread(session_mod.Session.require, dbase)
            snapshot = await refresh.refresh(
                dbase, self.client, session.identity, session.location_label
            )
        except RECOVERABLE_ERRORS as err:
            logger.error("Refresh failed: %s", err)
            return FlowResult(False, describe_error(err))
        return FlowResult(
            True,
            f"Data updated: {len(snapshot.students)} students, "
            f"{len(snapshot.activities)} activities.",
        )

    async def manual_sync(self, activity_id: Optional[int] = None) -> FlowResult:
        """Upload pending attendance, for one activity or for all of them."""
        try:
            await connectivity.require_reachable(self.probe)
            dbase = await self.store.open()
            await asyncio.to_thread(session_mod.Session.require, dbase)
            if activity_id is None:
                events = await asyncio.to_thread(
                    attendance_mod.AttendanceEvent.list_all_pending, dbase
                )
            else:
                events = await asyncio.to_thread(
                    attendance_mod.AttendanceEvent.list_pending_for_activity,
                    dbase,
                    activity_id,
                )
            if not events:
                return FlowResult(True, "Nothing to upload.")
            summary = await self._uploader(dbase).upload(events)
        except uploader.PartialUploadFailure as err:
            logger.error("Manual sync stopped: %s", err)
            return FlowResult(False, describe_error(err), err.summary)
        except RECOVERABLE_ERRORS as err:
            logger.error("Manual sync failed: %s", err)
            return FlowResult(False, describe_error(err))
        return FlowResult(True, f"{summary}.", summary)

    async def capture(
        self,
        student_id: str,
        activity_id: int,
        period_label: Optional[str],
        raw_signature: str,
        compress: capture.Compressor,
        locate: capture.Locator,
    ) -> FlowResult:
        """Save a signature, then upload it right away when online.

        The signature is safe once saved. If the immediate upload fails it
        stays pending for the next sync.
        """
        try:
            dbase = await self.store.open()
            await asyncio.to_thread(session_mod.Session.require, dbase)
            event = await capture.capture_signature(
                dbase,
                student_id,
                activity_id,
                period_label,
                raw_signature,
                compress,
                locate,
                gps_timeout=self.settings.gps_timeout,
            )
        except RECOVERABLE_ERRORS as err:
            logger.error("Capture failed: %s", err)
            return FlowResult(False, describe_error(err))
        if not await self.probe.is_reachable():
            return FlowResult(True, "Saved on this device. It will upload when online.")
        try:
            summary = await self._uploader(dbase).upload([event])
        except (api.SyncError, database.DBaseError, sqlite3.Error) as err:
            logger.warning("Immediate upload failed, event stays pending: %s", err)
            return FlowResult(True, "Saved on this device. It will upload later.")
        return FlowResult(True, "Saved and uploaded.", summary)

    async def undo_capture(self, student_id: str, activity_id: int) -> FlowResult:
        """Remove a signature captured today."""
        try:
            dbase = await self.store.open()
            await asyncio.to_thread(session_mod.Session.require, dbase)
            deleted = await asyncio.to_thread(
                attendance_mod.AttendanceEvent.undo, dbase, student_id, activity_id
            )
        except RECOVERABLE_ERRORS as err:
            logger.error("Undo failed: %s", err)
            return FlowResult(False, describe_error(err))
        if not deleted:
            return FlowResult(False, "No signature from today to remove.")
        return FlowResult(True, "Attendance removed.")

    async def logout(self) -> FlowResult:
        """Wipe local data once everything is uploaded."""
        try:
            dbase = await self.store.open()
            await session_gate.logout(dbase, self.probe)
        except session_gate.LogoutBlocked as err:
            return FlowResult(False, str(err))
        except api.NetworkUnreachable:
            return FlowResult(
                False, "You need an internet connection to log out and back in."
            )
        except RECOVERABLE_ERRORS as err:
            logger.error("Logout failed: %s", err)
            return FlowResult(False, describe_error(err))
        return FlowResult(True, "Logged out.")

    async def sweep(self) -> FlowResult:
        """Delete uploaded attendance older than the retention period."""
        try:
            dbase = await self.store.open()
            deleted = await asyncio.to_thread(self._sweep, dbase)
        except RECOVERABLE_ERRORS as err:
            logger.error("Retention sweep failed: %s", err)
            return FlowResult(False, describe_error(err))
        return FlowResult(True, f"Removed {deleted} old uploaded record(s).")

    def _sweep(self, dbase: database.DBase) -> int:
        deleted = attendance_mod.AttendanceEvent.sweep_uploaded(
            dbase, datetime.date.today(), self.settings.retention_days
        )
        if deleted:
            logger.info("Retention sweep removed %d uploaded events", deleted)
        return deleted

"""Watch network reachability and upload pending attendance when it returns.

Being connected to a network is not enough. The probe requests a known URL and
counts the device as online only when the exact status that URL promises comes
back (204 for the default generate_204 check). Captive portals answer with a
redirect or a 200 login page, and dead uplinks do not answer at all.

The monitor has two states. Going from offline to online starts one global
auto-sync of every pending event. A transition that arrives while an
auto-sync is still running is ignored; whatever is left pending is picked up
by the next transition or a manual sync. Nothing is uploaded while nobody is
logged in. Auto-sync failures are logged only, because nobody asked for the
sync and nobody is waiting on it.
"""

import asyncio
import enum
import logging
import sqlite3
from typing import Optional, Protocol

import requests

from fieldattend.model import (
    api,
    attendance_mod,
    database,
    guards,
    session_mod,
    uploader,
)


logger = logging.getLogger(__name__)


class Reachability(Protocol):
    async def is_reachable(self) -> bool: ...


class ReachabilityProbe:
    """Check for a working internet connection with a real HTTP request."""

    url: str
    timeout: float
    expected_status: int
    """Status the check URL returns when the internet is really reachable."""

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
        expected_status: int = 204,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.expected_status = expected_status
        self._session = requests.Session() if session is None else session

    async def is_reachable(self) -> bool:
        return await asyncio.to_thread(self._check)

    def _check(self) -> bool:
        try:
            response = self._session.head(
                self.url, timeout=self.timeout, allow_redirects=False
            )
        except requests.exceptions.RequestException as err:
            logger.debug("Reachability check failed: %s", err)
            return False
        if response.status_code != self.expected_status:
            logger.debug(
                "Reachability check got HTTP %d, expected %d",
                response.status_code,
                self.expected_status,
            )
            return False
        return True


async def require_reachable(probe: Reachability) -> None:
    """Raise NetworkUnreachable unless the internet is reachable."""
    if not await probe.is_reachable():
        raise api.NetworkUnreachable("No internet connection.")


class NetworkState(enum.Enum):
    OFFLINE = "offline"
    ONLINE = "online"


class ConnectivityMonitor:
    """Trigger an auto-sync whenever the device comes back online."""

    state: NetworkState
    last_summary: Optional[uploader.UploadSummary]
    """Result of the most recent auto-sync that finished without error."""

    def __init__(
        self,
        store: database.Store,
        client: uploader.AttendanceSender,
        probe: Reachability,
        batch_size: int = uploader.BATCH_SIZE,
        batch_pause: float = uploader.BATCH_PAUSE,
    ) -> None:
        self.store = store
        self.client = client
        self.probe = probe
        self.batch_size = batch_size
        self.batch_pause = batch_pause
        self.state = NetworkState.OFFLINE
        self.last_summary = None
        self._sync_guard = guards.SingleFlight("auto-sync")

    @property
    def syncing(self) -> bool:
        return self._sync_guard.busy

    def observe(self, reachable: bool) -> Optional[asyncio.Task]:
        """Record the latest reachability reading.

        Must be called from a running event loop.

        Returns:
            The auto-sync task if this reading started one.
        """
        new_state = NetworkState.ONLINE if reachable else NetworkState.OFFLINE
        previous, self.state = self.state, new_state
        if previous == new_state:
            return None
        logger.info("Network is %s", new_state.value)
        if new_state == NetworkState.ONLINE:
            return self._sync_guard.try_start(self._auto_sync)
        return None

    async def wait_idle(self) -> None:
        """Wait for a running auto-sync to finish."""
        await self._sync_guard.wait()

    async def run(self, poll_interval: float) -> None:
        """Poll reachability until cancelled."""
        while True:
            self.observe(await self.probe.is_reachable())
            await asyncio.sleep(poll_interval)

    async def _auto_sync(self) -> None:
        try:
            dbase = await self.store.open()
            if await asyncio.to_thread(session_mod.Session.get, dbase) is None:
                logger.debug("Auto-sync: nobody is logged in")
                return
            events = await asyncio.to_thread(
                attendance_mod.AttendanceEvent.list_all_pending, dbase
            )
            if not events:
                logger.debug("Auto-sync: nothing pending")
                return
            logger.info("Auto-sync: uploading %d pending events", len(events))
            upload = uploader.BatchUploader(
                dbase, self.client, self.batch_size, self.batch_pause
            )
            self.last_summary = await upload.upload(events)
        except (api.SyncError, database.DBaseError, sqlite3.Error) as err:
            logger.warning("Auto-sync failed: %s", err)

"""Test reachability checks and the auto-sync trigger."""

import asyncio
import pathlib
from unittest.mock import MagicMock

import pytest
import requests

from fieldattend.model import api, attendance_mod, connectivity, database

from conftest import FakeProbe, FakeServer


class GatedServer(FakeServer):
    """Fake server that holds every batch until the gate opens."""

    def __init__(self) -> None:
        super().__init__()
        self.gate = asyncio.Event()

    async def post_attendance(self, records):
        await self.gate.wait()
        return await super().post_attendance(records)


def make_monitor(dbase: database.DBase, client) -> connectivity.ConnectivityMonitor:
    return connectivity.ConnectivityMonitor(
        database.Store(dbase.db_path),
        client,
        FakeProbe(),
        batch_pause=0,
    )


def test_coming_online_uploads_everything(
    full_dbase: database.DBase, server, make_events
) -> None:
    """Offline to online starts one sync of every pending event."""
    # Arrange
    make_events(full_dbase, 25, activity_id=101)
    make_events(full_dbase, 3, activity_id=202)
    monitor = make_monitor(full_dbase, server)

    async def scenario():
        task = monitor.observe(True)
        await monitor.wait_idle()
        return task

    # Act
    task = asyncio.run(scenario())
    # Assert
    assert task is not None
    assert monitor.state == connectivity.NetworkState.ONLINE
    assert [len(batch) for batch in server.accepted] == [20, 8]
    assert str(monitor.last_summary) == "28 of 28 uploaded"
    assert attendance_mod.AttendanceEvent.count_pending(full_dbase) == 0


def test_staying_online_does_not_sync(
    full_dbase: database.DBase, server, make_events
) -> None:
    """Only a transition starts a sync."""
    # Arrange
    make_events(full_dbase, 2)
    monitor = make_monitor(full_dbase, server)

    async def scenario():
        first = monitor.observe(True)
        await monitor.wait_idle()
        second = monitor.observe(True)
        return first, second

    # Act
    first, second = asyncio.run(scenario())
    # Assert
    assert first is not None
    assert second is None
    assert server.attempts == 1


def test_going_offline_does_not_sync(full_dbase: database.DBase, server) -> None:
    """Online to offline is recorded without a sync."""
    # Arrange
    monitor = make_monitor(full_dbase, server)
    monitor.state = connectivity.NetworkState.ONLINE

    async def scenario():
        return monitor.observe(False)

    # Act
    task = asyncio.run(scenario())
    # Assert
    assert task is None
    assert monitor.state == connectivity.NetworkState.OFFLINE
    assert server.attempts == 0


def test_transition_during_sync_is_ignored(
    full_dbase: database.DBase, make_events
) -> None:
    """A second offline-to-online change while syncing starts nothing."""
    # Arrange
    make_events(full_dbase, 5)
    server = GatedServer()
    monitor = make_monitor(full_dbase, server)

    async def scenario():
        first = monitor.observe(True)
        await asyncio.sleep(0.01)
        syncing = monitor.syncing
        monitor.observe(False)
        second = monitor.observe(True)
        server.gate.set()
        await monitor.wait_idle()
        return first, syncing, second

    # Act
    first, syncing, second = asyncio.run(scenario())
    # Assert
    assert first is not None
    assert syncing
    assert second is None
    assert server.attempts == 1
    assert not monitor.syncing
    assert attendance_mod.AttendanceEvent.count_pending(full_dbase) == 0


def test_auto_sync_failure_is_logged_only(
    full_dbase: database.DBase, server, make_events
) -> None:
    """A failed auto-sync leaves events pending and raises nothing."""
    # Arrange
    make_events(full_dbase, 5)
    server.fail_on_batch = 1
    monitor = make_monitor(full_dbase, server)

    async def scenario():
        task = monitor.observe(True)
        await monitor.wait_idle()
        return task

    # Act
    task = asyncio.run(scenario())
    # Assert
    assert task.exception() is None
    assert monitor.last_summary is None
    assert attendance_mod.AttendanceEvent.count_pending(full_dbase) == 5


def test_auto_sync_needs_a_session(
    empty_database: database.DBase, server, make_events
) -> None:
    """Nothing is uploaded while nobody is logged in."""
    # Arrange
    make_events(empty_database, 3)
    monitor = make_monitor(empty_database, server)

    async def scenario():
        task = monitor.observe(True)
        await monitor.wait_idle()
        return task

    # Act
    task = asyncio.run(scenario())
    # Assert
    assert task.exception() is None
    assert server.attempts == 0
    assert monitor.last_summary is None
    assert attendance_mod.AttendanceEvent.count_pending(empty_database) == 3


def test_auto_sync_with_unavailable_store(
    empty_output_folder: pathlib.Path, server
) -> None:
    """An unopenable database does not crash the monitor."""
    # Arrange
    blocker = empty_output_folder / "blocker"
    blocker.write_text("plain file")
    monitor = connectivity.ConnectivityMonitor(
        database.Store(blocker / "store.db"), server, FakeProbe()
    )

    async def scenario():
        task = monitor.observe(True)
        await monitor.wait_idle()
        return task

    # Act
    task = asyncio.run(scenario())
    # Assert
    assert task.exception() is None
    assert server.attempts == 0


def test_run_polls_the_probe(full_dbase: database.DBase, make_events) -> None:
    """The polling loop feeds probe readings to the monitor."""
    # Arrange
    make_events(full_dbase, 3)
    server = FakeServer()
    probe = FakeProbe(reachable=True)
    monitor = connectivity.ConnectivityMonitor(
        database.Store(full_dbase.db_path), server, probe, batch_pause=0
    )

    async def scenario():
        poller = asyncio.create_task(monitor.run(poll_interval=0))
        await asyncio.sleep(0.05)
        poller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await poller
        await monitor.wait_idle()

    # Act
    asyncio.run(scenario())
    # Assert
    assert probe.checks > 1
    assert server.attempts == 1
    assert attendance_mod.AttendanceEvent.count_pending(full_dbase) == 0


@pytest.mark.parametrize(
    "status_code, reachable", [(200, False), (204, True), (302, False), (511, False)]
)
def test_reachability_probe_status(status_code: int, reachable: bool) -> None:
    """Only the 204 the check URL promises counts; a portal login page does not."""
    # Arrange
    session = MagicMock(spec=requests.Session)
    session.head.return_value = MagicMock(status_code=status_code)
    probe = connectivity.ReachabilityProbe(
        "https://example.org/generate_204", timeout=2, session=session
    )
    # Act
    result = asyncio.run(probe.is_reachable())
    # Assert
    assert result is reachable
    session.head.assert_called_once_with(
        "https://example.org/generate_204", timeout=2, allow_redirects=False
    )


def test_reachability_probe_expected_status() -> None:
    """Check URLs that answer 200 can be configured."""
    # Arrange
    session = MagicMock(spec=requests.Session)
    session.head.return_value = MagicMock(status_code=200)
    probe = connectivity.ReachabilityProbe(
        "https://example.org/ping", session=session, expected_status=200
    )
    # Act, Assert
    assert asyncio.run(probe.is_reachable()) is True


def test_reachability_probe_connection_error() -> None:
    """A failed request means offline."""
    # Arrange
    session = MagicMock(spec=requests.Session)
    session.head.side_effect = requests.exceptions.ConnectionError("no route")
    probe = connectivity.ReachabilityProbe("https://example.org", session=session)
    # Act, Assert
    assert asyncio.run(probe.is_reachable()) is False


def test_require_reachable() -> None:
    """An unreachable network raises NetworkUnreachable."""
    # Act, Assert
    with pytest.raises(api.NetworkUnreachable):
        asyncio.run(connectivity.require_reachable(FakeProbe(reachable=False)))
    asyncio.run(connectivity.require_reachable(FakeProbe(reachable=True)))

"""Guard logout, which wipes every local table.

Logging back in needs the network to download the roster again, so logout is
refused while the internet is unreachable. It is also refused while any
attendance is still pending, since wiping would lose signatures that never
reached the server.
"""

import asyncio
import logging
import sqlite3
from typing import TYPE_CHECKING

from fieldattend.model import connectivity, schema


if TYPE_CHECKING:
    from fieldattend.model import database


logger = logging.getLogger(__name__)


class LogoutBlocked(Exception):
    """Attendance is waiting to be uploaded."""

    pending_count: int

    def __init__(self, pending_count: int) -> None:
        self.pending_count = pending_count
        super().__init__(
            f"{pending_count} attendance record(s) have not been uploaded. "
            "Sync before logging out."
        )


def _count_pending(conn: sqlite3.Connection) -> int:
    return conn.execute(
        "SELECT COUNT(*) FROM attendance_events WHERE upload_status = ?;",
        (int(schema.UploadStatus.PENDING),),
    ).fetchone()[0]


def _wipe(dbase: "database.DBase") -> None:
    # Pending events are counted inside the wipe transaction so nothing
    # captured in between can be lost.
    with dbase.transaction() as conn:
        pending = _count_pending(conn)
        if pending > 0:
            raise LogoutBlocked(pending)
        for table in schema.TABLE_NAMES:
            conn.execute(f"DELETE FROM {table};")


async def logout(dbase: "database.DBase", probe: connectivity.Reachability) -> None:
    """Delete the session and every local table.

    Raises:
        NetworkUnreachable: If the internet cannot be reached.
        LogoutBlocked: If any attendance event is still pending.
    """
    await connectivity.require_reachable(probe)
    await asyncio.to_thread(_wipe, dbase)
    logger.info("Logged out; local data wiped")

"""Session table and associated queries.

The session table holds at most one row, for the teacher who logged in on this
device. A missing row means nobody is logged in.
"""

import dataclasses
import datetime
import sqlite3
from typing import Optional, TYPE_CHECKING


if TYPE_CHECKING:
    from fieldattend.model import database


class SessionError(Exception):
    """No teacher is logged in on this device."""


@dataclasses.dataclass
class Session:
    """The logged-in teacher."""

    identity: str
    display_name: str
    location_label: str
    last_sync: Optional[datetime.datetime] = None

    def __init__(
        self,
        identity: str,
        display_name: str,
        location_label: str,
        last_sync: Optional[datetime.datetime | str] = None,
    ) -> None:
        """Ensure last_sync is converted to datetime.datetime."""
        if isinstance(last_sync, str):
            last_sync = datetime.datetime.fromisoformat(last_sync)
        self.identity = identity
        self.display_name = display_name
        self.location_label = location_label
        self.last_sync = last_sync

    @staticmethod
    def get(dbase: "database.DBase") -> "Session | None":
        """Retrieve the current session, or None if nobody is logged in."""
        query = """
                SELECT identity, display_name, location_label, last_sync
                  FROM session
                 WHERE session_id = 1;
        """
        conn = dbase.get_db_connection(as_dict=True)
        result = conn.execute(query).fetchone()
        conn.close()
        return None if result is None else Session(**result)

    @staticmethod
    def require(dbase: "database.DBase") -> "Session":
        """Retrieve the current session.

        Raises:
            SessionError: If nobody is logged in.
        """
        session = Session.get(dbase)
        if session is None:
            raise SessionError("Nobody is logged in on this device.")
        return session

    def replace(self, conn: sqlite3.Connection) -> None:
        """Write this session over any existing one.

        Runs on the caller's connection so it can share a transaction with a
        bulk refresh.
        """
        query = """
                INSERT OR REPLACE INTO session
                            (session_id, identity, display_name, location_label,
                            last_sync)
                     VALUES (1, :identity, :display_name, :location_label,
                            :last_sync);
        """
        conn.execute(
            query,
            {
                "identity": self.identity,
                "display_name": self.display_name,
                "location_label": self.location_label,
                "last_sync": self.last_sync,
            },
        )

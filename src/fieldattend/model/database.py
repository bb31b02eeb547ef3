"""Connect to the Sqlite database and run queries."""

import asyncio
import contextlib
import datetime
import logging
import pathlib
import sqlite3
from collections.abc import Iterator, Sequence
from typing import Any, Optional

from fieldattend.model import guards, migrate, schema


logger = logging.getLogger(__name__)

BUSY_TIMEOUT = 10.0
"""Seconds a connection waits for another writer before giving up."""


class DBaseError(Exception):
    """Error occurred when working with database."""


class StoreUnavailable(DBaseError):
    """The local database file could not be created or opened."""


def dict_factory(cursor: sqlite3.Cursor, row: Sequence) -> dict[str, Any]:
    """Return Sqlite data as a dictionary."""
    fields = [column[0] for column in cursor.description]
    return {key: value for key, value in zip(fields, row)}


def adapt_date_iso(val: datetime.date | str) -> str:
    """Adapt datetime.date to ISO 8601 date."""
    if isinstance(val, datetime.date):
        return val.isoformat()
    return val


def adapt_datetime_iso(val: datetime.datetime | str) -> str:
    """Adapt datetime.datetime to a timezone-naive, space-separated timestamp."""
    if isinstance(val, datetime.datetime):
        return val.replace(tzinfo=None, microsecond=0).isoformat(sep=" ")
    return val


# Sqlite's built-in date and datetime adapters are deprecated as of Python
#   3.12. Register explicit ones so dates are stored as ISO-8601 text.
sqlite3.register_adapter(datetime.date, adapt_date_iso)
sqlite3.register_adapter(datetime.datetime, adapt_datetime_iso)


class DBase:
    """Read and write to database."""

    db_path: pathlib.Path
    """Path to Sqlite database."""

    def __init__(self, db_path: pathlib.Path) -> None:
        """Set database path."""
        self.db_path = db_path

    def initialize(self) -> int:
        """Create the database file if needed and migrate it to the current schema.

        Safe to call on an existing database.

        Returns:
            Schema version of the database.

        Raises:
            StoreUnavailable: If the file cannot be created, opened, or migrated.
        """
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = self.get_db_connection()
            try:
                # WAL lets readers see committed data while an upload writes.
                conn.execute("PRAGMA journal_mode = WAL;")
            finally:
                conn.close()
            with self.transaction() as conn:
                version = migrate.apply_migrations(conn)
        except (sqlite3.Error, OSError) as err:
            raise StoreUnavailable(
                f"Unable to open local database at {self.db_path}: {err}"
            ) from err
        return version

    def get_db_connection(self, as_dict: bool = False) -> sqlite3.Connection:
        """Get connection to the SQLite database.

        Connections are in autocommit mode. Group writes that belong together
        with transaction().
        """
        conn = sqlite3.connect(
            self.db_path, timeout=BUSY_TIMEOUT, isolation_level=None
        )
        if as_dict:
            conn.row_factory = dict_factory
        else:
            conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    @contextlib.contextmanager
    def transaction(self, as_dict: bool = False) -> Iterator[sqlite3.Connection]:
        """Hold an exclusive write transaction for the body of a with block.

        Commits when the block finishes and rolls back when it raises anything,
        including cancellation. The connection is closed on every exit path.
        """
        conn = self.get_db_connection(as_dict=as_dict)
        try:
            conn.execute("BEGIN IMMEDIATE;")
            try:
                yield conn
            except BaseException:
                conn.rollback()
                raise
            conn.commit()
        finally:
            conn.close()

    def execute(
        self, query: str, params: Sequence[Any] | dict[str, Any] = ()
    ) -> list[dict[str, Any]] | int:
        """Run a single parameterized statement.

        Returns:
            Rows as dictionaries for statements that return rows, otherwise the
            number of rows affected.
        """
        conn = self.get_db_connection(as_dict=True)
        try:
            cursor = conn.execute(query, params)
            if cursor.description is not None:
                return cursor.fetchall()
            return cursor.rowcount
        finally:
            conn.close()

    def schema_version(self) -> int:
        """Schema version recorded in the database."""
        conn = self.get_db_connection()
        try:
            return migrate.current_version(conn)
        finally:
            conn.close()

    def table_counts(self) -> dict[str, int]:
        """Number of rows in each data table."""
        conn = self.get_db_connection()
        try:
            return {
                table: conn.execute(f"SELECT COUNT(*) FROM {table};").fetchone()[0]
                for table in schema.TABLE_NAMES
            }
        finally:
            conn.close()


class Store:
    """Handle to the local database, owned by the application.

    The database is initialized the first time open() is called. Calls that
    arrive while that is in progress wait for the same outcome.

    DBase methods block, for up to BUSY_TIMEOUT while another writer holds the
    file. Coroutines call them through asyncio.to_thread so the event loop
    keeps polling the network and serving other tasks meanwhile.
    """

    db_path: pathlib.Path
    _dbase: Optional[DBase]
    _opening: guards.SingleFlight

    def __init__(self, db_path: pathlib.Path) -> None:
        self.db_path = db_path
        self._dbase = None
        self._opening = guards.SingleFlight("store-open")

    @property
    def is_open(self) -> bool:
        return self._dbase is not None

    async def open(self) -> DBase:
        """Return the initialized database.

        Raises:
            StoreUnavailable: If the database cannot be opened. Callers should
                abandon the current operation rather than retry in a loop.
        """
        if self._dbase is not None:
            return self._dbase
        return await self._opening.run(self._open)

    async def _open(self) -> DBase:
        dbase = DBase(self.db_path)
        version = await asyncio.to_thread(dbase.initialize)
        logger.info("Opened %s at schema version %d", self.db_path, version)
        self._dbase = dbase
        return dbase

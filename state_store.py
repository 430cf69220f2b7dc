# state_store.py
import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Callable, List, Optional, Tuple

import aiosqlite

from errors import ConflictError, NotFoundError, StorageError, ValidationError
from models import LiveSession, SummaryEntry

log = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS activities (
        activity_id INTEGER PRIMARY KEY AUTOINCREMENT,
        name        TEXT NOT NULL UNIQUE
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS sessions (
        user_id     INTEGER PRIMARY KEY,
        activity_id INTEGER NOT NULL REFERENCES activities(activity_id),
        start_time  INTEGER NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS playtime (
        user_id       INTEGER NOT NULL,
        activity_id   INTEGER NOT NULL REFERENCES activities(activity_id),
        total_seconds INTEGER NOT NULL CHECK (total_seconds >= 0),
        PRIMARY KEY (user_id, activity_id)
    );
    """,
)

# children first, activities is referenced by both
_DROP_ORDER = ("playtime", "sessions", "activities")

Settle = Callable[[LiveSession], int]


@contextlib.contextmanager
def _storage_errors(action: str):
    try:
        yield
    except aiosqlite.Error as exc:
        raise StorageError(f"{action} failed: {exc}") from exc


class PlaytimeStore:
    """
    SQLite persistence for:
    - the activity catalog (activities)
    - the live session per user (sessions)
    - cumulative seconds per user and activity (playtime)

    Key invariants:
    - sessions has at most one row per user (user_id is the primary key)
    - a session row is deleted in the same transaction that credits its time
    - playtime.total_seconds never goes below zero

    The connection runs in autocommit mode. Every write goes through
    ``_transaction``, which holds ``_write_lock`` from BEGIN to COMMIT so
    statements from other coroutines never land inside an open transaction.
    ``get_live_session`` takes the same lock, since the reconciler acts on it.
    The other reads don't: summaries and catalog lookups share the connection
    and may see rows of a transaction that is still open.
    """

    def __init__(self, path: str):
        self.path = path
        self.db: aiosqlite.Connection | None = None
        self._write_lock: asyncio.Lock | None = None

    async def __aenter__(self) -> "PlaytimeStore":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ----- connection -----

    async def connect(self) -> None:
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)

        self._write_lock = asyncio.Lock()
        with _storage_errors("connect"):
            self.db = await aiosqlite.connect(self.path, isolation_level=None)
            await self.db.execute("PRAGMA foreign_keys=ON;")
            await self.db.execute("PRAGMA journal_mode=WAL;")

        async with self._transaction("build schema") as db:
            for statement in _SCHEMA:
                await db.execute(statement)
        log.info("[STORE] opened %s", self.path)

    async def close(self) -> None:
        if self.db is None:
            return
        await self.db.close()
        self.db = None

    def _conn(self) -> aiosqlite.Connection:
        if self.db is None:
            raise StorageError("store is not connected")
        return self.db

    @asynccontextmanager
    async def _transaction(self, action: str):
        db = self._conn()
        async with self._write_lock:
            with _storage_errors(action):
                await db.execute("BEGIN IMMEDIATE;")
            try:
                yield db
                await db.commit()
            except aiosqlite.Error as exc:
                await self._rollback(db, action)
                raise StorageError(f"{action} failed: {exc}") from exc
            except BaseException:
                await self._rollback(db, action)
                raise

    async def _rollback(self, db: aiosqlite.Connection, action: str) -> None:
        try:
            await db.rollback()
        except aiosqlite.Error:
            # the original error is already on its way up
            log.exception("[STORE] rollback after %s failed", action)

    async def _fetchone(self, sql: str, params: tuple, action: str):
        with _storage_errors(action):
            cur = await self._conn().execute(sql, params)
            row = await cur.fetchone()
            await cur.close()
        return row

    async def _fetchall(self, sql: str, params: tuple, action: str):
        with _storage_errors(action):
            cur = await self._conn().execute(sql, params)
            rows = await cur.fetchall()
            await cur.close()
        return rows

    # ----- catalog -----

    async def get_activity_id(self, name: str) -> Optional[int]:
        row = await self._fetchone(
            "SELECT activity_id FROM activities WHERE name=?;", (name,), "look up activity"
        )
        return int(row[0]) if row else None

    async def ensure_activity(self, name: str) -> int:
        """
        Return the id for ``name``, registering it on first sight.

        The UNIQUE constraint on name decides races: the loser gets an
        IntegrityError and re-reads the winner's row.
        """
        activity_id = await self.get_activity_id(name)
        if activity_id is not None:
            return activity_id

        inserted: Optional[int] = None
        async with self._transaction("add activity") as db:
            try:
                cur = await db.execute("INSERT INTO activities (name) VALUES (?);", (name,))
            except aiosqlite.IntegrityError:
                log.debug("[STORE] activity %r registered concurrently", name)
            else:
                inserted = int(cur.lastrowid)
                await cur.close()

        if inserted is not None:
            log.info("[STORE] new activity %r (id=%s)", name, inserted)
            return inserted

        activity_id = await self.get_activity_id(name)
        if activity_id is None:
            raise NotFoundError(f"activity {name!r} vanished after insert conflict")
        return activity_id

    async def list_activities(self) -> List[Tuple[int, str]]:
        rows = await self._fetchall(
            "SELECT activity_id, name FROM activities ORDER BY activity_id;", (), "list activities"
        )
        return [(int(aid), str(name)) for aid, name in rows]

    # ----- sessions -----

    async def _select_live_session(self, db: aiosqlite.Connection, user_id: int) -> Optional[LiveSession]:
        cur = await db.execute(
            """
            SELECT s.activity_id, a.name, s.start_time
            FROM sessions s JOIN activities a ON a.activity_id = s.activity_id
            WHERE s.user_id=?;
            """,
            (user_id,),
        )
        row = await cur.fetchone()
        await cur.close()
        if not row:
            return None
        return LiveSession(
            user_id=user_id,
            activity_id=int(row[0]),
            activity_name=str(row[1]),
            start_time=int(row[2]),
        )

    async def get_live_session(self, user_id: int) -> Optional[LiveSession]:
        # waits out any open transaction so a row that may still roll back is never seen
        db = self._conn()
        async with self._write_lock:
            with _storage_errors("read live session"):
                return await self._select_live_session(db, user_id)

    async def open_session(self, user_id: int, activity_id: int, start_time: int) -> None:
        """Insert the live session for a user. Raises ConflictError if one exists."""
        async with self._transaction("open session") as db:
            try:
                await db.execute(
                    "INSERT INTO sessions (user_id, activity_id, start_time) VALUES (?, ?, ?);",
                    (user_id, activity_id, start_time),
                )
            except aiosqlite.IntegrityError as exc:
                if "FOREIGN KEY" in str(exc):
                    raise NotFoundError(f"activity {activity_id} does not exist") from exc
                raise ConflictError(f"user {user_id} already has a live session") from exc

    async def close_session(self, user_id: int, settle: Optional[Settle] = None) -> Optional[LiveSession]:
        """
        Remove and return the user's live session, or None if there is none.

        If ``settle`` is given it receives the removed session and returns the
        seconds to credit; the credit is written in the same transaction as the
        delete, so a session is never counted twice nor dropped uncounted.
        """
        async with self._transaction("close session") as db:
            session = await self._select_live_session(db, user_id)
            if session is None:
                return None

            await db.execute("DELETE FROM sessions WHERE user_id=?;", (user_id,))
            if settle is not None:
                seconds = settle(session)
                if seconds:
                    await self._credit(db, user_id, session.activity_id, seconds)
        return session

    async def clear_sessions(self) -> int:
        async with self._transaction("clear sessions") as db:
            cur = await db.execute("DELETE FROM sessions;")
            return cur.rowcount

    async def clear_sessions_for_user(self, user_id: int) -> int:
        async with self._transaction("clear user session") as db:
            cur = await db.execute("DELETE FROM sessions WHERE user_id=?;", (user_id,))
            return cur.rowcount

    # ----- playtime -----

    async def _credit(self, db: aiosqlite.Connection, user_id: int, activity_id: int, seconds: int) -> None:
        if seconds < 0:
            raise ValidationError(f"refusing to credit {seconds}s to user {user_id}")
        try:
            await db.execute(
                """
                INSERT INTO playtime (user_id, activity_id, total_seconds) VALUES (?, ?, ?)
                ON CONFLICT(user_id, activity_id)
                DO UPDATE SET total_seconds = total_seconds + excluded.total_seconds;
                """,
                (user_id, activity_id, seconds),
            )
        except aiosqlite.IntegrityError as exc:
            raise NotFoundError(f"activity {activity_id} does not exist") from exc

    async def add_playtime(self, user_id: int, activity_id: int, seconds: int) -> None:
        if seconds < 0:
            raise ValidationError(f"refusing to credit {seconds}s to user {user_id}")
        async with self._transaction("add playtime") as db:
            await self._credit(db, user_id, activity_id, seconds)

    async def get_total(self, user_id: int, activity_id: int) -> Optional[int]:
        row = await self._fetchone(
            "SELECT total_seconds FROM playtime WHERE user_id=? AND activity_id=?;",
            (user_id, activity_id),
            "read playtime",
        )
        return int(row[0]) if row else None

    async def get_top_entries(self, user_id: int, limit: int) -> List[SummaryEntry]:
        if limit < 1:
            return []
        rows = await self._fetchall(
            """
            SELECT a.name, p.total_seconds
            FROM playtime p JOIN activities a ON a.activity_id = p.activity_id
            WHERE p.user_id=?
            ORDER BY p.total_seconds DESC, a.name ASC
            LIMIT ?;
            """,
            (user_id, limit),
            "read summary",
        )
        return [SummaryEntry(str(name), int(total)) for name, total in rows]

    async def clear_playtime(self) -> int:
        async with self._transaction("clear playtime") as db:
            cur = await db.execute("DELETE FROM playtime;")
            return cur.rowcount

    async def clear_playtime_for_user(self, user_id: int) -> int:
        async with self._transaction("clear user playtime") as db:
            cur = await db.execute("DELETE FROM playtime WHERE user_id=?;", (user_id,))
            return cur.rowcount

    # ----- schema -----

    async def rebuild_schema(self) -> None:
        """Drop every table, catalog included, and create them empty."""
        async with self._transaction("rebuild schema") as db:
            for table in _DROP_ORDER:
                await db.execute(f"DROP TABLE IF EXISTS {table};")
            for statement in _SCHEMA:
                await db.execute(statement)
        log.warning("[STORE] schema rebuilt, all data dropped")

"""Database repository - all SQL queries."""

import functools
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import List
from zoneinfo import ZoneInfo

import aiosqlite

from turnkeeper.db.models import (
    HiatusRecord,
    HiatusStatus,
    Participant,
    ReminderRecord,
    Session,
    TimestampStatus,
)
from turnkeeper.errors import PersistenceError

logger = logging.getLogger(__name__)


def _persistent(func):
    """Convert driver errors raised by a repository call into PersistenceError."""

    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs):
        try:
            return await func(self, *args, **kwargs)
        except aiosqlite.Error as e:
            logger.error(f"Database error in {func.__name__}: {e}")
            raise PersistenceError(f"{func.__name__} failed: {e}") from e

    return wrapper


def _dump_dt(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return dt.astimezone(ZoneInfo("UTC")).isoformat()


def _load_dt(value: str | None) -> datetime | None:
    if value is None:
        return None
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=ZoneInfo("UTC"))
    return dt


class Repository:
    """Database access layer."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Open database connection."""
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        logger.info(f"Connected to database at {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("Database connection closed")

    @property
    def db(self) -> aiosqlite.Connection:
        """Get the database connection."""
        if self._db is None:
            raise RuntimeError("Database not connected")
        return self._db

    # Session operations

    @_persistent
    async def get_session(self, channel_id: int) -> Session | None:
        """Get the session running in a channel."""
        async with self.db.execute(
            "SELECT * FROM sessions WHERE channel_id = ?", (channel_id,)
        ) as cursor:
            row = await cursor.fetchone()
            if row:
                return self._row_to_session(row)
            return None

    @_persistent
    async def get_sessions(self) -> List[Session]:
        """Get all running sessions."""
        async with self.db.execute(
            "SELECT * FROM sessions ORDER BY created_at"
        ) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_session(row) for row in rows]

    @_persistent
    async def get_sessions_by_current_user(self, user_id: int) -> List[Session]:
        """Get every session where the user currently holds the turn."""
        async with self.db.execute(
            """
            SELECT * FROM sessions
            WHERE current_user_id = ?
            ORDER BY last_advance_at
            """,
            (user_id,),
        ) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_session(row) for row in rows]

    @_persistent
    async def upsert_session(self, session: Session) -> None:
        """Insert or fully replace a session."""
        await self.db.execute(
            """
            INSERT INTO sessions (
                channel_id, participants, current_user_id, current_character_name,
                last_advance_at, status, hiatus_status
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (channel_id) DO UPDATE SET
                participants = excluded.participants,
                current_user_id = excluded.current_user_id,
                current_character_name = excluded.current_character_name,
                last_advance_at = excluded.last_advance_at,
                status = excluded.status,
                hiatus_status = excluded.hiatus_status
            """,
            (
                session.channel_id,
                json.dumps(
                    [
                        {"user_id": p.user_id, "character_name": p.character_name}
                        for p in session.participants
                    ]
                ),
                session.current_turn.user_id,
                session.current_turn.character_name,
                _dump_dt(session.last_advance_at),
                session.status.value,
                session.hiatus_status.value,
            ),
        )
        await self.db.commit()

    @_persistent
    async def set_session_status(
        self,
        channel_id: int,
        status: TimestampStatus | None = None,
        hiatus_status: HiatusStatus | None = None,
    ) -> None:
        """Update the status markers of a session."""
        updates = []
        params: list = []

        if status is not None:
            updates.append("status = ?")
            params.append(status.value)
        if hiatus_status is not None:
            updates.append("hiatus_status = ?")
            params.append(hiatus_status.value)

        if updates:
            params.append(channel_id)
            await self.db.execute(
                f"UPDATE sessions SET {', '.join(updates)} WHERE channel_id = ?", params
            )
            await self.db.commit()

    @_persistent
    async def delete_session(self, channel_id: int) -> None:
        """Delete a session."""
        await self.db.execute("DELETE FROM sessions WHERE channel_id = ?", (channel_id,))
        await self.db.commit()

    # Reminder operations

    @_persistent
    async def upsert_reminder(self, reminder: ReminderRecord) -> None:
        """Insert or replace the reminder of a channel (one per channel)."""
        await self.db.execute(
            """
            INSERT INTO reminders (
                channel_id, user_id, character_name, due_at, tier, hiatus_extended
            ) VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT (channel_id) DO UPDATE SET
                user_id = excluded.user_id,
                character_name = excluded.character_name,
                due_at = excluded.due_at,
                tier = excluded.tier,
                hiatus_extended = excluded.hiatus_extended
            """,
            (
                reminder.channel_id,
                reminder.user_id,
                reminder.character_name,
                _dump_dt(reminder.due_at),
                reminder.tier,
                1 if reminder.hiatus_extended else 0,
            ),
        )
        await self.db.commit()

    @_persistent
    async def get_reminder(self, channel_id: int) -> ReminderRecord | None:
        """Get the pending reminder of a channel."""
        async with self.db.execute(
            "SELECT * FROM reminders WHERE channel_id = ?", (channel_id,)
        ) as cursor:
            row = await cursor.fetchone()
            if row:
                return self._row_to_reminder(row)
            return None

    @_persistent
    async def get_reminders(self) -> List[ReminderRecord]:
        """Get all pending reminders."""
        async with self.db.execute("SELECT * FROM reminders ORDER BY due_at") as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_reminder(row) for row in rows]

    @_persistent
    async def delete_reminder(self, channel_id: int) -> None:
        """Delete the reminder of a channel, if any."""
        await self.db.execute("DELETE FROM reminders WHERE channel_id = ?", (channel_id,))
        await self.db.commit()

    # Hiatus operations

    @_persistent
    async def upsert_hiatus(self, hiatus: HiatusRecord) -> None:
        """Insert or replace the hiatus of a user (one per user)."""
        await self.db.execute(
            """
            INSERT INTO hiatuses (user_id, reason, expires_at, announcement_id)
            VALUES (?, ?, ?, ?)
            ON CONFLICT (user_id) DO UPDATE SET
                reason = excluded.reason,
                expires_at = excluded.expires_at,
                announcement_id = excluded.announcement_id
            """,
            (
                hiatus.user_id,
                hiatus.reason,
                _dump_dt(hiatus.expires_at),
                hiatus.announcement_id,
            ),
        )
        await self.db.commit()

    @_persistent
    async def get_hiatus(self, user_id: int) -> HiatusRecord | None:
        """Get the active hiatus of a user."""
        async with self.db.execute(
            "SELECT * FROM hiatuses WHERE user_id = ?", (user_id,)
        ) as cursor:
            row = await cursor.fetchone()
            if row:
                return self._row_to_hiatus(row)
            return None

    @_persistent
    async def get_hiatuses(self, with_expiry_only: bool = False) -> List[HiatusRecord]:
        """Get all hiatuses, optionally only those with an end date."""
        query = "SELECT * FROM hiatuses"
        if with_expiry_only:
            query += " WHERE expires_at IS NOT NULL"
        query += " ORDER BY user_id"

        async with self.db.execute(query) as cursor:
            rows = await cursor.fetchall()
            return [self._row_to_hiatus(row) for row in rows]

    @_persistent
    async def delete_hiatus(self, user_id: int) -> None:
        """Delete the hiatus of a user, if any."""
        await self.db.execute("DELETE FROM hiatuses WHERE user_id = ?", (user_id,))
        await self.db.commit()

    # Configuration operations

    @_persistent
    async def get_config_value(self, key: str) -> str | None:
        """Get a raw configuration value."""
        async with self.db.execute(
            "SELECT value FROM configuration WHERE key = ?", (key,)
        ) as cursor:
            row = await cursor.fetchone()
            return row["value"] if row else None

    @_persistent
    async def set_config_value(self, key: str, value: str) -> None:
        """Set a raw configuration value."""
        await self.db.execute(
            """
            INSERT INTO configuration (key, value) VALUES (?, ?)
            ON CONFLICT (key) DO UPDATE SET value = excluded.value
            """,
            (key, value),
        )
        await self.db.commit()

    # Helper methods

    def _row_to_session(self, row: aiosqlite.Row) -> Session:
        """Convert a database row to a Session object."""
        participants = [
            Participant(user_id=p["user_id"], character_name=p["character_name"])
            for p in json.loads(row["participants"])
        ]
        return Session(
            channel_id=row["channel_id"],
            participants=participants,
            current_turn=Participant(
                user_id=row["current_user_id"],
                character_name=row["current_character_name"],
            ),
            last_advance_at=_load_dt(row["last_advance_at"]),
            status=TimestampStatus(row["status"]),
            hiatus_status=HiatusStatus(row["hiatus_status"]),
            created_at=_load_dt(row["created_at"]),
        )

    def _row_to_reminder(self, row: aiosqlite.Row) -> ReminderRecord:
        """Convert a database row to a ReminderRecord object."""
        return ReminderRecord(
            channel_id=row["channel_id"],
            user_id=row["user_id"],
            character_name=row["character_name"],
            due_at=_load_dt(row["due_at"]),  # type: ignore
            tier=row["tier"],
            hiatus_extended=bool(row["hiatus_extended"]),
        )

    def _row_to_hiatus(self, row: aiosqlite.Row) -> HiatusRecord:
        """Convert a database row to a HiatusRecord object."""
        return HiatusRecord(
            user_id=row["user_id"],
            reason=row["reason"],
            expires_at=_load_dt(row["expires_at"]),
            announcement_id=row["announcement_id"],
            created_at=_load_dt(row["created_at"]),
        )

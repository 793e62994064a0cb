"""Local snapshot cache and session → remote id links (aiosqlite)."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import aiosqlite

from scenario_tracker.config import settings
from scenario_tracker.logging import get_logger
from scenario_tracker.models import SessionSnapshot

logger = get_logger("services.snapshot")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SnapshotStore:
    """Persists each session's last known documents so a restart can skip the remote fetch."""

    def __init__(
        self,
        db_path: str,
        max_age_seconds: int | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.db_path = db_path
        self.max_age = timedelta(
            seconds=max_age_seconds if max_age_seconds is not None else settings.SNAPSHOT_MAX_AGE_SECONDS
        )
        self.clock = clock

    async def _get_db(self) -> aiosqlite.Connection:
        db = await aiosqlite.connect(self.db_path)
        db.row_factory = aiosqlite.Row
        return db

    async def save(self, session_id: str, remote_id: str | None, documents: dict[str, Any]) -> None:
        db = await self._get_db()
        try:
            await db.execute(
                """INSERT INTO session_snapshots (session_id, remote_id, documents, saved_at)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT(session_id) DO UPDATE SET
                       remote_id = excluded.remote_id,
                       documents = excluded.documents,
                       saved_at = excluded.saved_at""",
                (session_id, remote_id, json.dumps(documents, ensure_ascii=False), self.clock().isoformat()),
            )
            await db.commit()
        finally:
            await db.close()

    async def load(self, session_id: str) -> SessionSnapshot | None:
        """Return the cached snapshot, or None when missing, unreadable, or stale."""
        db = await self._get_db()
        try:
            cursor = await db.execute(
                "SELECT * FROM session_snapshots WHERE session_id = ?",
                (session_id,),
            )
            row = await cursor.fetchone()
        finally:
            await db.close()
        if not row:
            return None

        try:
            saved_at = datetime.fromisoformat(row["saved_at"])
            documents = json.loads(row["documents"] or "{}")
        except (TypeError, ValueError) as e:
            logger.warning(f"Discarding unreadable snapshot for session {session_id}: {e}")
            return None
        if saved_at.tzinfo is None:
            saved_at = saved_at.replace(tzinfo=timezone.utc)
        if self.clock() - saved_at > self.max_age:
            logger.info(f"Snapshot for session {session_id} is stale (saved {saved_at.isoformat()})")
            return None
        if not isinstance(documents, dict):
            return None

        return SessionSnapshot(
            session_id=session_id,
            remote_id=row["remote_id"],
            documents=documents,
            saved_at=saved_at,
        )

    # ── Remote links ──

    async def link_remote(self, session_id: str, remote_id: str) -> None:
        db = await self._get_db()
        try:
            await db.execute(
                """INSERT INTO session_remotes (session_id, remote_id, updated_at)
                   VALUES (?, ?, ?)
                   ON CONFLICT(session_id) DO UPDATE SET
                       remote_id = excluded.remote_id,
                       updated_at = excluded.updated_at""",
                (session_id, remote_id, self.clock().isoformat()),
            )
            await db.commit()
        finally:
            await db.close()

    async def remote_for(self, session_id: str) -> str | None:
        """The session's own link, else the most recently linked remote of any session."""
        db = await self._get_db()
        try:
            cursor = await db.execute(
                "SELECT remote_id FROM session_remotes WHERE session_id = ?",
                (session_id,),
            )
            row = await cursor.fetchone()
            if row:
                return row["remote_id"]
            cursor = await db.execute(
                "SELECT remote_id FROM session_remotes ORDER BY updated_at DESC LIMIT 1"
            )
            row = await cursor.fetchone()
            return row["remote_id"] if row else None
        finally:
            await db.close()

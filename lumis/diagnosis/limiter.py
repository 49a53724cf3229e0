"""ReleaseLimiter — per-day release counter via libsql."""

from __future__ import annotations

import logging
import zoneinfo
from datetime import datetime
from typing import TYPE_CHECKING

from lumis.config import settings
from lumis.db import get_connection

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS release_counts (
    day      TEXT PRIMARY KEY,
    releases INTEGER NOT NULL DEFAULT 0
)
"""


class ReleaseLimiter:
    """Caps how many releases can be submitted per local calendar day.

    Singleton accessed via ``ReleaseLimiter.get()``.  Pass an explicit
    *db_path* for test isolation.
    """

    _instance: ReleaseLimiter | None = None

    def __init__(
        self,
        db_path: Path | None = None,
        limit: int | None = None,
        timezone: str | None = None,
    ) -> None:
        self._db_path = db_path
        self.limit = settings.daily_release_limit if limit is None else limit
        self._tz = zoneinfo.ZoneInfo(timezone or settings.release_timezone)
        self._initialised = False

    @classmethod
    def get(cls) -> ReleaseLimiter:
        """Return the shared ReleaseLimiter instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    # -- Internal helpers ------------------------------------------------------

    def _today(self) -> str:
        return datetime.now(self._tz).date().isoformat()

    async def _connect(self):  # noqa: ANN201
        db = await get_connection(local_path_override=self._db_path)
        if not self._initialised:
            await db.execute(_CREATE_TABLE)
            await db.commit()
            self._initialised = True
        return db

    # -- Counter ---------------------------------------------------------------

    async def release_count(self) -> int:
        """Number of releases already used today."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT releases FROM release_counts WHERE day = ?", (self._today(),)
            )
            row = await cursor.fetchone()
            return int(row[0]) if row else 0
        finally:
            await db.close()

    async def remaining(self) -> int:
        return max(self.limit - await self.release_count(), 0)

    async def can_release(self) -> bool:
        return await self.release_count() < self.limit

    async def release(self) -> int:
        """Consume one release for today. Returns the new count."""
        day = self._today()
        db = await self._connect()
        try:
            await db.execute(
                """
                INSERT INTO release_counts (day, releases) VALUES (?, 1)
                ON CONFLICT(day) DO UPDATE SET releases = releases + 1
                """,
                (day,),
            )
            await db.commit()
            cursor = await db.execute(
                "SELECT releases FROM release_counts WHERE day = ?", (day,)
            )
            row = await cursor.fetchone()
            count = int(row[0]) if row else 0
            logger.info("Release %d/%d used for %s", count, self.limit, day)
            return count
        finally:
            await db.close()

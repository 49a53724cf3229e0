"""libsql connections for the journal and the release counter.

Calls into the blocking driver run on a worker thread. ``TURSO_DATABASE_URL``
selects a remote database; otherwise ``database_path`` is opened locally.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import libsql

if TYPE_CHECKING:
    from pathlib import Path

from lumis.config import settings


class _AsyncCursor:
    def __init__(self, cursor: Any) -> None:
        self._cursor = cursor

    async def fetchone(self) -> tuple | None:
        return await asyncio.to_thread(self._cursor.fetchone)

    async def fetchall(self) -> list[tuple]:
        return await asyncio.to_thread(self._cursor.fetchall)

    @property
    def rowcount(self) -> int:
        return self._cursor.rowcount


class _AsyncConnection:
    def __init__(self, conn: Any) -> None:
        self._conn = conn

    async def execute(self, sql: str, params: tuple = ()) -> _AsyncCursor:
        return _AsyncCursor(await asyncio.to_thread(self._conn.execute, sql, params))

    async def commit(self) -> None:
        await asyncio.to_thread(self._conn.commit)

    async def rollback(self) -> None:
        await asyncio.to_thread(self._conn.rollback)

    async def close(self) -> None:
        await asyncio.to_thread(self._conn.close)


def _open_local(path: Path) -> Any:
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = libsql.connect(str(path))
    for pragma in ("journal_mode=WAL", "busy_timeout=5000", "foreign_keys=ON"):
        conn.execute(f"PRAGMA {pragma}")
    return conn


def _open_remote(url: str, auth_token: str) -> Any:
    conn = libsql.connect(database=url, auth_token=auth_token)
    # Journal links rely on ON DELETE SET NULL.
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


async def get_connection(local_path_override: Path | None = None) -> _AsyncConnection:
    """Open a connection; *local_path_override* wins over any remote URL."""
    if local_path_override:
        conn = await asyncio.to_thread(_open_local, local_path_override)
    elif settings.turso_database_url:
        conn = await asyncio.to_thread(
            _open_remote, settings.turso_database_url, settings.turso_auth_token
        )
    else:
        conn = await asyncio.to_thread(_open_local, settings.database_path)
    return _AsyncConnection(conn)

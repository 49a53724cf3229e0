"""JournalStore — staged writes and lookups for diagnoses and cards via libsql."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from lumis.db import get_connection
from lumis.journal.records import EmotionCardRecord, EnergyDiagnosisRecord

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

_CREATE_DIAGNOSES = """
CREATE TABLE IF NOT EXISTS energy_diagnoses (
    id                TEXT PRIMARY KEY,
    timestamp         TEXT NOT NULL,
    detected_emotions TEXT NOT NULL,
    chakra_balance    TEXT NOT NULL,
    energy_state      TEXT NOT NULL
)
"""

_CREATE_CARDS = """
CREATE TABLE IF NOT EXISTS emotion_cards (
    id            TEXT PRIMARY KEY,
    timestamp     TEXT NOT NULL,
    raw_input     TEXT NOT NULL,
    response_text TEXT NOT NULL,
    quote         TEXT NOT NULL,
    diagnosis_id  TEXT REFERENCES energy_diagnoses(id) ON DELETE SET NULL
)
"""

Record = EnergyDiagnosisRecord | EmotionCardRecord


class JournalStore:
    """Persists diagnoses and cards in SQLite / Turso.

    Writes are staged with :meth:`insert` and flushed together by
    :meth:`save`, which either commits every staged record or none.

    Singleton accessed via ``JournalStore.get()``.  Pass an explicit
    *db_path* for test isolation (e.g. ``tmp_path / "test.db"``).
    """

    _instance: JournalStore | None = None

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path
        self._initialised = False
        self._pending: list[Record] = []

    @classmethod
    def get(cls) -> JournalStore:
        """Return the shared JournalStore instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    # -- Internal helpers ------------------------------------------------------

    async def _connect(self):  # noqa: ANN201
        db = await get_connection(local_path_override=self._db_path)
        if not self._initialised:
            await db.execute(_CREATE_DIAGNOSES)
            await db.execute(_CREATE_CARDS)
            await db.commit()
            self._initialised = True
        return db

    # -- Writes ----------------------------------------------------------------

    def insert(self, record: Record) -> None:
        """Stage a record for the next :meth:`save`."""
        self._pending.append(record)

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def save(self) -> int:
        """Write all staged records in one transaction. Returns the count.

        Diagnoses are written before cards so card links resolve. The
        staged list is cleared whether or not the commit succeeds.
        """
        pending, self._pending = self._pending, []
        if not pending:
            return 0

        diagnoses = [r for r in pending if isinstance(r, EnergyDiagnosisRecord)]
        cards = [r for r in pending if isinstance(r, EmotionCardRecord)]

        db = await self._connect()
        try:
            for diagnosis in diagnoses:
                await db.execute(
                    """
                    INSERT INTO energy_diagnoses
                        (id, timestamp, detected_emotions, chakra_balance, energy_state)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    diagnosis.to_row(),
                )
            for card in cards:
                await db.execute(
                    """
                    INSERT INTO emotion_cards
                        (id, timestamp, raw_input, response_text, quote, diagnosis_id)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    card.to_row(),
                )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        finally:
            await db.close()

        logger.info("Saved %d diagnosis and %d card record(s)", len(diagnoses), len(cards))
        return len(pending)

    # -- Reads -----------------------------------------------------------------

    async def get_diagnosis(self, record_id: str) -> EnergyDiagnosisRecord | None:
        """Fetch a diagnosis by ID, or None if not found."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT * FROM energy_diagnoses WHERE id = ?", (record_id,)
            )
            row = await cursor.fetchone()
            return EnergyDiagnosisRecord.from_row(row) if row else None
        finally:
            await db.close()

    async def get_card(self, record_id: str) -> EmotionCardRecord | None:
        """Fetch a card by ID, or None if not found."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT * FROM emotion_cards WHERE id = ?", (record_id,)
            )
            row = await cursor.fetchone()
            return EmotionCardRecord.from_row(row) if row else None
        finally:
            await db.close()

    async def list_cards(self, limit: int = 20) -> list[EmotionCardRecord]:
        """Return the most recent cards, newest first."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "SELECT * FROM emotion_cards ORDER BY timestamp DESC LIMIT ?", (limit,)
            )
            rows = await cursor.fetchall()
            return [EmotionCardRecord.from_row(row) for row in rows]
        finally:
            await db.close()

    # -- Deletes ---------------------------------------------------------------

    async def delete_diagnosis(self, record_id: str) -> bool:
        """Delete a diagnosis; cards that referenced it keep existing, unlinked."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "DELETE FROM energy_diagnoses WHERE id = ?", (record_id,)
            )
            await db.commit()
            deleted = cursor.rowcount > 0
            if deleted:
                logger.info("Deleted diagnosis: %s", record_id)
            return deleted
        finally:
            await db.close()

    async def delete_card(self, record_id: str) -> bool:
        """Delete a card. Its diagnosis is left in place."""
        db = await self._connect()
        try:
            cursor = await db.execute("DELETE FROM emotion_cards WHERE id = ?", (record_id,))
            await db.commit()
            deleted = cursor.rowcount > 0
            if deleted:
                logger.info("Deleted card: %s", record_id)
            return deleted
        finally:
            await db.close()

"""Persisted journal records: energy diagnoses and emotion cards."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime

from lumis.diagnosis.models import ChakraType, EnergyState


def make_record_id() -> str:
    """Generate a new record ID."""
    return uuid.uuid4().hex


def _now() -> str:
    return datetime.now(UTC).isoformat()


@dataclass
class EnergyDiagnosisRecord:
    """A stored diagnosis.

    Attributes:
        id: Unique identifier (UUID hex).
        timestamp: ISO 8601 creation time.
        detected_emotions: Emotions in the order the model listed them.
        chakra_balance: Strength per chakra; only known chakras are kept.
        energy_state: Overall energy state.
    """

    detected_emotions: list[str] = field(default_factory=list)
    chakra_balance: dict[ChakraType, float] = field(default_factory=dict)
    energy_state: EnergyState = EnergyState.BALANCED
    id: str = field(default_factory=make_record_id)
    timestamp: str = field(default_factory=_now)

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``energy_diagnoses`` column order."""
        return (
            self.id,
            self.timestamp,
            json.dumps(self.detected_emotions, ensure_ascii=False),
            json.dumps({k.value: v for k, v in self.chakra_balance.items()}),
            self.energy_state.value,
        )

    @classmethod
    def from_row(cls, row: tuple) -> EnergyDiagnosisRecord:
        return cls(
            id=row[0],
            timestamp=row[1],
            detected_emotions=json.loads(row[2]),
            chakra_balance={ChakraType(k): float(v) for k, v in json.loads(row[3]).items()},
            energy_state=EnergyState.parse(row[4]),
        )


@dataclass
class EmotionCardRecord:
    """A stored affirmation card.

    ``diagnosis_id`` points at the diagnosis produced by the same release.
    It becomes None when that diagnosis is deleted; deleting either side
    never removes the other.
    """

    raw_input: str
    response_text: str
    quote: str
    diagnosis_id: str | None = None
    id: str = field(default_factory=make_record_id)
    timestamp: str = field(default_factory=_now)

    def link(self, diagnosis: EnergyDiagnosisRecord) -> None:
        self.diagnosis_id = diagnosis.id

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``emotion_cards`` column order."""
        return (
            self.id,
            self.timestamp,
            self.raw_input,
            self.response_text,
            self.quote,
            self.diagnosis_id,
        )

    @classmethod
    def from_row(cls, row: tuple) -> EmotionCardRecord:
        return cls(
            id=row[0],
            timestamp=row[1],
            raw_input=row[2],
            response_text=row[3],
            quote=row[4],
            diagnosis_id=row[5],
        )

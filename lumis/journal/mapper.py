"""Turn a finished release into stored journal records."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from lumis.diagnosis.models import ChakraType
from lumis.diagnosis.orchestrator import Phase
from lumis.journal.records import EmotionCardRecord, EnergyDiagnosisRecord

if TYPE_CHECKING:
    from lumis.diagnosis.models import CardResult, DiagnosisResult
    from lumis.diagnosis.orchestrator import DiagnosisState, StateListener
    from lumis.journal.store import JournalStore

logger = logging.getLogger(__name__)


def map_chakra_balance(raw: dict[str, float]) -> dict[ChakraType, float]:
    """Keep the known chakra keys with their values; drop everything else."""
    mapped: dict[ChakraType, float] = {}
    for key, value in raw.items():
        chakra = ChakraType.from_key(key)
        if chakra is None:
            logger.debug("Dropping unknown chakra key %r", key)
            continue
        mapped[chakra] = value
    return mapped


def build_records(
    diagnosis: DiagnosisResult,
    card: CardResult,
    raw_input: str,
) -> tuple[EnergyDiagnosisRecord, EmotionCardRecord]:
    """Create a linked diagnosis/card pair with fresh IDs."""
    diagnosis_record = EnergyDiagnosisRecord(
        detected_emotions=list(diagnosis.detected_emotions),
        chakra_balance=map_chakra_balance(diagnosis.chakra_balance),
        energy_state=diagnosis.energy_state,
    )
    card_record = EmotionCardRecord(
        raw_input=raw_input,
        response_text=card.response,
        quote=card.quote,
    )
    card_record.link(diagnosis_record)
    return diagnosis_record, card_record


async def persist_release(
    store: JournalStore,
    diagnosis: DiagnosisResult,
    card: CardResult,
    raw_input: str,
) -> tuple[EnergyDiagnosisRecord, EmotionCardRecord] | None:
    """Store one release. Best-effort: failures are logged, never raised.

    Returns the saved records, or None if the write failed.
    """
    try:
        diagnosis_record, card_record = build_records(diagnosis, card, raw_input)
        store.insert(diagnosis_record)
        store.insert(card_record)
        await store.save()
    except Exception:
        logger.exception("Failed to persist release (non-fatal)")
        return None
    return diagnosis_record, card_record


def card_ready_listener(store: JournalStore) -> StateListener:
    """Build a state listener that persists each release once its card is ready."""

    async def _on_state(state: DiagnosisState) -> None:
        if state.phase != Phase.CARD_READY or state.diagnosis is None or state.card is None:
            return
        await persist_release(store, state.diagnosis, state.card, state.raw_input)

    return _on_state

"""Lumis command-line entry point.

Usage examples:
    # Release a feeling and get a card
    lumis release "I feel anxious and tense"

    # How many releases are left today
    lumis count

    # Recent cards
    lumis history --limit 5
"""

import argparse
import asyncio
import logging
import sys

from lumis.config import settings
from lumis.diagnosis.limiter import ReleaseLimiter
from lumis.diagnosis.orchestrator import (
    DiagnosisOrchestrator,
    DiagnosisState,
    Phase,
    ReleaseLimitReached,
)
from lumis.journal.mapper import card_ready_listener
from lumis.journal.store import JournalStore
from lumis.llm.client import close_client

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level),
)
logger = logging.getLogger(__name__)


def format_state(state: DiagnosisState) -> str | None:
    """Render a terminal snapshot for the console. Non-terminal → None."""
    if state.phase == Phase.CARD_READY and state.card and state.diagnosis:
        emotions = ", ".join(state.diagnosis.detected_emotions) or "-"
        return (
            f"{state.card.response}\n\n"
            f"  “{state.card.quote}”\n\n"
            f"Emotions: {emotions}\n"
            f"Energy: {state.diagnosis.energy_state}"
        )
    if state.phase == Phase.INVALID_INPUT:
        return "That doesn't read like a feeling yet. Try writing what you feel and release again."
    if state.is_terminal:
        return state.error_message or "Something went wrong."
    return None


async def _release(text: str) -> int:
    limiter = ReleaseLimiter.get()
    orchestrator = DiagnosisOrchestrator(limiter=limiter)
    orchestrator.subscribe(card_ready_listener(JournalStore.get()))
    try:
        state = await orchestrator.run(text)
    except ReleaseLimitReached:
        print(
            f"Today's {limiter.limit} releases are used up. Rest, and come back tomorrow.",
            file=sys.stderr,
        )
        return 1
    finally:
        await close_client()

    message = format_state(state)
    if message is None:
        print("Nothing to release.", file=sys.stderr)
        return 1
    print(message)
    return 0 if state.phase == Phase.CARD_READY else 1


async def _count() -> int:
    limiter = ReleaseLimiter.get()
    print(f"Released {await limiter.release_count()}/{limiter.limit} today")
    return 0


async def _history(limit: int) -> int:
    store = JournalStore.get()
    cards = await store.list_cards(limit=limit)
    if not cards:
        print("No cards yet.")
        return 0
    for card in cards:
        diagnosis = await store.get_diagnosis(card.diagnosis_id) if card.diagnosis_id else None
        state = diagnosis.energy_state if diagnosis else "-"
        print(f"[{card.timestamp[:16]}] ({state}) {card.response_text}")
        print(f"    “{card.quote}”")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lumis", description="Emotional release journal")
    sub = parser.add_subparsers(dest="command", required=True)

    release = sub.add_parser("release", help="Release a feeling and receive a card")
    release.add_argument("text", nargs="+", help="What you feel")

    sub.add_parser("count", help="Show today's release count")

    history = sub.add_parser("history", help="List recent cards")
    history.add_argument("--limit", type=int, default=10)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Parse arguments and run the chosen command."""
    args = build_parser().parse_args(argv)
    if args.command == "release":
        return asyncio.run(_release(" ".join(args.text)))
    if args.command == "count":
        return asyncio.run(_count())
    return asyncio.run(_history(args.limit))


if __name__ == "__main__":
    sys.exit(main())

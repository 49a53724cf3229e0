"""Two-stage diagnosis → card pipeline with observable state.

``submit()`` starts one chain as an asyncio task:

1. Stage-1 sends the diagnosis prompt plus the user's text.
2. Only a valid diagnosis triggers Stage-2, which sends the card prompt
   plus the *same* user message (the diagnosis is not forwarded).

Each transition replaces the current :class:`DiagnosisState` with a new
immutable snapshot and hands it to every subscriber, so observers never
see a half-applied update. Submits are serialised: a new ``submit()``
cancels the chain still in flight, and a cancelled or superseded chain
publishes nothing further. A chain detaches itself before publishing its
terminal snapshot, so listeners handling that snapshot (e.g. the journal
writer) run to completion even if the user submits again meanwhile.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import asdict, dataclass, replace
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

from lumis.diagnosis.parser import (
    DecodeError,
    InvalidInputSignal,
    parse_card,
    parse_diagnosis,
)
from lumis.llm import client
from lumis.llm.messages import Role, SendMessage
from lumis.llm.prompts import card_prompt, diagnosis_prompt

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from lumis.diagnosis.models import CardResult, DiagnosisResult
    from lumis.llm.client import APIResult
    from lumis.llm.messages import ChatCompletionResponse

    Transport = Callable[[list[SendMessage]], Awaitable[APIResult[ChatCompletionResponse]]]
    StateListener = Callable[["DiagnosisState"], Awaitable[None]]

logger = logging.getLogger(__name__)

PARSE_ERROR_MESSAGE = "Could not read the response"


class Phase(StrEnum):
    IDLE = "idle"
    AWAITING_DIAGNOSIS = "awaiting_diagnosis"
    INVALID_INPUT = "invalid_input"
    DIAGNOSIS_FAILED = "diagnosis_failed"
    AWAITING_CARD = "awaiting_card"
    CARD_FAILED = "card_failed"
    CARD_READY = "card_ready"


TERMINAL_PHASES = frozenset(
    {Phase.INVALID_INPUT, Phase.DIAGNOSIS_FAILED, Phase.CARD_FAILED, Phase.CARD_READY}
)


@dataclass(frozen=True)
class DiagnosisState:
    """One atomic snapshot of everything a front end renders."""

    phase: Phase = Phase.IDLE
    loading: bool = False
    invalid_input_notice: bool = False
    show_card: bool = False
    error_message: str | None = None
    diagnosis: DiagnosisResult | None = None
    card: CardResult | None = None
    raw_input: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES


class RateLimiter(Protocol):
    """Daily release counter consulted before every submit."""

    async def can_release(self) -> bool: ...

    async def release(self) -> int: ...


class ReleaseLimitReached(Exception):
    """No releases left for today."""


class DiagnosisOrchestrator:
    """Drives the diagnosis and card calls for one front end."""

    def __init__(
        self,
        limiter: RateLimiter | None = None,
        transport: Transport | None = None,
    ) -> None:
        self._limiter = limiter
        self._transport = transport
        self._state = DiagnosisState()
        self._listeners: list[StateListener] = []
        self._task: asyncio.Task[DiagnosisState] | None = None
        self._generation = 0
        self._lock = asyncio.Lock()

    @property
    def state(self) -> DiagnosisState:
        return self._state

    # -- Subscription ----------------------------------------------------------

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register *listener* for every new snapshot. Returns an unsubscribe."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def _publish(self, **changes: object) -> DiagnosisState:
        snapshot = self._state = replace(self._state, **changes)
        logger.debug("State → %s (loading=%s)", snapshot.phase, snapshot.loading)
        for listener in list(self._listeners):
            try:
                await listener(snapshot)
            except Exception:
                logger.exception("State listener failed")
        return snapshot

    async def _advance(self, generation: int, **changes: object) -> DiagnosisState:
        """Publish on behalf of chain *generation*.

        A superseded chain changes nothing. A terminal snapshot drops the
        chain from ``_task`` first, so ``cancel()`` leaves its listeners be.
        """
        if generation != self._generation:
            return self._state
        if changes.get("phase") in TERMINAL_PHASES and self._task is asyncio.current_task():
            self._task = None
        return await self._publish(**changes)

    # -- Commands --------------------------------------------------------------

    async def submit(self, raw_text: str) -> asyncio.Task[DiagnosisState] | None:
        """Start a new diagnosis chain for *raw_text*.

        Returns the running task, or None for blank input.

        Raises:
            ReleaseLimitReached: the limiter refused; nothing is sent.
        """
        if not raw_text.strip():
            return None

        async with self._lock:
            if self._limiter is not None:
                if not await self._limiter.can_release():
                    logger.info("Release refused: daily limit reached")
                    msg = "No releases left today"
                    raise ReleaseLimitReached(msg)
                await self._limiter.release()

            await self.cancel()
            self._generation += 1
            generation = self._generation
            await self._publish(
                phase=Phase.AWAITING_DIAGNOSIS,
                loading=True,
                invalid_input_notice=False,
                show_card=False,
                error_message=None,
                diagnosis=None,
                card=None,
                raw_input=raw_text,
            )
            self._task = asyncio.create_task(self._run_chain(raw_text, generation))
            return self._task

    async def run(self, raw_text: str) -> DiagnosisState:
        """Submit and wait for the chain to finish."""
        task = await self.submit(raw_text)
        if task is None:
            return self._state
        return await task

    async def cancel(self) -> None:
        """Cancel the chain in flight, if any."""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Cancelled superseded diagnosis chain")

    async def reset(self) -> None:
        """Drop back to idle, e.g. after the user dismisses a card or notice."""
        async with self._lock:
            await self.cancel()
            self._generation += 1
            await self._publish(**asdict(DiagnosisState()))

    # -- Pipeline --------------------------------------------------------------

    async def _complete(
        self, messages: list[SendMessage]
    ) -> APIResult[ChatCompletionResponse]:
        if self._transport is not None:
            return await self._transport(messages)
        return await client.complete(messages)

    async def _run_chain(self, raw_text: str, generation: int) -> DiagnosisState:
        user_message = SendMessage(role=Role.USER, content=raw_text)

        result = await self._complete(
            [SendMessage(role=Role.SYSTEM, content=diagnosis_prompt()), user_message]
        )
        if not result.success:
            return await self._advance(
                generation,
                phase=Phase.DIAGNOSIS_FAILED,
                loading=False,
                error_message=f"Error: {result.error}",
            )

        try:
            diagnosis = parse_diagnosis(result.value)
        except InvalidInputSignal:
            return await self._advance(
                generation,
                phase=Phase.INVALID_INPUT,
                loading=False,
                invalid_input_notice=True,
            )
        except DecodeError:
            logger.warning("Diagnosis response could not be decoded")
            return await self._advance(
                generation,
                phase=Phase.DIAGNOSIS_FAILED,
                loading=False,
                error_message=PARSE_ERROR_MESSAGE,
                invalid_input_notice=True,
            )

        await self._advance(
            generation,
            phase=Phase.AWAITING_CARD,
            diagnosis=diagnosis,
            error_message=None,
            invalid_input_notice=False,
        )
        if generation != self._generation:
            return self._state

        result = await self._complete(
            [SendMessage(role=Role.SYSTEM, content=card_prompt()), user_message]
        )
        if not result.success:
            return await self._advance(
                generation,
                phase=Phase.CARD_FAILED,
                loading=False,
                error_message=f"Error: {result.error}",
            )

        try:
            card = parse_card(result.value)
        except DecodeError:
            logger.warning("Card response could not be decoded")
            return await self._advance(
                generation,
                phase=Phase.CARD_FAILED,
                loading=False,
                error_message=PARSE_ERROR_MESSAGE,
            )

        logger.info(
            "Card ready: emotions=%s state=%s",
            ", ".join(diagnosis.detected_emotions),
            diagnosis.energy_state,
        )
        return await self._advance(
            generation,
            phase=Phase.CARD_READY,
            loading=False,
            card=card,
            show_card=True,
            invalid_input_notice=False,
        )

"""Tests for the two-stage DiagnosisOrchestrator."""

import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from lumis.diagnosis.models import EnergyState
from lumis.diagnosis.orchestrator import (
    PARSE_ERROR_MESSAGE,
    DiagnosisOrchestrator,
    DiagnosisState,
    Phase,
    ReleaseLimitReached,
)
from lumis.llm.client import APIResult, TransportError
from lumis.llm.messages import ChatCompletionResponse, Role, SendMessage
from lumis.llm.prompts import DEFAULT_CARD_PROMPT, DEFAULT_DIAGNOSIS_PROMPT

DIAGNOSIS_JSON = (
    '{"detectedEmotions":["anxious","tense"],'
    '"chakraBalance":{"heart":0.3},"energyState":"blocked"}'
)
CARD_JSON = '{"response":"Breathe deeply.","quote":"This too shall pass."}'


# -- Helpers -------------------------------------------------------------------


def _ok(content: str | None) -> APIResult[ChatCompletionResponse]:
    return APIResult(
        value=ChatCompletionResponse.model_validate(
            {"choices": [{"message": {"role": "assistant", "content": content}}]}
        )
    )


def _fail(message: str = "boom") -> APIResult[ChatCompletionResponse]:
    return APIResult(error=TransportError(message))


class FakeLimiter:
    """In-memory limiter for testing."""

    def __init__(self, allowed: bool = True) -> None:
        self.allowed = allowed
        self.released = 0

    async def can_release(self) -> bool:
        return self.allowed

    async def release(self) -> int:
        self.released += 1
        return self.released


@pytest.fixture(autouse=True)
def _default_prompts(tmp_path, monkeypatch) -> None:
    monkeypatch.setattr("lumis.config.settings.prompts_dir", tmp_path / "no-prompts")


def _orchestrator(*results, limiter=None):
    transport = AsyncMock(side_effect=list(results))
    return DiagnosisOrchestrator(limiter=limiter, transport=transport), transport


def _record(orchestrator: DiagnosisOrchestrator) -> list[DiagnosisState]:
    seen: list[DiagnosisState] = []

    async def listener(state: DiagnosisState) -> None:
        seen.append(state)

    orchestrator.subscribe(listener)
    return seen


# -- Happy path ----------------------------------------------------------------


async def test_valid_chain_produces_card() -> None:
    orch, transport = _orchestrator(_ok(DIAGNOSIS_JSON), _ok(CARD_JSON))

    state = await orch.run("I feel anxious and tense")

    assert state.phase is Phase.CARD_READY
    assert state.loading is False
    assert state.show_card is True
    assert state.invalid_input_notice is False
    assert state.error_message is None
    assert state.diagnosis is not None
    assert state.diagnosis.detected_emotions == ["anxious", "tense"]
    assert state.diagnosis.chakra_balance == {"heart": 0.3}
    assert state.diagnosis.energy_state is EnergyState.BLOCKED
    assert state.card is not None
    assert state.card.response == "Breathe deeply."
    assert state.raw_input == "I feel anxious and tense"
    assert transport.await_count == 2


async def test_both_stages_send_the_user_text() -> None:
    orch, transport = _orchestrator(_ok(DIAGNOSIS_JSON), _ok(CARD_JSON))

    await orch.run("I feel anxious and tense")

    user = SendMessage(role=Role.USER, content="I feel anxious and tense")
    first = transport.await_args_list[0].args[0]
    second = transport.await_args_list[1].args[0]
    assert first == [SendMessage(role=Role.SYSTEM, content=DEFAULT_DIAGNOSIS_PROMPT), user]
    assert second == [SendMessage(role=Role.SYSTEM, content=DEFAULT_CARD_PROMPT), user]


async def test_snapshots_published_in_order() -> None:
    orch, _ = _orchestrator(_ok(DIAGNOSIS_JSON), _ok(CARD_JSON))
    seen = _record(orch)

    await orch.run("I feel anxious and tense")

    assert [s.phase for s in seen] == [
        Phase.AWAITING_DIAGNOSIS,
        Phase.AWAITING_CARD,
        Phase.CARD_READY,
    ]
    assert [s.loading for s in seen] == [True, True, False]
    assert not any(s.show_card and s.loading for s in seen)


async def test_submit_clears_previous_card() -> None:
    orch, _ = _orchestrator(_ok(DIAGNOSIS_JSON), _ok(CARD_JSON), _fail())
    await orch.run("first")
    seen = _record(orch)

    await orch.run("second")

    assert seen[0].phase is Phase.AWAITING_DIAGNOSIS
    assert seen[0].card is None
    assert seen[0].show_card is False
    assert seen[0].diagnosis is None


# -- Stage-1 outcomes ----------------------------------------------------------


async def test_invalid_marker_skips_card_call() -> None:
    orch, transport = _orchestrator(_ok("INVALID_INPUT"))

    state = await orch.run("asdfgh")

    assert state.phase is Phase.INVALID_INPUT
    assert state.invalid_input_notice is True
    assert state.loading is False
    assert state.error_message is None
    assert transport.await_count == 1


async def test_stage1_decode_failure() -> None:
    orch, transport = _orchestrator(_ok("not json at all"))

    state = await orch.run("I feel odd")

    assert state.phase is Phase.DIAGNOSIS_FAILED
    assert state.error_message == PARSE_ERROR_MESSAGE
    assert state.invalid_input_notice is True
    assert state.loading is False
    assert transport.await_count == 1


async def test_stage1_transport_failure_clears_loading() -> None:
    orch, transport = _orchestrator(_fail("API returned 500: oops"))

    state = await orch.run("I feel odd")

    assert state.phase is Phase.DIAGNOSIS_FAILED
    assert state.error_message == "Error: API returned 500: oops"
    assert state.loading is False
    assert state.invalid_input_notice is False
    assert transport.await_count == 1


async def test_stage1_null_content_is_decode_failure() -> None:
    orch, transport = _orchestrator(_ok(None))

    state = await orch.run("I feel odd")

    assert state.phase is Phase.DIAGNOSIS_FAILED
    assert state.error_message == PARSE_ERROR_MESSAGE
    assert state.invalid_input_notice is True
    assert transport.await_count == 1


async def test_network_error_message_from_client() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    mock_client = httpx.AsyncClient(
        base_url="https://ark.example.com", transport=httpx.MockTransport(handler)
    )
    orch = DiagnosisOrchestrator()

    with patch("lumis.llm.client._get_client", return_value=mock_client):
        state = await orch.run("I feel odd")

    assert state.phase is Phase.DIAGNOSIS_FAILED
    assert state.error_message == "Error: Request failed: connection refused"
    assert state.invalid_input_notice is False


# -- Stage-2 outcomes ----------------------------------------------------------


async def test_stage2_transport_failure_keeps_diagnosis() -> None:
    orch, _ = _orchestrator(_ok(DIAGNOSIS_JSON), _fail())

    state = await orch.run("I feel anxious and tense")

    assert state.phase is Phase.CARD_FAILED
    assert state.error_message == "Error: boom"
    assert state.loading is False
    assert state.show_card is False
    assert state.diagnosis is not None
    assert state.card is None


async def test_stage2_decode_failure() -> None:
    orch, _ = _orchestrator(_ok(DIAGNOSIS_JSON), _ok('{"response":"only half"}'))

    state = await orch.run("I feel anxious and tense")

    assert state.phase is Phase.CARD_FAILED
    assert state.error_message == PARSE_ERROR_MESSAGE
    assert state.show_card is False


# -- Rate limiting -------------------------------------------------------------


async def test_rate_limited_submit_never_calls_transport() -> None:
    limiter = FakeLimiter(allowed=False)
    orch, transport = _orchestrator(_ok(DIAGNOSIS_JSON), limiter=limiter)
    seen = _record(orch)

    with pytest.raises(ReleaseLimitReached):
        await orch.submit("I feel anxious")

    transport.assert_not_awaited()
    assert limiter.released == 0
    assert seen == []
    assert orch.state.phase is Phase.IDLE


async def test_allowed_submit_consumes_release() -> None:
    limiter = FakeLimiter()
    orch, _ = _orchestrator(_ok(DIAGNOSIS_JSON), _ok(CARD_JSON), limiter=limiter)

    await orch.run("I feel anxious")

    assert limiter.released == 1


async def test_blank_input_is_ignored() -> None:
    limiter = FakeLimiter()
    orch, transport = _orchestrator(limiter=limiter)

    assert await orch.submit("   \n") is None
    transport.assert_not_awaited()
    assert limiter.released == 0


# -- Cancellation --------------------------------------------------------------


async def test_new_submit_cancels_chain_in_flight() -> None:
    gate = asyncio.Event()
    calls: list[str] = []

    async def transport(messages):
        calls.append(messages[-1].content)
        if messages[-1].content == "first":
            await gate.wait()
        if messages[0].content == DEFAULT_DIAGNOSIS_PROMPT:
            return _ok(DIAGNOSIS_JSON)
        return _ok(CARD_JSON)

    orch = DiagnosisOrchestrator(transport=transport)
    first = await orch.submit("first")
    await asyncio.sleep(0)
    seen = _record(orch)

    second = await orch.submit("second")
    state = await second

    assert first.cancelled()
    assert calls == ["first", "second", "second"]
    assert state.phase is Phase.CARD_READY
    assert state.raw_input == "second"
    assert all(s.raw_input == "second" for s in seen)


async def test_cancel_without_chain_is_noop() -> None:
    orch, _ = _orchestrator()
    await orch.cancel()
    assert orch.state.phase is Phase.IDLE


async def test_second_submit_lets_card_ready_listeners_finish() -> None:
    orch, _ = _orchestrator(
        _ok(DIAGNOSIS_JSON), _ok(CARD_JSON), _ok(DIAGNOSIS_JSON), _ok(CARD_JSON)
    )
    card_shown = asyncio.Event()
    saved: list[str] = []

    async def slow_writer(state: DiagnosisState) -> None:
        if state.phase is not Phase.CARD_READY:
            return
        card_shown.set()
        await asyncio.sleep(0.05)
        saved.append(state.raw_input)

    orch.subscribe(slow_writer)
    first = await orch.submit("first")
    await card_shown.wait()

    second = await orch.submit("second")
    second_state = await second
    first_state = await first

    assert not first.cancelled()
    assert first_state.raw_input == "first"
    assert second_state.raw_input == "second"
    assert sorted(saved) == ["first", "second"]


async def test_overlapping_submits_run_only_the_latest() -> None:
    calls: list[str] = []

    async def transport(messages):
        calls.append(messages[-1].content)
        if messages[0].content == DEFAULT_DIAGNOSIS_PROMPT:
            return _ok(DIAGNOSIS_JSON)
        return _ok(CARD_JSON)

    async def yielding(state: DiagnosisState) -> None:
        await asyncio.sleep(0)

    orch = DiagnosisOrchestrator(transport=transport)
    orch.subscribe(yielding)
    seen = _record(orch)

    first, second = await asyncio.gather(orch.submit("A"), orch.submit("B"))
    state = await second

    assert first.cancelled()
    assert state.phase is Phase.CARD_READY
    assert state.raw_input == "B"
    assert calls.count("A") <= 1
    assert calls.count("B") == 2
    assert [s.raw_input for s in seen if s.phase is Phase.CARD_READY] == ["B"]


async def test_overlapping_submits_each_consume_a_release() -> None:
    limiter = FakeLimiter()
    orch, _ = _orchestrator(_ok(DIAGNOSIS_JSON), _ok(CARD_JSON), limiter=limiter)

    first, second = await asyncio.gather(orch.submit("A"), orch.submit("B"))
    await second

    assert limiter.released == 2
    assert first.cancelled()


# -- Subscription --------------------------------------------------------------


async def test_failing_listener_does_not_break_chain() -> None:
    orch, _ = _orchestrator(_ok(DIAGNOSIS_JSON), _ok(CARD_JSON))

    async def broken(state: DiagnosisState) -> None:
        raise RuntimeError("listener bug")

    orch.subscribe(broken)
    seen = _record(orch)

    state = await orch.run("I feel anxious")

    assert state.phase is Phase.CARD_READY
    assert len(seen) == 3


async def test_unsubscribe_stops_delivery() -> None:
    orch, _ = _orchestrator(_ok("INVALID_INPUT"))
    seen: list[DiagnosisState] = []

    async def listener(state: DiagnosisState) -> None:
        seen.append(state)

    unsubscribe = orch.subscribe(listener)
    unsubscribe()
    await orch.run("zzz")

    assert seen == []


async def test_reset_returns_to_idle() -> None:
    orch, _ = _orchestrator(_ok("INVALID_INPUT"))
    await orch.run("zzz")
    assert orch.state.invalid_input_notice is True

    await orch.reset()

    assert orch.state == DiagnosisState()

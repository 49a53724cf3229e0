"""Async HTTP client for the chat-completion API.

Every call returns an :class:`APIResult`. Network failures, non-2xx
statuses and undecodable bodies become an error result; nothing raises
past :func:`send` except task cancellation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Generic, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from lumis.config import settings
from lumis.llm.messages import ChatCompletionRequest, ChatCompletionResponse

if TYPE_CHECKING:
    from lumis.llm.messages import SendMessage

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

_client: httpx.AsyncClient | None = None


class TransportError(Exception):
    """Network, HTTP status, or envelope decode failure."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class APIResult(Generic[T]):
    """Outcome of a transport call: either ``value`` or ``error`` is set."""

    value: T | None = None
    error: TransportError | None = None

    @property
    def success(self) -> bool:
        return self.error is None


def _get_client() -> httpx.AsyncClient:
    """Lazily initialize the shared HTTP client."""
    global _client  # noqa: PLW0603
    if _client is None or _client.is_closed:
        _client = httpx.AsyncClient(
            base_url=settings.ark_base_url,
            headers={"Authorization": f"Bearer {settings.ark_api_key}"},
            timeout=settings.request_timeout_seconds,
        )
    return _client


async def close_client() -> None:
    """Close the shared client (called on shutdown)."""
    global _client  # noqa: PLW0603
    if _client is not None and not _client.is_closed:
        await _client.aclose()
    _client = None


async def send(
    endpoint: str,
    method: str,
    payload: dict[str, Any] | None,
    response_model: type[T],
) -> APIResult[T]:
    """Execute one request and decode the JSON body into *response_model*."""
    client = _get_client()
    try:
        resp = await client.request(method, endpoint, json=payload)
    except httpx.HTTPError as exc:
        logger.exception("%s %s failed (network error)", method, endpoint)
        return APIResult(error=TransportError(f"Request failed: {exc}"))

    if not resp.is_success:
        logger.error(
            "%s %s failed: status=%d body=%s",
            method,
            endpoint,
            resp.status_code,
            resp.text[:200],
        )
        return APIResult(
            error=TransportError(
                f"API returned {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
            )
        )

    try:
        value = response_model.model_validate(resp.json())
    except (ValueError, ValidationError) as exc:
        logger.warning("Could not decode %s response: %s", response_model.__name__, exc)
        return APIResult(error=TransportError(f"Could not decode response: {exc}"))

    return APIResult(value=value)


async def complete(
    messages: list[SendMessage],
    *,
    model: str | None = None,
) -> APIResult[ChatCompletionResponse]:
    """Single non-streaming chat completion against the configured endpoint."""
    request = ChatCompletionRequest(model=model or settings.chat_model, messages=messages)
    logger.debug("Chat completion: %d message(s) → %s", len(messages), request.model)
    return await send(
        settings.chat_completions_path,
        "POST",
        request.to_payload(),
        ChatCompletionResponse,
    )

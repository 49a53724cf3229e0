"""Decode assistant text into DiagnosisResult / CardResult."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from lumis.diagnosis.models import CardResult, DiagnosisResult
from lumis.llm.prompts import INVALID_INPUT_MARKER

if TYPE_CHECKING:
    from lumis.llm.messages import ChatCompletionResponse

logger = logging.getLogger(__name__)


class DecodeError(Exception):
    """The assistant payload could not be decoded into the expected shape."""


class InvalidInputSignal(Exception):
    """The model flagged the user's text as unusable for a diagnosis."""


def _load_json_object(text: str) -> dict[str, Any]:
    """Parse a JSON object, tolerating markdown fences and surrounding prose."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        start = text.find("{")
        end = text.rfind("}") + 1
        if start < 0 or end <= start:
            msg = "No JSON object in response"
            raise DecodeError(msg) from None
        try:
            data = json.loads(text[start:end])
        except json.JSONDecodeError as exc:
            msg = f"Malformed JSON in response: {exc}"
            raise DecodeError(msg) from exc

    if not isinstance(data, dict):
        msg = f"Expected a JSON object, got {type(data).__name__}"
        raise DecodeError(msg)
    return data


def _first_content(response: ChatCompletionResponse) -> str:
    if not response.choices:
        msg = "Response contained no choices"
        raise DecodeError(msg)
    content = response.first_content()
    if content is None:
        msg = "Response contained no content"
        raise DecodeError(msg)
    return content


def _unfenced(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped.removeprefix("```").lstrip()
        if stripped.lower().startswith("json"):
            stripped = stripped[4:]
    return stripped.strip()


def is_invalid_input(text: str) -> bool:
    """True when the model answered with the invalid-input marker.

    A JSON object is always a diagnosis attempt, even if one of its values
    happens to contain the marker text.
    """
    if _unfenced(text).startswith("{"):
        return False
    return INVALID_INPUT_MARKER.lower() in text.lower()


def parse_diagnosis(response: ChatCompletionResponse) -> DiagnosisResult:
    """Decode the Stage-1 answer.

    Raises:
        InvalidInputSignal: the model returned the invalid-input marker.
        DecodeError: the payload is not a well-formed diagnosis.
    """
    text = _first_content(response)
    if is_invalid_input(text):
        logger.info("Model rejected input as not usable for diagnosis")
        raise InvalidInputSignal(text.strip())

    data = _load_json_object(text)
    try:
        return DiagnosisResult.model_validate(data)
    except ValidationError as exc:
        logger.warning("Diagnosis payload failed validation: %s", exc)
        msg = "Diagnosis payload has the wrong shape"
        raise DecodeError(msg) from exc


def parse_card(response: ChatCompletionResponse) -> CardResult:
    """Decode the Stage-2 answer. Raises DecodeError on any mismatch."""
    data = _load_json_object(_first_content(response))
    try:
        return CardResult.model_validate(data)
    except ValidationError as exc:
        logger.warning("Card payload failed validation: %s", exc)
        msg = "Card payload has the wrong shape"
        raise DecodeError(msg) from exc

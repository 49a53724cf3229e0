"""System prompts for the diagnosis and card calls.

Both prompts can be overridden by dropping ``DIAGNOSIS.md`` / ``CARD.md``
into ``settings.prompts_dir``.
"""

import logging

from lumis.config import settings

logger = logging.getLogger(__name__)

INVALID_INPUT_MARKER = "INVALID_INPUT"

DEFAULT_DIAGNOSIS_PROMPT = f"""\
You are an energy reader for an emotional release journal.
Read the user's writing and describe the emotions in it.

If the text is not an expression of feelings (gibberish, a question for
you, code, an advertisement, an empty greeting), reply with exactly:
{INVALID_INPUT_MARKER}

Otherwise reply with JSON only, no markdown:
{{
  "detectedEmotions": ["emotion", "..."],
  "chakraBalance": {{"root": 0.0, "sacral": 0.0, "solar_plexus": 0.0,
                     "heart": 0.0, "throat": 0.0, "third_eye": 0.0,
                     "crown": 0.0}},
  "energyState": "balanced" | "blocked" | "overactive" | "depleted" | "scattered"
}}
Chakra values range from 0.0 (closed) to 1.0 (fully open).
"""

DEFAULT_CARD_PROMPT = """\
You write a small affirmation card for someone who has just released a
difficult feeling. Be warm and brief; speak directly to them.

Reply with JSON only, no markdown:
{
  "response": "one or two sentences responding to what they wrote",
  "quote": "a short quote or saying that fits the moment"
}
"""


def _read_prompt(filename: str, default: str) -> str:
    """Read a prompt override file, falling back to *default* when missing."""
    path = settings.prompts_dir / filename
    if path.exists():
        text = path.read_text(encoding="utf-8").strip()
        if text:
            logger.debug("Loaded prompt override %s", path)
            return text
    return default


def diagnosis_prompt() -> str:
    return _read_prompt("DIAGNOSIS.md", DEFAULT_DIAGNOSIS_PROMPT)


def card_prompt() -> str:
    return _read_prompt("CARD.md", DEFAULT_CARD_PROMPT)

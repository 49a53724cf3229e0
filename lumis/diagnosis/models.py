"""Domain models decoded from the diagnosis and card responses."""

from __future__ import annotations

import logging
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)


class EnergyState(StrEnum):
    BALANCED = "balanced"
    BLOCKED = "blocked"
    OVERACTIVE = "overactive"
    DEPLETED = "depleted"
    SCATTERED = "scattered"

    @classmethod
    def parse(cls, value: object) -> EnergyState:
        """Map a raw model value onto the enum, falling back to ``balanced``."""
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            logger.debug("Unknown energy state %r, using balanced", value)
            return cls.BALANCED


class ChakraType(StrEnum):
    ROOT = "root"
    SACRAL = "sacral"
    SOLAR_PLEXUS = "solar_plexus"
    HEART = "heart"
    THROAT = "throat"
    THIRD_EYE = "third_eye"
    CROWN = "crown"

    @classmethod
    def from_key(cls, key: str) -> ChakraType | None:
        """Resolve a chakra key such as ``"Solar Plexus"``. Unknown keys → None."""
        normalized = key.strip().lower().replace("-", "_").replace(" ", "_")
        try:
            return cls(normalized)
        except ValueError:
            return _CHAKRA_ALIASES.get(normalized)


_CHAKRA_ALIASES: dict[str, ChakraType] = {
    "solarplexus": ChakraType.SOLAR_PLEXUS,
    "thirdeye": ChakraType.THIRD_EYE,
}


class DiagnosisResult(BaseModel):
    """Stage-1 output. Accepts the camelCase keys the model is prompted with."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    detected_emotions: list[str] = Field(alias="detectedEmotions")
    chakra_balance: dict[str, float] = Field(alias="chakraBalance")
    energy_state: EnergyState = Field(alias="energyState")

    @field_validator("energy_state", mode="before")
    @classmethod
    def _fallback_energy_state(cls, value: object) -> EnergyState:
        return EnergyState.parse(value)


class CardResult(BaseModel):
    """Stage-2 output: the affirmation text and a quote."""

    model_config = ConfigDict(frozen=True)

    response: str
    quote: str

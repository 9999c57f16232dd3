from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class Gender(str, Enum):
    """Verdict for a street name; values are the single-character wire codes."""

    WOMAN = "F"
    MAN = "M"
    UNKNOWN = "X"

    @property
    def identified(self) -> bool:
        return self is not Gender.UNKNOWN


def is_gender(value: Any) -> bool:
    """Return True if the value is one of the wire codes (F, M, X)."""
    return isinstance(value, str) and value in {g.value for g in Gender}


class ConfigurationError(ValueError):
    """Run parameters that make the run impossible (bad language, missing input)."""


class ReevaluationRecordError(Exception):
    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


@dataclass(frozen=True)
class StreetDecision:
    gender: Gender
    wikidata_id: Optional[str] = None

    def to_json(self) -> dict[str, str]:
        payload = {"gender": self.gender.value}
        if self.wikidata_id:
            payload["wikidataId"] = self.wikidata_id
        return payload

    @classmethod
    def from_json(cls, payload: dict[str, Any]) -> "StreetDecision":
        return cls(Gender(payload["gender"]), payload.get("wikidataId") or None)


@dataclass(frozen=True)
class EntityVerdict:
    """Outcome of classifying one Wikidata entity."""

    gender: Gender
    from_cache: bool


@dataclass(frozen=True)
class NameVerdict:
    """Outcome of the composite name -> candidates -> verdict policy."""

    gender: Gender
    wikidata_id: Optional[str] = None
    candidates: int = 0
    from_cache: bool = False

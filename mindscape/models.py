from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


ARCHETYPES = ("Warrior", "King", "Magician", "Lover")
CONCEPT_CATEGORIES = ("analytical", "emotional", "growth", "creative")
MIND_MEDITATIONS = (
    "inner-warrior",
    "deep-focus",
    "creative-flow",
    "emotional-clarity",
    "morning-energy",
    "stress-relief",
    "sleep-sanctuary",
    "confidence-builder",
    "gratitude-practice",
    "mindful-breathing",
)
LIFE_PHASES = ("Awakening", "Building", "Mastering", "Transcending")
LIFEPATH_MEDITATIONS = ("inner-warrior", "deep-focus", "creative-flow", "emotional-clarity", "confidence-builder")
DREAM_ARCHETYPES = ("Shadow", "Anima", "Animus", "Self", "Persona")
DREAM_TONES = ("peaceful", "anxious", "exciting", "melancholic", "transformative", "mysterious")
DREAM_MEDITATIONS = ("sleep-sanctuary", "emotional-clarity", "inner-warrior", "deep-focus", "creative-flow")

POSITION_BOUND = 5.0


def clamp_int(value: Any, lo: int, hi: int, default: int) -> int:
    """Round and clamp a loosely-typed number into [lo, hi]; unusable values become ``default``."""
    if isinstance(value, str):
        value = value.strip()
    try:
        num = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(num):
        return default
    if math.isinf(num):
        return hi if num > 0 else lo
    return max(lo, min(hi, int(round(num))))


def clamp_float(value: Any, lo: float, hi: float, default: float) -> float:
    try:
        num = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(num):
        return default
    return max(lo, min(hi, num))


def pick_choice(value: Any, allowed: Iterable[str], default: str) -> str:
    """Map ``value`` onto the allow-list case-insensitively, else ``default``."""
    if isinstance(value, str):
        wanted = value.strip().lower()
        for option in allowed:
            if option.lower() == wanted:
                return option
    return default


def _clean_strings(value: Any) -> Any:
    if not isinstance(value, list):
        return value
    return [s.strip() for s in value if isinstance(s, str) and s.strip()]


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True, populate_by_name=True)


# -- mind flow ---------------------------------------------------------------


class Concept(_Frozen):
    name: str = Field(min_length=1)
    importance: int = 5
    category: str = "analytical"
    position: Tuple[float, float, float] = (0.0, 0.0, 0.0)

    @model_validator(mode="before")
    @classmethod
    def _coerce(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        out = dict(data)
        pos = out.get("position")
        if isinstance(pos, dict):
            pos = (pos.get("x"), pos.get("y"), pos.get("z"))
        elif not (isinstance(pos, (list, tuple)) and len(pos) == 3):
            pos = (out.get("x"), out.get("y"), out.get("z"))
        out["position"] = tuple(clamp_float(v, -POSITION_BOUND, POSITION_BOUND, 0.0) for v in pos)
        out["importance"] = clamp_int(out.get("importance"), 1, 10, 5)
        out["category"] = pick_choice(out.get("category"), CONCEPT_CATEGORIES, "analytical")
        return out


class Connection(_Frozen):
    source: str = Field(alias="from", min_length=1)
    target: str = Field(alias="to", min_length=1)
    strength: int = 5

    @field_validator("strength", mode="before")
    @classmethod
    def _clamp_strength(cls, v: Any) -> int:
        return clamp_int(v, 1, 10, 5)


class MindAnalysis(_Frozen):
    concepts: List[Concept] = Field(min_length=1)
    connections: List[Connection]
    dominantArchetype: str = "Magician"
    insights: List[str] = Field(min_length=1)
    recommendedMeditation: str = "deep-focus"

    @field_validator("dominantArchetype", mode="before")
    @classmethod
    def _archetype(cls, v: Any) -> str:
        return pick_choice(v, ARCHETYPES, "Magician")

    @field_validator("recommendedMeditation", mode="before")
    @classmethod
    def _meditation(cls, v: Any) -> str:
        return pick_choice(v, MIND_MEDITATIONS, "deep-focus")

    @field_validator("insights", mode="before")
    @classmethod
    def _insights(cls, v: Any) -> Any:
        return _clean_strings(v)

    def concept_names(self) -> List[str]:
        return [c.name for c in self.concepts]


# -- life-path flow ----------------------------------------------------------


class PotentialPath(_Frozen):
    name: str = Field(min_length=1)
    description: str = ""
    alignment: int = 5

    @field_validator("alignment", mode="before")
    @classmethod
    def _clamp_alignment(cls, v: Any) -> int:
        return clamp_int(v, 1, 10, 5)


class LifePathAnalysis(_Frozen):
    archetype: str = "Magician"
    archetypeDescription: str = Field(min_length=1)
    currentPhase: str = "Awakening"
    lifeThemes: List[str] = Field(min_length=3)
    strengths: List[str] = Field(min_length=3)
    growthAreas: List[str] = Field(min_length=2)
    potentialPaths: List[PotentialPath] = Field(min_length=1)
    affirmation: str = Field(min_length=1)
    recommendedMeditation: str = "deep-focus"

    @field_validator("archetype", mode="before")
    @classmethod
    def _archetype(cls, v: Any) -> str:
        return pick_choice(v, ARCHETYPES, "Magician")

    @field_validator("currentPhase", mode="before")
    @classmethod
    def _phase(cls, v: Any) -> str:
        return pick_choice(v, LIFE_PHASES, "Awakening")

    @field_validator("recommendedMeditation", mode="before")
    @classmethod
    def _meditation(cls, v: Any) -> str:
        return pick_choice(v, LIFEPATH_MEDITATIONS, "deep-focus")

    @field_validator("lifeThemes", "strengths", "growthAreas", mode="before")
    @classmethod
    def _lists(cls, v: Any) -> Any:
        return _clean_strings(v)


# -- dream flow --------------------------------------------------------------


class DreamSymbol(_Frozen):
    name: str = Field(min_length=1)
    meaning: str = ""
    archetype: str = "Self"

    @field_validator("archetype", mode="before")
    @classmethod
    def _archetype(cls, v: Any) -> str:
        return pick_choice(v, DREAM_ARCHETYPES, "Self")


class DreamAnalysis(_Frozen):
    symbols: List[DreamSymbol] = Field(min_length=1)
    themes: List[str] = Field(min_length=3)
    emotionalTone: str = "mysterious"
    interpretation: str = Field(min_length=1)
    message: str = Field(min_length=1)
    recommendedMeditation: str = "sleep-sanctuary"

    @field_validator("emotionalTone", mode="before")
    @classmethod
    def _tone(cls, v: Any) -> str:
        return pick_choice(v, DREAM_TONES, "mysterious")

    @field_validator("recommendedMeditation", mode="before")
    @classmethod
    def _meditation(cls, v: Any) -> str:
        return pick_choice(v, DREAM_MEDITATIONS, "sleep-sanctuary")

    @field_validator("themes", mode="before")
    @classmethod
    def _themes(cls, v: Any) -> Any:
        return _clean_strings(v)


# -- request-scoped values ---------------------------------------------------


@dataclass(frozen=True)
class SubmissionRequest:
    text: str
    client_id: str


@dataclass(frozen=True)
class AdmissionDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    backend: Optional[str] = None

    def headers(self) -> dict:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(math.ceil(self.reset_at))),
        }


@dataclass(frozen=True)
class Artifact:
    id: str
    url: str
    key: str
    stored_at: float
    content_type: str = "text/html"

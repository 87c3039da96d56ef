"""Core domain models.

Every layer (settings, memory, engine, provider, session) operates on these
types. Pydantic is used for validation and serialisation at every data
boundary, in particular the session snapshot written to disk.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

Decision = Literal["approve", "deny"]

Tendency = Literal["neutral", "corrupt", "strict"]

EndingKind = Literal[
    "bad_corrupt",
    "bad_strict",
    "neutral_corrupt",
    "neutral_strict",
    "good",
]

SNAPSHOT_VERSION = 2


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class ScenarioConfig(BaseModel):
    """A border scenario. Selected once per career, referenced by id."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    situation: str
    description: str = ""
    document_requirements: list[str] = Field(default_factory=list)
    common_issues: list[str] = Field(default_factory=list)


class SessionConfig(BaseModel):
    """Assignment parameters. Editable between careers only."""

    total_days: int = Field(default=10, ge=1, le=30)
    travelers_per_day: int = Field(default=5, ge=1, le=20)
    allow_customization: bool = True


# ---------------------------------------------------------------------------
# Game state
# ---------------------------------------------------------------------------

class GameState(BaseModel):
    """Mutable career counters.

    At most one of the two streaks is non-zero at any time; the engine resets
    the opposite streak on every decision.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    day: int = Field(default=1, ge=1)
    corruption: int = Field(default=0, ge=0)
    trust: int = 0
    correct_streak: int = Field(default=0, ge=0)
    incorrect_streak: int = Field(default=0, ge=0)


# ---------------------------------------------------------------------------
# Documents and judgments
# ---------------------------------------------------------------------------

class TravelerDocument(BaseModel):
    name: str
    permit: str
    backstory: str = ""
    additional_fields: dict[str, Any] = Field(default_factory=dict)


class Judgment(BaseModel):
    """A verdict on a document, either from the provider or forced locally."""

    decision: Decision
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""
    suspicious_elements: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# History records (immutable once created)
# ---------------------------------------------------------------------------

class TravelerRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    permit: str
    day: int
    timestamp: str = Field(default_factory=utc_now)


class DecisionRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    traveler_name: str
    decision: Decision
    correct: bool
    judgment_decision: Decision | None = None
    judgment_confidence: float | None = None
    day: int
    timestamp: str = Field(default_factory=utc_now)


class NarrativeEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    category: str  # "start" | "day_change" | "milestone" | "special" | "game_over_*" ...
    day: int
    timestamp: str = Field(default_factory=utc_now)


class RuleChangeRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    description: str
    day: int
    timestamp: str = Field(default_factory=utc_now)


# ---------------------------------------------------------------------------
# Persisted unit
# ---------------------------------------------------------------------------

class SessionSnapshot(BaseModel):
    """Everything needed to resume one career. One file per career.

    Every field has a default so snapshots written by older versions load
    with backfilled values instead of failing.
    """

    version: int = SNAPSHOT_VERSION
    session_id: str | None = None
    scenario_id: str | None = None
    game_state: GameState = Field(default_factory=GameState)
    session_config: SessionConfig = Field(default_factory=SessionConfig)
    custom_rules: list[str] = Field(default_factory=list)
    score: float = 0.0
    travelers_today: int = Field(default=0, ge=0)
    traveler_history: list[TravelerRecord] = Field(default_factory=list)
    decisions: list[DecisionRecord] = Field(default_factory=list)
    narrative_events: list[NarrativeEvent] = Field(default_factory=list)
    rule_changes: list[RuleChangeRecord] = Field(default_factory=list)
    used_names: list[str] = Field(default_factory=list)
    saved_at: str | None = None

    @field_validator("used_names")
    @classmethod
    def _dedupe_names(cls, names: list[str]) -> list[str]:
        return list(dict.fromkeys(names))


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------

class Ending(BaseModel):
    kind: EndingKind
    message: str

    @property
    def is_failure(self) -> bool:
        return self.kind.startswith("bad_")


class DecisionOutcome(BaseModel):
    """Result of scoring one player decision."""

    correct: bool
    points_earned: float
    score: float
    judgment: Judgment
    ending: Ending | None = None


class CareerStats(BaseModel):
    """Totals across careers played in this process. Not persisted."""

    games_completed: int = 0
    total_score: float = 0.0
    borders_served: set[str] = Field(default_factory=set)
    highest_day: int = 0

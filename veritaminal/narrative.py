"""Narrative tendency and milestones, derived from GameState.

NarrativeState is never the source of truth: sync() copies the counters from
MemoryStore and recomputes everything. Warning flags make milestones fire
once per threshold crossing; they are re-armed when the metric returns to the
safe side of its warning line and are not persisted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from veritaminal.models import Ending, EndingKind, GameState, Tendency

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Thresholds:
    corruption_warning: int = 2
    corruption_game_over: int = 5
    trust_warning: int = -2
    trust_game_over: int = -5
    promotion_day: int = 5


DEFAULT_THRESHOLDS = Thresholds()

ENDING_MESSAGES: dict[EndingKind, str] = {
    "bad_corrupt": (
        "Internal affairs officers escort you away. Your career ends in "
        "disgrace due to overwhelming evidence of corruption."
    ),
    "bad_strict": (
        "You are reassigned to a remote outpost. Your overly strict "
        "enforcement caused too many diplomatic complaints."
    ),
    "neutral_corrupt": (
        "You completed your assignment, lining your pockets along the way. "
        "You avoided arrest, but live with the compromises you made."
    ),
    "neutral_strict": (
        "You completed your assignment with rigid adherence to the rules. "
        "The border is secure, but perhaps at the cost of compassion."
    ),
    "good": (
        "You skillfully navigated the complexities of the border, balancing "
        "security and fairness. Your commendable service earns you recognition."
    ),
}

# Recorded as narrative events when a career ends early.
GAME_OVER_EVENTS: dict[EndingKind, tuple[str, str]] = {
    "bad_corrupt": (
        "Your continued tolerance of suspicious travelers has led to an "
        "investigation. Your career at border control is over.",
        "game_over_corruption",
    ),
    "bad_strict": (
        "Your excessive suspicion and denials have damaged relations. "
        "You've been reassigned away from border control.",
        "game_over_trust",
    ),
}

CORRUPTION_WARNING_TEXT = 'Your supervisor eyes you suspiciously. "Keep your record clean, agent."'
TRUST_WARNING_TEXT = 'A dismissed traveler glares back. "You\'ll regret this rigidity!"'
PROMOTION_TEXT = 'The station chief nods approvingly. "Good work ethic, agent."'


def make_ending(kind: EndingKind) -> Ending:
    return Ending(kind=kind, message=ENDING_MESSAGES[kind])


class NarrativeState:
    def __init__(self, thresholds: Thresholds = DEFAULT_THRESHOLDS) -> None:
        self.thresholds = thresholds
        self.day = 1
        self.corruption = 0
        self.trust = 0
        self.tendency: Tendency = "neutral"
        self._corruption_warned = False
        self._trust_warned = False
        self._promotion_offered = False

    def sync(self, state: GameState) -> Tendency:
        """Copy counters from the authoritative state and recompute."""
        self.day = state.day
        self.corruption = state.corruption
        self.trust = state.trust
        self.tendency = self._derive_tendency()
        if self.corruption < self.thresholds.corruption_warning:
            self._corruption_warned = False
        if self.trust > self.thresholds.trust_warning:
            self._trust_warned = False
        return self.tendency

    def _derive_tendency(self) -> Tendency:
        t = self.thresholds
        if self.corruption >= t.corruption_warning + 1:
            return "corrupt"
        if self.trust <= t.trust_warning - 1:
            return "strict"
        return "neutral"

    def check_milestones(self) -> str | None:
        """Return the text of a newly crossed milestone, at most one per call."""
        t = self.thresholds
        if self.corruption >= t.corruption_warning and not self._corruption_warned:
            self._corruption_warned = True
            logger.info("Milestone: corruption warning (corruption=%d)", self.corruption)
            return CORRUPTION_WARNING_TEXT

        if self.trust <= t.trust_warning and not self._trust_warned:
            self._trust_warned = True
            logger.info("Milestone: trust warning (trust=%d)", self.trust)
            return TRUST_WARNING_TEXT

        if (
            self.day == t.promotion_day
            and self.tendency == "neutral"
            and not self._promotion_offered
        ):
            self._promotion_offered = True
            logger.info("Milestone: promotion notice on day %d", self.day)
            return PROMOTION_TEXT

        return None

    def state_summary(self) -> str:
        t = self.thresholds
        corruption_level = "Low"
        if self.corruption >= t.corruption_warning:
            corruption_level = "Warning"
        if self.corruption >= t.corruption_game_over - 1:
            corruption_level = "Critical"

        trust_level = "High"
        if self.trust <= t.trust_warning:
            trust_level = "Warning"
        if self.trust <= t.trust_game_over + 1:
            trust_level = "Critical"

        return (
            f"Corruption: {corruption_level} ({self.corruption}) | "
            f"Trust: {trust_level} ({self.trust}) | "
            f"Tendency: {self.tendency}"
        )

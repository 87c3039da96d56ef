"""Decision engine: ground truth, scoring, streak escalation, game over.

Ground truth for a document is the provider's judgment, except that the
permit format is checked locally first: anything other than "P" followed by
exactly four digits is a forced deny at confidence 0.95, whatever the
provider would have said.

Streak rules (applied after every decision):

    correct    incorrect_streak = 0, correct_streak += 1;
               at 2 → trust += 1, correct_streak = 0
    incorrect  correct_streak = 0, incorrect_streak += 1, trust -= 1;
               at 2 → corruption += 1, incorrect_streak = 0

Game over is checked after every transition: corruption >= 5 ends the career
as "bad_corrupt", trust <= -5 as "bad_strict".
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from veritaminal.memory import MemoryStore
from veritaminal.models import (
    Decision,
    DecisionOutcome,
    Ending,
    GameState,
    Judgment,
    Tendency,
    TravelerDocument,
)
from veritaminal.narrative import DEFAULT_THRESHOLDS, Thresholds, make_ending

logger = logging.getLogger(__name__)

PERMIT_PATTERN = re.compile(r"P[0-9]{4}")
FORCED_DENY_CONFIDENCE = 0.95
STREAK_LENGTH = 2


class ConsistencyError(RuntimeError):
    """The document being decided is not the one the verdict was made for."""


def permit_is_valid(permit: object) -> bool:
    return isinstance(permit, str) and PERMIT_PATTERN.fullmatch(permit) is not None


def permit_override(document: TravelerDocument) -> Judgment | None:
    """Forced deny for a malformed permit, or None if the format is fine."""
    if permit_is_valid(document.permit):
        return None
    return Judgment(
        decision="deny",
        confidence=FORCED_DENY_CONFIDENCE,
        reasoning=(
            f"The permit number '{document.permit}' does not follow the "
            "required format of 'P' followed by 4 digits."
        ),
        suspicious_elements=[f"Invalid permit format: {document.permit}"],
    )


@dataclass(frozen=True)
class Verdict:
    document: TravelerDocument
    truth: Judgment


class DecisionEngine:
    def __init__(self, memory: MemoryStore, thresholds: Thresholds = DEFAULT_THRESHOLDS) -> None:
        self.memory = memory
        self.thresholds = thresholds
        self.current: Verdict | None = None

    @property
    def score(self) -> float:
        return self.memory.score

    # ------------------------------------------------------------------
    # Ground truth
    # ------------------------------------------------------------------

    def evaluate(self, document: TravelerDocument, external: Judgment | None) -> Judgment:
        """Fix the ground truth for a document and track it as current."""
        truth = permit_override(document)
        if truth is not None:
            logger.info("Permit %r fails format check, forcing deny", document.permit)
        elif external is None:
            raise ValueError("evaluate() needs an external judgment for a well-formed permit")
        else:
            truth = external
        self.current = Verdict(document=document, truth=truth)
        return truth

    def verify(self, document: TravelerDocument | None = None) -> Verdict:
        """Return the current verdict, checking it belongs to `document`."""
        if self.current is None:
            raise ConsistencyError("No document is awaiting a decision")
        if document is not None and document != self.current.document:
            raise ConsistencyError(
                f"Deciding on {document.name!r} but the current verdict is for "
                f"{self.current.document.name!r}"
            )
        return self.current

    def clear(self) -> None:
        self.current = None

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def score_decision(self, player_decision: Decision, truth: Judgment) -> DecisionOutcome:
        correct = player_decision == truth.decision
        points = truth.confidence if correct else 0.0
        self.memory.score = round(self.memory.score + points, 2)
        logger.info(
            "Player %s, truth %s: correct=%s points=%.2f score=%.2f",
            player_decision, truth.decision, correct, points, self.memory.score,
        )
        return DecisionOutcome(
            correct=correct,
            points_earned=points,
            score=self.memory.score,
            judgment=truth,
        )

    def apply_state_transition(self, correct: bool, player_decision: Decision) -> GameState:
        state = self.memory.state
        trust = state.trust
        corruption = state.corruption

        if correct:
            incorrect_streak = 0
            correct_streak = state.correct_streak + 1
            if correct_streak >= STREAK_LENGTH:
                trust += 1
                correct_streak = 0
                logger.info("Trust increased to %d after %d correct decisions", trust, STREAK_LENGTH)
        else:
            correct_streak = 0
            incorrect_streak = state.incorrect_streak + 1
            trust -= 1
            logger.info("Trust decreased to %d after incorrect %s", trust, player_decision)
            if incorrect_streak >= STREAK_LENGTH:
                corruption += 1
                incorrect_streak = 0
                logger.info(
                    "Corruption increased to %d after %d incorrect decisions",
                    corruption, STREAK_LENGTH,
                )

        return self.memory.update_state(
            trust=trust,
            corruption=corruption,
            correct_streak=correct_streak,
            incorrect_streak=incorrect_streak,
        )

    # ------------------------------------------------------------------
    # Endings
    # ------------------------------------------------------------------

    def check_game_over(self, state: GameState) -> Ending | None:
        if state.corruption >= self.thresholds.corruption_game_over:
            logger.warning("Game over: corruption %d", state.corruption)
            return make_ending("bad_corrupt")
        if state.trust <= self.thresholds.trust_game_over:
            logger.warning("Game over: trust %d", state.trust)
            return make_ending("bad_strict")
        return None

    def classify_normal_ending(self, tendency: Tendency) -> Ending:
        if tendency == "corrupt":
            return make_ending("neutral_corrupt")
        if tendency == "strict":
            return make_ending("neutral_strict")
        return make_ending("good")

    # ------------------------------------------------------------------
    # One full decision
    # ------------------------------------------------------------------

    def decide(
        self,
        player_decision: Decision,
        document: TravelerDocument | None = None,
    ) -> DecisionOutcome:
        """Score the current verdict and apply the state transition.

        Does not record history or persist; the session controller does that.
        """
        verdict = self.verify(document)
        outcome = self.score_decision(player_decision, verdict.truth)
        state = self.apply_state_transition(outcome.correct, player_decision)
        outcome.ending = self.check_game_over(state)
        return outcome

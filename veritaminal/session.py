"""Session controller — one career, turn by turn.

Phases:

    AWAITING_SCENARIO ─initialize_session/resume_session─▶ ACTIVE_DAY
    ACTIVE_DAY        ─process_traveler──────────────────▶ AWAITING_DECISION
    AWAITING_DECISION ─submit_decision──▶ ACTIVE_DAY | DAY_COMPLETE | GAME_OVER
    AWAITING_DECISION ─abandon_turn─────▶ ACTIVE_DAY
    DAY_COMPLETE      ─advance_day──────▶ ACTIVE_DAY | ASSIGNMENT_COMPLETE

Turn flow (submit_decision):
  1. Score the player's choice against the current verdict.
  2. Apply streak rules to GameState.
  3. Record traveler and decision, count the traveler, persist.
  4. Resync NarrativeState, record milestone / game-over events, persist again.
  5. Ask the provider for a short narrative consequence (fallback on failure).

Provider failures never escape this module: each call has a fixed fallback.
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path

from pydantic import BaseModel

from veritaminal.commands import parse_decision
from veritaminal.engine import ConsistencyError, DecisionEngine, permit_override
from veritaminal.memory import LoadError, MemoryStore
from veritaminal.models import (
    CareerStats,
    DecisionOutcome,
    Ending,
    Judgment,
    ScenarioConfig,
    TravelerDocument,
)
from veritaminal.narrative import GAME_OVER_EVENTS, NarrativeState
from veritaminal.provider import ContentProvider, ProviderFailure
from veritaminal.settings import SettingsStore

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    AWAITING_SCENARIO = "awaiting_scenario"
    ACTIVE_DAY = "active_day"
    AWAITING_DECISION = "awaiting_decision"
    DAY_COMPLETE = "day_complete"
    ASSIGNMENT_COMPLETE = "assignment_complete"
    GAME_OVER = "game_over"


TERMINAL_PHASES = (Phase.ASSIGNMENT_COMPLETE, Phase.GAME_OVER)

# Checkable rules shown alongside the scenario's own requirements.
BUILTIN_RULES = [
    "Permits must start with 'P'.",
    "Permit numbers must have 4 digits after the 'P' (total 5 chars).",
    "Characters after 'P' in permit must be digits.",
    "Traveler names must include at least a first and last name.",
]

HINT_FALLBACK = "Veritas remains silent for now."
SCRUTINY_RULE = "Increased scrutiny protocols active."


def error_document() -> TravelerDocument:
    return TravelerDocument(
        name="Error",
        permit="P0000",
        backstory="Document generation failed.",
    )


def fallback_judgment() -> Judgment:
    return Judgment(
        decision="deny",
        confidence=0.5,
        reasoning="AI judgment system unavailable.",
        suspicious_elements=["AI system unavailable"],
    )


def fallback_narrative(name: str, correct: bool) -> str:
    if correct:
        return f"The processing queue moves along smoothly as {name} proceeds."
    return f"A moment of hesitation, but you proceed with {name}."


class TurnResult(BaseModel):
    """Everything the shell needs to show after a decision."""

    document: TravelerDocument
    outcome: DecisionOutcome
    narrative: str
    milestone: str | None = None
    ending: Ending | None = None


class SessionController:
    def __init__(
        self,
        settings: SettingsStore,
        memory: MemoryStore,
        engine: DecisionEngine,
        narrative: NarrativeState,
        provider: ContentProvider,
    ) -> None:
        self.settings = settings
        self.memory = memory
        self.engine = engine
        self.narrative = narrative
        self.provider = provider
        self.phase = Phase.AWAITING_SCENARIO
        self.pending: TravelerDocument | None = None
        self.career_stats = CareerStats()
        self._counted = False

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    @property
    def scenario(self) -> ScenarioConfig:
        return self.memory.scenario or self.settings.current_scenario

    @property
    def score(self) -> float:
        return self.memory.score

    @property
    def day(self) -> int:
        return self.memory.state.day

    @property
    def travelers_today(self) -> int:
        return self.memory.travelers_today

    def status_line(self) -> str:
        return (
            f"Day {self.day} | Score {self.score:.2f} | "
            f"Traveler {self.travelers_today + 1}/{self.memory.session_config.travelers_per_day} | "
            f"{self.narrative.state_summary()}"
        )

    def _fresh_narrative(self) -> None:
        self.narrative = NarrativeState(self.narrative.thresholds)
        self.narrative.sync(self.memory.state)

    def _require(self, *phases: Phase) -> None:
        if self.phase not in phases:
            allowed = ", ".join(p.value for p in phases)
            raise ConsistencyError(f"Session is in phase {self.phase.value}, expected {allowed}")

    # ------------------------------------------------------------------
    # Career start
    # ------------------------------------------------------------------

    def initialize_session(
        self,
        scenario_id: str | None = None,
        keep_used_names: bool = True,
    ) -> ScenarioConfig:
        """Start a new career at the given border (the first one if unknown)."""
        self.engine.clear()
        self.pending = None
        self.memory.reset(keep_used_names=keep_used_names)

        scenario = self.settings.select_scenario(scenario_id)
        self.memory.set_scenario(scenario)
        self.memory.session_config = self.settings.session_config
        self.memory.custom_rules = self.settings.custom_rules
        self._fresh_narrative()

        self.memory.record_event(
            f"You begin your shift at the {scenario.name}. Day {self.day}.", "start"
        )
        self.memory.start_session()
        self.phase = Phase.ACTIVE_DAY
        self._counted = False
        logger.info("New career at %s (%d days)", scenario.name, self.memory.session_config.total_days)
        return scenario

    def resume_session(self, path: Path) -> ScenarioConfig:
        """Continue a saved career.

        Raises LoadError if the file cannot be used; the controller is then
        back in AWAITING_SCENARIO with default state.
        """
        self.engine.clear()
        self.pending = None
        try:
            snapshot = self.memory.restore(path)
        except LoadError:
            self.phase = Phase.AWAITING_SCENARIO
            self._fresh_narrative()
            raise

        scenario = self.settings.restore(
            snapshot.scenario_id, snapshot.session_config, snapshot.custom_rules
        )
        self.memory.set_scenario(scenario)
        self.memory.custom_rules = self.settings.custom_rules
        self._fresh_narrative()
        self._counted = False

        state = self.memory.state
        if self.engine.check_game_over(state) is not None:
            self.phase = Phase.GAME_OVER
        elif state.day > self.memory.session_config.total_days:
            self.phase = Phase.ASSIGNMENT_COMPLETE
        elif self.should_advance_day():
            self.phase = Phase.DAY_COMPLETE
        else:
            self.phase = Phase.ACTIVE_DAY
        logger.info("Resumed career at %s, day %d, phase %s", scenario.name, state.day, self.phase.value)
        return scenario

    # ------------------------------------------------------------------
    # One traveler
    # ------------------------------------------------------------------

    async def process_traveler(self) -> TravelerDocument:
        """Bring the next traveler to the booth and fix the ground truth."""
        self._require(Phase.ACTIVE_DAY)
        try:
            document = await self.provider.generate_document(
                self.scenario, self.memory.build_used_names_context()
            )
        except ProviderFailure as e:
            logger.error("Document generation failed: %s", e)
            document = error_document()

        external: Judgment | None = None
        if permit_override(document) is None:
            try:
                external = await self.provider.judge_document(
                    document,
                    self.settings.scenario_context(),
                    self.memory.build_context(),
                )
            except ProviderFailure as e:
                logger.error("Judgment failed for %s: %s", document.name, e)
                external = fallback_judgment()

        self.engine.evaluate(document, external)
        self.pending = document
        self.phase = Phase.AWAITING_DECISION
        return document

    async def request_hint(self) -> str:
        self._require(Phase.AWAITING_DECISION)
        try:
            return await self.provider.generate_hint(
                self.pending, self.memory.build_context(), self.scenario.name
            )
        except ProviderFailure as e:
            logger.warning("Hint unavailable: %s", e)
            return HINT_FALLBACK

    async def submit_decision(
        self,
        choice: str,
        document: TravelerDocument | None = None,
    ) -> TurnResult:
        """Decide on the pending traveler.

        Raises InvalidInput for a choice other than approve/deny and
        ConsistencyError when `document` is not the pending traveler; neither
        changes any state.
        """
        decision = parse_decision(choice)
        self._require(Phase.AWAITING_DECISION)
        verdict = self.engine.verify(document)
        traveler = verdict.document

        outcome = self.engine.decide(decision, traveler)
        self.memory.record_traveler(traveler, decision, outcome.correct, outcome.judgment)
        self.memory.travelers_today += 1
        self.memory.persist()
        self.engine.clear()
        self.pending = None

        self.narrative.sync(self.memory.state)
        milestone = self.narrative.check_milestones()
        if milestone:
            self.memory.record_event(milestone, "milestone")

        if outcome.ending is not None:
            text, category = GAME_OVER_EVENTS[outcome.ending.kind]
            self.memory.record_event(text, category)
            self.phase = Phase.GAME_OVER
        elif self.should_advance_day():
            self.phase = Phase.DAY_COMPLETE
        else:
            self.phase = Phase.ACTIVE_DAY

        if milestone or outcome.ending is not None:
            self.memory.persist()

        try:
            story = await self.provider.generate_narrative_update(
                self.narrative, traveler, decision, outcome.correct, self.memory.build_context()
            )
        except ProviderFailure as e:
            logger.warning("Narrative update unavailable: %s", e)
            story = fallback_narrative(traveler.name, outcome.correct)

        return TurnResult(
            document=traveler,
            outcome=outcome,
            narrative=story,
            milestone=milestone,
            ending=outcome.ending,
        )

    def abandon_turn(self) -> None:
        """Send the pending traveler away undecided. Nothing is recorded."""
        if self.phase is Phase.AWAITING_DECISION:
            self.phase = Phase.ACTIVE_DAY
        self.engine.clear()
        self.pending = None

    # ------------------------------------------------------------------
    # Rules and saving
    # ------------------------------------------------------------------

    def rules(self) -> list[str]:
        return [*BUILTIN_RULES, *self.settings.all_rules()]

    def add_custom_rule(self, description: str) -> bool:
        """Add a rule for the rest of this career. Returns False for duplicates."""
        added = self.settings.add_custom_rule(description)
        if added and self.phase is not Phase.AWAITING_SCENARIO:
            self.memory.custom_rules = self.settings.custom_rules
            self.memory.record_rule_change(description.strip())
            self.memory.persist()
        return added

    def save(self) -> Path:
        """Write the current career to its save file and return the path."""
        if self.phase is Phase.AWAITING_SCENARIO:
            raise ConsistencyError("No career in progress to save")
        return self.memory.persist()

    # ------------------------------------------------------------------
    # Days
    # ------------------------------------------------------------------

    def should_advance_day(self) -> bool:
        return self.memory.travelers_today >= self.memory.session_config.travelers_per_day

    def advance_day(self) -> str:
        """Start the next day and return the message announcing it."""
        self._require(Phase.DAY_COMPLETE)
        day = self.memory.advance_day()
        self.memory.travelers_today = 0
        self.narrative.sync(self.memory.state)

        total_days = self.memory.session_config.total_days
        if day > total_days:
            self.phase = Phase.ASSIGNMENT_COMPLETE
            self.memory.persist()
            logger.info("Assignment complete after %d days", total_days)
            return f"Assignment Complete: You have finished your {total_days}-day assignment."

        if day == 3:
            message = "Day 3: New regulations are in effect. Increased scrutiny expected."
            self.memory.record_rule_change(SCRUTINY_RULE)
        elif day == 7:
            message = "Day 7: Border tensions are high. Security measures tightened."
            self.memory.record_event("Border tensions spike.", "special")
        else:
            message = f"Day {day}: Another shift begins at the {self.scenario.name}."
        self.memory.record_event(message, "day_change")

        milestone = self.narrative.check_milestones()
        if milestone:
            self.memory.record_event(milestone, "milestone")

        self.memory.persist()
        self.phase = Phase.ACTIVE_DAY
        logger.info("Advanced to day %d", day)
        return message

    # ------------------------------------------------------------------
    # Career end
    # ------------------------------------------------------------------

    def finish(self) -> Ending:
        """Ending for a finished career. Career stats are counted once."""
        self._require(*TERMINAL_PHASES)
        ending = self.engine.check_game_over(self.memory.state)
        if ending is None:
            ending = self.engine.classify_normal_ending(self.narrative.sync(self.memory.state))

        if not self._counted:
            self._counted = True
            stats = self.career_stats
            stats.games_completed += 1
            stats.total_score = round(stats.total_score + self.memory.score, 2)
            stats.borders_served.add(self.scenario.name)
            stats.highest_day = max(stats.highest_day, min(self.day, self.memory.session_config.total_days))
        return ending

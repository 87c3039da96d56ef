"""Durable session record for one career.

MemoryStore owns the GameState counters, the bounded histories, and the set
of traveler names already issued. It builds the textual digests handed to the
content provider, and persists/restores the whole record as a single
SessionSnapshot file through Storage.

Histories are FIFO with fixed capacity:

    traveler_history   15
    decisions          15
    narrative_events   20
    rule_changes       10
"""

from __future__ import annotations

import json
import logging
from collections import deque
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from veritaminal.models import (
    DecisionRecord,
    GameState,
    Judgment,
    NarrativeEvent,
    RuleChangeRecord,
    ScenarioConfig,
    SessionConfig,
    SessionSnapshot,
    TravelerDocument,
    TravelerRecord,
)
from veritaminal.storage import SessionHandle, Storage

logger = logging.getLogger(__name__)

TRAVELER_HISTORY_CAPACITY = 15
DECISION_HISTORY_CAPACITY = 15
NARRATIVE_EVENT_CAPACITY = 20
RULE_CHANGE_CAPACITY = 10

USED_NAMES_CONTEXT_LIMIT = 25
NO_TRAVELERS_YET = "No previous travelers processed in this session yet."


class LoadError(Exception):
    """Raised when a session snapshot cannot be read or parsed."""


class MemoryStore:
    def __init__(self, storage: Storage) -> None:
        self._storage = storage
        self.session: SessionHandle | None = None
        self.scenario: ScenarioConfig | None = None
        self.scenario_id: str | None = None
        self.used_names: dict[str, None] = {}
        self._set_defaults()

    @property
    def storage(self) -> Storage:
        return self._storage

    def _set_defaults(self) -> None:
        self.state = GameState()
        self.session_config = SessionConfig()
        self.custom_rules: list[str] = []
        self.score = 0.0
        self.travelers_today = 0
        self.traveler_history: deque[TravelerRecord] = deque(maxlen=TRAVELER_HISTORY_CAPACITY)
        self.decisions: deque[DecisionRecord] = deque(maxlen=DECISION_HISTORY_CAPACITY)
        self.narrative_events: deque[NarrativeEvent] = deque(maxlen=NARRATIVE_EVENT_CAPACITY)
        self.rule_changes: deque[RuleChangeRecord] = deque(maxlen=RULE_CHANGE_CAPACITY)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def set_scenario(self, scenario: ScenarioConfig) -> None:
        self.scenario = scenario
        self.scenario_id = scenario.id

    def record_traveler(
        self,
        document: TravelerDocument | None,
        decision: str,
        correct: bool,
        judgment: Judgment | None,
    ) -> None:
        """Append the traveler and the player's decision to history.

        A document without a name is logged and ignored; a live session must
        not crash on a corrupt call.
        """
        name = getattr(document, "name", None)
        if not name:
            logger.error("record_traveler called without a traveler name, ignoring")
            return

        self.used_names.pop(name, None)
        self.used_names[name] = None

        day = self.state.day
        self.traveler_history.append(
            TravelerRecord(name=name, permit=document.permit, day=day)
        )
        self.decisions.append(DecisionRecord(
            traveler_name=name,
            decision=decision,
            correct=correct,
            judgment_decision=judgment.decision if judgment else None,
            judgment_confidence=judgment.confidence if judgment else None,
            day=day,
        ))

    def record_event(self, text: str, category: str) -> NarrativeEvent:
        event = NarrativeEvent(text=text, category=category, day=self.state.day)
        self.narrative_events.append(event)
        return event

    def record_rule_change(self, description: str) -> RuleChangeRecord:
        change = RuleChangeRecord(description=description, day=self.state.day)
        self.rule_changes.append(change)
        return change

    def update_state(self, **delta: Any) -> GameState:
        """Shallow-merge counter updates; fields not given are untouched."""
        self.state = GameState.model_validate({**self.state.model_dump(), **delta})
        return self.state

    def advance_day(self) -> int:
        self.state = self.state.model_copy(update={"day": self.state.day + 1})
        return self.state.day

    # ------------------------------------------------------------------
    # Provider context
    # ------------------------------------------------------------------

    def build_context(self, max_items: int = 5) -> str:
        """Text digest of the career so far, for provider prompts."""
        lines: list[str] = []
        if self.scenario is not None:
            lines.append(f"BORDER SETTING: {self.scenario.name}")
            lines.append(f"POLITICAL SITUATION: {self.scenario.situation}")

        lines.append("")
        lines.append("CURRENT GAME STATE:")
        lines.append(f"- Day: {self.state.day}")
        lines.append(f"- Corruption Score (Incorrect Approvals): {self.state.corruption}")
        lines.append(f"- Trust Score (Starts 0, Incorrect Denials decrease it): {self.state.trust}")

        if self.rule_changes:
            lines.append("")
            lines.append("RECENT RULE CHANGES:")
            for rule in list(self.rule_changes)[-max_items:]:
                lines.append(f"- Day {rule.day}: {rule.description}")

        if self.narrative_events:
            lines.append("")
            lines.append("RECENT NARRATIVE EVENTS:")
            for event in list(self.narrative_events)[-max_items:]:
                lines.append(f"- Day {event.day} ({event.category}): {event.text}")

        if self.decisions:
            lines.append("")
            lines.append("RECENT DECISIONS:")
            for record in list(self.decisions)[-max_items:]:
                how = "correctly" if record.correct else "incorrectly"
                verb = "approved" if record.decision == "approve" else "denied"
                lines.append(
                    f"- Day {record.day}: {record.traveler_name} was {verb} {how}. "
                    f"(AI: {record.judgment_decision or 'N/A'})"
                )

        return "\n".join(lines)

    def recent_names(self, limit: int = USED_NAMES_CONTEXT_LIMIT) -> list[str]:
        return list(self.used_names)[-limit:]

    def build_used_names_context(self, limit: int = USED_NAMES_CONTEXT_LIMIT) -> str:
        if not self.used_names:
            return NO_TRAVELERS_YET
        names = ", ".join(self.recent_names(limit))
        return (
            f"Previously encountered traveler names in this session: {names}. "
            "Please generate a new unique name NOT on this list."
        )

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=self.session.id if self.session else None,
            scenario_id=self.scenario_id,
            game_state=self.state.model_copy(),
            session_config=self.session_config.model_copy(),
            custom_rules=list(self.custom_rules),
            score=self.score,
            travelers_today=self.travelers_today,
            traveler_history=list(self.traveler_history),
            decisions=list(self.decisions),
            narrative_events=list(self.narrative_events),
            rule_changes=list(self.rule_changes),
            used_names=list(self.used_names),
        )

    def load_snapshot(self, snapshot: SessionSnapshot) -> None:
        self._set_defaults()
        self.scenario_id = snapshot.scenario_id
        if self.scenario is not None and self.scenario.id != snapshot.scenario_id:
            self.scenario = None
        self.state = snapshot.game_state.model_copy()
        self.session_config = snapshot.session_config.model_copy()
        self.custom_rules = list(snapshot.custom_rules)
        self.score = snapshot.score
        self.travelers_today = snapshot.travelers_today
        self.traveler_history.extend(snapshot.traveler_history)
        self.decisions.extend(snapshot.decisions)
        self.narrative_events.extend(snapshot.narrative_events)
        self.rule_changes.extend(snapshot.rule_changes)
        self.used_names = dict.fromkeys(snapshot.used_names)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def start_session(self) -> SessionHandle:
        """Fix the save file for this career and write the first snapshot."""
        self.session = self._storage.open_session()
        self.persist()
        logger.info("Started session %s", self.session.id)
        return self.session

    def persist(self) -> Path:
        """Overwrite this career's save file with the current state."""
        if self.session is None:
            self.session = self._storage.open_session()
        path = self._storage.write_snapshot(self.session, self.snapshot())
        logger.debug("Persisted session %s", self.session.id)
        return path

    def restore(self, source: Path) -> SessionSnapshot:
        """Load a snapshot file and continue writing to it.

        On failure the store is reset to defaults and LoadError is raised, so
        the caller can start fresh from a clean state.
        """
        try:
            raw = json.loads(self._storage.read_text(source))
            if not isinstance(raw, dict):
                raise ValueError(f"expected a JSON object, got {type(raw).__name__}")
            snapshot = SessionSnapshot.model_validate(_migrate(raw))
        except (OSError, ValueError, TypeError, AttributeError, ValidationError) as e:
            logger.error("Failed to load session from %s: %s", source, e)
            self.reset()
            raise LoadError(f"Cannot load session from {source}: {e}") from e

        self.load_snapshot(snapshot)
        self.session = self._storage.handle_for(source)
        logger.info("Loaded session %s (day %d)", self.session.id, self.state.day)
        return snapshot

    def reset(self, keep_used_names: bool = True) -> None:
        """Return to defaults. Storage is kept; the session handle is not."""
        self._set_defaults()
        self.session = None
        self.scenario = None
        self.scenario_id = None
        if not keep_used_names:
            self.used_names = {}


# ---------------------------------------------------------------------------
# Snapshot migration
# ---------------------------------------------------------------------------

_LEGACY_STATE_KEYS = {
    "correctStreak": "correct_streak",
    "incorrectStreak": "incorrect_streak",
}


def _migrate(raw: dict[str, Any]) -> dict[str, Any]:
    """Rewrite version-1 (camelCase) saves into the current layout.

    Current-format data passes through unchanged.
    """
    if "gameState" not in raw and "borderSetting" not in raw:
        return raw

    data: dict[str, Any] = {"version": 1}
    setting = raw.get("borderSetting")
    if isinstance(setting, dict):
        data["scenario_id"] = setting.get("id")
    settings = raw.get("settings")
    if isinstance(settings, dict):
        data["scenario_id"] = settings.get("currentSettingId", data.get("scenario_id"))
        if isinstance(settings.get("customRules"), list):
            data["custom_rules"] = settings["customRules"]
        config = settings.get("gameConfig")
        if isinstance(config, dict):
            data["session_config"] = {
                "total_days": config.get("totalDays", 10),
                "travelers_per_day": config.get("travelersPerDay", 5),
                "allow_customization": config.get("allowCustomization", True),
            }

    state = raw.get("gameState") or {}
    data["game_state"] = {_LEGACY_STATE_KEYS.get(k, k): v for k, v in state.items()}

    data["traveler_history"] = [
        {
            "name": (t.get("traveler") or {}).get("name", ""),
            "permit": (t.get("traveler") or {}).get("permit", ""),
            "day": t.get("day", 1),
            "timestamp": t.get("timestamp", ""),
        }
        for t in raw.get("travelerHistory", [])
    ]
    data["decisions"] = [
        {
            "traveler_name": d.get("travelerName", ""),
            "decision": d.get("decision"),
            "correct": d.get("correct", False),
            "judgment_decision": (d.get("aiJudgment") or {}).get("decision"),
            "judgment_confidence": (d.get("aiJudgment") or {}).get("confidence"),
            "day": d.get("day", 1),
            "timestamp": d.get("timestamp", ""),
        }
        for d in raw.get("decisions", [])
    ]
    data["narrative_events"] = [
        {
            "text": e.get("text", ""),
            "category": e.get("type", "event"),
            "day": e.get("day", 1),
            "timestamp": e.get("timestamp", ""),
        }
        for e in raw.get("narrativeEvents", [])
    ]
    data["rule_changes"] = [
        {
            "description": r.get("description", ""),
            "day": r.get("day", 1),
            "timestamp": r.get("timestamp", ""),
        }
        for r in raw.get("ruleChanges", [])
    ]
    data["used_names"] = list(raw.get("usedNames", []))
    return data

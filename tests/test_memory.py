"""Tests for veritaminal.memory — histories, context digests, persist/restore."""

import json
from pathlib import Path

import pytest

from veritaminal.memory import (
    DECISION_HISTORY_CAPACITY,
    NARRATIVE_EVENT_CAPACITY,
    NO_TRAVELERS_YET,
    RULE_CHANGE_CAPACITY,
    TRAVELER_HISTORY_CAPACITY,
    LoadError,
    MemoryStore,
)
from veritaminal.models import GameState, Judgment, SessionConfig, TravelerDocument
from veritaminal.settings import BORDER_SCENARIOS

APPROVE_90 = Judgment(decision="approve", confidence=0.9)


def _doc(name: str, permit: str = "P1234") -> TravelerDocument:
    return TravelerDocument(name=name, permit=permit, backstory=f"{name} travels.")


class TestRecording:
    def test_record_traveler_appends_both_histories(self, memory: MemoryStore) -> None:
        memory.record_traveler(_doc("Ana Sol"), "approve", True, APPROVE_90)
        assert memory.traveler_history[-1].name == "Ana Sol"
        record = memory.decisions[-1]
        assert record.decision == "approve"
        assert record.correct is True
        assert record.judgment_decision == "approve"
        assert record.judgment_confidence == 0.9
        assert list(memory.used_names) == ["Ana Sol"]

    def test_record_traveler_without_name_is_noop(self, memory: MemoryStore) -> None:
        memory.record_traveler(None, "deny", False, None)
        memory.record_traveler(TravelerDocument(name="", permit="P1"), "deny", False, None)
        assert len(memory.traveler_history) == 0
        assert len(memory.decisions) == 0

    def test_records_carry_current_day(self, memory: MemoryStore) -> None:
        memory.update_state(day=4)
        memory.record_event("Tension rises.", "special")
        assert memory.narrative_events[-1].day == 4

    @pytest.mark.parametrize("attr,capacity,add", [
        ("traveler_history", TRAVELER_HISTORY_CAPACITY,
         lambda m, i: m.record_traveler(_doc(f"Traveler {i}"), "deny", True, None)),
        ("decisions", DECISION_HISTORY_CAPACITY,
         lambda m, i: m.record_traveler(_doc(f"Traveler {i}"), "deny", True, None)),
        ("narrative_events", NARRATIVE_EVENT_CAPACITY,
         lambda m, i: m.record_event(f"event {i}", "special")),
        ("rule_changes", RULE_CHANGE_CAPACITY,
         lambda m, i: m.record_rule_change(f"rule {i}")),
    ])
    def test_histories_evict_oldest_first(self, memory: MemoryStore, attr, capacity, add) -> None:
        for i in range(capacity + 3):
            add(memory, i)
        history = list(getattr(memory, attr))
        assert len(history) == capacity
        first = history[0]
        label = getattr(first, "name", None) or getattr(first, "traveler_name", None) \
            or getattr(first, "text", None) or first.description
        assert label.endswith(" 3")

    def test_repeat_name_moves_to_end(self, memory: MemoryStore) -> None:
        for name in ["Ana Sol", "Bo Lin", "Ana Sol"]:
            memory.record_traveler(_doc(name), "deny", True, None)
        assert list(memory.used_names) == ["Bo Lin", "Ana Sol"]


class TestUpdateState:
    def test_shallow_merge(self, memory: MemoryStore) -> None:
        memory.update_state(trust=-2, day=3)
        memory.update_state(corruption=1)
        assert memory.state == GameState(day=3, trust=-2, corruption=1)

    def test_invalid_update_rejected(self, memory: MemoryStore) -> None:
        with pytest.raises(ValueError):
            memory.update_state(corruption=-1)
        assert memory.state.corruption == 0

    def test_advance_day_increments_by_one(self, memory: MemoryStore) -> None:
        memory.update_state(day=30)
        assert memory.advance_day() == 31


class TestContext:
    def test_used_names_sentinel(self, memory: MemoryStore) -> None:
        assert memory.build_used_names_context() == NO_TRAVELERS_YET

    def test_used_names_limited_to_most_recent(self, memory: MemoryStore) -> None:
        for i in range(30):
            memory.record_traveler(_doc(f"Traveler {i}"), "deny", True, None)
        assert memory.recent_names() == [f"Traveler {i}" for i in range(5, 30)]
        context = memory.build_used_names_context()
        assert "Traveler 29" in context
        assert "Traveler 4," not in context

    def test_build_context_contents(self, memory: MemoryStore) -> None:
        memory.set_scenario(BORDER_SCENARIOS[0])
        memory.record_rule_change("Increased scrutiny protocols active.")
        memory.record_event("You begin your shift.", "start")
        memory.record_traveler(_doc("Ana Sol"), "approve", False, Judgment(decision="deny", confidence=0.95))
        context = memory.build_context()
        assert context.startswith("BORDER SETTING: Eastokan-Westoria Border\nPOLITICAL SITUATION: ")
        assert "- Day: 1" in context
        assert "RECENT RULE CHANGES:\n- Day 1: Increased scrutiny protocols active." in context
        assert "- Day 1 (start): You begin your shift." in context
        assert "- Day 1: Ana Sol was approved incorrectly. (AI: deny)" in context

    def test_build_context_limits_items(self, memory: MemoryStore) -> None:
        for i in range(8):
            memory.record_event(f"event {i}", "special")
        context = memory.build_context(max_items=2)
        assert "event 5" not in context
        assert "event 6" in context and "event 7" in context

    def test_build_context_is_pure(self, memory: MemoryStore) -> None:
        memory.record_event("x", "special")
        before = memory.snapshot().model_dump(exclude={"saved_at"})
        assert memory.build_context() == memory.build_context()
        assert memory.snapshot().model_dump(exclude={"saved_at"}) == before


class TestPersistence:
    def _populate(self, memory: MemoryStore) -> None:
        memory.set_scenario(BORDER_SCENARIOS[1])
        memory.session_config = SessionConfig(total_days=4, travelers_per_day=2)
        memory.update_state(day=2, trust=-1, incorrect_streak=1)
        memory.score = 1.85
        memory.travelers_today = 1
        memory.custom_rules = ["No livestock"]
        memory.record_traveler(_doc("Ana Sol"), "approve", True, APPROVE_90)
        memory.record_traveler(_doc("Bo Lin", "X1234"), "approve", False, None)
        memory.record_event("Day 2 begins.", "day_change")
        memory.record_rule_change("New stamp required.")

    def test_persist_then_restore_roundtrip(self, memory: MemoryStore, storage) -> None:
        self._populate(memory)
        memory.start_session()
        path = memory.persist()
        original = memory.snapshot()

        fresh = MemoryStore(storage)
        restored = fresh.restore(path)
        assert restored.game_state == original.game_state
        assert restored.session_config == original.session_config
        assert fresh.state == original.game_state
        assert list(fresh.traveler_history) == original.traveler_history
        assert list(fresh.decisions) == original.decisions
        assert list(fresh.narrative_events) == original.narrative_events
        assert list(fresh.rule_changes) == original.rule_changes
        assert list(fresh.used_names) == ["Ana Sol", "Bo Lin"]
        assert fresh.score == 1.85
        assert fresh.travelers_today == 1
        assert fresh.custom_rules == ["No livestock"]
        assert fresh.scenario_id == "northland_southoria"

    def test_persist_reuses_one_file_per_session(self, memory: MemoryStore, storage) -> None:
        handle = memory.start_session()
        for i in range(3):
            memory.record_event(f"event {i}", "special")
            assert memory.persist() == handle.path
        assert list(storage.saves_dir.glob("*.json")) == [handle.path]

    def test_persist_without_session_opens_one(self, memory: MemoryStore) -> None:
        path = memory.persist()
        assert memory.session is not None
        assert memory.session.path == path

    def test_restore_rebinds_session_to_loaded_file(self, memory: MemoryStore, storage) -> None:
        handle = memory.start_session()
        fresh = MemoryStore(storage)
        fresh.restore(handle.path)
        fresh.record_event("later", "special")
        assert fresh.persist() == handle.path

    def test_restore_backfills_missing_fields(self, memory: MemoryStore, tmp_path: Path) -> None:
        path = tmp_path / "old.json"
        path.write_text(json.dumps({"game_state": {"day": 3, "trust": -1}}))
        snap = memory.restore(path)
        assert memory.state == GameState(day=3, trust=-1)
        assert memory.session_config == SessionConfig()
        assert snap.used_names == []

    @pytest.mark.parametrize("content", ["{not json", "[1, 2, 3]", '{"game_state": {"day": 0}}'])
    def test_restore_failure_resets_to_defaults(self, memory: MemoryStore, tmp_path: Path, content) -> None:
        self._populate(memory)
        memory.start_session()
        path = tmp_path / "bad.json"
        path.write_text(content)
        with pytest.raises(LoadError):
            memory.restore(path)
        assert memory.state == GameState()
        assert len(memory.traveler_history) == 0
        assert memory.score == 0.0
        assert memory.session is None

    def test_restore_missing_file(self, memory: MemoryStore, tmp_path: Path) -> None:
        with pytest.raises(LoadError):
            memory.restore(tmp_path / "nope.json")

    def test_restore_legacy_camelcase_save(self, memory: MemoryStore, tmp_path: Path) -> None:
        legacy = {
            "borderSetting": {"id": "oceania_continent"},
            "settings": {
                "currentSettingId": "oceania_continent",
                "customRules": ["Check cargo"],
                "gameConfig": {"totalDays": 6, "travelersPerDay": 3, "allowCustomization": True},
            },
            "gameState": {"day": 2, "corruption": 1, "trust": -1, "correctStreak": 1, "incorrectStreak": 0},
            "travelerHistory": [
                {"traveler": {"name": "Ana Sol", "permit": "P1234"}, "day": 1, "timestamp": "t1"},
            ],
            "decisions": [
                {"travelerName": "Ana Sol", "decision": "approve", "correct": True,
                 "aiJudgment": {"decision": "approve", "confidence": 0.8}, "day": 1, "timestamp": "t1"},
            ],
            "narrativeEvents": [{"text": "Start.", "type": "start", "day": 1, "timestamp": "t0"}],
            "ruleChanges": [],
            "usedNames": ["Ana Sol"],
        }
        path = tmp_path / "legacy.json"
        path.write_text(json.dumps(legacy))
        memory.restore(path)
        assert memory.scenario_id == "oceania_continent"
        assert memory.state == GameState(day=2, corruption=1, trust=-1, correct_streak=1)
        assert memory.session_config.total_days == 6
        assert memory.custom_rules == ["Check cargo"]
        assert memory.decisions[0].judgment_confidence == 0.8
        assert memory.narrative_events[0].category == "start"
        assert list(memory.used_names) == ["Ana Sol"]


class TestReset:
    def test_reset_keeps_used_names_by_default(self, memory: MemoryStore) -> None:
        memory.record_traveler(_doc("Ana Sol"), "deny", True, None)
        memory.start_session()
        memory.reset()
        assert list(memory.used_names) == ["Ana Sol"]
        assert len(memory.traveler_history) == 0
        assert memory.session is None

    def test_reset_can_drop_used_names(self, memory: MemoryStore) -> None:
        memory.record_traveler(_doc("Ana Sol"), "deny", True, None)
        memory.reset(keep_used_names=False)
        assert memory.used_names == {}

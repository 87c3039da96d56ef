import json
import random
import shutil
from pathlib import Path

import pytest

from veritaminal.engine import DecisionEngine
from veritaminal.memory import MemoryStore
from veritaminal.narrative import NarrativeState
from veritaminal.provider import ContentProvider
from veritaminal.session import SessionController
from veritaminal.settings import SettingsStore
from veritaminal.storage import Storage

TEST_DATA_DIR = Path("data-tests")


class StubLLM:
    """Deterministic LLM stand-in for tests.

    Provide a dict mapping stage name → list of responses (in call order).
    A response that is an Exception instance is raised instead of returned.
    Raises if a stage is called more times than responses were provided.
    """

    def __init__(self, responses: dict[str, list] | None = None) -> None:
        self._queues: dict[str, list] = {k: list(v) for k, v in (responses or {}).items()}
        self.calls: list[tuple[str, str]] = []

    def queue(self, stage: str, *responses) -> None:
        self._queues.setdefault(stage, []).extend(responses)

    async def __call__(self, stage: str, prompt: str) -> str:
        self.calls.append((stage, prompt))
        queue = self._queues.get(stage)
        if not queue:
            raise AssertionError(
                f"StubLLM: unexpected call to stage={stage!r} "
                f"(no responses queued). calls so far: {[s for s, _ in self.calls]}"
            )
        response = queue.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def stages(self) -> list[str]:
        return [stage for stage, _ in self.calls]

    def assert_exhausted(self) -> None:
        """Assert every queued response was consumed — catches missing LLM calls."""
        leftover = {k: v for k, v in self._queues.items() if v}
        if leftover:
            raise AssertionError(f"StubLLM: unused responses remain: {leftover}")


def document_json(name: str = "Mara Ellison", backstory: str | None = None, **fields) -> str:
    return json.dumps({
        "name": name,
        "backstory": backstory or f"{name} is returning home after a trade fair.",
        "additional_fields": fields,
    })


def judgment_json(decision: str = "approve", confidence: float = 0.9, reasoning: str = "Looks fine.") -> str:
    return json.dumps({
        "decision": decision,
        "confidence": confidence,
        "reasoning": reasoning,
        "suspicious_elements": [],
    })


@pytest.fixture(autouse=True)
def clean_test_data():
    """Wipe data-tests/ before every test."""
    if TEST_DATA_DIR.exists():
        shutil.rmtree(TEST_DATA_DIR)
    yield
    # left in place for inspection


@pytest.fixture
def storage() -> Storage:
    return Storage(TEST_DATA_DIR)


@pytest.fixture
def memory(storage: Storage) -> MemoryStore:
    return MemoryStore(storage)


@pytest.fixture
def llm() -> StubLLM:
    return StubLLM()


@pytest.fixture
def controller(memory: MemoryStore, llm: StubLLM) -> SessionController:
    """Controller whose provider always issues valid permits and never flips."""
    provider = ContentProvider(llm, rng=random.Random(7), valid_permit_rate=1.0)
    return SessionController(
        settings=SettingsStore(),
        memory=memory,
        engine=DecisionEngine(memory),
        narrative=NarrativeState(),
        provider=provider,
    )

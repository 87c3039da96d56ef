"""Content provider — structured game content over an injected LLM.

Four calls, each a single request/response with no retries:

    generate_document(scenario, used_names_context)            → TravelerDocument
    judge_document(document, scenario_context, memory_context) → Judgment
    generate_hint(document, memory_context)                    → str
    generate_narrative_update(story, document, decision,
                              correct, memory_context)         → str

Every failure (transport error, unparseable JSON, schema violation) surfaces
as ProviderFailure; the session controller turns it into a fixed fallback.

The LLM never invents permit numbers: they are generated locally from the
injected random source, valid with probability `valid_permit_rate`. The
optional balance flip inverts a fraction of provider judgments; it draws from
the same random source so tests can seed or disable it.
"""

from __future__ import annotations

import json
import logging
import random
import re
import string
from typing import Any

from pydantic import ValidationError

from veritaminal.llm import LLM, LLMError
from veritaminal.models import Judgment, ScenarioConfig, TravelerDocument
from veritaminal.narrative import NarrativeState
from veritaminal.prompts import (
    DOCUMENT_PROMPT,
    HINT_PROMPT,
    JUDGMENT_PROMPT,
    NARRATIVE_PROMPT,
    PromptError,
    render_prompt,
)

logger = logging.getLogger(__name__)

_NAME_PREFIX = re.compile(r"^(name|full name|traveler|traveler name)\s*:\s*", re.IGNORECASE)
_PERMIT_SYMBOLS = "!@#$%^&*()_-+=<>?~"


class ProviderFailure(Exception):
    """The provider did not return usable structured data."""


# ---------------------------------------------------------------------------
# Permit numbers
# ---------------------------------------------------------------------------

def generate_permit(valid: bool, rng: random.Random) -> str:
    """'P' + 4 digits when valid; otherwise a plausible-looking variation."""
    def digits(count: int) -> str:
        return "".join(rng.choice(string.digits) for _ in range(count))

    if valid:
        return "P" + digits(4)

    error = rng.choice(["wrong_prefix", "wrong_length", "non_digit"])
    if error == "wrong_prefix":
        prefix = rng.choice([c for c in string.ascii_uppercase if c != "P"])
        return prefix + digits(4)
    if error == "wrong_length":
        return "P" + digits(rng.choice([3, 5]))
    bad = rng.choice(string.ascii_uppercase + _PERMIT_SYMBOLS)
    body = digits(3)
    pos = rng.randrange(4)
    return "P" + body[:pos] + bad + body[pos:]


# ---------------------------------------------------------------------------
# Output parsing
# ---------------------------------------------------------------------------

def parse_json_object(text: str) -> dict[str, Any]:
    """Parse a JSON object from LLM output.

    Strips markdown fences, then falls back to the outermost {...} span.
    """
    cleaned = text.strip()
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")
        lines = [l for l in lines[1:] if not l.strip().startswith("```")]
        cleaned = "\n".join(lines).strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        match = re.search(r"\{.*\}", cleaned, re.DOTALL)
        if not match:
            raise ProviderFailure(f"No JSON object in provider output: {text[:80]!r}")
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise ProviderFailure(f"Provider output is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ProviderFailure(f"Expected a JSON object, got {type(data).__name__}")
    return data


def _clean_text(text: str) -> str:
    text = text.strip()
    if not text:
        raise ProviderFailure("Provider returned empty text")
    return text


# ---------------------------------------------------------------------------
# ContentProvider
# ---------------------------------------------------------------------------

class ContentProvider:
    def __init__(
        self,
        llm: LLM,
        rng: random.Random | None = None,
        valid_permit_rate: float = 0.7,
        balance_flip_rate: float = 0.0,
    ) -> None:
        self._llm = llm
        self._rng = rng or random.Random()
        self.valid_permit_rate = valid_permit_rate
        self.balance_flip_rate = balance_flip_rate

    async def _call(self, stage: str, template: str, context: dict[str, Any]) -> str:
        try:
            prompt = render_prompt(template, context)
        except PromptError as e:
            raise ProviderFailure(f"{stage} prompt failed to render: {e}") from e
        try:
            return await self._llm(stage, prompt)
        except LLMError as e:
            raise ProviderFailure(f"{stage} call failed: {e}") from e

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def generate_document(
        self, scenario: ScenarioConfig, used_names_context: str
    ) -> TravelerDocument:
        valid_permit = self._rng.random() < self.valid_permit_rate
        output = await self._call("document", DOCUMENT_PROMPT, {
            "scenario": scenario.model_dump(),
            "requirements": ", ".join(scenario.document_requirements),
            "issues": ", ".join(scenario.common_issues),
            "used_names": used_names_context,
        })
        data = parse_json_object(output)

        name = _NAME_PREFIX.sub("", str(data.get("name", ""))).strip()
        backstory = str(data.get("backstory", "")).strip()
        if not name or not backstory:
            raise ProviderFailure("Generated document is missing name or backstory")
        fields = data.get("additional_fields")
        if not isinstance(fields, dict):
            fields = {}

        first_name = name.split()[0].lower()
        if first_name not in backstory.lower():
            logger.warning("Backstory may not mention %r: %r", name, backstory)

        document = TravelerDocument(
            name=name,
            permit=generate_permit(valid_permit, self._rng),
            backstory=backstory,
            additional_fields=fields,
        )
        logger.info("Generated document for %s (permit %s)", document.name, document.permit)
        return document

    # ------------------------------------------------------------------
    # Judgment
    # ------------------------------------------------------------------

    async def judge_document(
        self,
        document: TravelerDocument,
        scenario_context: str,
        memory_context: str,
    ) -> Judgment:
        output = await self._call("judgment", JUDGMENT_PROMPT, {
            "scenario_context": scenario_context,
            "memory_context": memory_context,
            "doc": document.model_dump(),
            "fields": json.dumps(document.additional_fields),
        })
        data = parse_json_object(output)
        if "decision" not in data or "confidence" not in data:
            raise ProviderFailure("Judgment is missing decision or confidence")

        try:
            confidence = float(data["confidence"])
        except (TypeError, ValueError) as e:
            raise ProviderFailure(f"Judgment confidence is not a number: {data['confidence']!r}") from e
        elements = data.get("suspicious_elements")
        try:
            judgment = Judgment(
                decision="approve" if str(data["decision"]).strip().lower() == "approve" else "deny",
                confidence=min(1.0, max(0.0, confidence)),
                reasoning=str(data.get("reasoning") or "No specific reasoning provided."),
                suspicious_elements=[str(e) for e in elements] if isinstance(elements, list) else [],
            )
        except ValidationError as e:
            raise ProviderFailure(f"Judgment failed validation: {e}") from e

        if self.balance_flip_rate > 0 and self._rng.random() < self.balance_flip_rate:
            judgment = flip_judgment(judgment)
            logger.info("Applied balance flip to judgment for %s", document.name)

        logger.info(
            "Judgment for %s: %s (confidence %.2f)",
            document.name, judgment.decision, judgment.confidence,
        )
        return judgment

    # ------------------------------------------------------------------
    # Free text
    # ------------------------------------------------------------------

    async def generate_hint(
        self,
        document: TravelerDocument,
        memory_context: str,
        scenario_name: str = "",
    ) -> str:
        output = await self._call("hint", HINT_PROMPT, {
            "memory_context": memory_context,
            "doc": document.model_dump(),
            "fields": json.dumps(document.additional_fields),
            "scenario_name": scenario_name,
        })
        return _clean_text(output)

    async def generate_narrative_update(
        self,
        story: NarrativeState,
        document: TravelerDocument,
        decision: str,
        correct: bool,
        memory_context: str,
    ) -> str:
        output = await self._call("narrative", NARRATIVE_PROMPT, {
            "memory_context": memory_context,
            "doc": document.model_dump(),
            "decision": decision,
            "correct": correct,
            "story": {
                "day": story.day,
                "corruption": story.corruption,
                "trust": story.trust,
                "tendency": story.tendency,
            },
        })
        return _clean_text(output)


def flip_judgment(judgment: Judgment) -> Judgment:
    """Invert a judgment for gameplay balance, lowering its confidence."""
    return Judgment(
        decision="deny" if judgment.decision == "approve" else "approve",
        confidence=max(0.1, min(0.7, judgment.confidence * 0.8)),
        reasoning=f"[Balanced] {judgment.reasoning}",
        suspicious_elements=list(judgment.suspicious_elements),
    )

"""Handlebars prompt templates for the content provider.

Each provider call renders one template. Values are inserted with
triple-stash ({{{value}}}) so quotes and ampersands reach the model as-is.
All context is passed in explicitly; nothing is read from module state.
"""

from collections.abc import Callable
from typing import Any

import pybars


_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


# ── Document generation ─────────────────────────────────

DOCUMENT_PROMPT = """\
You are a document generation system for a border control game called Veritaminal.
Generate ONLY structured JSON data representing a traveler document with these fields:
- name: Full name (first and last) with no prefix or label (e.g. "John Doe").
- backstory: Brief one-sentence backstory that MUST mention the generated name exactly.
- additional_fields: An object of relevant border-specific fields (can be empty).

RULES:
- Generate unique names different from previously seen travelers.
- Keep content appropriate for a general audience and non-political.
- Occasionally include subtle inconsistencies in the backstory or additional fields.
- Output ONLY a single valid JSON object, no markdown, no text before or after it.

Border Setting: {{{scenario.name}}}
Situation: {{{scenario.situation}}}
Current Document Requirements: {{{requirements}}}
Common Issues at this Border: {{{issues}}}

{{{used_names}}}

Generate the traveler document JSON object now.\
"""

# ── Judgment ─────────────────────────────────────────────

JUDGMENT_PROMPT = """\
You are an expert document verification system for the border control game \
Veritaminal. Evaluate the traveler's document and decide whether it should be \
approved or denied. Check internal consistency between the fields, the border \
rules and situation, recent history, and subtle discrepancies that suggest forgery.

{{{scenario_context}}}

{{{memory_context}}}

DOCUMENT TO EVALUATE:
Name: {{{doc.name}}}
Permit: {{{doc.permit}}}
Backstory: {{{doc.backstory}}}
Additional Fields: {{{fields}}}

Cross-reference the traveler's name ({{{doc.name}}}) across all fields.
Return ONLY a JSON object with exactly these fields:
- decision: "approve" or "deny"
- confidence: a number between 0.0 and 1.0
- reasoning: 1-2 sentences referencing the traveler's details
- suspicious_elements: a list of strings (empty if nothing is suspicious)\
"""

# ── Hint ─────────────────────────────────────────────────

HINT_PROMPT = """\
You are Veritas, an AI assistant to a border control agent in the game Veritaminal.
Give a subtle, indirect hint (1-2 sentences) about potential issues or \
confirmations in the traveler's document. Stay neutral with a dry, observant \
tone. Never say outright whether to approve or deny; guide attention to \
specific details instead, and refer to the traveler by name.

{{{memory_context}}}

TRAVELER:
Name: {{{doc.name}}}
Permit: {{{doc.permit}}}
Backstory: {{{doc.backstory}}}
Additional Fields: {{{fields}}}
{{#if scenario_name}}Border Setting: {{{scenario_name}}}
{{/if}}
Hint:\
"""

# ── Narrative update ─────────────────────────────────────

NARRATIVE_PROMPT = """\
You are crafting a branching narrative for Veritaminal, a border control \
simulation game. Write a short story fragment (1-2 sentences, 25-50 words) \
showing the immediate consequence of the player's decision about this \
specific traveler. Use the traveler's name and backstory, build atmosphere \
from the game state, and keep the world consistent with the border setting.

{{{memory_context}}}

TRAVELER:
Name: {{{doc.name}}}
Backstory: {{{doc.backstory}}}

Player decision: {{decision}}
Decision correctness: {{#if correct}}correct{{else}}incorrect{{/if}}
Current day: {{story.day}}
Current corruption level: {{story.corruption}}
Current trust level: {{story.trust}}
Current tendency: {{story.tendency}}

Narrative update:\
"""

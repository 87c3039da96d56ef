"""Border scenario catalog and assignment configuration.

The catalog is plain data. SettingsStore tracks which scenario the current
career uses, the custom rules added on top of it, and the SessionConfig
(assignment length, travelers per day). SessionConfig changes are rejected
with InvalidInput and never partially applied.
"""

from __future__ import annotations

import logging

from veritaminal.models import ScenarioConfig, SessionConfig

logger = logging.getLogger(__name__)

TOTAL_DAYS_RANGE = (1, 30)
TRAVELERS_PER_DAY_RANGE = (1, 20)


class InvalidInput(ValueError):
    """Raised for a malformed player command or out-of-range config value."""


BORDER_SCENARIOS: list[ScenarioConfig] = [
    ScenarioConfig(
        id="eastokan_westoria",
        name="Eastokan-Westoria Border",
        situation=(
            "Tense relations due to recent trade disputes. "
            "Increased scrutiny on business travelers."
        ),
        description=(
            "The border between the industrial nation of Eastokan and the "
            "agricultural country of Westoria. Recent trade disputes have "
            "heightened tensions."
        ),
        document_requirements=[
            "Permit must start with 'P' followed by 4 digits",
            "Travelers must have both first and last names",
            "Business travelers require a trade visa stamp",
        ],
        common_issues=[
            "Forged business credentials",
            "Expired permits",
            "Identity mismatches in documentation",
        ],
    ),
    ScenarioConfig(
        id="northland_southoria",
        name="Northland-Southoria Border",
        situation=(
            "Post-conflict reconciliation with humanitarian crisis. "
            "Focus on refugee documentation."
        ),
        description=(
            "Following the peace treaty ending the 5-year conflict, this "
            "border handles many refugees and humanitarian workers."
        ),
        document_requirements=[
            "Permit must start with 'P' followed by 4 digits",
            "Humanitarian workers need special H-class authorization",
            "Refugee documents must include origin verification",
        ],
        common_issues=[
            "Missing refugee documentation",
            "Impersonation of humanitarian workers",
            "Forged origin documentation",
        ],
    ),
    ScenarioConfig(
        id="oceania_continent",
        name="Oceania-Continent Ferry Checkpoint",
        situation=(
            "Tourism boom with increasing smuggling concerns. "
            "Focus on contraband detection."
        ),
        description=(
            "This busy checkpoint manages traffic between the island nation "
            "of Oceania and the mainland Continent. Tourism is booming, but "
            "smuggling is on the rise."
        ),
        document_requirements=[
            "Permit must start with 'P' followed by 4 digits",
            "Tourist visas require verification stamps",
            "Commercial transport requires cargo manifests",
        ],
        common_issues=[
            "Overstayed tourist visas",
            "Undeclared commercial activity",
            "Falsified transport documentation",
        ],
    ),
]


def _parse_in_range(field: str, value: object, bounds: tuple[int, int]) -> int:
    if isinstance(value, bool):
        raise InvalidInput(f"{field} must be an integer, got {value!r}")
    try:
        number = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as e:
        raise InvalidInput(f"{field} must be an integer, got {value!r}") from e
    low, high = bounds
    if not low <= number <= high:
        raise InvalidInput(f"{field} must be {low}-{high}, got {number}")
    return number


class SettingsStore:
    def __init__(self, scenarios: list[ScenarioConfig] | None = None) -> None:
        self._scenarios = list(BORDER_SCENARIOS if scenarios is None else scenarios)
        if not self._scenarios:
            raise ValueError("SettingsStore needs at least one scenario")
        self._current: ScenarioConfig | None = None
        self._custom_rules: list[str] = []
        self._config = SessionConfig()

    # ------------------------------------------------------------------
    # Scenarios
    # ------------------------------------------------------------------

    def available_scenarios(self) -> list[ScenarioConfig]:
        return list(self._scenarios)

    def get_scenario(self, scenario_id: str | None) -> ScenarioConfig | None:
        for scenario in self._scenarios:
            if scenario.id == scenario_id:
                return scenario
        return None

    def select_scenario(self, scenario_id: str | None) -> ScenarioConfig:
        """Select a scenario by id, falling back to the first one.

        Custom rules belong to a scenario, so they are cleared.
        """
        scenario = self.get_scenario(scenario_id)
        if scenario is None:
            if scenario_id is not None:
                logger.warning("Scenario %r not found, using default", scenario_id)
            scenario = self._scenarios[0]
        self._current = scenario
        self._custom_rules = []
        return scenario

    @property
    def current_scenario(self) -> ScenarioConfig:
        if self._current is None:
            self._current = self._scenarios[0]
        return self._current

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    @property
    def custom_rules(self) -> list[str]:
        return list(self._custom_rules)

    def add_custom_rule(self, description: str) -> bool:
        """Add a rule to the current scenario. Returns False for duplicates."""
        description = description.strip()
        if not description:
            raise InvalidInput("Rule description must not be empty")
        if description in self._custom_rules:
            return False
        self._custom_rules.append(description)
        return True

    def all_rules(self) -> list[str]:
        return [*self.current_scenario.document_requirements, *self._custom_rules]

    def scenario_context(self) -> str:
        scenario = self.current_scenario
        lines = [
            f"BORDER: {scenario.name}",
            f"SITUATION: {scenario.situation}",
            "",
            "DOCUMENT REQUIREMENTS:",
        ]
        lines.extend(f"- {req}" for req in scenario.document_requirements)
        if self._custom_rules:
            lines.append("")
            lines.append("ADDITIONAL RULES:")
            lines.extend(f"- {rule}" for rule in self._custom_rules)
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Session configuration
    # ------------------------------------------------------------------

    @property
    def session_config(self) -> SessionConfig:
        return self._config.model_copy()

    def update_session_config(
        self,
        total_days: object | None = None,
        travelers_per_day: object | None = None,
    ) -> SessionConfig:
        """Validate and apply new assignment parameters.

        All values are checked before anything is applied.
        """
        if not self._config.allow_customization:
            raise InvalidInput("Game configuration customization is disabled")
        updates: dict[str, int] = {}
        if total_days is not None:
            updates["total_days"] = _parse_in_range("total_days", total_days, TOTAL_DAYS_RANGE)
        if travelers_per_day is not None:
            updates["travelers_per_day"] = _parse_in_range(
                "travelers_per_day", travelers_per_day, TRAVELERS_PER_DAY_RANGE
            )
        if updates:
            self._config = self._config.model_copy(update=updates)
            logger.info(
                "Game configuration updated: %d days, %d travelers per day",
                self._config.total_days, self._config.travelers_per_day,
            )
        return self.session_config

    def reset_session_config(self) -> SessionConfig:
        self._config = SessionConfig(allow_customization=self._config.allow_customization)
        return self.session_config

    def config_summary(self) -> str:
        return (
            f"Assignment Duration: {self._config.total_days} days\n"
            f"Travelers per Day: {self._config.travelers_per_day} people"
        )

    # ------------------------------------------------------------------
    # Resume
    # ------------------------------------------------------------------

    def restore(
        self,
        scenario_id: str | None,
        session_config: SessionConfig,
        custom_rules: list[str],
    ) -> ScenarioConfig:
        """Put the store back into the state recorded in a snapshot."""
        scenario = self.select_scenario(scenario_id)
        self._config = session_config.model_copy()
        self._custom_rules = list(dict.fromkeys(custom_rules))
        return scenario

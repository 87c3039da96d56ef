"""Veritaminal — terminal entry point.

    veritaminal [--debug] [--data-dir DIR] [--load FILE] [--skip-menu] [--scenario ID]

The shell only reads lines and prints text; every game rule lives in
SessionController. `read` and `write` are injectable so the whole loop can be
driven from tests.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Callable
from pathlib import Path

from veritaminal.commands import HELP_TEXT, Command, parse_command
from veritaminal.config import ConfigError, build_controller, load_config
from veritaminal.memory import LoadError
from veritaminal.models import Ending, TravelerDocument
from veritaminal.session import TERMINAL_PHASES, Phase, SessionController, TurnResult
from veritaminal.settings import InvalidInput

logger = logging.getLogger(__name__)

MENU = """\
=== VERITAMINAL: Document Verification Game ===
1. Start New Career
2. Continue Previous Career
3. View Border Settings
4. View Game Rules
5. Game Configuration Settings
6. Quit Game"""

GAME_RULES = [
    "Verify travel documents as a border control agent.",
    "Each traveler presents: Name, Permit Number, Backstory.",
    "Decide to APPROVE or DENY based on document validity and rules.",
    "Border-specific rules will apply.",
    "Correct decisions improve your score by the confidence of the verdict.",
    "Two correct calls in a row raise trust; every mistake costs trust.",
    "Two mistakes in a row raise suspicion of corruption.",
]


class GameShell:
    def __init__(
        self,
        controller: SessionController,
        read: Callable[[str], str] = input,
        write: Callable[[str], None] = print,
    ) -> None:
        self.controller = controller
        self._read = read
        self.write = write

    def read(self, prompt: str) -> str | None:
        """One line of input, or None at end of input."""
        try:
            return self._read(prompt)
        except EOFError:
            return None

    # ------------------------------------------------------------------
    # Entry
    # ------------------------------------------------------------------

    async def run(
        self,
        load: Path | None = None,
        skip_menu: bool = False,
        scenario: str | None = None,
    ) -> None:
        if load is not None:
            if self.resume(load):
                await self.play()
            if skip_menu:
                return
        elif skip_menu:
            self.controller.initialize_session(scenario)
            await self.play()
            return
        await self.main_menu()

    async def main_menu(self) -> None:
        while True:
            self.write(MENU)
            self._show_career_stats()
            choice = self.read("Select an option: ")
            if choice is None:
                return
            choice = choice.strip()
            if choice == "1":
                if self.start_new_career():
                    await self.play()
            elif choice == "2":
                if self.continue_career():
                    await self.play()
            elif choice == "3":
                self.show_border_settings()
            elif choice == "4":
                self.show_game_rules()
            elif choice == "5":
                self.configure_game()
            elif choice == "6":
                self.write("Thank you for playing Veritaminal!")
                return
            else:
                self.write("Invalid option, please choose 1-6.")

    # ------------------------------------------------------------------
    # Menu actions
    # ------------------------------------------------------------------

    def _show_career_stats(self) -> None:
        stats = self.controller.career_stats
        if not stats.games_completed:
            return
        borders = ", ".join(sorted(stats.borders_served))
        self.write(
            f"Careers completed: {stats.games_completed} | "
            f"Total score: {stats.total_score:.2f} | "
            f"Highest day: {stats.highest_day} | Borders: {borders}"
        )

    def start_new_career(self) -> bool:
        scenarios = self.controller.settings.available_scenarios()
        for i, scenario in enumerate(scenarios, 1):
            self.write(f"{i}. {scenario.name}: {scenario.situation}")
        choice = self.read(f"Choose a border (1-{len(scenarios)}, Enter for 1): ")
        if choice is None:
            return False
        choice = choice.strip() or "1"
        if not choice.isdigit() or not 1 <= int(choice) <= len(scenarios):
            self.write("Invalid border selection.")
            return False
        scenario = self.controller.initialize_session(scenarios[int(choice) - 1].id)
        self.write(f"You are assigned to the {scenario.name}.")
        self.write(scenario.description)
        return True

    def continue_career(self) -> bool:
        saves = self.controller.memory.storage.list_saves()
        if not saves:
            self.write("No saved careers found.")
            return False
        for i, save in enumerate(saves, 1):
            self.write(f"{i}. {save.scenario_id or 'unknown border'}, day {save.day} (saved {save.saved_at})")
        choice = self.read(f"Choose a save (1-{len(saves)}): ")
        if choice is None or not choice.strip().isdigit() or not 1 <= int(choice) <= len(saves):
            self.write("Invalid save selection.")
            return False
        return self.resume(saves[int(choice) - 1].path)

    def resume(self, path: Path) -> bool:
        try:
            scenario = self.controller.resume_session(path)
        except LoadError as e:
            self.write(f"Could not load saved career: {e}")
            return False
        self.write(f"Resuming your career at the {scenario.name}, day {self.controller.day}.")
        return True

    def show_border_settings(self) -> None:
        for scenario in self.controller.settings.available_scenarios():
            self.write(f"\n{scenario.name}")
            self.write(f"  {scenario.description}")
            self.write(f"  Situation: {scenario.situation}")
            self.write("  Document requirements:")
            for req in scenario.document_requirements:
                self.write(f"    - {req}")
            self.write("  Common issues:")
            for issue in scenario.common_issues:
                self.write(f"    - {issue}")

    def show_game_rules(self) -> None:
        for rule in GAME_RULES:
            self.write(f"- {rule}")
        days = self.controller.settings.session_config.total_days
        self.write(f"- Your career lasts {days} days.")
        self.write(HELP_TEXT)

    def configure_game(self) -> None:
        settings = self.controller.settings
        self.write(settings.config_summary())
        days = (self.read("Assignment length in days (1-30, Enter to keep): ") or "").strip()
        travelers = (self.read("Travelers per day (1-20, Enter to keep): ") or "").strip()
        try:
            settings.update_session_config(
                total_days=days or None,
                travelers_per_day=travelers or None,
            )
        except InvalidInput as e:
            self.write(f"Configuration not changed: {e}")
            return
        self.write(settings.config_summary())

    # ------------------------------------------------------------------
    # Gameplay
    # ------------------------------------------------------------------

    async def play(self) -> None:
        controller = self.controller
        self.write(f"Starting Day {controller.day}...")
        while True:
            if controller.phase in TERMINAL_PHASES:
                self._show_ending(controller.finish())
                return
            if controller.phase is Phase.DAY_COMPLETE:
                self.write(controller.advance_day())
                continue

            document = await controller.process_traveler()
            self._show_document(document)
            if not await self._turn(document):
                return

    async def _turn(self, document: TravelerDocument) -> bool:
        """Command loop for one traveler. False when the player quits."""
        controller = self.controller
        while True:
            text = self.read("> ")
            if text is None:
                controller.abandon_turn()
                return False
            try:
                command = parse_command(text)
            except InvalidInput as e:
                self.write(str(e))
                continue

            if command in (Command.APPROVE, Command.DENY):
                result = await controller.submit_decision(command.value, document)
                self._show_result(result)
                return True
            if command is Command.HINT:
                self.write(f"Veritas: {await controller.request_hint()}")
            elif command is Command.RULES:
                for rule in controller.rules():
                    self.write(f"- {rule}")
            elif command is Command.SAVE:
                path = controller.save()
                self.write(f"Game progress saved to {path}.")
            elif command is Command.HELP:
                self.write(HELP_TEXT)
            elif command is Command.QUIT:
                controller.abandon_turn()
                self.write("Returning to main menu. Progress is saved after each decision.")
                return False

    def _show_document(self, document: TravelerDocument) -> None:
        self.write("")
        self.write(f"Name:      {document.name}")
        self.write(f"Permit:    {document.permit}")
        self.write(f"Backstory: {document.backstory}")
        for key, value in document.additional_fields.items():
            self.write(f"{key}: {value}")
        self.write(self.controller.status_line())

    def _show_result(self, result: TurnResult) -> None:
        outcome = result.outcome
        if outcome.correct:
            self.write(f"Correct! +{outcome.points_earned:.2f} (score {outcome.score:.2f})")
        else:
            self.write(f"Incorrect. (score {outcome.score:.2f})")
        self.write(f"Assessment: {outcome.judgment.reasoning}")
        self.write(result.narrative)
        if result.milestone:
            self.write(result.milestone)

    def _show_ending(self, ending: Ending) -> None:
        title = "GAME OVER" if ending.is_failure else "ASSIGNMENT COMPLETE"
        self.write(f"\n=== {title} ===")
        self.write(ending.message)
        self.write(f"Final score: {self.controller.score:.2f}")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Veritaminal: a border control game")
    parser.add_argument("--debug", action="store_true",
                        help="Enable debug logging")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Save directory root (default: ./data)")
    parser.add_argument("--load", type=Path, default=None,
                        help="Resume the career saved in FILE")
    parser.add_argument("--skip-menu", action="store_true",
                        help="Start playing immediately")
    parser.add_argument("--scenario", default=None,
                        help="Border scenario id for --skip-menu")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = load_config()
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    if args.data_dir is not None:
        config = config.model_copy(update={"data_dir": args.data_dir})

    shell = GameShell(build_controller(config))
    try:
        asyncio.run(shell.run(load=args.load, skip_menu=args.skip_menu, scenario=args.scenario))
    except KeyboardInterrupt:
        print("\nExiting Veritaminal. Goodbye!")
    return 0

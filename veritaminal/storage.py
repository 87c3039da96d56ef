"""JSON file storage for session snapshots.

All persisted state lives in flat JSON files under a configurable base
directory. There is no database — reads and writes go through plain helper
methods that load and dump JSON.

Directory layout:

    {base}/
      saves/
        veritaminal_session_{timestamp}.json   ← one SessionSnapshot per career

A career opens a SessionHandle once; every later write for that career goes
to the same file, so a career never leaves more than one save behind.
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict

from veritaminal.models import SessionSnapshot, utc_now

SAVE_PREFIX = "veritaminal_session_"


class SessionHandle(BaseModel):
    """Stable identity of one career's save file."""

    model_config = ConfigDict(frozen=True)

    id: str
    path: Path


class SaveInfo(BaseModel):
    """Summary of a save file, for listing in menus."""

    path: Path
    session_id: str | None
    scenario_id: str | None
    day: int
    saved_at: str | None


class Storage:
    def __init__(self, base_path: Path) -> None:
        self._base = base_path
        self._saves = base_path / "saves"
        self._saves.mkdir(parents=True, exist_ok=True)

    @property
    def saves_dir(self) -> Path:
        return self._saves

    # ------------------------------------------------------------------
    # Internal path helpers
    # ------------------------------------------------------------------

    def _save_file(self, session_id: str) -> Path:
        return self._saves / f"{session_id}.json"

    def _write_text_atomic(self, path: Path, text: str) -> None:
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(text, encoding="utf-8")
        os.replace(tmp, path)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def open_session(self) -> SessionHandle:
        """Create a handle with a fresh, unused session id."""
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        base_id = f"{SAVE_PREFIX}{stamp}"
        session_id = base_id
        counter = 2
        while self._save_file(session_id).exists():
            session_id = f"{base_id}-{counter}"
            counter += 1
        return SessionHandle(id=session_id, path=self._save_file(session_id))

    def handle_for(self, path: Path) -> SessionHandle:
        """Handle that keeps writing to an existing save file."""
        return SessionHandle(id=path.stem, path=path)

    def write_snapshot(self, handle: SessionHandle, snapshot: SessionSnapshot) -> Path:
        snapshot = snapshot.model_copy(update={"session_id": handle.id, "saved_at": utc_now()})
        handle.path.parent.mkdir(parents=True, exist_ok=True)
        self._write_text_atomic(handle.path, snapshot.model_dump_json(indent=2))
        return handle.path

    def read_text(self, path: Path) -> str:
        return path.read_text(encoding="utf-8")

    def list_saves(self) -> list[SaveInfo]:
        """Newest first. Unreadable files are skipped."""
        results: list[SaveInfo] = []
        for path in self._saves.glob("*.json"):
            try:
                snap = SessionSnapshot.model_validate_json(self.read_text(path))
            except (OSError, ValueError):
                continue
            results.append(SaveInfo(
                path=path,
                session_id=snap.session_id,
                scenario_id=snap.scenario_id,
                day=snap.game_state.day,
                saved_at=snap.saved_at,
            ))
        results.sort(key=lambda s: s.saved_at or "", reverse=True)
        return results

    def delete_save(self, path: Path) -> bool:
        if not path.is_file():
            return False
        path.unlink()
        return True

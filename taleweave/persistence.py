"""
Snapshot persistence for game sessions.

A snapshot is one JSON document:

    {
      "gameState": {...},          # GameState aggregate root
      "history": [...],            # HistoryEntry records, oldest first
      "agents": [...],             # every registered agent (player, NPCs, gm, ...)
      "relationships": {...},      # optional, trust map records keyed by pair
      "memories": [...]            # optional, Memory records
    }

``import_snapshot`` validates every section before touching the session. A
malformed snapshot raises `SnapshotValidationError` listing each issue and the
live session is left exactly as it was.

Storage backends implement `SnapshotStore`:
1. InMemorySnapshotStore - dict keyed by slot name (tests, scratch sessions)
2. JsonSnapshotStore - one ``<slot>.json`` file per slot, written atomically
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from taleweave.errors import SnapshotValidationError, validation_issues
from taleweave.logging_utils import log_success, log_warning
from taleweave.schemas import Agent, GameState, HistoryEntry, Memory, Relationship
from taleweave.trust_map import TrustMap, relationship_key

if TYPE_CHECKING:  # pragma: no cover
    from taleweave.session import GameSession


class Snapshot(BaseModel):
    """Validated form of a saved session."""

    model_config = ConfigDict(populate_by_name=True)

    game_state: GameState = Field(alias="gameState")
    history: List[HistoryEntry]
    agents: List[Agent]
    relationships: Optional[Dict[str, Any]] = None
    memories: Optional[List[Memory]] = None


def export_snapshot(session: "GameSession", *, include_memories: bool = True) -> str:
    payload: Dict[str, Any] = {
        "gameState": session.game_state.state.model_dump(mode="json"),
        "history": session.history.export(),
        "agents": session.registry.export(),
        "relationships": session.trust_map.export(),
    }
    if include_memories:
        payload["memories"] = session.memory.export()
    return json.dumps(payload, ensure_ascii=False, indent=2)


def parse_snapshot(text: str) -> tuple[Snapshot, List[Relationship]]:
    """Validate a snapshot document without touching any session."""
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise SnapshotValidationError("Snapshot is not valid JSON", [str(exc)]) from exc
    if not isinstance(payload, dict):
        raise SnapshotValidationError("Snapshot must be a JSON object")

    # Report every structural problem at once instead of stopping at the first.
    issues = [
        f"{key}: missing section" for key in ("gameState", "history", "agents") if key not in payload
    ]
    issues.extend(
        f"{key}: must be a list"
        for key in ("history", "agents")
        if key in payload and not isinstance(payload[key], list)
    )
    if issues:
        raise SnapshotValidationError("Snapshot is incomplete", issues)

    try:
        snapshot = Snapshot.model_validate(payload)
    except ValidationError as exc:
        raise SnapshotValidationError("Snapshot failed validation", validation_issues(exc)) from exc

    # Older saves carry relationships only on the agents; rebuild the map from those.
    if snapshot.relationships is not None:
        records = TrustMap.validate_records(snapshot.relationships)
    else:
        records = _relationships_from_mirrors(snapshot.agents)
    return snapshot, records


def import_snapshot(session: "GameSession", text: str) -> Snapshot:
    """Replace the session's state with a validated snapshot (all or nothing)."""
    # Everything is validated before the first service is touched.
    snapshot, records = parse_snapshot(text)

    session.game_state.replace(snapshot.game_state)
    session.registry.load(snapshot.agents)
    session.history.load(snapshot.history)
    session.trust_map.load(records)
    session.memory.load(snapshot.memories or [])
    log_success(
        f"Snapshot loaded: turn {snapshot.game_state.turn}, "
        f"{len(snapshot.agents)} agents, {len(snapshot.history)} history entries"
    )
    return snapshot


def _relationships_from_mirrors(agents: List[Agent]) -> List[Relationship]:
    """Rebuild trust map records from the copies carried on agents."""
    records: Dict[str, Relationship] = {}
    for agent in agents:
        for other_id, relationship in agent.relationships.items():
            pair = relationship.agent_ids or tuple(sorted((agent.id, other_id)))
            if pair[0] == pair[1]:
                continue
            records.setdefault(
                relationship_key(*pair),
                relationship.model_copy(update={"agent_ids": pair}),
            )
    if records:
        log_warning("Snapshot has no relationships section; rebuilt it from agent records")
    return list(records.values())


class SnapshotStore(ABC):
    """Async key/value storage for serialized snapshots."""

    @abstractmethod
    async def save(self, slot: str, snapshot: str) -> None:
        pass

    @abstractmethod
    async def load(self, slot: str) -> Optional[str]:
        """Return the stored snapshot text, or ``None`` if the slot is empty."""
        pass

    @abstractmethod
    async def list_slots(self) -> List[str]:
        pass

    @abstractmethod
    async def delete(self, slot: str) -> bool:
        pass


class InMemorySnapshotStore(SnapshotStore):
    def __init__(self) -> None:
        self._slots: Dict[str, str] = {}

    async def save(self, slot: str, snapshot: str) -> None:
        self._slots[slot] = snapshot

    async def load(self, slot: str) -> Optional[str]:
        return self._slots.get(slot)

    async def list_slots(self) -> List[str]:
        return sorted(self._slots)

    async def delete(self, slot: str) -> bool:
        return self._slots.pop(slot, None) is not None


class JsonSnapshotStore(SnapshotStore):
    """One pretty-printed JSON file per slot under ``base_path``.

    Writes go to a temporary file in the same directory which then replaces the
    target, so a crash mid-write never leaves a truncated save behind. All file
    I/O runs in a worker thread.
    """

    def __init__(self, base_path: Path | str = "saves") -> None:
        self.base_path = Path(base_path)

    def _path(self, slot: str) -> Path:
        # Slot names are plain file stems; no separators or hidden files.
        if not slot or any(sep in slot for sep in ("/", "\\")) or slot.startswith("."):
            raise ValueError(f"Invalid save slot name: {slot!r}")
        return self.base_path / f"{slot}.json"

    async def save(self, slot: str, snapshot: str) -> None:
        path = self._path(slot)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{slot}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(snapshot)
                # Atomic on POSIX and Windows when both paths share a directory.
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise

        await asyncio.to_thread(_write)

    async def load(self, slot: str) -> Optional[str]:
        path = self._path(slot)
        if not path.exists():
            return None
        return await asyncio.to_thread(path.read_text, "utf-8")

    async def list_slots(self) -> List[str]:
        if not self.base_path.exists():
            return []
        return sorted(path.stem for path in self.base_path.glob("*.json"))

    async def delete(self, slot: str) -> bool:
        path = self._path(slot)
        if not path.exists():
            return False
        await asyncio.to_thread(path.unlink)
        return True


__all__ = [
    "Snapshot",
    "SnapshotStore",
    "InMemorySnapshotStore",
    "JsonSnapshotStore",
    "export_snapshot",
    "import_snapshot",
    "parse_snapshot",
]

"""
HistoryLog: append-only, capacity-bounded record of everything that happened.

Unlike the memory store, eviction here is pure FIFO: once the log holds more
than ``max_length`` entries the oldest one is dropped, whatever its type.
The log feeds recent context into the response policy and prompt builder.
"""

from __future__ import annotations

from collections import deque
from datetime import datetime
from typing import Any, Deque, Dict, Iterable, List, Optional

from taleweave.config import Config
from taleweave.schemas import Action, HistoryEntry, HistoryEntryType, make_id, utc_now


SUMMARY_ENTRY_COUNT = 10

_SUMMARY_LABELS = {
    HistoryEntryType.ACTION: "action",
    HistoryEntryType.NPC_RESPONSE: "npc",
    HistoryEntryType.ENVIRONMENT: "environment",
    HistoryEntryType.SYSTEM: "system",
}


def format_entry(entry: HistoryEntry) -> Optional[str]:
    """Render one entry as ``[kind] speaker: content``; state changes are skipped."""
    label = _SUMMARY_LABELS.get(entry.type)
    if label is None:
        return None
    if entry.type == HistoryEntryType.ACTION:
        return f"[{label}] {entry.actor_id}: {entry.content}"
    if entry.type == HistoryEntryType.NPC_RESPONSE:
        return f"[{label}] {entry.npc_id}: {entry.content}"
    if entry.type == HistoryEntryType.ENVIRONMENT:
        return f"[{label}] {entry.location_id}: {entry.description}"
    return f"[{label}] {entry.event_type}: {entry.message}"


class HistoryLog:
    """Ring buffer of `HistoryEntry` records with typed convenience adders."""

    def __init__(self, max_length: Optional[int] = None) -> None:
        self.max_length = max_length or Config.MAX_HISTORY_LENGTH
        self._entries: Deque[HistoryEntry] = deque(maxlen=self.max_length)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)

    @property
    def entries(self) -> List[HistoryEntry]:
        return list(self._entries)

    def add(self, entry: HistoryEntry) -> HistoryEntry:
        """Append an entry, stamping a fresh id and timestamp.

        The bounded deque drops the oldest entry once ``max_length`` is exceeded.
        """
        stamped = entry.model_copy(update={"id": make_id("entry"), "timestamp": utc_now()})
        self._entries.append(stamped)
        return stamped

    # ------------------------------------------------------------------
    # Typed constructors
    # ------------------------------------------------------------------

    def add_action(self, action: Action, result: Any = None) -> HistoryEntry:
        return self.add(
            HistoryEntry(
                type=HistoryEntryType.ACTION,
                actor_id=action.actor_id,
                content=action.content,
                action=action.model_dump(mode="json"),
                result=result,
            )
        )

    def add_state_change(
        self,
        previous: Dict[str, Any],
        current: Dict[str, Any],
        cause: Optional[str] = None,
    ) -> HistoryEntry:
        """Record the shallow difference between two state dictionaries."""
        changes: Dict[str, Dict[str, Any]] = {}
        for key in set(previous) | set(current):
            before, after = previous.get(key), current.get(key)
            if before != after:
                changes[key] = {"previous": before, "current": after}
        return self.add(
            HistoryEntry(type=HistoryEntryType.STATE_CHANGE, changes=changes, cause=cause)
        )

    def add_system(
        self,
        event_type: str,
        message: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> HistoryEntry:
        return self.add(
            HistoryEntry(
                type=HistoryEntryType.SYSTEM,
                event_type=event_type,
                message=message,
                data=data or {},
            )
        )

    def add_npc_response(
        self,
        npc_id: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> HistoryEntry:
        return self.add(
            HistoryEntry(
                type=HistoryEntryType.NPC_RESPONSE,
                npc_id=npc_id,
                content=content,
                metadata=metadata or {},
            )
        )

    def add_environment(
        self,
        location_id: str,
        description: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> HistoryEntry:
        return self.add(
            HistoryEntry(
                type=HistoryEntryType.ENVIRONMENT,
                location_id=location_id,
                description=description,
                metadata=metadata or {},
            )
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_recent(self, count: int = 10) -> List[HistoryEntry]:
        if count <= 0:
            return []
        return list(self._entries)[-count:]

    def get_by_type(self, entry_type: HistoryEntryType | str, count: Optional[int] = None) -> List[HistoryEntry]:
        wanted = HistoryEntryType(entry_type)
        matches = [entry for entry in self._entries if entry.type == wanted]
        return matches[-count:] if count else matches

    def get_by_actor(self, actor_id: str, count: Optional[int] = None) -> List[HistoryEntry]:
        """Entries performed by ``actor_id``, including its NPC responses."""
        matches = [
            entry
            for entry in self._entries
            if entry.actor_id == actor_id
            or (entry.type == HistoryEntryType.NPC_RESPONSE and entry.npc_id == actor_id)
        ]
        return matches[-count:] if count else matches

    def get_by_time_range(self, start: datetime, end: datetime) -> List[HistoryEntry]:
        return [entry for entry in self._entries if start <= entry.timestamp <= end]

    def summarize(self, max_chars: int = 1000) -> str:
        """Render the most recent entries one per line, keeping the newest text.

        When the rendering is longer than ``max_chars`` the front is cut away and
        the remainder starts at the next complete line. A non-positive
        ``max_chars`` yields an empty summary.
        """
        if max_chars <= 0:
            return ""
        lines = [
            line
            for line in (format_entry(entry) for entry in self.get_recent(SUMMARY_ENTRY_COUNT))
            if line is not None
        ]
        summary = "\n".join(lines)
        if len(summary) <= max_chars:
            return summary

        cut = len(summary) - max_chars
        tail = summary[cut:]
        if summary[cut - 1] != "\n":
            newline = tail.find("\n")
            tail = tail[newline + 1:] if newline != -1 else ""
        return tail

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def clear(self) -> None:
        self._entries.clear()

    def export(self) -> List[Dict[str, Any]]:
        return [entry.model_dump(mode="json") for entry in self._entries]

    def load(self, entries: Iterable[HistoryEntry]) -> None:
        """Replace the log with already-validated entries (ids and timestamps kept)."""
        self._entries = deque(entries, maxlen=self.max_length)


__all__ = ["HistoryLog", "format_entry", "SUMMARY_ENTRY_COUNT"]

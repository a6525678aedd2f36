"""
MemoryStore: per-agent and global memories with relevance-ranked retrieval.

Memories are created from history entries or directly by engine logic. The
store is capacity-bounded: when it grows past ``max_memories`` the oldest
memory that is not CRITICAL is evicted. CRITICAL memories are never evicted,
so a store made only of critical memories may exceed its capacity.

Reading is not side-effect free: ``get()`` and ``get_relevant()`` bump
``access_count`` and refresh ``last_accessed``, which in turn feeds the
access-frequency part of the score. ``search()`` does not touch its results.

Scoring (higher is better):
- search(): content match +10, importance x2, recency of last access
  ``max(0, 5 - days * decay_rate)``, access frequency ``min(5, count * 0.5)``
- get_relevant(): importance x2, same agent +5, content match +10, same type +3,
  recency of creation, access frequency
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from taleweave.config import Config
from taleweave.logging_utils import log_warning
from taleweave.registry import AgentRegistry
from taleweave.schemas import (
    HistoryEntry,
    HistoryEntryType,
    Memory,
    MemoryImportance,
    MemoryType,
    make_id,
    utc_now,
)


SECONDS_PER_DAY = 60 * 60 * 24

IMPORTANCE_LABELS = {
    MemoryImportance.LOW: "低",
    MemoryImportance.MEDIUM: "中",
    MemoryImportance.HIGH: "高",
    MemoryImportance.CRITICAL: "关键",
}


def format_history_content(entry: HistoryEntry) -> str:
    """Memory text for a history entry."""
    if entry.type == HistoryEntryType.ACTION:
        return f"{entry.actor_id or '未知'} 执行了行为: {entry.content}"
    if entry.type == HistoryEntryType.NPC_RESPONSE:
        return f"{entry.npc_id or '未知'} 说: {entry.content}"
    if entry.type == HistoryEntryType.ENVIRONMENT:
        return f"环境描述: {entry.description}"
    if entry.type == HistoryEntryType.SYSTEM:
        return f"系统事件: {entry.message}"
    changes = ", ".join(sorted(entry.changes or {}))
    return f"状态变化: {changes}"


class MemoryStore:
    """Capacity-bounded memory collection with keyword relevance scoring."""

    def __init__(
        self,
        registry: Optional[AgentRegistry] = None,
        *,
        max_memories: Optional[int] = None,
        decay_rate: Optional[float] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._registry = registry
        self.max_memories = max_memories or Config.MAX_MEMORIES
        self.decay_rate = Config.MEMORY_DECAY_RATE if decay_rate is None else decay_rate
        self._clock = clock
        self._memories: Dict[str, Memory] = {}

    def __len__(self) -> int:
        return len(self._memories)

    def __contains__(self, memory_id: str) -> bool:
        return memory_id in self._memories

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def add(self, memory: Memory) -> str:
        """Store a memory with a fresh id and timestamps; returns the id."""
        now = self._clock()
        record = memory.model_copy(
            update={
                "id": make_id("memory"),
                "created_at": now,
                "updated_at": now,
                "last_accessed": now,
                "access_count": 0,
            }
        )
        self._memories[record.id] = record
        while len(self._memories) > self.max_memories:
            if not self._evict_oldest():
                break
        return record.id

    def create_from_history(
        self,
        entry: HistoryEntry,
        importance: MemoryImportance = MemoryImportance.MEDIUM,
        agent_id: Optional[str] = None,
    ) -> str:
        memory_type = (
            MemoryType.ENVIRONMENT if entry.type == HistoryEntryType.ENVIRONMENT else MemoryType.EVENT
        )
        memory_id = self.add(
            Memory(
                type=memory_type,
                content=format_history_content(entry),
                agent_id=agent_id,
                importance=importance,
                metadata={"history_entry_id": entry.id, "history_type": entry.type.value},
            )
        )
        if agent_id:
            self._associate(agent_id, memory_id)
        return memory_id

    def create_agent_memory(
        self,
        agent_id: str,
        content: str,
        memory_type: MemoryType = MemoryType.EVENT,
        importance: MemoryImportance = MemoryImportance.MEDIUM,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[str]:
        if self._registry is not None and self._registry.get(agent_id) is None:
            log_warning(f"Cannot create memory for unknown agent '{agent_id}'")
            return None
        memory_id = self.add(
            Memory(
                type=memory_type,
                content=content,
                agent_id=agent_id,
                importance=importance,
                metadata=metadata or {},
            )
        )
        self._associate(agent_id, memory_id)
        return memory_id

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    def get(self, memory_id: str) -> Optional[Memory]:
        """Return a memory and record the access."""
        memory = self._memories.get(memory_id)
        if memory is None:
            return None
        self._touch(memory)
        return memory

    def update(self, memory_id: str, changes: Dict[str, Any]) -> Optional[Memory]:
        memory = self._memories.get(memory_id)
        if memory is None:
            log_warning(f"Cannot update unknown memory '{memory_id}'")
            return None
        changes = {k: v for k, v in changes.items() if k not in ("id", "created_at")}
        data = {**memory.model_dump(), **changes, "updated_at": self._clock()}
        updated = Memory.model_validate(data)
        self._memories[memory_id] = updated
        return updated

    def delete(self, memory_id: str) -> bool:
        memory = self._memories.pop(memory_id, None)
        if memory is None:
            log_warning(f"Cannot delete unknown memory '{memory_id}'")
            return False
        if memory.agent_id and self._registry is not None:
            self._registry.remove_memory_id(memory.agent_id, memory_id)
        return True

    def get_agent_memories(self, agent_id: str) -> List[Memory]:
        return [memory for memory in self._memories.values() if memory.agent_id == agent_id]

    def get_by_type(self, memory_type: MemoryType | str) -> List[Memory]:
        wanted = MemoryType(memory_type)
        return [memory for memory in self._memories.values() if memory.type == wanted]

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    def search(
        self,
        query: str,
        *,
        memory_type: Optional[MemoryType] = None,
        agent_id: Optional[str] = None,
        min_importance: Optional[MemoryImportance] = None,
        limit: Optional[int] = None,
    ) -> List[Memory]:
        """Case-insensitive substring search ranked by relevance score."""
        needle = query.lower()
        candidates = [
            memory
            for memory in self._memories.values()
            if (memory_type is None or memory.type == memory_type)
            and (agent_id is None or memory.agent_id == agent_id)
            and (min_importance is None or memory.importance >= min_importance)
            and needle in memory.content.lower()
        ]
        now = self._clock()
        candidates.sort(key=lambda memory: self.search_score(memory, query, now), reverse=True)
        if limit and limit > 0:
            return candidates[:limit]
        return candidates

    def get_relevant(self, context: Dict[str, Any], limit: int = 10) -> List[Memory]:
        """Top memories for a context with optional ``agent_id``, ``query`` and ``type`` keys.

        Every returned memory is touched.
        """
        now = self._clock()
        scored = [
            (self.context_score(memory, context, now), memory)
            for memory in self._memories.values()
        ]
        scored.sort(key=lambda item: item[0], reverse=True)
        relevant = [memory for _, memory in scored[:limit]] if limit > 0 else []
        for memory in relevant:
            self._touch(memory)
        return relevant

    def search_score(self, memory: Memory, query: str, now: Optional[datetime] = None) -> float:
        now = now or self._clock()
        score = 0.0
        if query.lower() in memory.content.lower():
            score += 10
        score += int(memory.importance) * 2
        days_since_access = (now - memory.last_accessed).total_seconds() / SECONDS_PER_DAY
        score += max(0.0, 5 - days_since_access * self.decay_rate)
        score += min(5.0, memory.access_count * 0.5)
        return score

    def context_score(self, memory: Memory, context: Dict[str, Any], now: Optional[datetime] = None) -> float:
        now = now or self._clock()
        score = int(memory.importance) * 2.0
        agent_id = context.get("agent_id")
        if agent_id and memory.agent_id == agent_id:
            score += 5
        query = context.get("query")
        if query and query.lower() in memory.content.lower():
            score += 10
        memory_type = context.get("type")
        if memory_type and memory.type == MemoryType(memory_type):
            score += 3
        days_since_creation = (now - memory.created_at).total_seconds() / SECONDS_PER_DAY
        score += max(0.0, 5 - days_since_creation * self.decay_rate)
        score += min(5.0, memory.access_count * 0.5)
        return score

    @staticmethod
    def summarize(memories: Iterable[Memory]) -> str:
        """One ``[TYPE] [importance] content`` line per memory, most important first."""
        ordered = sorted(memories, key=lambda memory: memory.importance, reverse=True)
        if not ordered:
            return "无记忆"
        return "\n".join(
            f"[{memory.type.value.upper()}] [{IMPORTANCE_LABELS[memory.importance]}] {memory.content}"
            for memory in ordered
        )

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def export(self) -> List[Dict[str, Any]]:
        return [memory.model_dump(mode="json") for memory in self._memories.values()]

    def load(self, memories: Iterable[Memory]) -> None:
        """Replace the store with validated memories, keeping ids and timestamps."""
        self._memories = {memory.id: memory for memory in memories}

    def clear(self) -> None:
        self._memories.clear()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _touch(self, memory: Memory) -> None:
        memory.access_count += 1
        memory.last_accessed = self._clock()

    def _evict_oldest(self) -> bool:
        """Drop the oldest non-critical memory; False when only critical ones remain."""
        candidates = [
            memory
            for memory in self._memories.values()
            if memory.importance < MemoryImportance.CRITICAL
        ]
        if not candidates:
            return False
        oldest = min(candidates, key=lambda memory: memory.created_at)
        del self._memories[oldest.id]
        if oldest.agent_id and self._registry is not None:
            self._registry.remove_memory_id(oldest.agent_id, oldest.id)
        return True

    def _associate(self, agent_id: str, memory_id: str) -> None:
        if self._registry is not None and memory_id in self._memories:
            self._registry.add_memory_id(agent_id, memory_id)


__all__ = ["MemoryStore", "format_history_content", "IMPORTANCE_LABELS"]

"""Tests for the capacity-bounded memory store."""

from datetime import datetime, timedelta, timezone

from taleweave.game_state import GameStateStore
from taleweave.history import HistoryLog
from taleweave import actions
from taleweave.memory import MemoryStore
from taleweave.registry import AgentRegistry
from taleweave.schemas import Agent, AgentType, GameState, Memory, MemoryImportance, MemoryType


class FakeClock:
    """Advances one minute per call so creation order is unambiguous."""

    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(minutes=1)
        return self.now


def make_registry() -> AgentRegistry:
    state = GameState(agents=[Agent(id="innkeeper", name="玛莎", type=AgentType.NPC)])
    registry = AgentRegistry(GameStateStore(state))
    registry.initialize()
    return registry


def test_eviction_never_drops_critical_memories():
    store = MemoryStore(max_memories=3, clock=FakeClock())
    critical = store.add(Memory(content="国王的秘密", importance=MemoryImportance.CRITICAL))
    for index in range(6):
        importance = MemoryImportance.LOW if index % 2 else MemoryImportance.MEDIUM
        store.add(Memory(content=f"琐事 {index}", importance=importance))

    assert len(store) == 3
    assert critical in store
    remaining = sorted(memory.content for memory in store.get_by_type(MemoryType.EVENT))
    assert remaining == ["国王的秘密", "琐事 4", "琐事 5"]


def test_store_of_only_critical_memories_may_exceed_capacity():
    store = MemoryStore(max_memories=2, clock=FakeClock())
    for index in range(3):
        store.add(Memory(content=f"关键 {index}", importance=MemoryImportance.CRITICAL))
    assert len(store) == 3


def test_get_touches_memory_but_search_does_not():
    clock = FakeClock()
    store = MemoryStore(clock=clock)
    memory_id = store.add(Memory(content="酒馆里的陌生人"))

    assert store.search("陌生人")[0].access_count == 0
    first = store.get(memory_id)
    assert first.access_count == 1
    accessed_at = first.last_accessed
    assert store.get(memory_id).access_count == 2
    assert store.get(memory_id).last_accessed > accessed_at
    assert store.get("missing") is None


def test_search_is_case_insensitive_and_ranked_by_importance():
    store = MemoryStore(clock=FakeClock())
    store.add(Memory(content="The Dragon sleeps", importance=MemoryImportance.LOW))
    store.add(Memory(content="A dragon egg was found", importance=MemoryImportance.HIGH))
    store.add(Memory(content="Nothing to see"))

    results = store.search("DRAGON")
    assert [memory.content for memory in results] == ["A dragon egg was found", "The Dragon sleeps"]
    assert store.search("dragon", min_importance=MemoryImportance.HIGH)[0].importance is MemoryImportance.HIGH
    assert len(store.search("dragon", limit=1)) == 1


def test_get_relevant_prefers_agent_and_query_matches_and_touches_results():
    store = MemoryStore(clock=FakeClock())
    store.add(Memory(content="港口起雾了", agent_id="bard"))
    mine = store.add(Memory(content="玩家欠了酒钱", agent_id="innkeeper"))
    store.add(Memory(content="天气晴朗"))

    relevant = store.get_relevant({"agent_id": "innkeeper", "query": "酒钱"}, limit=2)
    assert relevant[0].id == mine
    assert all(memory.access_count == 1 for memory in relevant)
    assert store.get_relevant({"agent_id": "innkeeper"}, limit=0) == []


def test_search_score_formula():
    clock = FakeClock()
    store = MemoryStore(clock=clock, decay_rate=1.0)
    memory_id = store.add(Memory(content="secret door", importance=MemoryImportance.HIGH))
    memory = store._memories[memory_id]
    # match 10 + importance 3*2 + recency 5 (no time passed) + frequency 0
    assert store.search_score(memory, "door", now=memory.last_accessed) == 21
    two_days_later = memory.last_accessed + timedelta(days=2)
    assert store.search_score(memory, "window", now=two_days_later) == 6 + 3


def test_agent_memories_are_associated_with_the_agent():
    registry = make_registry()
    store = MemoryStore(registry, clock=FakeClock())

    memory_id = store.create_agent_memory("innkeeper", "记得玩家的名字", importance=MemoryImportance.HIGH)
    assert memory_id in registry.get("innkeeper").memory_ids
    assert store.get_agent_memories("innkeeper")[0].content == "记得玩家的名字"

    assert store.create_agent_memory("ghost", "不存在") is None

    assert store.delete(memory_id) is True
    assert memory_id not in registry.get("innkeeper").memory_ids
    assert store.delete(memory_id) is False


def test_create_from_history_uses_entry_text():
    store = MemoryStore(clock=FakeClock())
    history = HistoryLog(max_length=10)

    action_entry = history.add_action(actions.dialogue("player", "你好"))
    environment_entry = history.add_environment("tavern", "炉火正旺")

    action_memory = store.get(store.create_from_history(action_entry))
    environment_memory = store.get(store.create_from_history(environment_entry, MemoryImportance.LOW))
    assert action_memory.content == "player 执行了行为: 你好"
    assert action_memory.type is MemoryType.EVENT
    assert action_memory.metadata["history_entry_id"] == action_entry.id
    assert environment_memory.content == "环境描述: 炉火正旺"
    assert environment_memory.type is MemoryType.ENVIRONMENT


def test_update_keeps_id_and_summarize_orders_by_importance():
    store = MemoryStore(clock=FakeClock())
    low = store.add(Memory(content="小事", importance=MemoryImportance.LOW))
    store.add(Memory(content="大事", importance=MemoryImportance.CRITICAL, type=MemoryType.KNOWLEDGE))

    updated = store.update(low, {"id": "other", "content": "小事一桩"})
    assert updated.id == low
    assert updated.content == "小事一桩"
    assert store.update("missing", {"content": "x"}) is None

    summary = MemoryStore.summarize(store.search(""))
    assert summary.split("\n") == ["[KNOWLEDGE] [关键] 大事", "[EVENT] [低] 小事一桩"]
    assert MemoryStore.summarize([]) == "无记忆"

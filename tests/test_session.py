"""End-to-end tests for GameSession turn processing and narration."""

import asyncio
import random

import pytest

from taleweave.errors import QueueClosedError, SnapshotValidationError
from taleweave.persistence import InMemorySnapshotStore
from taleweave.providers import MockProvider
from taleweave.request_queue import RequestQueue
from taleweave.schemas import (
    Agent,
    AgentType,
    GameState,
    HistoryEntryType,
    Location,
    ResponseType,
)
from taleweave.session import GameSession


def make_session(responses=None, **kwargs) -> GameSession:
    state = GameState(
        agents=[
            Agent(id="innkeeper", name="玛莎", type=AgentType.NPC),
            Agent(id="sailor", name="老水手", type=AgentType.NPC, location="harbor"),
        ]
    )
    state.environment.locations["harbor"] = Location(id="harbor", name="港口")
    provider = MockProvider(responses or {})
    return GameSession(
        state,
        provider=provider,
        queue=RequestQueue(0),
        rng=random.Random(11),
        **kwargs,
    )


def test_initialize_is_idempotent():
    session = make_session()
    session.initialize()
    relationships = len(session.trust_map)
    session.initialize()
    assert len(session.trust_map) == relationships == 6
    assert "gm" in session.registry


def test_submitted_dialogue_updates_trust_and_collects_scene_responses():
    session = make_session()
    result = session.submit_text('"谢谢你的热汤"', "innkeeper")

    assert result.action.type.value == "dialogue"
    assert result.history_entry.type is HistoryEntryType.ACTION
    assert result.relationship.factor("trust") == 52
    assert result.relationship.factor("respect") == 51
    assert session.registry.get("innkeeper").relationships["player"].factor("trust") == 52

    # The sailor is at the harbor, so only the innkeeper and the gm answer.
    assert [entry.agent_id for entry in result.responses] == ["innkeeper", "gm"]
    assert result.responses[0].response.type is ResponseType.DIALOGUE
    assert result.state is session.state


def test_target_character_remembers_the_action():
    session = make_session()
    result = session.submit_text('"谢谢"', "innkeeper")

    memory = session.memory.get(result.memory_id)
    assert memory.content == "player 执行了行为: 谢谢"
    assert memory.agent_id == "innkeeper"
    assert result.memory_id in session.registry.get("innkeeper").memory_ids
    assert result.memory_id in session.state.find_agent("innkeeper").memory_ids


def test_relationship_is_created_on_first_interaction():
    session = make_session()
    session.initialize()
    session.registry.register(Agent(id="bard", name="林恩", type=AgentType.NPC))
    assert session.trust_map.get_relationship("player", "bard") is None

    result = session.submit_text("[帮助林恩调音]", "bard")

    assert result.relationship.factor("trust") == 53
    assert session.trust_map.get_relationship("bard", "player").factor("respect") == 52


def test_untargeted_action_has_no_relationship_or_memory():
    session = make_session()
    result = session.submit_text("[伸了个懒腰]")
    assert result.relationship is None
    assert result.memory_id is None
    assert len(session.memory) == 0


def test_advance_turn_logs_system_entry():
    session = make_session()
    assert session.advance_turn() == 1
    assert session.advance_turn() == 2
    entry = session.history.get_recent(1)[0]
    assert entry.type is HistoryEntryType.SYSTEM
    assert entry.message == "第2回合开始"
    assert session.state.turn == 2


@pytest.mark.asyncio
async def test_narrate_records_generated_text():
    session = make_session({"位置名称": "炉火噼啪作响，麦酒香气四溢。"})
    session.initialize()

    entry = await session.narrate("environment_description")

    assert entry.type is HistoryEntryType.SYSTEM
    assert entry.event_type == "narration"
    assert entry.message == "炉火噼啪作响，麦酒香气四溢。"
    assert entry.data["template"] == "environment_description"
    assert entry.data["provider"] == "mock"
    assert session.history.get_recent(1)[0].id == entry.id
    await session.close()


@pytest.mark.asyncio
async def test_scheduled_narrations_run_in_order():
    session = make_session({"当前故事概要": "一位陌生人推门而入。"})
    session.initialize()

    first = session.schedule_narration("story_progression")
    second = session.schedule_narration("environment_description")
    entries = await asyncio.gather(first, second)

    assert entries[0].message == "一位陌生人推门而入。"
    assert entries[1].message == "这是一个模拟响应。"
    assert [entry.data["template"] for entry in session.history.get_by_type("system")] == [
        "story_progression",
        "environment_description",
    ]
    await session.close()


@pytest.mark.asyncio
async def test_closed_session_rejects_narration():
    session = make_session()
    await session.close()
    with pytest.raises(QueueClosedError):
        await session.narrate("world_building")


@pytest.mark.asyncio
async def test_save_and_load_slot():
    store = InMemorySnapshotStore()
    session = make_session(store=store)
    session.submit_text('"谢谢"', "innkeeper")
    await session.save("chapter1")
    entries = len(session.history)

    session.submit_text("[攻击玛莎]", "innkeeper")
    assert session.trust_map.get_relationship("player", "innkeeper").factor("trust") == 47

    assert await session.load("chapter1") is True
    assert len(session.history) == entries
    assert session.trust_map.get_relationship("player", "innkeeper").factor("trust") == 52
    assert await session.load("missing") is False
    assert await store.list_slots() == ["chapter1"]
    await session.close()


def test_restore_rejects_malformed_snapshot_without_changes():
    session = make_session()
    session.submit_text('"谢谢"', "innkeeper")
    before = session.to_json()

    with pytest.raises(SnapshotValidationError):
        session.restore('{"gameState": {}, "history": "nope"}')

    assert session.to_json() == before


def test_acting_npc_is_part_of_its_own_scene():
    session = make_session()
    result = session.submit_text("[擦拭吧台]", actor_id="innkeeper")
    assert result.action.actor_id == "innkeeper"
    assert [entry.agent_id for entry in result.responses] == ["innkeeper", "gm"]

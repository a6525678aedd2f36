"""Tests for the agent registry and its write-through to world state."""

import pytest
from pydantic import ValidationError

from taleweave.game_state import GameStateStore
from taleweave.registry import AgentRegistry, GM_PERSONALITY
from taleweave.schemas import (
    Agent,
    AgentType,
    Emotion,
    GameState,
    Item,
    Location,
    StatusEffect,
)


def make_registry() -> tuple[GameStateStore, AgentRegistry]:
    state = GameState(agents=[Agent(id="innkeeper", name="玛莎", type=AgentType.NPC)])
    store = GameStateStore(state)
    registry = AgentRegistry(store)
    registry.initialize()
    return store, registry


def test_initialize_adds_game_master():
    _, registry = make_registry()
    gm = registry.get("gm")
    assert gm.type is AgentType.GM
    assert gm.personality == GM_PERSONALITY
    assert sorted(agent.id for agent in registry.get_all()) == ["gm", "innkeeper", "player"]
    assert [agent.id for agent in registry.get_all_by_type("npc")] == ["innkeeper"]


def test_register_assigns_id_and_syncs_npcs_to_state():
    store, registry = make_registry()
    bard = registry.register({"name": "林恩", "type": "npc"})
    assert bard.id.startswith("agent_")
    assert store.get_agent(bard.id) is bard

    renamed = registry.register(bard.model_copy(update={"name": "林恩·吟游者"}))
    assert renamed.created_at == bard.created_at
    assert store.get_agent(bard.id).name == "林恩·吟游者"


def test_player_updates_write_through_to_player_slot():
    store, registry = make_registry()
    registry.update("player", {"name": "旅人"})
    assert store.state.player.name == "旅人"


def test_update_rejects_invalid_values_and_keeps_record():
    _, registry = make_registry()
    with pytest.raises(ValidationError):
        registry.update("innkeeper", {"current_emotion": "bored"})
    with pytest.raises(ValidationError):
        registry.update("innkeeper", {"personality": {"agreeableness": 150}})
    assert registry.get("innkeeper").current_emotion is Emotion.NEUTRAL
    assert registry.update("ghost", {"name": "x"}) is None


def test_reserved_agents_cannot_be_removed():
    store, registry = make_registry()
    assert registry.remove("player") is False
    assert registry.remove("gm") is False
    assert registry.remove("ghost") is False
    assert registry.remove("innkeeper") is True
    assert "innkeeper" not in registry
    assert store.get_agent("innkeeper") is None


def test_templates():
    _, registry = make_registry()
    registry.register_template("guard", {"id": "ignored", "name": "卫兵", "type": "npc", "skills": {"剑术": 60}})
    assert registry.templates() == ["guard"]

    guard = registry.create_from_template("guard", {"location": "default"})
    assert guard.id != "ignored"
    assert guard.skills == {"剑术": 60}

    named = registry.create_from_template("guard", {"id": "captain", "name": "队长"})
    assert named.id == "captain"
    assert named.name == "队长"
    assert registry.create_from_template("dragon") is None


def test_emotion_and_location_updates():
    store, registry = make_registry()
    updated = registry.update_emotion("innkeeper", Emotion.ANGRY, 150)
    assert updated.current_emotion is Emotion.ANGRY
    assert updated.emotion_intensity == 100

    assert registry.update_location("innkeeper", "nowhere") is None
    store.add_location(Location(id="cellar", name="地窖"))
    assert registry.update_location("innkeeper", "cellar").location == "cellar"


def test_inventory_and_status_effects():
    _, registry = make_registry()
    registry.add_item("player", Item(id="coin", name="金币", quantity=3))
    registry.add_item("player", Item(id="coin", name="金币", quantity=2))
    assert registry.get("player").inventory[0].quantity == 5

    registry.remove_item("player", "coin", 4)
    assert registry.get("player").inventory[0].quantity == 1
    registry.remove_item("player", "coin")
    assert registry.get("player").inventory == []
    assert registry.remove_item("player", "coin") is None

    registry.add_status_effect("player", StatusEffect(id="drunk", name="醉酒"))
    assert [effect.id for effect in registry.get("player").status] == ["drunk"]
    registry.remove_status_effect("player", "drunk")
    assert registry.get("player").status == []
    assert registry.remove_status_effect("player", "drunk") is None


def test_agent_card_and_export_load():
    store, registry = make_registry()
    card = registry.agent_card("innkeeper")
    assert "玛莎" in card
    assert registry.agent_card("ghost") is None

    exported = registry.export()
    assert {agent["id"] for agent in exported} == {"player", "innkeeper", "gm"}

    other_store = GameStateStore()
    other = AgentRegistry(other_store)
    other.load([Agent.model_validate(agent) for agent in exported])
    assert "gm" in other
    assert [agent.id for agent in other_store.state.agents] == ["innkeeper"]


def test_whole_state_swaps_reindex_agents():
    store, registry = make_registry()
    registry.register(Agent(id="env", name="环境", type=AgentType.ENVIRONMENT))

    store.update(agents=[Agent(id="bard", name="林恩", type=AgentType.NPC)])
    assert "innkeeper" not in registry
    assert registry.get("bard") is store.get_agent("bard")
    assert registry.get("player") is store.state.player
    assert {"gm", "env"} <= {agent.id for agent in registry.get_all()}

    store.reset()
    assert registry.get_all_by_type("npc") == []
    assert registry.get("player") is store.state.player
    assert "gm" in registry

    store.import_json(GameState(agents=[Agent(id="sailor", name="老水手", type=AgentType.NPC)]).model_dump_json())
    assert [agent.id for agent in registry.get_all_by_type("npc")] == ["sailor"]

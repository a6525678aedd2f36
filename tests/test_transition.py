"""Tests for pure state transitions."""

from taleweave import actions
from taleweave.schemas import (
    Action,
    ActionType,
    Agent,
    AgentType,
    GameState,
    Item,
    Location,
    TargetType,
)
from taleweave.transition import StateTransition, TargetEffectHandler


def make_state() -> GameState:
    state = GameState(agents=[Agent(id="bard", name="林恩", type=AgentType.NPC)])
    state.environment.locations["default"].objects.append(Item(id="chest", name="宝箱"))
    state.player.inventory.append(Item(id="potion", name="药水"))
    return state


def test_dialogue_returns_stamped_copy_without_mutating_input():
    state = make_state()
    snapshot = state.model_dump()
    result = StateTransition().apply(actions.dialogue("player", "你好", "bard"), state)

    assert result is not state
    assert result.updated_at >= state.updated_at
    assert state.model_dump() == snapshot


def test_missing_target_returns_same_state():
    state = make_state()
    transition = StateTransition()
    for action in (
        actions.physical("player", "推", TargetType.CHARACTER, "ghost"),
        actions.physical("player", "看", TargetType.ENVIRONMENT, "moon"),
        actions.physical("player", "踢", TargetType.ITEM, "barrel"),
    ):
        assert transition.apply(action, state) is state


def test_untargeted_action_returns_copy():
    state = make_state()
    result = StateTransition().apply(actions.physical("player", "伸懒腰"), state)
    assert result is not state


def test_resolve_target_searches_agents_locations_and_objects():
    state = make_state()
    resolve = StateTransition.resolve_target
    assert resolve(actions.physical("player", "推", TargetType.CHARACTER, "bard"), state).name == "林恩"
    assert resolve(actions.physical("player", "推", TargetType.CHARACTER, "player"), state) is state.player
    assert resolve(actions.physical("player", "看", TargetType.ENVIRONMENT), state).id == "default"
    assert resolve(actions.physical("player", "开", TargetType.ITEM, "chest"), state).name == "宝箱"


def test_item_action_requires_a_reachable_item():
    state = make_state()
    transition = StateTransition()
    assert transition.apply(actions.item("player", "scroll", "读卷轴"), state) is state
    assert transition.apply(actions.item("player", "potion", "喝药水"), state) is not state
    assert transition.apply(actions.item("player", "chest", "打开宝箱"), state) is not state


class Damage(TargetEffectHandler):
    def on_character(self, action, state, target):
        target.emotion_intensity = 90
        return state

    def on_item_used(self, action, state, item):
        item.quantity -= 1
        return state


def test_effect_handlers_mutate_only_the_copy():
    state = make_state()
    transition = StateTransition(Damage())

    hit = transition.apply(actions.physical("player", "攻击", TargetType.CHARACTER, "bard"), state)
    assert hit.find_agent("bard").emotion_intensity == 90
    assert state.find_agent("bard").emotion_intensity == 50

    drank = transition.apply(actions.item("player", "potion", "喝药水"), state)
    assert drank.player.inventory[0].quantity == 0
    assert state.player.inventory[0].quantity == 1


def test_apply_transitions_skips_failing_actions():
    class Exploding(TargetEffectHandler):
        def on_environment(self, action, state, location):
            raise RuntimeError("boom")

    state = make_state()
    transition = StateTransition(Exploding())
    batch = [
        actions.physical("player", "跺脚", TargetType.ENVIRONMENT),
        actions.dialogue("player", "抱歉"),
    ]
    result = transition.apply_transitions(batch, state)
    assert result is not state
    assert state.model_dump()["environment"] == result.model_dump()["environment"]


def test_locations_added_after_state_creation_are_resolved():
    state = make_state()
    state.environment.locations["cellar"] = Location(id="cellar", name="地窖")
    action = Action(
        id="action_1",
        type=ActionType.ACTION,
        actor_id="player",
        content="下到地窖",
        target_type=TargetType.ENVIRONMENT,
        target_id="cellar",
    )
    assert StateTransition.resolve_target(action, state).name == "地窖"


def test_carried_item_targets_reach_the_item_handler():
    class Recording(TargetEffectHandler):
        def __init__(self):
            self.seen = []

        def on_item(self, action, state, target):
            self.seen.append(target.id)
            target.description = "检查过了"
            return state

    state = make_state()
    handler = Recording()
    action = actions.physical("player", "检查药水", TargetType.ITEM, "potion")

    assert StateTransition.resolve_target(action, state) is state.player.inventory[0]
    result = StateTransition(handler).apply(action, state)

    assert handler.seen == ["potion"]
    assert result.player.inventory[0].description == "检查过了"
    assert state.player.inventory[0].description != "检查过了"

"""Tests for prompt templates and the state-aware builder."""

import pytest

from taleweave import actions
from taleweave.errors import UnknownPromptTemplateError
from taleweave.game_state import GameStateStore
from taleweave.history import HistoryLog
from taleweave.prompts import DEFAULT_PROMPTS, PromptBuilder, PromptTemplate, render_template
from taleweave.registry import AgentRegistry
from taleweave.schemas import Agent, AgentType, GameState, Location
from taleweave.trust_map import TrustMap


def make_builder():
    state = GameState(
        agents=[
            Agent(id="innkeeper", name="玛莎", type=AgentType.NPC, description="酒馆老板娘"),
            Agent(id="bard", name="林恩", type=AgentType.NPC, dialogue_style="押韵"),
        ]
    )
    store = GameStateStore(state)
    store.add_location(Location(id="tavern", name="跃马酒馆", description="炉火正旺"))
    store.set_current_location("tavern")
    store.set_main_setting("雾港是一座被迷雾笼罩的港口城市。")
    registry = AgentRegistry(store)
    registry.initialize()
    registry.update_location("innkeeper", "tavern")
    trust_map = TrustMap(registry)
    trust_map.initialize()
    history = HistoryLog(max_length=20)
    return PromptBuilder(store, registry, trust_map, history), history, trust_map


def test_default_library_has_all_templates():
    builder, _, _ = make_builder()
    assert builder.available_templates() == sorted(
        [
            "action_result",
            "agent_response",
            "character_creation",
            "dialogue_generation",
            "environment_description",
            "story_progression",
            "world_building",
        ]
    )
    assert DEFAULT_PROMPTS.names() == builder.available_templates()


def test_unknown_template_lists_available_names():
    builder, _, _ = make_builder()
    with pytest.raises(UnknownPromptTemplateError) as excinfo:
        builder.build("haiku")
    assert "haiku" in str(excinfo.value)
    assert "agent_response" in excinfo.value.available


def test_agent_response_includes_card_action_and_relationship():
    builder, history, trust_map = make_builder()
    action = actions.dialogue("player", "来一杯麦酒", "innkeeper")
    history.add_action(action)
    trust_map.set_factor("innkeeper", "player", "trust", 80)

    prompt = builder.build("agent_response", {"agent": "innkeeper", "action": action})

    assert "玛莎" in prompt.user
    assert "位置：跃马酒馆" in prompt.user
    assert "玩家：来一杯麦酒" in prompt.user
    assert "这个行为直接针对你。" in prompt.user
    assert "信任度：80/100" in prompt.user
    assert "{{" not in prompt.user
    assert prompt.messages()[0]["role"] == "system"
    assert prompt.messages()[-1] == {"role": "user", "content": prompt.user}


def test_build_is_deterministic_for_the_same_state():
    builder, history, _ = make_builder()
    history.add_action(actions.physical("player", "推开门"))
    first = builder.build("story_progression", {"direction": "神秘访客到来"})
    second = builder.build("story_progression", {"direction": "神秘访客到来"})
    assert (first.system, first.user) == (second.system, second.user)
    assert "期望的发展方向：神秘访客到来" in first.user
    assert "雾港" in first.user


def test_environment_prompt_lists_characters_at_location():
    builder, _, _ = make_builder()
    prompt = builder.build("environment_description")
    assert "位置名称：跃马酒馆" in prompt.user
    assert "- 玛莎：酒馆老板娘" in prompt.user
    assert "林恩" not in prompt.user


def test_dialogue_prompt_describes_pairwise_relationships():
    builder, _, _ = make_builder()
    prompt = builder.build("dialogue_generation", {"characters": ["innkeeper", "bard", "ghost"], "topic": "天气"})
    assert "对话风格：押韵" in prompt.user
    assert "玛莎 和 林恩" in prompt.user
    assert "对话主题：天气" in prompt.user


def test_required_context_is_enforced():
    builder, _, _ = make_builder()
    with pytest.raises(ValueError):
        builder.build("agent_response", {})
    with pytest.raises(ValueError):
        builder.build("action_result", {})

    prompt = builder.build("action_result", {"action": actions.item("player", "rope", "用绳子攀爬"), "difficulty": 6})
    assert "行为内容：用绳子攀爬" in prompt.user
    assert "难度等级（1-10）：6" in prompt.user
    assert "随机因素" not in prompt.user


def test_custom_templates_and_gatherers():
    builder, _, _ = make_builder()
    builder.register_template(PromptTemplate(name="rumor", system="", user="第{{turn}}回合的传闻：{{topic}}"))
    assert builder.build("rumor", {"topic": "沉船"}).user == "第0回合的传闻：沉船"

    builder.register_template(
        PromptTemplate(name="omen", system="", user="预兆：{{omen}}"),
        lambda context: {"omen": context.get("sign", "无").upper()},
    )
    assert builder.build("omen", {"sign": "red moon"}).text == "预兆：RED MOON"

    with pytest.raises(TypeError):
        builder.register_template(PromptTemplate(name="bad", system="", user=""), "not callable")
    assert "bad" not in builder.available_templates()


def test_render_template_leaves_unknown_markers():
    template = PromptTemplate(name="t", system="{{a}}", user="{{b}} {{c}}")
    rendered = render_template(template, {"a": 1, "b": None})
    assert rendered.system == "1"
    assert rendered.user == "{{c}}"

"""Prompt templates and the builder that fills them from live session state.

Templates use ``{{placeholder}}`` markers so JSON braces inside prompts never
collide with substitution. Each template is paired with a gatherer that reads
the game state, registry, trust map and history and returns the placeholder
values; the rendered text therefore depends only on current state plus the
caller's context.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from taleweave.errors import UnknownPromptTemplateError
from taleweave.game_state import GameStateStore
from taleweave.history import HistoryLog
from taleweave.logging_utils import log_warning
from taleweave.registry import AgentRegistry
from taleweave.schemas import Action, Agent, HistoryEntry, HistoryEntryType, RelationshipFactor, utc_now
from taleweave.trust_map import TrustMap


@dataclass
class PromptTemplate:
    """Represents a templated prompt with placeholders."""

    name: str
    system: str
    user: str
    description: str = ""


@dataclass
class RenderedPrompt:
    name: str
    system: str
    user: str
    timestamp: datetime = field(default_factory=utc_now)
    context: Dict[str, Any] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return "\n\n".join(part for part in (self.system, self.user) if part)

    def messages(self) -> List[Dict[str, str]]:
        messages = []
        if self.system:
            messages.append({"role": "system", "content": self.system})
        messages.append({"role": "user", "content": self.user})
        return messages


class PromptLibrary:
    """Container for named prompt templates."""

    def __init__(self) -> None:
        self.templates: Dict[str, PromptTemplate] = {}

    def register(self, template: PromptTemplate) -> None:
        self.templates[template.name] = template

    def get(self, name: str) -> PromptTemplate:
        try:
            return self.templates[name]
        except KeyError:
            raise UnknownPromptTemplateError(name, self.names()) from None

    def names(self) -> List[str]:
        return sorted(self.templates)


def render_template(template: PromptTemplate, values: Dict[str, Any]) -> RenderedPrompt:
    """Replace ``{{key}}`` markers; unknown markers are left as they are."""
    system, user = template.system, template.user
    for key, value in values.items():
        marker = "{{" + key + "}}"
        text = "" if value is None else str(value)
        system = system.replace(marker, text)
        user = user.replace(marker, text)
    return RenderedPrompt(name=template.name, system=system.strip(), user=user.strip())


# Default templates ------------------------------------------------------------

ROLEPLAY_SYSTEM = "你是一个TRPG叙事引擎中的角色扮演AI，请严格遵循给出的角色设定与场景信息。"
GM_SYSTEM = "你是一名经验丰富的TRPG游戏主持人，负责描绘世界并推动故事。"

DEFAULT_PROMPTS = PromptLibrary()

DEFAULT_PROMPTS.register(
    PromptTemplate(
        name="agent_response",
        system=ROLEPLAY_SYSTEM,
        user=(
            "你现在扮演以下角色：\n\n{{character_card}}\n\n"
            "当前场景：\n{{scene}}\n\n"
            "历史记录：\n{{history}}\n\n"
            "{{action_section}}\n\n"
            "{{relationship_section}}\n\n"
            "请根据你的角色设定、当前情绪状态、与其他角色的关系以及场景上下文，生成一个合适的响应。\n"
            "请用第一人称回应，不要在回应中包含旁白或动作描述。"
        ),
        description="In-character reply of one agent to the latest action.",
    )
)

DEFAULT_PROMPTS.register(
    PromptTemplate(
        name="environment_description",
        system=GM_SYSTEM,
        user=(
            "请为以下游戏场景生成一段详细的环境描述：\n\n"
            "位置名称：{{location_name}}\n基本描述：{{location_description}}\n"
            "时间：{{time}}\n天气：{{weather}}\n{{details}}\n\n"
            "该位置的角色：\n{{characters}}\n\n"
            "请包含视觉、听觉、嗅觉等感官细节以及环境的氛围。不要包含角色的对话或行动。"
        ),
        description="Sensory description of a location.",
    )
)

DEFAULT_PROMPTS.register(
    PromptTemplate(
        name="story_progression",
        system=GM_SYSTEM,
        user=(
            "请根据当前故事情况，生成下一步的故事发展：\n\n"
            "当前故事概要：\n{{plot}}\n\n世界背景：\n{{main_setting}}\n\n"
            "最近的事件：\n{{history}}\n\n{{direction}}\n{{intensity}}\n\n"
            "请给出新的事件或转折、可能的冲突、NPC的可能反应以及场景的变化。"
            "请避免直接解决所有问题或创造无法克服的障碍。"
        ),
        description="Next beat of the story driven by recent events.",
    )
)

DEFAULT_PROMPTS.register(
    PromptTemplate(
        name="dialogue_generation",
        system=ROLEPLAY_SYSTEM,
        user=(
            "请为以下角色生成一段对话：\n\n参与角色：\n{{characters}}\n\n"
            "{{relationships}}\n\n对话主题：{{topic}}\n对话语气：{{tone}}\n对话长度：{{length}}\n\n"
            "请使用以下格式：\n\n角色名：对话内容"
        ),
        description="Conversation between several characters.",
    )
)

DEFAULT_PROMPTS.register(
    PromptTemplate(
        name="action_result",
        system=GM_SYSTEM,
        user=(
            "请为以下游戏行为生成一个结果描述：\n\n"
            "行为类型：{{action_type}}\n行为内容：{{action_content}}\n执行者：{{actor_name}}\n{{target}}\n\n"
            "{{actor_details}}\n\n{{difficulty}}\n{{random_factor}}\n\n"
            "请描述行为的直接效果、可能的意外情况以及对周围环境或角色的影响。"
        ),
        description="Outcome of a physical or item action.",
    )
)

DEFAULT_PROMPTS.register(
    PromptTemplate(
        name="world_building",
        system=GM_SYSTEM,
        user=(
            "请为一个TRPG游戏创建或扩展以下世界设定：\n\n{{main_setting}}\n\n"
            "主题：{{theme}}\n{{elements}}\n语调：{{tone}}\n细节程度：{{detail}}\n\n"
            "请覆盖世界概述、地理环境、社会结构、文化与信仰、魔法或科技系统，并保持设定的内部一致性。"
        ),
        description="Create or extend the world setting.",
    )
)

DEFAULT_PROMPTS.register(
    PromptTemplate(
        name="character_creation",
        system=GM_SYSTEM,
        user=(
            "请根据以下世界设定创建一个新角色：\n\n世界设定：{{main_setting}}\n\n"
            "角色类型：{{type}}\n角色定位：{{role}}\n{{traits}}\n{{background}}\n\n"
            "请以JSON格式返回，包含 name、description、background、appearance、dialogue_style、"
            "personality（openness、conscientiousness、extraversion、agreeableness、neuroticism，0-100）、"
            "goals、fears 字段。只返回JSON。"
        ),
        description="New character sheet as JSON.",
    )
)


Gatherer = Callable[[Dict[str, Any]], Dict[str, Any]]


def _line(label: str, value: Any) -> str:
    return f"{label}：{value}" if value not in (None, "") else ""


class PromptBuilder:
    """Builds prompts from named templates plus live session state."""

    def __init__(
        self,
        game_state: GameStateStore,
        registry: AgentRegistry,
        trust_map: TrustMap,
        history: HistoryLog,
        library: Optional[PromptLibrary] = None,
    ) -> None:
        self._game_state = game_state
        self._registry = registry
        self._trust_map = trust_map
        self._history = history
        self.library = library or _copy_library(DEFAULT_PROMPTS)
        self._gatherers: Dict[str, Gatherer] = {
            "agent_response": self._agent_response_values,
            "environment_description": self._environment_values,
            "story_progression": self._story_values,
            "dialogue_generation": self._dialogue_values,
            "action_result": self._action_result_values,
            "world_building": self._world_building_values,
            "character_creation": self._character_creation_values,
        }

    def available_templates(self) -> List[str]:
        return sorted(name for name in self.library.names() if name in self._gatherers)

    def register_template(self, template: PromptTemplate, gatherer: Optional[Gatherer] = None) -> None:
        """Add or replace a template; without a gatherer the raw context fills it."""
        if gatherer is not None and not callable(gatherer):
            raise TypeError("Prompt gatherer must be callable")
        self.library.register(template)
        self._gatherers[template.name] = gatherer or self._base_values

    def build(self, name: str, context: Optional[Dict[str, Any]] = None) -> RenderedPrompt:
        template = self.library.get(name)
        gatherer = self._gatherers.get(name)
        if gatherer is None:
            raise UnknownPromptTemplateError(name, self.available_templates())
        context = dict(context or {})
        values = {**self._base_values(context), **gatherer(context)}
        rendered = render_template(template, values)
        rendered.context = context
        return rendered

    # ------------------------------------------------------------------
    # Gatherers
    # ------------------------------------------------------------------

    def _base_values(self, context: Dict[str, Any]) -> Dict[str, Any]:
        state = self._game_state.state
        values = {
            "turn": state.turn,
            "phase": state.phase.value,
            "main_setting": state.worldbook.main_setting or "无具体背景",
        }
        values.update({key: value for key, value in context.items() if isinstance(value, (str, int, float))})
        return values

    def _agent_response_values(self, context: Dict[str, Any]) -> Dict[str, Any]:
        agent = self._resolve_agent(context.get("agent"))
        if agent is None:
            raise ValueError("agent_response prompt requires an 'agent' (id or Agent)")
        action: Optional[Action] = context.get("action")

        action_section = ""
        relationship_section = ""
        if action is not None:
            lines = [
                "最近的行为：",
                f"类型：{action.type.value}",
                f"执行者：{self._agent_name(action.actor_id)}",
                f"内容：{action.content}",
            ]
            if action.target_id == agent.id:
                lines.append("这个行为直接针对你。")
            action_section = "\n".join(lines)

            relationship = self._trust_map.get_relationship(agent.id, action.actor_id)
            if relationship is not None:
                relationship_section = "\n".join(
                    [
                        "与行为执行者的关系：",
                        f"类型：{relationship.type.value}",
                        f"信任度：{relationship.factor(RelationshipFactor.TRUST):.0f}/100",
                        f"亲密度：{relationship.factor(RelationshipFactor.INTIMACY):.0f}/100",
                        f"尊重度：{relationship.factor(RelationshipFactor.RESPECT):.0f}/100",
                    ]
                )

        return {
            "character_card": self._registry.agent_card(agent.id) or agent.name,
            "scene": self._scene_text(),
            "history": self._history_text(context.get("history"), 10),
            "action_section": action_section,
            "relationship_section": relationship_section,
        }

    def _environment_values(self, context: Dict[str, Any]) -> Dict[str, Any]:
        environment = self._game_state.environment
        location_id = context.get("location_id") or environment.current_location
        location = environment.locations.get(location_id)
        if location is None:
            log_warning(f"Location '{location_id}' does not exist")
        characters = [agent for agent in self._registry.get_all() if agent.location == location_id]
        return {
            "location_name": location.name if location else location_id,
            "location_description": (location.description if location else "") or "无描述",
            "time": self._time_text(),
            "weather": environment.weather.value,
            "details": _line("额外细节", context.get("details")),
            "characters": "\n".join(
                f"- {agent.name}：{agent.description or '无描述'}" for agent in characters
            )
            or "没有角色在此位置",
        }

    def _story_values(self, context: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "plot": context.get("current_plot") or self._game_state.get_variable("current_plot", "无具体情节"),
            "history": self._history_text(None, 15),
            "direction": _line("期望的发展方向", context.get("direction")),
            "intensity": _line("事件强度（1-10）", context.get("intensity")),
        }

    def _dialogue_values(self, context: Dict[str, Any]) -> Dict[str, Any]:
        agents = [
            agent
            for agent in (self._resolve_agent(ref) for ref in context.get("characters", []))
            if agent is not None
        ]
        relationships = []
        for index, first in enumerate(agents):
            for second in agents[index + 1:]:
                relationship = self._trust_map.get_relationship(first.id, second.id)
                if relationship is not None:
                    relationships.append(
                        f"- {first.name} 和 {second.name}：{relationship.type.value}关系，"
                        f"信任度 {relationship.factor(RelationshipFactor.TRUST):.0f}/100"
                    )
        return {
            "characters": "\n".join(
                f"- {agent.name}：{agent.description or '无描述'}\n   对话风格：{agent.dialogue_style or '无特定风格'}"
                for agent in agents
            )
            or "无",
            "relationships": ("角色关系：\n" + "\n".join(relationships)) if relationships else "",
            "topic": context.get("topic") or "自由发挥",
            "tone": context.get("tone") or "根据角色性格决定",
            "length": context.get("length") or "适中",
        }

    def _action_result_values(self, context: Dict[str, Any]) -> Dict[str, Any]:
        action: Optional[Action] = context.get("action")
        if action is None:
            raise ValueError("action_result prompt requires an 'action'")
        actor = self._registry.get(action.actor_id)
        actor_details = ""
        if actor is not None:
            actor_details = (
                f"执行者信息：\n- 描述：{actor.description or '无描述'}\n"
                f"- 相关技能：{json.dumps(actor.skills, ensure_ascii=False)}"
            )
        return {
            "action_type": action.type.value,
            "action_content": action.content,
            "actor_name": self._agent_name(action.actor_id),
            "target": _line("目标", self._agent_name(action.target_id)) if action.target_id else "",
            "actor_details": actor_details,
            "difficulty": _line("难度等级（1-10）", context.get("difficulty")),
            "random_factor": _line("随机因素（1-10）", context.get("random_factor")),
        }

    def _world_building_values(self, context: Dict[str, Any]) -> Dict[str, Any]:
        setting = self._game_state.state.worldbook.main_setting
        return {
            "main_setting": f"现有世界背景：\n{setting}" if setting else "",
            "theme": context.get("theme") or "未指定",
            "elements": _line("需要包含的元素", context.get("elements")),
            "tone": context.get("tone") or "适中",
            "detail": context.get("detail") or "中等",
        }

    def _character_creation_values(self, context: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "main_setting": self._game_state.state.worldbook.main_setting or "无特定世界设定",
            "type": context.get("type") or "npc",
            "role": context.get("role") or "未指定",
            "traits": _line("性格特点", context.get("traits")),
            "background": _line("背景要求", context.get("background")),
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _resolve_agent(self, ref: Any) -> Optional[Agent]:
        if isinstance(ref, Agent):
            return ref
        if isinstance(ref, str):
            agent = self._registry.get(ref)
            if agent is None:
                log_warning(f"Agent '{ref}' does not exist")
            return agent
        return None

    def _agent_name(self, agent_id: Optional[str]) -> str:
        if not agent_id:
            return "未知"
        agent = self._registry.get(agent_id)
        return agent.name if agent else agent_id

    def _time_text(self) -> str:
        time = self._game_state.environment.time
        return f"第{time.day}天 {time.hour:02d}:{time.minute:02d}（{time.cycle.value}）"

    def _scene_text(self) -> str:
        environment = self._game_state.environment
        location = environment.current()
        lines = [
            f"场景：{environment.name}",
            f"位置：{location.name if location else environment.current_location}",
            f"描述：{(location.description if location else '') or '无描述'}",
            f"时间：{self._time_text()}",
            f"天气：{environment.weather.value}",
        ]
        return "\n".join(lines)

    def _history_text(self, entries: Optional[List[HistoryEntry]], count: int) -> str:
        entries = entries if entries is not None else self._history.get_recent(count)
        lines = []
        for entry in entries:
            if entry.type == HistoryEntryType.ACTION:
                lines.append(f"{self._agent_name(entry.actor_id)}：{entry.content}")
            elif entry.type == HistoryEntryType.NPC_RESPONSE:
                lines.append(f"{self._agent_name(entry.npc_id)}：{entry.content}")
            elif entry.type == HistoryEntryType.ENVIRONMENT:
                lines.append(f"[环境] {entry.description}")
            elif entry.type == HistoryEntryType.SYSTEM:
                lines.append(f"[系统] {entry.message}")
        return "\n".join(lines) or "无历史记录"


def _copy_library(source: PromptLibrary) -> PromptLibrary:
    library = PromptLibrary()
    for template in source.templates.values():
        library.register(template)
    return library


__all__ = [
    "PromptTemplate",
    "PromptLibrary",
    "PromptBuilder",
    "RenderedPrompt",
    "DEFAULT_PROMPTS",
    "render_template",
]

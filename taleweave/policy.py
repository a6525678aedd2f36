"""
AgentResponsePolicy: how an agent reacts to an action.

For NPCs the reaction type is chosen by an ordered decision list (first match
wins):

1. dialogue addressed to this agent            -> DIALOGUE
2. emotion intensity above 70                  -> EMOTION
3. content mentions a request or help          -> DECISION
4. trust below 20                              -> REJECTION 70% / DIALOGUE 30%
5. otherwise                                   -> DIALOGUE

Each type has its own content generator. Decisions are scored
deterministically from personality and relationship factors; the only random
parts are the low-trust tie-break and template choice, both drawn from an
injectable ``random.Random`` so tests can seed them.

The game master narrates the scene and the environment agent describes the
current location, whatever the action.

Side effects of a response: the agent's emotion is updated when the response
carries a different one, and dialogue responses are appended to the history.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from taleweave.config import Config
from taleweave.errors import AgentNotFoundError, UnsupportedAgentTypeError
from taleweave.game_state import GameStateStore
from taleweave.history import HistoryLog
from taleweave.logging_utils import log_deterministic, log_error
from taleweave.memory import MemoryStore
from taleweave.registry import AgentRegistry
from taleweave.schemas import (
    GM_ID,
    Action,
    ActionType,
    Agent,
    AgentResponse,
    AgentType,
    DecisionType,
    Emotion,
    HistoryEntry,
    HistoryEntryType,
    Location,
    Memory,
    Personality,
    Relationship,
    RelationshipFactor,
    ResponseType,
    SceneResponse,
    SocialLink,
)
from taleweave.trust_map import TrustMap


EMOTION_THRESHOLD = 70
DEFAULT_INTENSITY = 50
LOW_TRUST_THRESHOLD = 20
REJECTION_PROBABILITY = 0.7
CONTEXT_HISTORY_SIZE = 10
CONTEXT_MEMORY_LIMIT = 5

DECISION_KEYWORDS = ("请求", "帮助")

EMOTION_TEMPLATES: Dict[Emotion, Tuple[str, ...]] = {
    Emotion.HAPPY: (
        '{name}笑着说，"{content}"',
        '{name}愉快地回应，"{content}"',
        '{name}面带微笑，"{content}"',
    ),
    Emotion.SAD: (
        '{name}叹了口气，"{content}"',
        '{name}低落地说，"{content}"',
        '{name}声音中带着悲伤，"{content}"',
    ),
    Emotion.ANGRY: (
        '{name}怒气冲冲地说，"{content}"',
        '{name}提高了声音，"{content}"',
        '{name}愤怒地回应，"{content}"',
    ),
    Emotion.FEARFUL: (
        '{name}紧张地说，"{content}"',
        '{name}声音颤抖着，"{content}"',
        '{name}畏缩着回应，"{content}"',
    ),
    Emotion.DISGUSTED: (
        '{name}厌恶地说，"{content}"',
        '{name}皱着眉头，"{content}"',
        '{name}不悦地回应，"{content}"',
    ),
    Emotion.SURPRISED: (
        '{name}惊讶地说，"{content}"',
        '{name}睁大了眼睛，"{content}"',
        '{name}震惊地回应，"{content}"',
    ),
    Emotion.NEUTRAL: (
        '{name}说，"{content}"',
        '{name}回应道，"{content}"',
        '{name}平静地说，"{content}"',
    ),
}

DEFAULT_REPLIES = ("我明白你的意思。", "有意思的观点。", "让我想想...", "我需要考虑一下这个。")

EMOTION_DESCRIPTIONS: Dict[Emotion, str] = {
    Emotion.HAPPY: "{name}笑容满面，看起来心情很好。",
    Emotion.SAD: "{name}低下头，眼中含着泪水。",
    Emotion.ANGRY: "{name}握紧拳头，怒视着{actor_name}。",
    Emotion.FEARFUL: "{name}颤抖着后退几步，警惕地看着周围。",
    Emotion.DISGUSTED: "{name}皱起眉头，表情厌恶。",
    Emotion.SURPRISED: "{name}睁大眼睛，一时说不出话来。",
}
UNREADABLE_EMOTION = "{name}的表情变得难以捉摸。"

# (lower bound exclusive, decision, text, emotion); the last row catches the rest
DECISION_TABLE: Tuple[Tuple[float, DecisionType, str, Emotion], ...] = (
    (30, DecisionType.COOPERATE, '{name}决定合作，"我会帮助你的。"', Emotion.HAPPY),
    (10, DecisionType.HELP, '{name}点点头，"我可以试试看。"', Emotion.NEUTRAL),
    (-10, DecisionType.NEUTRAL, '{name}犹豫了一下，"我需要考虑一下。"', Emotion.NEUTRAL),
    (-30, DecisionType.AVOID, '{name}摇摇头，"恐怕我不能参与这个。"', Emotion.FEARFUL),
    (float("-inf"), DecisionType.COMPETE, '{name}冷笑一声，"别指望我会帮你。"', Emotion.ANGRY),
)

REJECTION_TEXT = "我不想回应这个。"
REJECTION_REASON = "不适合的互动"
FAILURE_TEXT = "无法生成响应"


def cooperation_score(personality: Personality, relationship: Optional[Relationship] = None) -> float:
    """Willingness to cooperate; positive favours helping the actor."""
    score = (
        0.5 * (personality.agreeableness - 50)
        + 0.3 * (personality.extraversion - 50)
        + 0.2 * (50 - personality.neuroticism)
    )
    if relationship is not None:
        score += 0.6 * (relationship.factor(RelationshipFactor.TRUST) - 50)
        score += 0.4 * (relationship.factor(RelationshipFactor.RESPECT) - 50)
    return score


def decide(score: float) -> Tuple[DecisionType, str, Emotion]:
    for lower_bound, decision, text, emotion in DECISION_TABLE:
        if score > lower_bound:
            return decision, text, emotion
    _, decision, text, emotion = DECISION_TABLE[-1]
    return decision, text, emotion


def emotion_intensity(base: float, neuroticism: int) -> float:
    """Scale intensity by neuroticism and clamp to 0-100."""
    return max(0.0, min(100.0, base * (1 + (neuroticism - 50) / 100)))


@dataclass
class ResponseContext:
    """Everything an agent knows when reacting to one action."""

    agent: Agent
    action: Action
    actor_name: str
    target_name: str = ""
    relationship: Optional[Relationship] = None
    location: Optional[Location] = None
    social_network: List[SocialLink] = field(default_factory=list)
    history: List[Dict[str, Any]] = field(default_factory=list)
    memories: List[Memory] = field(default_factory=list)

    @property
    def trust(self) -> Optional[float]:
        if self.relationship is None:
            return None
        return self.relationship.factor(RelationshipFactor.TRUST)


class AgentResponsePolicy:
    """Produces agent reactions and applies their side effects."""

    def __init__(
        self,
        registry: AgentRegistry,
        trust_map: TrustMap,
        history: HistoryLog,
        game_state: GameStateStore,
        memory: Optional[MemoryStore] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._registry = registry
        self._trust_map = trust_map
        self._history = history
        self._game_state = game_state
        self._memory = memory
        self.rng = rng or random.Random(Config.RESPONSE_SEED)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def generate_response(self, agent_id: str, action: Action) -> AgentResponse:
        """React to ``action`` as ``agent_id``; failures become a REJECTION."""
        try:
            return self._respond(agent_id, action)
        except Exception as exc:
            log_error(f"Response generation for '{agent_id}' failed: {exc}")
            return AgentResponse(type=ResponseType.REJECTION, content=FAILURE_TEXT, error=str(exc))

    def generate_multiple_responses(
        self,
        agent_ids: Iterable[str],
        action: Action,
    ) -> List[SceneResponse]:
        return [
            SceneResponse(agent_id=agent_id, response=self.generate_response(agent_id, action))
            for agent_id in agent_ids
        ]

    def generate_scene_responses(self, action: Action) -> List[SceneResponse]:
        """Responses of the NPCs at the current location plus the game master."""
        current_location = self._game_state.environment.current_location
        agent_ids = [
            agent.id
            for agent in self._registry.get_all_by_type(AgentType.NPC)
            if agent.location == current_location
        ]
        agent_ids.append(GM_ID)
        responses = self.generate_multiple_responses(agent_ids, action)
        log_deterministic(f"Scene at '{current_location}' produced {len(responses)} responses")
        return responses

    # ------------------------------------------------------------------
    # Decision list
    # ------------------------------------------------------------------

    def determine_response_type(self, context: ResponseContext) -> ResponseType:
        action = context.action
        if action.type == ActionType.DIALOGUE and action.target_id == context.agent.id:
            return ResponseType.DIALOGUE
        if context.agent.emotion_intensity > EMOTION_THRESHOLD:
            return ResponseType.EMOTION
        if any(keyword in action.content for keyword in DECISION_KEYWORDS):
            return ResponseType.DECISION
        trust = context.trust
        if trust is not None and trust < LOW_TRUST_THRESHOLD:
            if self.rng.random() < REJECTION_PROBABILITY:
                return ResponseType.REJECTION
            return ResponseType.DIALOGUE
        return ResponseType.DIALOGUE

    def build_context(self, agent: Agent, action: Action) -> ResponseContext:
        memories: List[Memory] = []
        if self._memory is not None:
            memories = self._memory.get_relevant(
                {"agent_id": agent.id, "query": action.content},
                CONTEXT_MEMORY_LIMIT,
            )
        return ResponseContext(
            agent=agent,
            action=action,
            actor_name=self._agent_name(action.actor_id),
            target_name=self._agent_name(action.target_id),
            relationship=self._trust_map.get_relationship(agent.id, action.actor_id),
            location=self._game_state.current_location(),
            social_network=self._trust_map.get_social_network(agent.id),
            history=self._format_history(self._history.get_recent(CONTEXT_HISTORY_SIZE)),
            memories=memories,
        )

    # ------------------------------------------------------------------
    # Content generators
    # ------------------------------------------------------------------

    def generate_content(self, response_type: ResponseType, context: ResponseContext) -> AgentResponse:
        if response_type == ResponseType.DIALOGUE:
            return self.dialogue_response(context)
        if response_type == ResponseType.ACTION:
            return self.action_response(context)
        if response_type == ResponseType.EMOTION:
            return self.emotion_response(context)
        if response_type == ResponseType.DECISION:
            return self.decision_response(context)
        return self.rejection_response(context)

    def dialogue_response(self, context: ResponseContext) -> AgentResponse:
        agent, content = context.agent, context.action.content
        emotion = agent.current_emotion

        if "你好" in content or "嗨" in content:
            reply, emotion = f"你好，{context.actor_name}。很高兴见到你。", Emotion.HAPPY
        elif "谢谢" in content or "感谢" in content:
            reply, emotion = "不客气，这是我应该做的。", Emotion.HAPPY
        elif "抱歉" in content or "对不起" in content:
            if context.trust is not None and context.trust > 60:
                reply, emotion = "没关系，我理解。", Emotion.HAPPY
            else:
                reply, emotion = "嗯，我接受你的道歉。", Emotion.NEUTRAL
        elif "再见" in content:
            reply, emotion = "再见，保重。", Emotion.NEUTRAL
        else:
            reply = self.rng.choice(DEFAULT_REPLIES)

        template = self.rng.choice(EMOTION_TEMPLATES[emotion])
        return AgentResponse(
            type=ResponseType.DIALOGUE,
            content=template.format(name=agent.name, content=reply),
            raw_content=reply,
            emotion=emotion,
            emotion_intensity=self._intensity(agent),
        )

    def action_response(self, context: ResponseContext) -> AgentResponse:
        agent, content = context.agent, context.action.content
        if "攻击" in content or "伤害" in content:
            text, emotion = f"{agent.name}迅速躲避，试图保护自己。", Emotion.FEARFUL
        elif "给予" in content or "递给" in content:
            text, emotion = f"{agent.name}接过物品，仔细查看。", Emotion.NEUTRAL
        elif "拥抱" in content:
            text, emotion = f"{agent.name}回应了拥抱。", Emotion.HAPPY
        else:
            text, emotion = f"{agent.name}观察着情况，等待下一步行动。", agent.current_emotion
        return AgentResponse(
            type=ResponseType.ACTION,
            content=text,
            emotion=emotion,
            emotion_intensity=self._intensity(agent),
        )

    def emotion_response(self, context: ResponseContext) -> AgentResponse:
        agent = context.agent
        template = EMOTION_DESCRIPTIONS.get(agent.current_emotion, UNREADABLE_EMOTION)
        return AgentResponse(
            type=ResponseType.EMOTION,
            content=template.format(name=agent.name, actor_name=context.actor_name),
            emotion=agent.current_emotion,
            emotion_intensity=self._intensity(agent),
        )

    def decision_response(self, context: ResponseContext) -> AgentResponse:
        agent = context.agent
        score = cooperation_score(agent.personality, context.relationship)
        decision, text, emotion = decide(score)
        return AgentResponse(
            type=ResponseType.DECISION,
            content=text.format(name=agent.name),
            emotion=emotion,
            emotion_intensity=self._intensity(agent),
            decision_type=decision,
            cooperation_score=score,
        )

    def rejection_response(self, context: ResponseContext) -> AgentResponse:
        return AgentResponse(
            type=ResponseType.REJECTION,
            content=REJECTION_TEXT,
            reason=REJECTION_REASON,
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _respond(self, agent_id: str, action: Action) -> AgentResponse:
        agent = self._registry.get(agent_id)
        if agent is None:
            raise AgentNotFoundError(agent_id)

        context = self.build_context(agent, action)
        if agent.type == AgentType.NPC:
            response = self.generate_content(self.determine_response_type(context), context)
        elif agent.type == AgentType.GM:
            response = self._narrate(context)
        elif agent.type == AgentType.ENVIRONMENT:
            response = self._describe_environment(context)
        else:
            raise UnsupportedAgentTypeError(agent_id, agent.type.value)

        if response.type == ResponseType.DIALOGUE:
            self._history.add_npc_response(
                agent_id,
                response.content,
                {
                    "emotion": (response.emotion or agent.current_emotion).value,
                    "intensity": response.emotion_intensity,
                    "action_id": action.id,
                },
            )
        if response.emotion is not None and response.emotion != agent.current_emotion:
            self._registry.update_emotion(agent_id, response.emotion, response.emotion_intensity)
        return response

    def _narrate(self, context: ResponseContext) -> AgentResponse:
        location = context.location
        location_name = location.name if location else "未知之地"
        location_description = location.description if location else "一片模糊"
        return AgentResponse(
            type=ResponseType.DIALOGUE,
            content=(
                f"在{location_name}，{context.actor_name}{context.action.content}。\n"
                f"周围的环境{location_description}。"
            ),
            emotion=Emotion.NEUTRAL,
            emotion_intensity=DEFAULT_INTENSITY,
        )

    def _describe_environment(self, context: ResponseContext) -> AgentResponse:
        location = context.location
        if location is None:
            content = "这里什么也看不清。"
        else:
            content = f"{location.name}: {location.description}"
        return AgentResponse(type=ResponseType.DIALOGUE, content=content)

    def _intensity(self, agent: Agent) -> float:
        # A calm agent reacts from the neutral baseline
        base = agent.emotion_intensity or DEFAULT_INTENSITY
        return emotion_intensity(base, agent.personality.neuroticism)

    def _agent_name(self, agent_id: Optional[str]) -> str:
        if not agent_id:
            return ""
        agent = self._registry.get(agent_id)
        return agent.name if agent else agent_id

    def _format_history(self, entries: Sequence[HistoryEntry]) -> List[Dict[str, Any]]:
        formatted: List[Dict[str, Any]] = []
        for entry in entries:
            if entry.type == HistoryEntryType.ACTION:
                formatted.append(
                    {"type": "action", "actor_name": self._agent_name(entry.actor_id), "content": entry.content}
                )
            elif entry.type == HistoryEntryType.NPC_RESPONSE:
                formatted.append(
                    {
                        "type": "response",
                        "speaker_name": self._agent_name(entry.npc_id),
                        "content": entry.content,
                        "emotion": entry.metadata.get("emotion"),
                    }
                )
            elif entry.type == HistoryEntryType.ENVIRONMENT:
                formatted.append(
                    {"type": "environment", "location": entry.location_id, "description": entry.description}
                )
        return formatted


__all__ = [
    "AgentResponsePolicy",
    "ResponseContext",
    "cooperation_score",
    "decide",
    "emotion_intensity",
]

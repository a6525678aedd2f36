"""
Pydantic schemas for the Taleweave narrative engine.

All data structures shared by the session services are defined here.

Design Philosophy:
- One aggregate root (`GameState`) is the sole unit of persistence
- Agents, relationships, memories and history entries are plain validated records;
  the services that own them (registry, trust map, memory store, history log)
  implement all behaviour
- Enums are `str` subclasses so records serialize to readable JSON
- Metadata fields let scenarios attach extra data without schema changes
"""

import time
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Annotated, Any, Dict, List, Optional, Tuple
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


PLAYER_ID = "player"
GM_ID = "gm"
RESERVED_AGENT_IDS = frozenset({PLAYER_ID, GM_ID})


def utc_now() -> datetime:
    """Timezone-aware current time used for every record timestamp."""
    return datetime.now(timezone.utc)


def make_id(prefix: str) -> str:
    """Return ``<prefix>_<epoch ms>_<random>`` identifiers (e.g. ``agent_1718..._3f9a0c1d2``)."""
    return f"{prefix}_{int(time.time() * 1000)}_{uuid4().hex[:9]}"


# ============================================================================
# Enumerations
# ============================================================================


class AgentType(str, Enum):
    PLAYER = "player"
    NPC = "npc"
    GM = "gm"
    ENVIRONMENT = "environment"


class Emotion(str, Enum):
    HAPPY = "happy"
    SAD = "sad"
    ANGRY = "angry"
    FEARFUL = "fearful"
    DISGUSTED = "disgusted"
    SURPRISED = "surprised"
    NEUTRAL = "neutral"


class RelationshipType(str, Enum):
    FRIEND = "friend"
    ENEMY = "enemy"
    FAMILY = "family"
    LOVER = "lover"
    ALLY = "ally"
    RIVAL = "rival"
    STRANGER = "stranger"
    MENTOR = "mentor"
    STUDENT = "student"
    EMPLOYER = "employer"
    EMPLOYEE = "employee"


class RelationshipFactor(str, Enum):
    TRUST = "trust"
    INTIMACY = "intimacy"
    RESPECT = "respect"
    LOYALTY = "loyalty"
    DEPENDENCY = "dependency"


class MemoryType(str, Enum):
    EVENT = "event"
    CHARACTER = "character"
    RELATIONSHIP = "relationship"
    ENVIRONMENT = "environment"
    KNOWLEDGE = "knowledge"
    GOAL = "goal"


class MemoryImportance(IntEnum):
    """Ordinal importance; CRITICAL memories are never evicted."""

    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4


class HistoryEntryType(str, Enum):
    ACTION = "action"
    STATE_CHANGE = "state_change"
    SYSTEM = "system"
    NPC_RESPONSE = "npc_response"
    ENVIRONMENT = "environment"


class ActionType(str, Enum):
    DIALOGUE = "dialogue"
    ACTION = "action"
    ITEM = "item"


class TargetType(str, Enum):
    NONE = "none"
    CHARACTER = "character"
    ENVIRONMENT = "environment"
    ITEM = "item"


class ResponseType(str, Enum):
    DIALOGUE = "dialogue"
    ACTION = "action"
    EMOTION = "emotion"
    DECISION = "decision"
    REJECTION = "rejection"


class DecisionType(str, Enum):
    COOPERATE = "cooperate"
    COMPETE = "compete"
    AVOID = "avoid"
    HELP = "help"
    ATTACK = "attack"
    NEUTRAL = "neutral"


class GamePhase(str, Enum):
    SETUP = "setup"
    PLANNING = "planning"
    ACTION = "action"
    RESOLUTION = "resolution"
    END = "end"


class TimeCycle(str, Enum):
    DAWN = "dawn"
    MORNING = "morning"
    NOON = "noon"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    NIGHT = "night"
    MIDNIGHT = "midnight"


class Weather(str, Enum):
    CLEAR = "clear"
    CLOUDY = "cloudy"
    RAINY = "rainy"
    STORMY = "stormy"
    SNOWY = "snowy"
    FOGGY = "foggy"
    WINDY = "windy"


# ============================================================================
# Agent Schemas
# ============================================================================


class Personality(BaseModel):
    """Five-factor personality vector; every trait is an integer 0-100.

    Neuroticism amplifies emotional swings in the response policy, while
    agreeableness and extraversion push decisions toward cooperation.
    """

    openness: int = Field(50, ge=0, le=100)
    conscientiousness: int = Field(50, ge=0, le=100)
    extraversion: int = Field(50, ge=0, le=100)
    agreeableness: int = Field(50, ge=0, le=100)
    neuroticism: int = Field(50, ge=0, le=100)


class StatusEffect(BaseModel):
    """Active condition on an agent (poisoned, blessed, exhausted...)."""

    id: str = Field(default_factory=lambda: make_id("status"))
    name: str = Field(..., description="Display name of the effect")
    description: str = Field("", description="What the effect does")
    duration: Optional[int] = Field(None, description="Remaining turns; None means until removed")


class Item(BaseModel):
    """Inventory item or object placed in a location."""

    id: str = Field(..., description="Unique item identifier")
    name: str = Field("", description="Display name")
    description: str = Field("", description="Flavor text")
    quantity: int = Field(1, ge=0)
    properties: Dict[str, Any] = Field(default_factory=dict, description="Free-form item data")


class Agent(BaseModel):
    """Any simulated actor: the player, an NPC, the game master or the environment.

    ``relationships`` is a read-only projection of the trust map keyed by the other
    agent's id. Only the trust map writes it (through the registry), so it can be
    rebuilt at any time and never diverges from the canonical record.
    """

    id: str = Field(default_factory=lambda: make_id("agent"))
    name: str = Field("未命名角色", description="Display name")
    type: AgentType = Field(AgentType.NPC, description="Role of the agent in the session")

    description: str = ""
    background: str = ""
    appearance: str = ""
    dialogue_style: str = Field("", description="How the agent talks (formal, terse, poetic...)")

    personality: Personality = Field(default_factory=Personality)
    goals: List[str] = Field(default_factory=list)
    motivations: List[str] = Field(default_factory=list)
    fears: List[str] = Field(default_factory=list)

    # Intensity 0 reads as "unset"; responses then start from the neutral 50.
    current_emotion: Emotion = Emotion.NEUTRAL
    emotion_intensity: float = Field(50, ge=0, le=100)

    location: str = Field("default", description="Key into the environment's locations")
    inventory: List[Item] = Field(default_factory=list)
    status: List[StatusEffect] = Field(default_factory=list)
    skills: Dict[str, int] = Field(default_factory=dict)
    response_preferences: Dict[str, Any] = Field(default_factory=dict)

    relationships: Dict[str, "Relationship"] = Field(
        default_factory=dict, description="Projection of the trust map, keyed by other agent id"
    )
    memory_ids: List[str] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    metadata: Dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# Relationship Schemas
# ============================================================================


def default_factors() -> Dict[str, float]:
    return {
        RelationshipFactor.TRUST.value: 50,
        RelationshipFactor.INTIMACY.value: 0,
        RelationshipFactor.RESPECT.value: 50,
        RelationshipFactor.LOYALTY.value: 0,
        RelationshipFactor.DEPENDENCY.value: 0,
    }


# Stored factor values never leave the 0-100 scale
FactorValue = Annotated[float, Field(ge=0, le=100)]


class RelationshipHistoryEntry(BaseModel):
    """Record of one interaction's effect on a relationship."""

    timestamp: datetime = Field(default_factory=utc_now)
    action_id: Optional[str] = None
    action_type: Optional[ActionType] = None
    content: str = ""
    effect: Dict[str, float] = Field(default_factory=dict, description="Factor deltas that were applied")
    note: Optional[str] = None


class Relationship(BaseModel):
    """Canonical record for an unordered pair of agents.

    Factors are shared by both directions; ``agent_ids`` is always stored sorted.
    """

    agent_ids: Optional[Tuple[str, str]] = Field(None, description="Sorted pair of agent ids")
    type: RelationshipType = RelationshipType.STRANGER
    factors: Dict[str, FactorValue] = Field(default_factory=default_factors)
    history: List[RelationshipHistoryEntry] = Field(default_factory=list)
    notes: str = ""
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def factor(self, name: RelationshipFactor | str) -> float:
        key = name.value if isinstance(name, RelationshipFactor) else name
        return self.factors.get(key, 0)


class RelationshipAnalysis(BaseModel):
    status: str = Field(..., description="intimate, trusting, hostile, guarded, friendly, neutral or unknown")
    description: str = ""
    type: Optional[RelationshipType] = None
    factors: Dict[str, float] = Field(default_factory=dict)


class SocialLink(BaseModel):
    """One edge of an agent's social network as seen from that agent."""

    agent_id: str
    name: str
    agent_type: AgentType
    analysis: RelationshipAnalysis


# ============================================================================
# Memory and History Schemas
# ============================================================================


class Memory(BaseModel):
    """Long-lived recollection used to ground an agent's reactions."""

    id: str = Field(default_factory=lambda: make_id("memory"))
    type: MemoryType = MemoryType.EVENT
    content: str = Field(..., description="Natural-language memory text")
    agent_id: Optional[str] = Field(None, description="Owning agent; None for global memories")
    importance: MemoryImportance = MemoryImportance.MEDIUM
    relevance: float = 1.0
    access_count: int = 0
    last_accessed: datetime = Field(default_factory=utc_now)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class HistoryEntry(BaseModel):
    """One event of the session log.

    Which optional fields are populated depends on ``type``:
    - action: ``actor_id``, ``content``, ``action``, ``result``
    - npc_response: ``npc_id``, ``content``
    - environment: ``location_id``, ``description``
    - system: ``event_type``, ``message``, ``data``
    - state_change: ``changes``, ``cause``
    """

    id: str = Field(default_factory=lambda: make_id("entry"))
    type: HistoryEntryType
    timestamp: datetime = Field(default_factory=utc_now)

    actor_id: Optional[str] = None
    npc_id: Optional[str] = None
    content: Optional[str] = None
    action: Optional[Dict[str, Any]] = None
    result: Optional[Any] = None

    location_id: Optional[str] = None
    description: Optional[str] = None

    event_type: Optional[str] = None
    message: Optional[str] = None
    data: Optional[Dict[str, Any]] = None

    changes: Optional[Dict[str, Dict[str, Any]]] = None
    cause: Optional[str] = None

    metadata: Dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# Action Schema
# ============================================================================


class Action(BaseModel):
    """Immutable description of something an actor does this turn."""

    # Frozen: transitions, scoring and history all read the same action object.
    model_config = ConfigDict(frozen=True)

    id: str
    type: ActionType
    actor_id: str
    content: str
    target_type: TargetType = TargetType.NONE
    target_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)

    # dialogue
    tone: Optional[str] = None
    emotion: Optional[Emotion] = None
    # physical
    intensity: Optional[int] = Field(None, ge=0, le=100)
    body_part: Optional[str] = None
    is_stealthy: Optional[bool] = None
    # item
    item_id: Optional[str] = None
    effect: Optional[str] = None

    metadata: Dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# World / Game State Schemas
# ============================================================================


class Location(BaseModel):
    id: str
    name: str = ""
    description: str = ""
    connections: List[str] = Field(default_factory=list, description="Ids of reachable locations")
    objects: List[Item] = Field(default_factory=list, description="Objects that can be targeted")
    metadata: Dict[str, Any] = Field(default_factory=dict)


class GameTime(BaseModel):
    day: int = 1
    cycle: TimeCycle = TimeCycle.MORNING
    hour: int = Field(9, ge=0, le=23)
    minute: int = Field(0, ge=0, le=59)


def default_locations() -> Dict[str, Location]:
    return {
        "default": Location(
            id="default",
            name="默认位置",
            description="一个默认的起始位置",
        )
    }


class EnvironmentState(BaseModel):
    """Location graph plus time and weather of the scene."""

    name: str = "未命名场景"
    description: str = "这是一个未描述的场景"
    current_location: str = "default"
    locations: Dict[str, Location] = Field(default_factory=default_locations)
    time: GameTime = Field(default_factory=GameTime)
    weather: Weather = Weather.CLEAR
    ambience: str = ""
    flags: Dict[str, Any] = Field(default_factory=dict)

    def current(self) -> Optional[Location]:
        return self.locations.get(self.current_location)


class WorldbookEntry(BaseModel):
    id: str = Field(default_factory=lambda: make_id("lore"))
    title: str = ""
    category: str = "general"
    content: str = ""
    keywords: List[str] = Field(default_factory=list)


class Worldbook(BaseModel):
    """Setting text plus categorized lore entries."""

    main_setting: str = ""
    entries: List[WorldbookEntry] = Field(default_factory=list)

    def categories(self) -> Dict[str, List[WorldbookEntry]]:
        grouped: Dict[str, List[WorldbookEntry]] = {}
        for entry in self.entries:
            grouped.setdefault(entry.category, []).append(entry)
        return grouped


class LLMSettings(BaseModel):
    temperature: float = Field(0.7, ge=0, le=2)
    max_tokens: int = Field(500, gt=0)
    use_memory: bool = True
    context_weight: float = Field(0.5, ge=0, le=1)


def default_player() -> Agent:
    return Agent(id=PLAYER_ID, name="玩家", type=AgentType.PLAYER)


class GameState(BaseModel):
    """Aggregate root holding all simulation data of a session."""

    game_id: str = Field(default_factory=lambda: make_id("game"))
    session_id: str = Field(default_factory=lambda: make_id("session"))
    turn: int = 0
    phase: GamePhase = GamePhase.SETUP

    player: Agent = Field(default_factory=default_player)
    agents: List[Agent] = Field(default_factory=list, description="NPC records")
    active_agent_id: Optional[str] = None

    environment: EnvironmentState = Field(default_factory=EnvironmentState)
    worldbook: Worldbook = Field(default_factory=Worldbook)
    flags: Dict[str, Any] = Field(default_factory=dict)
    variables: Dict[str, Any] = Field(default_factory=dict)
    llm_config: LLMSettings = Field(default_factory=LLMSettings)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def find_agent(self, agent_id: str) -> Optional[Agent]:
        # The player lives in its own slot, not in the NPC list.
        if self.player.id == agent_id:
            return self.player
        for agent in self.agents:
            if agent.id == agent_id:
                return agent
        return None


# ============================================================================
# Response Schemas
# ============================================================================


class AgentResponse(BaseModel):
    """Reaction produced by the response policy for one agent."""

    type: ResponseType
    content: str
    raw_content: Optional[str] = Field(None, description="Reply text before the emotion template")
    emotion: Optional[Emotion] = None
    emotion_intensity: Optional[float] = None
    decision_type: Optional[DecisionType] = None
    cooperation_score: Optional[float] = None
    reason: Optional[str] = None
    error: Optional[str] = None


class SceneResponse(BaseModel):
    agent_id: str
    response: AgentResponse


Agent.model_rebuild()

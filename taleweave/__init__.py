"""
Taleweave - narrative agent simulation for tabletop role-playing sessions.

Players act through free text or structured actions; NPCs, the game master and
the environment react according to their personality, emotion and the shared
relationship map. Text generation is optional and pluggable.

Every service is created per session by `GameSession`. No global state.
"""

__version__ = "0.1.0"

from .session import GameSession, TurnResult
from .game_state import GameStateStore
from .registry import AgentRegistry
from .trust_map import TrustMap, relationship_key
from .memory import MemoryStore
from .history import HistoryLog
from .transition import StateTransition, TargetEffectHandler
from .policy import AgentResponsePolicy
from .sentiment import KeywordSentimentScorer, SentimentScorer, SentimentDelta
from .prompts import PromptBuilder, PromptLibrary, PromptTemplate, RenderedPrompt, DEFAULT_PROMPTS
from .providers import (
    TextProvider,
    RemoteProvider,
    OllamaProvider,
    MockProvider,
    GenerationOptions,
    GenerationResult,
    build_provider,
    estimate_tokens,
)
from .llm_utils import LLMClient, generate_with_retries
from .request_queue import RequestQueue
from .persistence import (
    Snapshot,
    SnapshotStore,
    InMemorySnapshotStore,
    JsonSnapshotStore,
    export_snapshot,
    import_snapshot,
)
from . import actions
from .schemas import (
    Action,
    ActionType,
    Agent,
    AgentResponse,
    AgentType,
    Emotion,
    GameState,
    GamePhase,
    HistoryEntry,
    Item,
    Location,
    Memory,
    MemoryImportance,
    MemoryType,
    Personality,
    Relationship,
    RelationshipType,
    ResponseType,
    SceneResponse,
    TargetType,
)
from .errors import (
    TaleweaveError,
    AgentNotFoundError,
    InvalidPhaseError,
    ProviderError,
    QueueClosedError,
    SnapshotValidationError,
    UnknownPromptTemplateError,
)

__all__ = [
    # Session
    "GameSession",
    "TurnResult",
    # Services
    "GameStateStore",
    "AgentRegistry",
    "TrustMap",
    "relationship_key",
    "MemoryStore",
    "HistoryLog",
    "StateTransition",
    "TargetEffectHandler",
    "AgentResponsePolicy",
    "SentimentScorer",
    "KeywordSentimentScorer",
    "SentimentDelta",
    "actions",
    # Prompts and text generation
    "PromptBuilder",
    "PromptLibrary",
    "PromptTemplate",
    "RenderedPrompt",
    "DEFAULT_PROMPTS",
    "TextProvider",
    "RemoteProvider",
    "OllamaProvider",
    "MockProvider",
    "GenerationOptions",
    "GenerationResult",
    "build_provider",
    "estimate_tokens",
    "LLMClient",
    "generate_with_retries",
    "RequestQueue",
    # Persistence
    "Snapshot",
    "SnapshotStore",
    "InMemorySnapshotStore",
    "JsonSnapshotStore",
    "export_snapshot",
    "import_snapshot",
    # Schemas
    "Action",
    "ActionType",
    "Agent",
    "AgentResponse",
    "AgentType",
    "Emotion",
    "GameState",
    "GamePhase",
    "HistoryEntry",
    "Item",
    "Location",
    "Memory",
    "MemoryImportance",
    "MemoryType",
    "Personality",
    "Relationship",
    "RelationshipType",
    "ResponseType",
    "SceneResponse",
    "TargetType",
    # Errors
    "TaleweaveError",
    "AgentNotFoundError",
    "InvalidPhaseError",
    "ProviderError",
    "QueueClosedError",
    "SnapshotValidationError",
    "UnknownPromptTemplateError",
]

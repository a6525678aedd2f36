"""
GameSession wires the session services together and runs a turn.

Every service is constructed once per session and handed to the others by
reference, so several sessions can live in one process.

Turn flow for ``submit_action``:
1. record the action in the history log
2. apply the state transition and commit the new world state
3. let the trust map update the actor/target relationship
4. collect the scene responses (NPCs at the current location plus the gm)
5. keep a memory of the action for the target character, if any

Narration is the only asynchronous part: ``narrate`` renders a prompt, waits
for the text provider through the rate-limited queue, and records the text as
a system history entry.
"""

from __future__ import annotations

import asyncio
import random
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field

from taleweave import actions
from taleweave.config import Config
from taleweave.game_state import GameStateStore
from taleweave.history import HistoryLog
from taleweave.llm_utils import LLMClient
from taleweave.logging_utils import log_deterministic, log_info, log_llm, log_warning
from taleweave.memory import MemoryStore
from taleweave.persistence import (
    InMemorySnapshotStore,
    SnapshotStore,
    export_snapshot,
    import_snapshot,
)
from taleweave.policy import AgentResponsePolicy
from taleweave.prompts import PromptBuilder
from taleweave.providers import GenerationOptions, TextProvider, build_provider
from taleweave.registry import AgentRegistry
from taleweave.request_queue import RequestQueue
from taleweave.schemas import (
    PLAYER_ID,
    Action,
    GameState,
    HistoryEntry,
    MemoryImportance,
    Relationship,
    SceneResponse,
    TargetType,
)
from taleweave.sentiment import SentimentScorer
from taleweave.transition import StateTransition, TargetEffectHandler
from taleweave.trust_map import TrustMap


class TurnResult(BaseModel):
    """Everything one submitted action produced."""

    action: Action
    history_entry: HistoryEntry
    state: GameState
    relationship: Optional[Relationship] = Field(
        None, description="Actor/target relationship after the update, if one applied"
    )
    responses: List[SceneResponse] = Field(default_factory=list)
    memory_id: Optional[str] = None


class GameSession:
    def __init__(
        self,
        state: Optional[GameState] = None,
        *,
        provider: Optional[TextProvider] = None,
        options: Optional[GenerationOptions] = None,
        queue: Optional[RequestQueue] = None,
        store: Optional[SnapshotStore] = None,
        rng: Optional[random.Random] = None,
        effects: Optional[TargetEffectHandler] = None,
        scorer: Optional[SentimentScorer] = None,
        max_history: Optional[int] = None,
        max_memories: Optional[int] = None,
    ) -> None:
        self.game_state = GameStateStore(state)
        self.registry = AgentRegistry(self.game_state)
        self.history = HistoryLog(max_history or Config.MAX_HISTORY_LENGTH)
        self.trust_map = TrustMap(self.registry, scorer)
        self.memory = MemoryStore(self.registry, max_memories=max_memories)
        self.transition = StateTransition(effects)
        self.policy = AgentResponsePolicy(
            self.registry,
            self.trust_map,
            self.history,
            self.game_state,
            memory=self.memory,
            rng=rng,
        )
        self.prompts = PromptBuilder(self.game_state, self.registry, self.trust_map, self.history)
        self.llm = LLMClient(provider or build_provider(), options, queue)
        self.store = store or InMemorySnapshotStore()
        self._tasks: Set[asyncio.Task] = set()
        self._initialized = False

    @classmethod
    def from_config(cls, state: Optional[GameState] = None, **kwargs: Any) -> "GameSession":
        Config.validate()
        kwargs.setdefault("options", GenerationOptions.from_config())
        return cls(state, **kwargs)

    def initialize(self) -> "GameSession":
        """Load agents from the world state and seed the trust map (idempotent)."""
        if self._initialized:
            return self
        self.registry.initialize()
        self.trust_map.initialize()
        self._initialized = True
        log_info(f"Session {self.game_state.state.session_id} ready")
        return self

    @property
    def state(self) -> GameState:
        return self.game_state.state

    # ------------------------------------------------------------------
    # Turn processing
    # ------------------------------------------------------------------

    def submit_action(self, action: Action) -> TurnResult:
        if not self._initialized:
            self.initialize()

        entry = self.history.add_action(action)

        current = self.game_state.state
        next_state = self.transition.apply(action, current)
        if next_state is not current:
            self.game_state.replace(next_state)

        self._ensure_relationship(action)
        relationship = self.trust_map.process_action_effect(action)
        responses = self.policy.generate_scene_responses(action)

        memory_id = None
        if action.target_type == TargetType.CHARACTER and action.target_id in self.registry:
            memory_id = self.memory.create_from_history(
                entry, MemoryImportance.MEDIUM, agent_id=action.target_id
            )

        log_deterministic(
            f"Action {action.id} ({action.type.value}) by '{action.actor_id}' "
            f"produced {len(responses)} responses"
        )
        return TurnResult(
            action=action,
            history_entry=entry,
            state=self.game_state.state,
            relationship=relationship,
            responses=responses,
            memory_id=memory_id,
        )

    def _ensure_relationship(self, action: Action) -> None:
        """Create the actor/target relationship on first interaction."""
        if action.target_type != TargetType.CHARACTER or not action.target_id:
            return
        if action.actor_id == action.target_id:
            return
        if action.actor_id not in self.registry or action.target_id not in self.registry:
            return
        if self.trust_map.get_relationship(action.actor_id, action.target_id) is None:
            self.trust_map.set_relationship(action.actor_id, action.target_id)

    def submit_text(
        self,
        text: str,
        target_id: Optional[str] = None,
        *,
        item_id: Optional[str] = None,
        actor_id: str = PLAYER_ID,
    ) -> TurnResult:
        """Parse free text (``"..."``, ``[...]``, ``{...}``) into an action and submit it."""
        return self.submit_action(actions.from_text(actor_id, text, target_id, item_id=item_id))

    def advance_turn(self) -> int:
        turn = self.game_state.increment_turn()
        self.history.add_system("turn", f"第{turn}回合开始", {"turn": turn})
        return turn

    # ------------------------------------------------------------------
    # Narration
    # ------------------------------------------------------------------

    async def narrate(self, template: str, context: Optional[Dict[str, Any]] = None) -> HistoryEntry:
        prompt = self.prompts.build(template, context)
        result = await self.llm.send(prompt.messages())
        log_llm(f"Narration '{template}' generated by {result.provider}/{result.model}")
        return self.history.add_system(
            "narration",
            result.text,
            {
                "template": template,
                "provider": result.provider,
                "model": result.model,
                "usage": result.usage,
            },
        )

    def schedule_narration(
        self,
        template: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> "asyncio.Task[HistoryEntry]":
        """Run ``narrate`` in the background; the task is awaited on ``close()``."""
        task = asyncio.create_task(self.narrate(template, context))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ------------------------------------------------------------------
    # Persistence and lifecycle
    # ------------------------------------------------------------------

    def to_json(self) -> str:
        return export_snapshot(self)

    def restore(self, text: str) -> None:
        """Replace the whole session from snapshot text; invalid input changes nothing."""
        import_snapshot(self, text)
        self._initialized = True

    async def save(self, slot: str = "autosave") -> None:
        await self.store.save(slot, self.to_json())
        log_deterministic(f"Session saved to slot '{slot}'")

    async def load(self, slot: str = "autosave") -> bool:
        text = await self.store.load(slot)
        if text is None:
            log_warning(f"Save slot '{slot}' is empty")
            return False
        self.restore(text)
        return True

    async def close(self) -> None:
        """Reject queued requests and wait for scheduled narrations to settle."""
        await self.llm.close()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


__all__ = ["GameSession", "TurnResult"]

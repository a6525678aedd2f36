"""
AgentRegistry: lookup and mutation of every agent in a session.

The registry keeps its own id -> Agent index but never lets it drift from the
world state: each mutation is written through to the `GameStateStore`
synchronously (player slot for ``player``, NPC list for NPCs). The game master
and environment agents live only in the registry and are persisted through
the snapshot's ``agents`` section.

Relationship mirrors on agents are owned by the trust map. ``update()`` refuses
to write them; the trust map projects its records through
``project_relationship()``.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from taleweave.game_state import GameStateStore
from taleweave.logging_utils import log_deterministic, log_warning
from taleweave.schemas import (
    GM_ID,
    PLAYER_ID,
    RESERVED_AGENT_IDS,
    Agent,
    AgentType,
    Emotion,
    Item,
    Personality,
    Relationship,
    StatusEffect,
    make_id,
    utc_now,
)


GM_PERSONALITY = Personality(
    openness=80,
    conscientiousness=90,
    extraversion=70,
    agreeableness=85,
    neuroticism=20,
)


class AgentRegistry:
    """Agent store kept consistent with the session's world state."""

    def __init__(self, game_state: GameStateStore) -> None:
        self._game_state = game_state
        self._agents: Dict[str, Agent] = {}
        self._templates: Dict[str, Dict[str, Any]] = {}
        game_state.add_listener(self.sync_from_state)

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """Load the player and NPCs from the world state and add the game master."""
        state = self._game_state.state
        self._agents[state.player.id] = state.player
        for agent in state.agents:
            self._agents[agent.id] = agent

        if GM_ID not in self._agents:
            self.register(
                Agent(
                    id=GM_ID,
                    name="游戏主持人",
                    type=AgentType.GM,
                    description="负责推动剧情与描述场景的叙述者",
                    personality=GM_PERSONALITY,
                )
            )
        log_deterministic(f"Agent registry initialized with {len(self._agents)} agents")

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, agent: Agent | Dict[str, Any]) -> Agent:
        """Upsert an agent by id, assigning an id and timestamps when missing."""
        data = agent.model_dump() if isinstance(agent, Agent) else dict(agent)
        if not data.get("id"):
            data["id"] = make_id("agent")
        now = utc_now()
        existing = self._agents.get(data["id"])
        data["created_at"] = existing.created_at if existing else data.get("created_at", now)
        data["updated_at"] = now
        record = Agent.model_validate(data)
        self._commit(record)
        return record

    def register_template(self, template_id: str, template: Dict[str, Any]) -> None:
        """Store default agent fields that ``create_from_template`` starts from."""
        self._templates[template_id] = dict(template)

    def templates(self) -> List[str]:
        return sorted(self._templates)

    def create_from_template(
        self,
        template_id: str,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> Optional[Agent]:
        template = self._templates.get(template_id)
        if template is None:
            log_warning(f"Agent template '{template_id}' does not exist")
            return None
        overrides = overrides or {}
        data = {**template, **overrides}
        if "id" not in overrides:
            data.pop("id", None)
        return self.register(data)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, agent_id: str) -> Optional[Agent]:
        return self._agents.get(agent_id)

    def get_all(self) -> List[Agent]:
        return list(self._agents.values())

    def get_all_by_type(self, agent_type: AgentType | str) -> List[Agent]:
        wanted = AgentType(agent_type)
        return [agent for agent in self._agents.values() if agent.type == wanted]

    def __contains__(self, agent_id: str) -> bool:
        return agent_id in self._agents

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def update(self, agent_id: str, changes: Dict[str, Any]) -> Optional[Agent]:
        """Apply a partial update, validate it and write it through to world state.

        Invalid values (an unknown emotion, a trait above 100) raise pydantic's
        ValidationError and leave the record untouched.
        """
        agent = self._agents.get(agent_id)
        if agent is None:
            log_warning(f"Cannot update unknown agent '{agent_id}'")
            return None

        changes = dict(changes)
        if "relationships" in changes:
            changes.pop("relationships")
            log_warning(
                f"Ignoring relationship update for '{agent_id}'; relationships are managed by the trust map"
            )
        changes.pop("id", None)
        changes.pop("created_at", None)

        data = {**agent.model_dump(), **changes, "updated_at": utc_now()}
        updated = Agent.model_validate(data)
        self._commit(updated)
        return updated

    def remove(self, agent_id: str) -> bool:
        if agent_id in RESERVED_AGENT_IDS:
            log_warning(f"Agent '{agent_id}' is reserved and cannot be removed")
            return False
        agent = self._agents.pop(agent_id, None)
        if agent is None:
            log_warning(f"Cannot remove unknown agent '{agent_id}'")
            return False
        self._game_state.remove_agent(agent_id)
        return True

    def update_emotion(
        self,
        agent_id: str,
        emotion: Emotion | str,
        intensity: Optional[float] = None,
    ) -> Optional[Agent]:
        changes: Dict[str, Any] = {"current_emotion": Emotion(emotion)}
        if intensity is not None:
            changes["emotion_intensity"] = max(0.0, min(100.0, intensity))
        return self.update(agent_id, changes)

    def update_location(self, agent_id: str, location_id: str) -> Optional[Agent]:
        if self._game_state.get_location(location_id) is None:
            log_warning(f"Location '{location_id}' does not exist")
            return None
        return self.update(agent_id, {"location": location_id})

    def add_item(self, agent_id: str, item: Item) -> Optional[Agent]:
        """Add an item, stacking quantity onto an existing item with the same id."""
        agent = self._agents.get(agent_id)
        if agent is None:
            log_warning(f"Cannot give item to unknown agent '{agent_id}'")
            return None
        inventory = [entry.model_copy() for entry in agent.inventory]
        for index, entry in enumerate(inventory):
            if entry.id == item.id:
                inventory[index] = entry.model_copy(update={"quantity": entry.quantity + item.quantity})
                break
        else:
            inventory.append(item)
        return self.update(agent_id, {"inventory": inventory})

    def remove_item(self, agent_id: str, item_id: str, quantity: int = 1) -> Optional[Agent]:
        agent = self._agents.get(agent_id)
        if agent is None:
            log_warning(f"Cannot take item from unknown agent '{agent_id}'")
            return None
        inventory: List[Item] = []
        found = False
        for entry in agent.inventory:
            if entry.id == item_id:
                found = True
                remaining = entry.quantity - quantity
                if remaining > 0:
                    inventory.append(entry.model_copy(update={"quantity": remaining}))
            else:
                inventory.append(entry)
        if not found:
            log_warning(f"Agent '{agent_id}' does not carry item '{item_id}'")
            return None
        return self.update(agent_id, {"inventory": inventory})

    def add_status_effect(self, agent_id: str, effect: StatusEffect) -> Optional[Agent]:
        agent = self._agents.get(agent_id)
        if agent is None:
            log_warning(f"Cannot apply status to unknown agent '{agent_id}'")
            return None
        status = [existing for existing in agent.status if existing.id != effect.id]
        status.append(effect)
        return self.update(agent_id, {"status": status})

    def remove_status_effect(self, agent_id: str, effect_id: str) -> Optional[Agent]:
        agent = self._agents.get(agent_id)
        if agent is None:
            log_warning(f"Cannot clear status on unknown agent '{agent_id}'")
            return None
        status = [existing for existing in agent.status if existing.id != effect_id]
        if len(status) == len(agent.status):
            log_warning(f"Agent '{agent_id}' has no status effect '{effect_id}'")
            return None
        return self.update(agent_id, {"status": status})

    def add_memory_id(self, agent_id: str, memory_id: str) -> Optional[Agent]:
        agent = self._agents.get(agent_id)
        if agent is None:
            return None
        if memory_id in agent.memory_ids:
            return agent
        return self.update(agent_id, {"memory_ids": [*agent.memory_ids, memory_id]})

    def remove_memory_id(self, agent_id: str, memory_id: str) -> None:
        agent = self._agents.get(agent_id)
        if agent is not None and memory_id in agent.memory_ids:
            self.update(agent_id, {"memory_ids": [m for m in agent.memory_ids if m != memory_id]})

    # ------------------------------------------------------------------
    # Trust map projection
    # ------------------------------------------------------------------

    def project_relationship(
        self,
        agent_id: str,
        other_id: str,
        relationship: Optional[Relationship],
    ) -> None:
        """Write (or clear) the mirror of a trust-map record on one agent."""
        agent = self._agents.get(agent_id)
        if agent is None:
            return
        relationships = dict(agent.relationships)
        if relationship is None:
            relationships.pop(other_id, None)
        else:
            relationships[other_id] = relationship.model_copy(deep=True)
        self._commit(agent.model_copy(update={"relationships": relationships, "updated_at": utc_now()}))

    # ------------------------------------------------------------------
    # Presentation and serialization
    # ------------------------------------------------------------------

    def agent_card(self, agent_id: str) -> Optional[str]:
        """Human-readable character sheet used by prompts and the demo CLI."""
        agent = self._agents.get(agent_id)
        if agent is None:
            return None
        traits = agent.personality
        lines = [
            f"# {agent.name} ({agent.type.value})",
            f"描述: {agent.description or '无'}",
            f"背景: {agent.background or '无'}",
            f"外貌: {agent.appearance or '无'}",
            (
                "性格: "
                f"开放性 {traits.openness}, 尽责性 {traits.conscientiousness}, "
                f"外向性 {traits.extraversion}, 宜人性 {traits.agreeableness}, "
                f"神经质 {traits.neuroticism}"
            ),
            f"情绪: {agent.current_emotion.value} ({agent.emotion_intensity:.0f})",
            f"位置: {agent.location}",
        ]
        if agent.goals:
            lines.append(f"目标: {'、'.join(agent.goals)}")
        if agent.fears:
            lines.append(f"恐惧: {'、'.join(agent.fears)}")
        if agent.inventory:
            lines.append("物品: " + "、".join(item.name or item.id for item in agent.inventory))
        if agent.status:
            lines.append("状态: " + "、".join(effect.name for effect in agent.status))
        return "\n".join(lines)

    def export(self) -> List[Dict[str, Any]]:
        return [agent.model_dump(mode="json") for agent in self._agents.values()]

    def load(self, agents: Iterable[Agent]) -> None:
        """Replace all agents with validated records and resync the world state."""
        self._agents = {}
        for agent in agents:
            self._agents[agent.id] = agent
        state = self._game_state.state
        if PLAYER_ID in self._agents:
            state.player = self._agents[PLAYER_ID]
        state.agents = [agent for agent in self._agents.values() if agent.type == AgentType.NPC]

    def sync_from_state(self) -> None:
        """Adopt the player and NPC records of a freshly swapped world state.

        NPCs missing from the new state are dropped; agents that live only in
        the registry (game master, environment) are kept.
        """
        state = self._game_state.state
        agents = {agent.id: agent for agent in [state.player, *state.agents]}
        for agent_id, agent in self._agents.items():
            if agent_id != PLAYER_ID and agent.type != AgentType.NPC:
                agents.setdefault(agent_id, agent)
        self._agents = agents

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _commit(self, agent: Agent) -> None:
        self._agents[agent.id] = agent
        if agent.id == PLAYER_ID:
            self._game_state.set_player(agent)
        elif agent.type == AgentType.NPC:
            self._game_state.upsert_agent(agent)


__all__ = ["AgentRegistry", "GM_PERSONALITY"]

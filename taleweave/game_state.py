"""
GameStateStore: single owner of the session's aggregate root.

Every other service reads and writes the world through this store, so the
`GameState` it holds is always the one thing that gets persisted. Mutations
stamp `updated_at`; lookups of unknown locations or worldbook entries log a
warning and return ``None``/``False`` instead of raising.
"""

from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from taleweave.errors import InvalidPhaseError, SnapshotValidationError, validation_issues
from taleweave.logging_utils import log_warning
from taleweave.schemas import (
    Agent,
    EnvironmentState,
    GamePhase,
    GameState,
    GameTime,
    LLMSettings,
    Location,
    Weather,
    WorldbookEntry,
    utc_now,
)


class GameStateStore:
    """Holds the live `GameState` and exposes its mutations."""

    def __init__(self, state: Optional[GameState] = None) -> None:
        self._state = state or GameState()
        self._listeners: List[Callable[[], None]] = []

    @property
    def state(self) -> GameState:
        return self._state

    def _touch(self) -> None:
        self._state.updated_at = utc_now()

    # ------------------------------------------------------------------
    # Whole-state operations
    # ------------------------------------------------------------------

    def add_listener(self, callback: Callable[[], None]) -> None:
        """Call ``callback`` after every whole-state swap.

        Services that index records of the state (the agent registry) use this
        to re-read the player and NPC slots.
        """
        self._listeners.append(callback)

    def replace(self, state: GameState) -> GameState:
        """Swap in a new aggregate root (used by state transitions and imports)."""
        self._state = state
        for callback in self._listeners:
            callback()
        return self._state

    def update(self, **changes: Any) -> GameState:
        """Shallow-merge top-level fields, validating the merged result."""
        merged = {**self._state.model_dump(), **changes, "updated_at": utc_now()}
        return self.replace(GameState.model_validate(merged))

    def reset(self) -> GameState:
        return self.replace(GameState())

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    @property
    def phase(self) -> GamePhase:
        return self._state.phase

    def set_phase(self, phase: GamePhase | str) -> GamePhase:
        try:
            resolved = GamePhase(phase)
        except ValueError:
            raise InvalidPhaseError(phase, [p.value for p in GamePhase]) from None
        self._state.phase = resolved
        self._touch()
        return resolved

    @property
    def turn(self) -> int:
        return self._state.turn

    def increment_turn(self) -> int:
        self._state.turn += 1
        self._touch()
        return self._state.turn

    # ------------------------------------------------------------------
    # Player and agents
    # ------------------------------------------------------------------

    def set_player(self, player: Agent) -> Agent:
        self._state.player = player
        self._touch()
        return player

    def get_agent(self, agent_id: str) -> Optional[Agent]:
        for agent in self._state.agents:
            if agent.id == agent_id:
                return agent
        return None

    def upsert_agent(self, agent: Agent) -> Agent:
        """Insert the agent or replace the record with the same id."""
        for index, existing in enumerate(self._state.agents):
            if existing.id == agent.id:
                self._state.agents[index] = agent
                break
        else:
            self._state.agents.append(agent)
        self._touch()
        return agent

    def remove_agent(self, agent_id: str) -> bool:
        remaining = [agent for agent in self._state.agents if agent.id != agent_id]
        if len(remaining) == len(self._state.agents):
            return False
        self._state.agents = remaining
        if self._state.active_agent_id == agent_id:
            self._state.active_agent_id = None
        self._touch()
        return True

    def set_active_agent(self, agent_id: Optional[str]) -> Optional[str]:
        if agent_id is not None and self._state.find_agent(agent_id) is None:
            log_warning(f"Cannot activate unknown agent '{agent_id}'")
            return self._state.active_agent_id
        self._state.active_agent_id = agent_id
        self._touch()
        return agent_id

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    @property
    def environment(self) -> EnvironmentState:
        return self._state.environment

    def update_environment(self, **changes: Any) -> EnvironmentState:
        merged = {**self._state.environment.model_dump(), **changes}
        self._state.environment = EnvironmentState.model_validate(merged)
        self._touch()
        return self._state.environment

    def current_location(self) -> Optional[Location]:
        return self._state.environment.current()

    def get_location(self, location_id: str) -> Optional[Location]:
        return self._state.environment.locations.get(location_id)

    def add_location(self, location: Location) -> Location:
        """Add a location, merging over an existing record with the same id."""
        existing = self._state.environment.locations.get(location.id)
        if existing is not None:
            location = Location.model_validate(
                {**existing.model_dump(), **location.model_dump(exclude_unset=True)}
            )
        self._state.environment.locations[location.id] = location
        self._touch()
        return location

    def remove_location(self, location_id: str) -> bool:
        environment = self._state.environment
        if location_id not in environment.locations:
            log_warning(f"Location '{location_id}' does not exist")
            return False
        if environment.current_location == location_id:
            log_warning(f"Cannot remove the current location '{location_id}'")
            return False
        del environment.locations[location_id]
        for location in environment.locations.values():
            if location_id in location.connections:
                location.connections.remove(location_id)
        self._touch()
        return True

    def set_current_location(self, location_id: str) -> bool:
        if location_id not in self._state.environment.locations:
            log_warning(f"Location '{location_id}' does not exist")
            return False
        self._state.environment.current_location = location_id
        self._touch()
        return True

    def set_time(self, **changes: Any) -> GameTime:
        merged = {**self._state.environment.time.model_dump(), **changes}
        self._state.environment.time = GameTime.model_validate(merged)
        self._touch()
        return self._state.environment.time

    def set_weather(self, weather: Weather | str) -> Weather:
        self._state.environment.weather = Weather(weather)
        self._touch()
        return self._state.environment.weather

    # ------------------------------------------------------------------
    # Worldbook, flags and variables
    # ------------------------------------------------------------------

    def set_main_setting(self, text: str) -> None:
        self._state.worldbook.main_setting = text
        self._touch()

    def add_worldbook_entry(self, entry: WorldbookEntry) -> List[WorldbookEntry]:
        entries = self._state.worldbook.entries
        for index, existing in enumerate(entries):
            if existing.id == entry.id:
                entries[index] = entry
                break
        else:
            entries.append(entry)
        self._touch()
        return entries

    def remove_worldbook_entry(self, entry_id: str) -> bool:
        entries = self._state.worldbook.entries
        remaining = [entry for entry in entries if entry.id != entry_id]
        if len(remaining) == len(entries):
            log_warning(f"Worldbook entry '{entry_id}' does not exist")
            return False
        self._state.worldbook.entries = remaining
        self._touch()
        return True

    def set_flag(self, key: str, value: Any) -> None:
        self._state.flags[key] = value
        self._touch()

    def get_flag(self, key: str, default: Any = None) -> Any:
        return self._state.flags.get(key, default)

    def set_variable(self, key: str, value: Any) -> None:
        self._state.variables[key] = value
        self._touch()

    def get_variable(self, key: str, default: Any = None) -> Any:
        return self._state.variables.get(key, default)

    def update_llm_config(self, **changes: Any) -> LLMSettings:
        merged = {**self._state.llm_config.model_dump(), **changes}
        self._state.llm_config = LLMSettings.model_validate(merged)
        self._touch()
        return self._state.llm_config

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def export_json(self) -> str:
        return self._state.model_dump_json(indent=2)

    def import_json(self, payload: str | Dict[str, Any]) -> GameState:
        """Replace the state from JSON; on any error the current state is kept."""
        try:
            data = json.loads(payload) if isinstance(payload, str) else payload
            state = GameState.model_validate(data)
        except json.JSONDecodeError as exc:
            raise SnapshotValidationError("Game state is not valid JSON", [str(exc)]) from exc
        except ValidationError as exc:
            raise SnapshotValidationError(
                "Game state failed validation", validation_issues(exc)
            ) from exc
        return self.replace(state)

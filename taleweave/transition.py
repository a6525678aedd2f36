"""
StateTransition: pure mapping from (action, state) to the next state.

``apply()`` never mutates its input. It returns a deep copy with ``updated_at``
stamped, or the untouched input when the action's target cannot be resolved
(a warning is logged, nothing is raised).

What an action actually does to its target (damage, status effects, handing
over items) is delegated to a `TargetEffectHandler`. The default handler leaves
the state as it is; subclass it to give physical and item actions real effects.
Relationship changes are not applied here; the trust map handles them.
"""

from __future__ import annotations

from typing import Iterable, Optional, Union

from taleweave.logging_utils import log_deterministic, log_error, log_warning
from taleweave.schemas import (
    Action,
    ActionType,
    Agent,
    GameState,
    Item,
    Location,
    TargetType,
    utc_now,
)


Target = Union[Agent, Location, Item]


class TargetEffectHandler:
    """Extension point for per-target effects.

    Each hook receives the working copy of the state (safe to mutate) and the
    resolved target, and returns the state to commit. The defaults return the
    state unchanged.
    """

    def on_character(self, action: Action, state: GameState, target: Agent) -> GameState:
        return state

    def on_environment(self, action: Action, state: GameState, location: Location) -> GameState:
        return state

    def on_item(self, action: Action, state: GameState, target: Item) -> GameState:
        return state

    def on_item_used(self, action: Action, state: GameState, item: Item) -> GameState:
        """Called for item actions once the used item has been found."""
        return state


class StateTransition:
    """Applies actions to world state without mutating the input."""

    def __init__(self, effects: Optional[TargetEffectHandler] = None) -> None:
        self.effects = effects or TargetEffectHandler()

    def apply(self, action: Action, state: GameState) -> GameState:
        if action.type == ActionType.DIALOGUE:
            return self._stamped_copy(state)
        if action.type == ActionType.ACTION:
            return self._apply_targeted(action, state)
        if action.type == ActionType.ITEM:
            return self._apply_item(action, state)
        log_warning(f"Unsupported action type '{action.type}'")
        return state

    def apply_transitions(self, actions: Iterable[Action], state: GameState) -> GameState:
        """Fold a batch of actions; a failing action is logged and skipped."""
        current = state
        for action in actions:
            try:
                current = self.apply(action, current)
            except Exception as exc:
                log_error(f"Transition for action {action.id} failed: {exc}")
        return current

    # ------------------------------------------------------------------
    # Dispatch helpers
    # ------------------------------------------------------------------

    def _apply_targeted(self, action: Action, state: GameState) -> GameState:
        if action.target_type == TargetType.NONE:
            return self._stamped_copy(state)

        target = self.resolve_target(action, state)
        if target is None:
            log_warning(
                f"Target {action.target_type.value} '{action.target_id}' of action {action.id} not found"
            )
            return state

        working = self._stamped_copy(state)
        # Resolve again on the copy so handlers mutate the new state only.
        target = self.resolve_target(action, working)
        log_deterministic(f"Action {action.id} applied to {action.target_type.value} '{action.target_id}'")
        if action.target_type == TargetType.CHARACTER:
            return self.effects.on_character(action, working, target)
        if action.target_type == TargetType.ENVIRONMENT:
            return self.effects.on_environment(action, working, target)
        return self.effects.on_item(action, working, target)

    def _apply_item(self, action: Action, state: GameState) -> GameState:
        if action.item_id and self.find_item(state, action.item_id) is None:
            log_warning(f"Item '{action.item_id}' is neither carried nor in the current location")
            return state

        result = self._apply_targeted(action, state)
        if result is state or not action.item_id:
            return result
        item = self.find_item(result, action.item_id)
        return self.effects.on_item_used(action, result, item)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    @staticmethod
    def find_item(state: GameState, item_id: str) -> Optional[Item]:
        """Look for an item in the player's inventory, then the current location."""
        for entry in state.player.inventory:
            if entry.id == item_id:
                return entry
        location = state.environment.current()
        if location is not None:
            for entry in location.objects:
                if entry.id == item_id:
                    return entry
        return None

    @staticmethod
    def resolve_target(action: Action, state: GameState) -> Optional[Target]:
        if action.target_type == TargetType.CHARACTER:
            return state.find_agent(action.target_id) if action.target_id else None
        if action.target_type == TargetType.ENVIRONMENT:
            location_id = action.target_id or state.environment.current_location
            return state.environment.locations.get(location_id)
        if action.target_type == TargetType.ITEM and action.target_id:
            return StateTransition.find_item(state, action.target_id)
        return None

    @staticmethod
    def _stamped_copy(state: GameState) -> GameState:
        working = state.model_copy(deep=True)
        working.updated_at = utc_now()
        return working


__all__ = ["StateTransition", "TargetEffectHandler"]

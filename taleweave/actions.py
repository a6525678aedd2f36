"""Action constructors and free-text parsing.

Players type into a single box; the bracket style decides what kind of action
the text becomes:

    【攻击门】 or [attack the door]   -> physical action
    「使用药水」 or {drink potion}     -> item use
    "你好" or “你好” or plain text     -> dialogue
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from taleweave.schemas import Action, ActionType, Emotion, TargetType, make_id


_PATTERNS = (
    (ActionType.ACTION, re.compile(r"^\s*[\[【](.+?)[\]】]\s*$", re.DOTALL)),
    (ActionType.ITEM, re.compile(r"^\s*[{「](.+?)[}」]\s*$", re.DOTALL)),
    (ActionType.DIALOGUE, re.compile(r"^\s*[\"“](.+?)[\"”]?\s*$", re.DOTALL)),
)


@dataclass(frozen=True)
class ParsedInput:
    type: ActionType
    content: str


def parse_free_text(text: str) -> ParsedInput:
    """Classify raw player input; anything unmatched is dialogue."""
    for action_type, pattern in _PATTERNS:
        match = pattern.match(text)
        if match:
            return ParsedInput(type=action_type, content=match.group(1))
    return ParsedInput(type=ActionType.DIALOGUE, content=text)


def _action_id(action_type: ActionType) -> str:
    return make_id(action_type.value)


def dialogue(
    actor_id: str,
    content: str,
    target_id: Optional[str] = None,
    *,
    tone: Optional[str] = None,
    emotion: Optional[Emotion] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Action:
    """Something said aloud; a target id makes it addressed to that character."""
    return Action(
        id=_action_id(ActionType.DIALOGUE),
        type=ActionType.DIALOGUE,
        actor_id=actor_id,
        content=content,
        target_type=TargetType.CHARACTER if target_id else TargetType.NONE,
        target_id=target_id,
        tone=tone,
        emotion=emotion,
        metadata=metadata or {},
    )


def physical(
    actor_id: str,
    content: str,
    target_type: TargetType = TargetType.NONE,
    target_id: Optional[str] = None,
    *,
    intensity: int = 50,
    body_part: Optional[str] = None,
    is_stealthy: bool = False,
    metadata: Optional[Dict[str, Any]] = None,
) -> Action:
    return Action(
        id=_action_id(ActionType.ACTION),
        type=ActionType.ACTION,
        actor_id=actor_id,
        content=content,
        target_type=target_type,
        target_id=target_id,
        intensity=intensity,
        body_part=body_part,
        is_stealthy=is_stealthy,
        metadata=metadata or {},
    )


def item(
    actor_id: str,
    item_id: str,
    content: str,
    target_type: TargetType = TargetType.NONE,
    target_id: Optional[str] = None,
    *,
    effect: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Action:
    return Action(
        id=_action_id(ActionType.ITEM),
        type=ActionType.ITEM,
        actor_id=actor_id,
        content=content,
        target_type=target_type,
        target_id=target_id,
        item_id=item_id,
        effect=effect,
        metadata=metadata or {},
    )


def from_text(
    actor_id: str,
    text: str,
    target_id: Optional[str] = None,
    *,
    item_id: Optional[str] = None,
) -> Action:
    """Parse free text and build the matching action for ``actor_id``.

    A target id is interpreted as a character for dialogue and physical actions.
    Item actions use ``item_id`` when given, otherwise the parsed content names
    the item.
    """
    parsed = parse_free_text(text)
    if parsed.type is ActionType.ACTION:
        target_type = TargetType.CHARACTER if target_id else TargetType.NONE
        return physical(actor_id, parsed.content, target_type, target_id)
    if parsed.type is ActionType.ITEM:
        target_type = TargetType.CHARACTER if target_id else TargetType.NONE
        return item(actor_id, item_id or parsed.content, parsed.content, target_type, target_id)
    return dialogue(actor_id, parsed.content, target_id)


__all__ = ["ParsedInput", "parse_free_text", "dialogue", "physical", "item", "from_text"]

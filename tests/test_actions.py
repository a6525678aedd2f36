"""Tests for free-text parsing and action constructors."""

import pytest
from pydantic import ValidationError

from taleweave import actions
from taleweave.schemas import ActionType, TargetType


@pytest.mark.parametrize(
    "text, expected_type, expected_content",
    [
        ("【攻击门】", ActionType.ACTION, "攻击门"),
        ("[attack the door]", ActionType.ACTION, "attack the door"),
        ("「使用药水」", ActionType.ITEM, "使用药水"),
        ("{drink potion}", ActionType.ITEM, "drink potion"),
        ("你好", ActionType.DIALOGUE, "你好"),
        ("“你好”", ActionType.DIALOGUE, "你好"),
        ('"hello there"', ActionType.DIALOGUE, "hello there"),
    ],
)
def test_parse_free_text(text, expected_type, expected_content):
    parsed = actions.parse_free_text(text)
    assert parsed.type is expected_type
    assert parsed.content == expected_content


def test_unclosed_quote_is_still_dialogue():
    parsed = actions.parse_free_text("“我有话要说")
    assert parsed.type is ActionType.DIALOGUE
    assert parsed.content == "我有话要说"


def test_dialogue_target_makes_character_action():
    addressed = actions.dialogue("player", "你好", "innkeeper")
    assert addressed.target_type is TargetType.CHARACTER
    assert addressed.target_id == "innkeeper"

    aloud = actions.dialogue("player", "有人吗？")
    assert aloud.target_type is TargetType.NONE
    assert aloud.target_id is None


def test_action_ids_carry_type_prefix():
    action = actions.physical("player", "推门", TargetType.ENVIRONMENT, "tavern")
    assert action.id.startswith("action_")
    assert actions.item("player", "potion", "喝药水").id.startswith("item_")
    assert actions.dialogue("player", "嗨").id.startswith("dialogue_")


def test_from_text_builds_item_action_with_explicit_item_id():
    action = actions.from_text("player", "{用钥匙开门}", item_id="room_key")
    assert action.type is ActionType.ITEM
    assert action.item_id == "room_key"
    assert action.content == "用钥匙开门"
    assert action.target_type is TargetType.NONE


def test_from_text_targets_character_for_physical_action():
    action = actions.from_text("player", "【拥抱老朋友】", "bard")
    assert action.type is ActionType.ACTION
    assert action.target_type is TargetType.CHARACTER
    assert action.target_id == "bard"


def test_actions_are_immutable():
    action = actions.dialogue("player", "你好")
    with pytest.raises(ValidationError):
        action.content = "再见"

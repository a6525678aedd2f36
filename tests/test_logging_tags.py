"""Tests for truthful logging tags ([AI] vs [•]) in session output.

These tests assert that:
- Rule-driven turn processing prints only deterministic tags
- Narration prints [AI] because it goes through the text provider
- TALEWEAVE_NO_COLOR and TALEWEAVE_QUIET change what is printed
"""

from __future__ import annotations

import contextlib
import io

import pytest

from taleweave.logging_utils import Color, colored, log_deterministic, log_info, log_warning
from taleweave.providers import MockProvider
from taleweave.request_queue import RequestQueue
from taleweave.schemas import Agent, AgentType, GameState
from taleweave.session import GameSession


def _session() -> GameSession:
    state = GameState(agents=[Agent(id="innkeeper", name="玛莎", type=AgentType.NPC)])
    return GameSession(state, provider=MockProvider(), queue=RequestQueue(0))


def test_turn_processing_is_tagged_deterministic(monkeypatch):
    monkeypatch.setenv("TALEWEAVE_NO_COLOR", "1")
    session = _session()

    buf = io.StringIO()
    with contextlib.redirect_stdout(buf):
        session.submit_text('"谢谢"', "innkeeper")
    out = buf.getvalue()

    assert "[•] Relationship player <-> innkeeper: trust +2" in out
    assert "[•] Action " in out
    assert "[AI]" not in out


@pytest.mark.asyncio
async def test_narration_is_tagged_llm(monkeypatch):
    monkeypatch.setenv("TALEWEAVE_NO_COLOR", "1")
    session = _session()
    session.initialize()

    buf = io.StringIO()
    with contextlib.redirect_stdout(buf):
        await session.narrate("world_building", {"theme": "蒸汽朋克"})
        await session.close()
    out = buf.getvalue()

    assert "[AI] Narration 'world_building' generated by mock/mock-model" in out


def test_colors_can_be_disabled(monkeypatch):
    monkeypatch.delenv("TALEWEAVE_NO_COLOR", raising=False)
    assert colored("hi", Color.GREEN) == f"{Color.GREEN.value}hi{Color.RESET.value}"
    assert colored("hi", Color.RED, bold=True).startswith(Color.BOLD.value + Color.RED.value)

    monkeypatch.setenv("TALEWEAVE_NO_COLOR", "1")
    assert colored("hi", Color.GREEN) == "hi"


def test_quiet_mode_keeps_warnings(monkeypatch, capsys):
    monkeypatch.setenv("TALEWEAVE_NO_COLOR", "1")
    monkeypatch.setenv("TALEWEAVE_QUIET", "1")

    log_deterministic("tick")
    log_info("meta")
    log_warning("Agent 'ghost' does not exist")

    assert capsys.readouterr().out == "[?] Agent 'ghost' does not exist\n"

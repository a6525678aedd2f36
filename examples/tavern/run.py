"""Scripted tavern scene driven by the mock text provider.

Runs entirely offline:

    python examples/tavern/run.py
    python examples/tavern/run.py --seed 7 --save-dir saves

The player greets the innkeeper, thanks her, shoves the bard and finally uses a
key. After every action the script prints the scene responses and the
player-innkeeper relationship, then asks the (mock) narrator for a short scene
description. With ``--save-dir`` the final session is written to
``<save-dir>/tavern.json``.
"""

from __future__ import annotations

import argparse
import asyncio
import random
from pathlib import Path

from taleweave import (
    Agent,
    AgentType,
    GameSession,
    GameState,
    Item,
    JsonSnapshotStore,
    Location,
    MockProvider,
    Personality,
)
from taleweave.config import Config
from taleweave.providers import GenerationOptions

SCRIPT = [
    ("“晚上好，老板娘。”", "innkeeper"),
    ("“谢谢你留了房间给我。”", "innkeeper"),
    ("【推开挡路的吟游诗人】", "bard"),
    ("{用钥匙打开楼上的房门}", None),
]

MOCK_RESPONSES = {
    "位置名称": "炉火噼啪作响，麦酒的香气混着松木烟味，角落里有人低声谈论北方的战事。",
    "当前故事概要": "旅人在酒馆落脚，却注意到吟游诗人频频望向门口，似乎在等什么人。",
}


def build_world() -> GameState:
    state = GameState()
    state.environment.name = "雾港"
    state.environment.current_location = "tavern"
    state.environment.locations["tavern"] = Location(
        id="tavern",
        name="跃鲑酒馆",
        description="低矮的木梁下挤满了旅人",
        connections=["street"],
    )
    state.environment.locations["street"] = Location(
        id="street", name="码头街", description="潮湿的石板路通向港口", connections=["tavern"]
    )
    state.worldbook.main_setting = "一个被海雾笼罩的港口城镇，商会与盗贼公会暗中角力。"
    state.player.name = "旅人"
    state.player.location = "tavern"
    state.player.inventory.append(Item(id="room_key", name="房门钥匙"))
    state.agents = [
        Agent(
            id="innkeeper",
            name="玛莎",
            type=AgentType.NPC,
            description="精明却热情的酒馆老板娘",
            dialogue_style="爽朗直接",
            personality=Personality(agreeableness=80, extraversion=75, neuroticism=30),
            location="tavern",
        ),
        Agent(
            id="bard",
            name="林恩",
            type=AgentType.NPC,
            description="心事重重的吟游诗人",
            dialogue_style="文绉绉",
            personality=Personality(agreeableness=35, extraversion=40, neuroticism=80),
            location="tavern",
        ),
    ]
    return state


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Taleweave tavern scene demo")
    parser.add_argument("--seed", type=int, default=42, help="Seed for the response policy")
    parser.add_argument(
        "--save-dir",
        type=Path,
        default=None,
        help="Directory for the final snapshot (omit to skip saving)",
    )
    return parser.parse_args()


def print_turn(session: GameSession, result) -> None:
    print(f"\n> {result.action.content}")
    for scene in result.responses:
        name = session.registry.get(scene.agent_id).name
        response = scene.response
        print(f"  {name} ({response.type.value}): {response.content}")
    relationship = session.trust_map.get_relationship("player", "innkeeper")
    if relationship is not None:
        analysis = session.trust_map.analyze_relationship("player", "innkeeper")
        print(
            f"  [与玛莎的关系] 信任 {relationship.factors['trust']:.0f} / "
            f"尊重 {relationship.factors['respect']:.0f} → {analysis.description}"
        )


async def main(args: argparse.Namespace) -> None:
    store = JsonSnapshotStore(args.save_dir) if args.save_dir else None
    session = GameSession(
        build_world(),
        provider=MockProvider(MOCK_RESPONSES),
        options=GenerationOptions(retries=0, timeout=5),
        store=store,
        rng=random.Random(args.seed),
    )
    session.llm.queue.min_interval = 0
    session.initialize()
    print(Config.display())

    opening = await session.narrate("environment_description")
    print(f"\n{opening.message}")

    for text, target_id in SCRIPT:
        result = session.submit_text(text, target_id, item_id="room_key" if text.startswith("{") else None)
        print_turn(session, result)
        session.advance_turn()

    closing = await session.narrate("story_progression", {"direction": "引出吟游诗人的秘密"})
    print(f"\n{closing.message}")
    print("\n最近的事件：")
    print(session.history.summarize(400))

    if store is not None:
        await session.save("tavern")
        print(f"\nSaved to {args.save_dir / 'tavern.json'}")
    await session.close()


if __name__ == "__main__":
    asyncio.run(main(parse_args()))

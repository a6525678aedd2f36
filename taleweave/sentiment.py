"""
Sentiment scoring for relationship updates.

A `SentimentScorer` turns the text of an action into deltas on the trust,
intimacy and respect factors. The default `KeywordSentimentScorer` uses a fixed
keyword table: for each action type, categories are checked in order and the
first category with a matching keyword decides the deltas. Matches are never
summed across categories.

Swap in another scorer (a classifier, an LLM judge) by passing it to the
`TrustMap`; nothing else in the engine depends on how the deltas are produced.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Sequence, Tuple

from taleweave.schemas import ActionType


@dataclass(frozen=True)
class SentimentDelta:
    trust: float = 0
    intimacy: float = 0
    respect: float = 0

    def as_dict(self) -> Dict[str, float]:
        return {"trust": self.trust, "intimacy": self.intimacy, "respect": self.respect}

    def is_zero(self) -> bool:
        return not (self.trust or self.intimacy or self.respect)


@dataclass(frozen=True)
class KeywordCategory:
    name: str
    keywords: Tuple[str, ...]
    delta: SentimentDelta


DEFAULT_KEYWORD_TABLE: Dict[ActionType, Tuple[KeywordCategory, ...]] = {
    ActionType.DIALOGUE: (
        KeywordCategory("gratitude", ("感谢", "谢谢"), SentimentDelta(trust=2, respect=1)),
        KeywordCategory("apology", ("抱歉", "对不起"), SentimentDelta(trust=1, respect=2)),
        KeywordCategory("affection", ("喜欢", "爱"), SentimentDelta(trust=1, intimacy=3)),
        KeywordCategory("hostility", ("讨厌", "恨"), SentimentDelta(trust=-1, intimacy=-3)),
    ),
    ActionType.ACTION: (
        KeywordCategory("help", ("帮助", "援助"), SentimentDelta(trust=3, respect=2)),
        KeywordCategory("attack", ("攻击", "伤害"), SentimentDelta(trust=-5, respect=-3)),
        KeywordCategory("embrace", ("拥抱", "亲吻"), SentimentDelta(intimacy=4)),
    ),
    ActionType.ITEM: (
        KeywordCategory("give", ("赠送", "给予"), SentimentDelta(trust=2, intimacy=1)),
        KeywordCategory("steal", ("偷窃", "抢夺"), SentimentDelta(trust=-4, respect=-2)),
    ),
}


class SentimentScorer(ABC):
    """Maps action text to relationship factor deltas."""

    @abstractmethod
    def score(self, text: str, action_type: ActionType) -> SentimentDelta:
        """Return the deltas for ``text`` performed as ``action_type``."""


class KeywordSentimentScorer(SentimentScorer):
    """First-match keyword table scorer."""

    def __init__(
        self,
        table: Dict[ActionType, Sequence[KeywordCategory]] | None = None,
    ) -> None:
        self.table = dict(table) if table is not None else dict(DEFAULT_KEYWORD_TABLE)

    def match(self, text: str, action_type: ActionType) -> KeywordCategory | None:
        for category in self.table.get(action_type, ()):
            if any(keyword in text for keyword in category.keywords):
                return category
        return None

    def score(self, text: str, action_type: ActionType) -> SentimentDelta:
        category = self.match(text, action_type)
        return category.delta if category else SentimentDelta()


__all__ = [
    "SentimentDelta",
    "KeywordCategory",
    "SentimentScorer",
    "KeywordSentimentScorer",
    "DEFAULT_KEYWORD_TABLE",
]

"""
TrustMap: canonical store of pairwise agent relationships.

Each unordered pair of agents has exactly one `Relationship`. The key is built
from the two ids in sorted order, so ``get(a, b)`` and ``get(b, a)`` return the
same object and the factors (trust, intimacy, respect, loyalty, dependency)
are shared by both sides.

The map is the only writer of relationship data. Whenever a record changes it
is projected onto both agents' ``relationships`` mirror through the registry.

Action effects:
    process_action_effect() scores the text of a character-targeted action with
    a `SentimentScorer` and applies the deltas to the existing relationship.
    Nothing happens (and ``None`` is returned) when the action has no
    character target, targets its own actor, or the pair has no relationship yet.
"""

from __future__ import annotations

import json
from itertools import combinations
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from taleweave.errors import SnapshotValidationError, validation_issues
from taleweave.logging_utils import log_deterministic, log_warning
from taleweave.registry import AgentRegistry
from taleweave.schemas import (
    Action,
    Agent,
    Relationship,
    RelationshipAnalysis,
    RelationshipFactor,
    RelationshipHistoryEntry,
    RelationshipType,
    SocialLink,
    TargetType,
    default_factors,
    utc_now,
)
from taleweave.sentiment import KeywordSentimentScorer, SentimentScorer


FACTOR_MIN = 0
FACTOR_MAX = 100


def relationship_key(agent_a: str, agent_b: str) -> str:
    """Order-independent key for a pair of agent ids."""
    first, second = sorted((agent_a, agent_b))
    return f"{first}::{second}"


def clamp_factor(value: float) -> float:
    return max(FACTOR_MIN, min(FACTOR_MAX, value))


def _factor_name(factor: RelationshipFactor | str) -> str:
    return factor.value if isinstance(factor, RelationshipFactor) else RelationshipFactor(factor).value


class TrustMap:
    """Symmetric relationship store with sentiment-driven updates."""

    def __init__(
        self,
        registry: AgentRegistry,
        scorer: Optional[SentimentScorer] = None,
    ) -> None:
        self._registry = registry
        self._relationships: Dict[str, Relationship] = {}
        self.scorer = scorer or KeywordSentimentScorer()

    def __len__(self) -> int:
        return len(self._relationships)

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def initialize(self, agents: Optional[Iterable[Agent]] = None) -> int:
        """Create a relationship for every pair of agents that lacks one.

        A relationship already carried on either agent (for instance from a
        template) seeds the record; otherwise neutral defaults are used.
        Returns the number of relationships created.
        """
        pool = list(agents) if agents is not None else self._registry.get_all()
        created = 0
        for first, second in combinations(pool, 2):
            if first.id == second.id or relationship_key(first.id, second.id) in self._relationships:
                continue
            seed = first.relationships.get(second.id) or second.relationships.get(first.id)
            data = seed.model_dump(exclude={"agent_ids", "created_at", "updated_at"}) if seed else {}
            self.set_relationship(first.id, second.id, data)
            created += 1
        log_deterministic(f"Trust map initialized {created} relationships")
        return created

    # ------------------------------------------------------------------
    # Core access
    # ------------------------------------------------------------------

    def get_relationship(self, agent_a: str, agent_b: str) -> Optional[Relationship]:
        if agent_a == agent_b:
            return None
        return self._relationships.get(relationship_key(agent_a, agent_b))

    def set_relationship(
        self,
        agent_a: str,
        agent_b: str,
        data: Relationship | Dict[str, Any] | None = None,
    ) -> Relationship:
        """Create or overwrite the pair's record, merging ``data`` onto defaults.

        ``created_at`` of an existing record is preserved and ``updated_at`` is
        always refreshed. Partial ``factors`` are merged onto the default factors.
        """
        if agent_a == agent_b:
            raise ValueError(f"An agent cannot have a relationship with itself: {agent_a}")

        if isinstance(data, Relationship):
            data = data.model_dump()
        payload = dict(data or {})
        key = relationship_key(agent_a, agent_b)
        existing = self._relationships.get(key)
        now = utc_now()

        payload["factors"] = {**default_factors(), **payload.get("factors", {})}
        payload["factors"] = {name: clamp_factor(value) for name, value in payload["factors"].items()}
        payload["agent_ids"] = tuple(sorted((agent_a, agent_b)))
        if existing is not None:
            payload["created_at"] = existing.created_at
        else:
            payload.setdefault("created_at", now)
        payload["updated_at"] = now

        relationship = Relationship.model_validate(payload)
        self._relationships[key] = relationship
        self._project(agent_a, agent_b, relationship)
        return relationship

    def remove_relationship(self, agent_a: str, agent_b: str) -> bool:
        relationship = self._relationships.pop(relationship_key(agent_a, agent_b), None)
        if relationship is None:
            log_warning(f"No relationship between '{agent_a}' and '{agent_b}'")
            return False
        self._project(agent_a, agent_b, None)
        return True

    def update_relationship_type(
        self,
        agent_a: str,
        agent_b: str,
        relationship_type: RelationshipType | str,
    ) -> Optional[Relationship]:
        relationship = self.get_relationship(agent_a, agent_b)
        if relationship is None:
            log_warning(f"No relationship between '{agent_a}' and '{agent_b}'")
            return None
        data = relationship.model_dump()
        data["type"] = RelationshipType(relationship_type)
        return self.set_relationship(agent_a, agent_b, data)

    def adjust_factor(
        self,
        agent_a: str,
        agent_b: str,
        factor: RelationshipFactor | str,
        delta: float,
    ) -> Optional[Relationship]:
        """Add ``delta`` to a factor, clamping the result to 0-100."""
        relationship = self.get_relationship(agent_a, agent_b)
        if relationship is None:
            log_warning(f"No relationship between '{agent_a}' and '{agent_b}'")
            return None
        name = _factor_name(factor)
        data = relationship.model_dump()
        data["factors"][name] = clamp_factor(relationship.factor(name) + delta)
        return self.set_relationship(agent_a, agent_b, data)

    def set_factor(
        self,
        agent_a: str,
        agent_b: str,
        factor: RelationshipFactor | str,
        value: float,
    ) -> Optional[Relationship]:
        relationship = self.get_relationship(agent_a, agent_b)
        if relationship is None:
            log_warning(f"No relationship between '{agent_a}' and '{agent_b}'")
            return None
        data = relationship.model_dump()
        data["factors"][_factor_name(factor)] = clamp_factor(value)
        return self.set_relationship(agent_a, agent_b, data)

    def add_history_entry(
        self,
        agent_a: str,
        agent_b: str,
        entry: RelationshipHistoryEntry,
    ) -> Optional[Relationship]:
        relationship = self.get_relationship(agent_a, agent_b)
        if relationship is None:
            log_warning(f"No relationship between '{agent_a}' and '{agent_b}'")
            return None
        data = relationship.model_dump()
        data["history"] = [*relationship.history, entry]
        return self.set_relationship(agent_a, agent_b, data)

    # ------------------------------------------------------------------
    # Action effects
    # ------------------------------------------------------------------

    def process_action_effect(self, action: Action) -> Optional[Relationship]:
        """Apply the sentiment of a character-targeted action to the pair's factors."""
        if action.target_type != TargetType.CHARACTER or not action.target_id:
            return None
        if action.actor_id == action.target_id:
            return None
        if self.get_relationship(action.actor_id, action.target_id) is None:
            return None

        delta = self.scorer.score(action.content, action.type)
        for factor, amount in delta.as_dict().items():
            if amount:
                self.adjust_factor(action.actor_id, action.target_id, factor, amount)

        updated = self.add_history_entry(
            action.actor_id,
            action.target_id,
            RelationshipHistoryEntry(
                action_id=action.id,
                action_type=action.type,
                content=action.content,
                effect=delta.as_dict(),
            ),
        )
        if not delta.is_zero():
            log_deterministic(
                f"Relationship {action.actor_id} <-> {action.target_id}: "
                f"trust {delta.trust:+g}, intimacy {delta.intimacy:+g}, respect {delta.respect:+g}"
            )
        return updated

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def analyze_relationship(self, agent_a: str, agent_b: str) -> RelationshipAnalysis:
        """Qualitative label from the factors; the first matching rule wins."""
        relationship = self.get_relationship(agent_a, agent_b)
        if relationship is None:
            return RelationshipAnalysis(status="unknown", description="没有关系数据")

        trust = relationship.factor(RelationshipFactor.TRUST)
        intimacy = relationship.factor(RelationshipFactor.INTIMACY)
        respect = relationship.factor(RelationshipFactor.RESPECT)

        if trust >= 80 and intimacy >= 80:
            status, description = "intimate", "关系非常亲密，互相信任"
        elif trust >= 70:
            status, description = "trusting", "彼此信任，关系良好"
        elif trust <= 20 and respect <= 30:
            status, description = "hostile", "关系恶劣，互不信任"
        elif trust <= 40:
            status, description = "guarded", "保持距离，缺乏信任"
        elif intimacy >= 70 and respect >= 60:
            status, description = "friendly", "关系友好，互相尊重"
        else:
            status, description = "neutral", "关系一般，没有特别亲近或疏远"

        return RelationshipAnalysis(
            status=status,
            description=description,
            type=relationship.type,
            factors=dict(relationship.factors),
        )

    def get_agent_relationships(self, agent_id: str) -> Dict[str, Relationship]:
        """All relationships of ``agent_id`` keyed by the other agent's id."""
        found: Dict[str, Relationship] = {}
        for relationship in self._relationships.values():
            first, second = relationship.agent_ids
            if first == agent_id:
                found[second] = relationship
            elif second == agent_id:
                found[first] = relationship
        return found

    def get_social_network(self, agent_id: str) -> List[SocialLink]:
        if self._registry.get(agent_id) is None:
            return []
        network: List[SocialLink] = []
        for other in self._registry.get_all():
            if other.id == agent_id or self.get_relationship(agent_id, other.id) is None:
                continue
            network.append(
                SocialLink(
                    agent_id=other.id,
                    name=other.name,
                    agent_type=other.type,
                    analysis=self.analyze_relationship(agent_id, other.id),
                )
            )
        return network

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def export(self) -> Dict[str, Dict[str, Any]]:
        return {key: rel.model_dump(mode="json") for key, rel in self._relationships.items()}

    def export_json(self) -> str:
        return json.dumps(self.export(), ensure_ascii=False, indent=2)

    @staticmethod
    def validate_records(payload: Dict[str, Any]) -> List[Relationship]:
        """Validate exported records without touching any live map."""
        if not isinstance(payload, dict):
            raise SnapshotValidationError("Relationships must be a JSON object keyed by pair")
        records: List[Relationship] = []
        issues: List[str] = []
        for key, data in payload.items():
            try:
                record = Relationship.model_validate(data)
            except ValidationError as exc:
                issues.extend(f"{key}.{issue}" for issue in validation_issues(exc))
                continue
            if record.agent_ids is None or record.agent_ids[0] == record.agent_ids[1]:
                issues.append(f"{key}: agent_ids must name two different agents")
                continue
            records.append(record)
        if issues:
            raise SnapshotValidationError("Relationships failed validation", issues)
        return records

    def load(self, records: Iterable[Relationship]) -> None:
        """Replace every relationship and rebuild the agent mirrors."""
        for relationship in self._relationships.values():
            self._project(*relationship.agent_ids, None)
        self._relationships = {}
        for record in records:
            first, second = record.agent_ids
            self._relationships[relationship_key(first, second)] = record
            self._project(first, second, record)

    def import_json(self, text: str) -> int:
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise SnapshotValidationError("Relationships are not valid JSON", [str(exc)]) from exc
        records = self.validate_records(payload)
        self.load(records)
        return len(records)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _project(self, agent_a: str, agent_b: str, relationship: Optional[Relationship]) -> None:
        self._registry.project_relationship(agent_a, agent_b, relationship)
        self._registry.project_relationship(agent_b, agent_a, relationship)


__all__ = ["TrustMap", "relationship_key", "clamp_factor"]

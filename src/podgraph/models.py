"""
Data model for staged mentions, the canonical graph and resolver results.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4


class EntityType(str, Enum):
    """Kinds of canonical nodes."""

    COMPANY = "Company"
    PERSON = "Person"
    TOPIC = "Topic"
    EPISODE = "Episode"


class StagedKind(str, Enum):
    """Which staging inbox a row lives in."""

    ENTITY = "entity"
    RELATIONSHIP = "relationship"


class StagedStatus(str, Enum):
    """Lifecycle of a staged row. Anything but PENDING counts as processed."""

    PENDING = "pending"
    RESOLVED = "resolved"
    UNRESOLVED = "unresolved"


class SkipReason(str, Enum):
    """Terminal, non-error outcomes for a staged relationship."""

    MISSING_ENTITY = "missing entity"
    LOW_CONFIDENCE = "low confidence"
    IMPLAUSIBLE = "implausible relationship"
    SELF_LOOP = "self-referential relationship"


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return str(uuid4())


# =============================================================================
# Staged rows
# =============================================================================


@dataclass
class StagedEntity:
    """Raw entity mention awaiting resolution."""

    name: str
    type: str
    episode_id: str
    episode_title: str = ""
    description: Optional[str] = None
    id: str = field(default_factory=new_id)
    extracted_at: str = field(default_factory=utcnow)
    status: str = StagedStatus.PENDING.value
    resolution_note: Optional[str] = None
    processed_at: Optional[str] = None

    @property
    def processed(self) -> bool:
        return self.status != StagedStatus.PENDING.value

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StagedEntity":
        """Build from extraction output (camelCase or snake_case keys)."""
        entity_type = data.get("type", "")
        if entity_type not in {t.value for t in EntityType}:
            raise ValueError(f"Unknown entity type: {entity_type!r}")
        name = (data.get("name") or "").strip()
        if not name:
            raise ValueError("Staged entity requires a name")

        kwargs = {
            "name": name,
            "type": entity_type,
            "episode_id": data.get("episodeId") or data.get("episode_id") or "",
            "episode_title": data.get("episodeTitle") or data.get("episode_title") or "",
            "description": data.get("description"),
        }
        extracted_at = data.get("extractedAt") or data.get("extracted_at")
        if extracted_at:
            kwargs["extracted_at"] = extracted_at
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["processed"] = self.processed
        return data


@dataclass
class StagedRelationship:
    """Raw relationship mention; endpoint names are free text."""

    source_name: str
    target_name: str
    episode_id: str
    description: str = ""
    episode_title: str = ""
    id: str = field(default_factory=new_id)
    extracted_at: str = field(default_factory=utcnow)
    status: str = StagedStatus.PENDING.value
    resolution_note: Optional[str] = None
    processed_at: Optional[str] = None

    @property
    def processed(self) -> bool:
        return self.status != StagedStatus.PENDING.value

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StagedRelationship":
        """Build from extraction output (camelCase or snake_case keys)."""
        source = (data.get("sourceName") or data.get("source_name") or data.get("source") or "").strip()
        target = (data.get("targetName") or data.get("target_name") or data.get("target") or "").strip()
        if not source or not target:
            raise ValueError("Staged relationship requires source and target names")

        kwargs = {
            "source_name": source,
            "target_name": target,
            "description": data.get("description") or "",
            "episode_id": data.get("episodeId") or data.get("episode_id") or "",
            "episode_title": data.get("episodeTitle") or data.get("episode_title") or "",
        }
        extracted_at = data.get("extractedAt") or data.get("extracted_at")
        if extracted_at:
            kwargs["extracted_at"] = extracted_at
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["processed"] = self.processed
        return data


# =============================================================================
# Canonical graph
# =============================================================================


@dataclass
class Entity:
    """Canonical, deduplicated node."""

    id: str
    name: str
    type: str
    normalized_name: str
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class EntityMention:
    """Provenance edge: entity was referenced in an episode."""

    episode_id: str
    entity_id: str


@dataclass
class Connection:
    """Canonical edge between two entities within an episode."""

    id: str
    episode_id: str
    source_entity_id: str
    target_entity_id: str
    strength: int = 1
    description: Optional[str] = None
    confidence: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# =============================================================================
# Resolver results
# =============================================================================


@dataclass
class MergeDetail:
    """Audit record for one merge decision."""

    source: str
    target: str
    strategy: str
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class EntityResolutionResult:
    """Outcome of one entity resolver batch."""

    processed: int = 0
    created: int = 0
    merged: int = 0
    errors: int = 0
    total_cost: float = 0.0
    strategy_stats: Dict[str, int] = field(default_factory=dict)
    merge_details: List[MergeDetail] = field(default_factory=list)

    def count_strategy(self, name: str) -> None:
        self.strategy_stats[name] = self.strategy_stats.get(name, 0) + 1

    def absorb(self, other: "EntityResolutionResult") -> None:
        """Add another batch's counts into this one."""
        self.processed += other.processed
        self.created += other.created
        self.merged += other.merged
        self.errors += other.errors
        self.total_cost += other.total_cost
        for name, count in other.strategy_stats.items():
            self.strategy_stats[name] = self.strategy_stats.get(name, 0) + count
        self.merge_details.extend(other.merge_details)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "created": self.created,
            "merged": self.merged,
            "errors": self.errors,
            "totalCost": round(self.total_cost, 6),
            "strategyStats": dict(self.strategy_stats),
            "mergeDetails": [d.to_dict() for d in self.merge_details],
        }


@dataclass
class RelationshipDetail:
    """Per-item outcome of relationship resolution."""

    source: str
    target: str
    result: str
    confidence: float = 0.0
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RelationshipResolutionResult:
    """Outcome of one relationship resolver batch."""

    processed: int = 0
    created: int = 0
    strengthened: int = 0
    skipped: int = 0
    errors: int = 0
    details: List[RelationshipDetail] = field(default_factory=list)

    @property
    def success_rate(self) -> float:
        if not self.processed:
            return 0.0
        return (self.created + self.strengthened) / self.processed

    @property
    def average_confidence(self) -> float:
        accepted = [d.confidence for d in self.details if d.result in ("created", "strengthened")]
        if not accepted:
            return 0.0
        return sum(accepted) / len(accepted)

    def absorb(self, other: "RelationshipResolutionResult") -> None:
        self.processed += other.processed
        self.created += other.created
        self.strengthened += other.strengthened
        self.skipped += other.skipped
        self.errors += other.errors
        self.details.extend(other.details)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "created": self.created,
            "strengthened": self.strengthened,
            "skipped": self.skipped,
            "errors": self.errors,
            "successRate": round(self.success_rate, 4),
            "averageConfidence": round(self.average_confidence, 4),
            "details": [d.to_dict() for d in self.details],
        }

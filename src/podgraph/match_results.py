"""
Outcome of running a name through the matching cascade.

Every variant carries the matched entity (except NoMatch), a confidence and
the dollar cost spent producing it. Consumers dispatch on the concrete class.
"""

from dataclasses import dataclass
from typing import Union

from .models import Entity


@dataclass
class ExactMatch:
    entity: Entity
    confidence: float = 0.95
    cost: float = 0.0
    strategy: str = "exact"


@dataclass
class NormalizedMatch:
    entity: Entity
    confidence: float = 0.9
    cost: float = 0.0
    strategy: str = "normalized"


@dataclass
class AliasMatch:
    """Matched through an abbreviation, whitelisted alias or acronym."""

    entity: Entity
    alias: str
    confidence: float = 0.9
    cost: float = 0.0
    strategy: str = "alias"


@dataclass
class FuzzyMatch:
    entity: Entity
    score: float
    cost: float = 0.0
    strategy: str = "fuzzy"

    @property
    def confidence(self) -> float:
        return self.score


@dataclass
class BusinessRuleMatch:
    entity: Entity
    label: str
    confidence: float = 0.85
    cost: float = 0.0
    strategy: str = "business_rule"


@dataclass
class LLMMatch:
    entity: Entity
    confidence: float
    reasoning: str = ""
    cost: float = 0.0
    strategy: str = "llm"


@dataclass
class ContainmentMatch:
    """One name contains the other; too weak to accept on its own."""

    entity: Entity
    confidence: float = 0.5
    cost: float = 0.0
    strategy: str = "containment"


@dataclass
class CachedMatchResult:
    """Served from the entity cache; remembers which strategy produced it."""

    entity: Entity
    confidence: float
    original_strategy: str
    cost: float = 0.0
    strategy: str = "cache"


@dataclass
class NoMatch:
    reason: str = "no match"
    cost: float = 0.0
    strategy: str = "no_match"
    confidence: float = 0.0
    entity: None = None


MatchResult = Union[
    ExactMatch,
    NormalizedMatch,
    AliasMatch,
    FuzzyMatch,
    BusinessRuleMatch,
    LLMMatch,
    ContainmentMatch,
    CachedMatchResult,
    NoMatch,
]

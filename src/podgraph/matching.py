"""
Matching cascade: resolve a free-text name to a canonical entity.

Strategies run in increasing cost order and the cascade stops at the first
candidate whose confidence reaches the short-circuit bar (0.8 by default):

1. exact           case-insensitive name or normalized_name       0.95
2. normalized      normalized form of the query                   0.9
3. alias           abbreviations, whitelisted aliases, acronym    inherits 1-2
4. fuzzy           trigram similarity above the threshold         = score
5. business rule   domain keyword tables                          0.8-0.85
6. llm             model picks among fuzzy/containment candidates capped 0.9
7. containment     one name contains the other (>= 5 chars)       0.5

Containment hits are fed to the LLM rather than accepted; without the LLM
they surface only as a weak candidate that the resolvers will not merge on.
"""

from typing import Dict, List, Optional, Sequence

from .business_rules import BUSINESS_RULES, BusinessRule, find_business_rules
from .constants import (
    CONTAINMENT_CONFIDENCE,
    CONTAINMENT_MIN_LENGTH,
    EXACT_CONFIDENCE,
    NORMALIZED_CONFIDENCE,
    RELATIONSHIP_ENDPOINT_TYPES,
)
from .llm_matcher import LLMMatcher
from .match_results import (
    AliasMatch,
    BusinessRuleMatch,
    ContainmentMatch,
    ExactMatch,
    FuzzyMatch,
    LLMMatch,
    MatchResult,
    NoMatch,
    NormalizedMatch,
)
from .models import Entity
from .normalization import (
    generate_alternative_names,
    is_containment,
    known_alias_canonical,
    normalize_entity_name,
)
from .resolution_config import MatchingConfig
from .storage import GraphStore
from .utils.logger import logger


class MatchingCascade:
    """Ordered matching strategies over the canonical entity table."""

    def __init__(
        self,
        graph: GraphStore,
        config: Optional[MatchingConfig] = None,
        llm_matcher: Optional[LLMMatcher] = None,
        business_rules: Optional[Sequence[BusinessRule]] = None,
    ):
        self.graph = graph
        self.config = config or MatchingConfig()
        self.llm_matcher = llm_matcher
        self.business_rules = list(BUSINESS_RULES if business_rules is None else business_rules)

    # =========================================================================
    # Individual strategies
    # =========================================================================

    def match_exact(self, name: str, entity_type: Optional[str]) -> Optional[ExactMatch]:
        hits = self.graph.find_exact(name, entity_type)
        return ExactMatch(entity=hits[0], confidence=EXACT_CONFIDENCE) if hits else None

    def match_normalized(self, name: str, entity_type: Optional[str]) -> Optional[NormalizedMatch]:
        hits = self.graph.find_by_normalized(normalize_entity_name(name), entity_type)
        return NormalizedMatch(entity=hits[0], confidence=NORMALIZED_CONFIDENCE) if hits else None

    def match_alias(self, name: str, entity_type: Optional[str]) -> Optional[AliasMatch]:
        """Run each alternative name through exact then normalized matching."""
        lowered = name.lower().strip()
        normalized = normalize_entity_name(name)
        for alias in generate_alternative_names(name):
            if alias.lower() in (lowered, normalized):
                continue
            exact = self.match_exact(alias, entity_type)
            if exact:
                return AliasMatch(entity=exact.entity, alias=alias, confidence=exact.confidence)
            normalized_hit = self.match_normalized(alias, entity_type)
            if normalized_hit:
                return AliasMatch(entity=normalized_hit.entity, alias=alias, confidence=normalized_hit.confidence)

        if entity_type is not None:
            canonical = known_alias_canonical(name, entity_type)
            if canonical and canonical != normalized:
                hits = self.graph.find_by_normalized(canonical, entity_type)
                if hits:
                    return AliasMatch(entity=hits[0], alias=canonical, confidence=NORMALIZED_CONFIDENCE)
        return None

    def match_fuzzy(self, name: str, entity_type: Optional[str], threshold: float) -> Optional[FuzzyMatch]:
        """Best trigram hit over the normalized alternatives, strictly above ``threshold``."""
        best: Optional[FuzzyMatch] = None
        seen = set()
        for alternative in generate_alternative_names(name):
            normalized = normalize_entity_name(alternative)
            if not normalized or normalized in seen:
                continue
            seen.add(normalized)
            for entity, score in self.graph.find_fuzzy(normalized, entity_type, threshold=threshold, limit=1):
                if best is None or score > best.score:
                    best = FuzzyMatch(entity=entity, score=score)
        return best

    def match_business_rule(self, name: str, entity_type: str) -> Optional[BusinessRuleMatch]:
        for rule in find_business_rules(name, entity_type, self.business_rules):
            hit = self.match_exact(rule.canonical_name, rule.entity_type) or self.match_normalized(
                rule.canonical_name, rule.entity_type
            )
            if hit:
                return BusinessRuleMatch(entity=hit.entity, label=rule.label, confidence=rule.confidence)
        return None

    def containment_matches(self, name: str, entity_type: Optional[str], limit: int = 5) -> List[ContainmentMatch]:
        return [
            ContainmentMatch(entity=entity, confidence=CONTAINMENT_CONFIDENCE)
            for entity in self.graph.find_containing(name, entity_type, limit=limit)
            if is_containment(name, entity.name, CONTAINMENT_MIN_LENGTH)
        ]

    def llm_candidates(self, name: str, entity_type: str) -> List[Entity]:
        """
        Candidates shown to the LLM: loose fuzzy hits plus containment hits,
        or a broad token slice when both are empty.
        """
        candidates: Dict[str, Entity] = {}
        for entity, _ in self.graph.find_fuzzy(
            normalize_entity_name(name) or name.lower(),
            entity_type,
            threshold=self.config.llm_candidate_floor,
            limit=self.config.llm_max_candidates,
        ):
            candidates.setdefault(entity.id, entity)
        for match in self.containment_matches(name, entity_type, limit=self.config.llm_max_candidates):
            candidates.setdefault(match.entity.id, match.entity)

        if not candidates:
            tokens = (normalize_entity_name(name) or name.lower()).split()
            for entity in self.graph.find_by_tokens(tokens, entity_type, limit=self.config.llm_fallback_candidates):
                candidates.setdefault(entity.id, entity)

        return list(candidates.values())

    # =========================================================================
    # Cascade
    # =========================================================================

    async def resolve(
        self,
        name: str,
        entity_type: str,
        use_llm: bool = True,
        conservative: bool = False,
    ) -> MatchResult:
        """
        Run the cascade for one name within one entity type.

        Args:
            name: Free-text name to resolve
            entity_type: Only entities of this type are considered
            use_llm: Allow the LLM strategy (ignored in conservative mode)
            conservative: Skip the LLM and use the stricter fuzzy threshold

        Returns:
            The first result reaching the short-circuit bar, else the best
            weaker candidate, else NoMatch. Its ``cost`` includes any LLM spend.
        """
        bar = self.config.short_circuit
        fuzzy_threshold = (
            self.config.conservative_fuzzy_threshold if conservative else self.config.fuzzy_threshold
        )
        weak: Optional[MatchResult] = None

        def keep_weak(candidate: Optional[MatchResult]) -> None:
            nonlocal weak
            if candidate is not None and (weak is None or candidate.confidence > weak.confidence):
                weak = candidate

        for strategy in (
            lambda: self.match_exact(name, entity_type),
            lambda: self.match_normalized(name, entity_type),
            lambda: self.match_alias(name, entity_type),
            lambda: self.match_fuzzy(name, entity_type, fuzzy_threshold),
            lambda: self.match_business_rule(name, entity_type),
        ):
            candidate = strategy()
            if candidate is not None and candidate.confidence >= bar:
                logger.debug(
                    f"'{name}' ({entity_type}) -> '{candidate.entity.name}' via {candidate.strategy} "
                    f"({candidate.confidence:.2f})"
                )
                return candidate
            keep_weak(candidate)

        containment = self.containment_matches(name, entity_type)

        if use_llm and not conservative and self.llm_matcher is not None:
            verdict = await self.llm_matcher.match(name, entity_type, self.llm_candidates(name, entity_type))
            if isinstance(verdict, LLMMatch):
                return verdict
            if verdict.cost or verdict.strategy == "llm_cached":
                # The model looked at the candidates and declined them all
                return NoMatch(reason=verdict.reason, cost=verdict.cost, strategy=verdict.strategy)

        if containment:
            keep_weak(containment[0])

        if weak is not None:
            return weak
        return NoMatch(reason=f"no {entity_type} matches '{name}'")

    def collect_candidates(
        self,
        name: str,
        entity_types: Sequence[str] = RELATIONSHIP_ENDPOINT_TYPES,
        fuzzy_floor: float = 0.4,
        limit: int = 5,
    ) -> List[MatchResult]:
        """
        Every plausible entity for ``name`` across ``entity_types``.

        Strategies run strongest first and an entity keeps the result of the
        first strategy that found it. Best first, at most ``limit``. No LLM is
        involved.
        """
        found: Dict[str, MatchResult] = {}

        def add(candidate: Optional[MatchResult]) -> None:
            if candidate is None:
                return
            found.setdefault(candidate.entity.id, candidate)

        lowered = name.lower().strip()
        for alternative in generate_alternative_names(name):
            for entity in self.graph.find_exact(alternative, limit=limit):
                if alternative.lower() == lowered:
                    add(ExactMatch(entity=entity, confidence=EXACT_CONFIDENCE))
                else:
                    add(AliasMatch(entity=entity, alias=alternative, confidence=EXACT_CONFIDENCE))

        for entity in self.graph.find_by_normalized(normalize_entity_name(name), limit=limit):
            add(NormalizedMatch(entity=entity, confidence=NORMALIZED_CONFIDENCE))

        for entity_type in entity_types:
            add(self.match_alias(name, entity_type))
            add(self.match_business_rule(name, entity_type))

        for entity, score in self.graph.find_fuzzy(lowered, threshold=fuzzy_floor, limit=10, on_normalized=False):
            if entity.type in entity_types:
                add(FuzzyMatch(entity=entity, score=score))

        for match in self.containment_matches(name, None):
            if match.entity.type in entity_types:
                add(match)

        ranked = sorted(
            (c for c in found.values() if c.entity.type in entity_types),
            key=lambda c: c.confidence,
            reverse=True,
        )
        return ranked[:limit]

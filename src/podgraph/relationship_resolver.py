"""
Relationship resolver: link staged relationship mentions to canonical edges.

Both endpoint names keep every plausible candidate entity. Each
(source, target) candidate pair is scored as the mean of the two match
confidences and a validation confidence from the relationship rule table; the
best pair above the acceptance threshold becomes (or strengthens) a Connection.

Terminal outcomes (created, strengthened, skipped) mark the staged row; store
or unexpected errors leave it pending for a later batch.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .business_rules import ValidationResult, ValidationRule, validate_relationship
from .constants import RELATIONSHIP_ENDPOINT_TYPES
from .match_results import MatchResult
from .matching import MatchingCascade
from .models import (
    RelationshipDetail,
    RelationshipResolutionResult,
    SkipReason,
    StagedKind,
    StagedRelationship,
    StagedStatus,
)
from .normalization import canonical_key
from .resolution_config import RelationshipConfig
from .staging_store import StagingStore
from .storage import GraphStore
from .utils.errors import FatalConnectivityError
from .utils.logger import logger


@dataclass
class ScoredPair:
    source: MatchResult
    target: MatchResult
    validation: ValidationResult

    @property
    def confidence(self) -> float:
        return (self.source.confidence + self.target.confidence + self.validation.confidence) / 3


class RelationshipResolver:
    """Candidate-pair resolution of staged relationships."""

    def __init__(
        self,
        staging: StagingStore,
        graph: GraphStore,
        cascade: MatchingCascade,
        config: Optional[RelationshipConfig] = None,
        validation_rules: Optional[Sequence[ValidationRule]] = None,
        endpoint_types: Sequence[str] = RELATIONSHIP_ENDPOINT_TYPES,
    ):
        self.staging = staging
        self.graph = graph
        self.cascade = cascade
        self.config = config or RelationshipConfig()
        self.validation_rules = validation_rules
        self.endpoint_types = tuple(endpoint_types)

    def min_confidence(self, strict: bool = False) -> float:
        return self.config.strict_min_confidence if strict else self.config.min_confidence

    async def resolve_batch(self, batch_size: int = 100, strict: bool = False) -> RelationshipResolutionResult:
        """
        Resolve up to ``batch_size`` pending staged relationships.

        Args:
            batch_size: Maximum rows to dequeue
            strict: Use the strict acceptance threshold instead of the robust one

        Raises:
            FatalConnectivityError: with ``partial_result`` set to the rows done so far
        """
        result = RelationshipResolutionResult()
        rows = self.staging.dequeue(StagedKind.RELATIONSHIP, batch_size)
        if not rows:
            return result

        threshold = self.min_confidence(strict)
        logger.info(f"Resolving {len(rows)} staged relationships (min confidence {threshold})")

        for row in rows:
            try:
                self._resolve_one(row, result, threshold)
            except FatalConnectivityError as e:
                logger.error(f"Aborting relationship batch at '{row.source_name}' -> '{row.target_name}': {e}")
                e.partial_result = result
                raise
            except Exception as e:
                result.errors += 1
                result.details.append(
                    RelationshipDetail(row.source_name, row.target_name, "error", 0.0, str(e))
                )
                logger.warning(
                    f"Failed to resolve relationship '{row.source_name}' -> '{row.target_name}' "
                    f"({row.id}), left pending: {e}"
                )

        logger.info(
            f"Relationship batch: processed={result.processed} created={result.created} "
            f"strengthened={result.strengthened} skipped={result.skipped} errors={result.errors}"
        )
        return result

    def candidates(self, name: str) -> List[MatchResult]:
        return self.cascade.collect_candidates(
            name,
            entity_types=self.endpoint_types,
            fuzzy_floor=self.config.fuzzy_floor,
            limit=self.config.max_candidates,
        )

    def best_pair(
        self,
        sources: List[MatchResult],
        targets: List[MatchResult],
        description: str,
    ) -> Tuple[Optional[ScoredPair], Optional[SkipReason]]:
        """Highest-confidence valid pair, or the reason no pair qualifies."""
        best: Optional[ScoredPair] = None
        saw_distinct_pair = False
        for source in sources:
            for target in targets:
                if source.entity.id == target.entity.id:
                    continue
                saw_distinct_pair = True
                validation = validate_relationship(
                    source.entity.type,
                    target.entity.type,
                    target.entity.name,
                    description,
                    self.validation_rules,
                )
                if not validation.valid:
                    continue
                pair = ScoredPair(source, target, validation)
                if best is None or pair.confidence > best.confidence:
                    best = pair

        if best is not None:
            return best, None
        if not saw_distinct_pair:
            return None, SkipReason.SELF_LOOP
        return None, SkipReason.IMPLAUSIBLE

    def _skip(
        self,
        row: StagedRelationship,
        result: RelationshipResolutionResult,
        reason: str,
        confidence: float = 0.0,
    ) -> None:
        self.staging.mark_processed(StagedKind.RELATIONSHIP, [row.id], StagedStatus.UNRESOLVED, reason)
        result.processed += 1
        result.skipped += 1
        result.details.append(
            RelationshipDetail(row.source_name, row.target_name, "skipped", round(confidence, 4), reason)
        )
        logger.debug(f"Skipped '{row.source_name}' -> '{row.target_name}': {reason}")

    def _resolve_one(self, row: StagedRelationship, result: RelationshipResolutionResult, threshold: float) -> None:
        if canonical_key(row.source_name) == canonical_key(row.target_name):
            self._skip(row, result, SkipReason.SELF_LOOP.value)
            return

        sources = self.candidates(row.source_name)
        targets = self.candidates(row.target_name)

        missing = []
        if not sources:
            missing.append(f"source '{row.source_name}'")
        if not targets:
            missing.append(f"target '{row.target_name}'")
        if missing:
            self._skip(row, result, f"{SkipReason.MISSING_ENTITY.value}: {', '.join(missing)}")
            return

        pair, reason = self.best_pair(sources, targets, row.description)
        if pair is None:
            self._skip(row, result, reason.value)
            return

        confidence = pair.confidence
        if confidence < threshold:
            self._skip(
                row,
                result,
                f"{SkipReason.LOW_CONFIDENCE.value}: {confidence:.2f} < {threshold:.2f}",
                confidence,
            )
            return

        connection, created = self.graph.upsert_connection(
            row.episode_id,
            pair.source.entity.id,
            pair.target.entity.id,
            description=row.description,
            confidence=round(confidence, 4),
            replace_description=self.config.replace_description,
        )
        outcome = "created" if created else "strengthened"
        if created:
            result.created += 1
        else:
            result.strengthened += 1

        self.staging.mark_processed(
            StagedKind.RELATIONSHIP, [row.id], StagedStatus.RESOLVED, pair.validation.reason
        )
        result.processed += 1
        result.details.append(
            RelationshipDetail(
                pair.source.entity.name,
                pair.target.entity.name,
                outcome,
                round(confidence, 4),
                pair.validation.reason,
            )
        )
        logger.debug(
            f"{outcome.capitalize()} '{pair.source.entity.name}' -> '{pair.target.entity.name}' "
            f"(strength {connection.strength}, confidence {confidence:.2f}, {pair.validation.reason})"
        )

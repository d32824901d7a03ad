"""
Batch runner: drive the resolvers until the staging inbox is drained.

Entity batches run first, then relationship batches, each until a batch
processes nothing or ``max_batches`` is reached. A store or LLM outage stops
the run; the aggregates collected up to that point are still returned.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .entity_resolver import EntityResolver
from .models import EntityResolutionResult, RelationshipResolutionResult
from .relationship_resolver import RelationshipResolver
from .resolution_config import BatchConfig
from .utils.errors import FatalConnectivityError
from .utils.logger import PipelineTimer, log_metrics, logger


@dataclass
class BatchRunResult:
    """Aggregated outcome of a full run."""

    entities: EntityResolutionResult = field(default_factory=EntityResolutionResult)
    relationships: RelationshipResolutionResult = field(default_factory=RelationshipResolutionResult)
    entity_batches: int = 0
    relationship_batches: int = 0
    time_taken_ms: int = 0
    entity_seconds: float = 0.0
    relationship_seconds: float = 0.0
    aborted: bool = False
    abort_reason: Optional[str] = None

    @property
    def total_cost(self) -> float:
        return self.entities.total_cost

    @property
    def entities_per_second(self) -> float:
        if self.entity_seconds <= 0:
            return 0.0
        return self.entities.processed / self.entity_seconds

    @property
    def relationships_per_second(self) -> float:
        if self.relationship_seconds <= 0:
            return 0.0
        return self.relationships.processed / self.relationship_seconds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entities": self.entities.to_dict(),
            "relationships": self.relationships.to_dict(),
            "entityBatches": self.entity_batches,
            "relationshipBatches": self.relationship_batches,
            "totalCost": round(self.total_cost, 6),
            "timeTakenMs": self.time_taken_ms,
            "entitiesPerSecond": round(self.entities_per_second, 2),
            "relationshipsPerSecond": round(self.relationships_per_second, 2),
            "aborted": self.aborted,
            "abortReason": self.abort_reason,
        }


class BatchRunner:
    """Sequential, bounded driver for the two resolvers."""

    def __init__(
        self,
        entity_resolver: EntityResolver,
        relationship_resolver: RelationshipResolver,
        config: Optional[BatchConfig] = None,
    ):
        self.entity_resolver = entity_resolver
        self.relationship_resolver = relationship_resolver
        self.config = config or BatchConfig()

    async def run(
        self,
        entity_batch_size: Optional[int] = None,
        relationship_batch_size: Optional[int] = None,
        max_batches: Optional[int] = None,
        use_hybrid: bool = True,
        use_llm: bool = True,
        strict: bool = False,
        entities: bool = True,
        relationships: bool = True,
    ) -> BatchRunResult:
        """
        Drain the staging inbox in bounded batches.

        Args:
            entities: Run the entity phase
            relationships: Run the relationship phase

        Returns:
            BatchRunResult; ``aborted`` is set when an outage cut the run short
        """
        entity_batch_size = entity_batch_size or self.config.entity_batch_size
        relationship_batch_size = relationship_batch_size or self.config.relationship_batch_size
        max_batches = max_batches or self.config.max_batches

        run = BatchRunResult()
        timer = PipelineTimer("resolution").start()
        started = time.perf_counter()

        try:
            timer.stage("entities")
            stage_start = time.perf_counter()
            try:
                while entities and run.entity_batches < max_batches:
                    batch = await self.entity_resolver.resolve_batch(entity_batch_size, use_hybrid, use_llm)
                    run.entity_batches += 1
                    run.entities.absorb(batch)
                    if batch.processed == 0:
                        break
            finally:
                run.entity_seconds = time.perf_counter() - stage_start

            timer.stage("relationships")
            stage_start = time.perf_counter()
            try:
                while relationships and run.relationship_batches < max_batches:
                    batch = await self.relationship_resolver.resolve_batch(relationship_batch_size, strict)
                    run.relationship_batches += 1
                    run.relationships.absorb(batch)
                    if batch.processed == 0:
                        break
            finally:
                run.relationship_seconds = time.perf_counter() - stage_start

        except FatalConnectivityError as e:
            partial = e.partial_result
            if isinstance(partial, EntityResolutionResult):
                run.entities.absorb(partial)
            elif isinstance(partial, RelationshipResolutionResult):
                run.relationships.absorb(partial)
            run.aborted = True
            run.abort_reason = str(e)
            logger.error(f"Resolution run aborted: {e}")

        run.time_taken_ms = int((time.perf_counter() - started) * 1000)
        timer.end()
        summary = run.to_dict()
        summary["entities"] = {k: v for k, v in summary["entities"].items() if k != "mergeDetails"}
        summary["relationships"] = {k: v for k, v in summary["relationships"].items() if k != "details"}
        log_metrics("RESOLUTION_RUN", summary)
        logger.info(
            f"Run finished: entities processed={run.entities.processed} "
            f"(created={run.entities.created}, merged={run.entities.merged}), "
            f"relationships processed={run.relationships.processed} "
            f"(created={run.relationships.created}, skipped={run.relationships.skipped}), "
            f"cost=${run.total_cost:.4f}, {run.time_taken_ms} ms"
        )
        return run

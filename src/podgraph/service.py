"""
ResolutionService: wires the pipeline together and exposes its operations.

One service instance owns the database, the caches, the matching cascade,
both resolvers and the batch runner. Resolution runs are serialized with an
asyncio lock so the pipeline stays a single-writer workload even when called
from concurrent HTTP requests.
"""

import asyncio
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Union

from .batch_runner import BatchRunner
from .cache import CacheService
from .entity_resolver import EntityResolver
from .llm_matcher import LLMMatcher
from .matching import MatchingCascade
from .models import StagedEntity, StagedRelationship
from .relationship_fixer import create_obvious_relationships
from .relationship_resolver import RelationshipResolver
from .resolution_config import ResolutionConfig, load_resolution_config
from .staging_store import StagingStore
from .storage import Database, GraphStore
from .utils.llm_providers import BaseLLMProvider
from .utils.logger import logger


class ResolutionService:
    """Entry point for every resolution operation."""

    def __init__(
        self,
        db: Database,
        config: Optional[ResolutionConfig] = None,
        llm_client: Optional[BaseLLMProvider] = None,
        caches: Optional[CacheService] = None,
    ):
        self.db = db
        self.config = config or ResolutionConfig()
        self.staging = StagingStore(db)
        self.graph = GraphStore(db)
        self.caches = caches or CacheService.create(
            max_size=self.config.cache.max_size,
            entity_ttl_seconds=self.config.cache.entity_ttl_seconds,
            llm_ttl_seconds=self.config.cache.llm_ttl_seconds,
        )
        self.llm_matcher = LLMMatcher(
            self.caches.llm,
            client=llm_client,
            confidence_cap=self.config.matching.llm_confidence_cap,
            max_consecutive_failures=self.config.matching.llm_max_consecutive_failures,
        )
        self.cascade = MatchingCascade(self.graph, self.config.matching, self.llm_matcher)
        self.entity_resolver = EntityResolver(
            self.staging, self.graph, self.cascade, self.caches, self.config.matching
        )
        self.relationship_resolver = RelationshipResolver(
            self.staging, self.graph, self.cascade, self.config.relationships
        )
        self.runner = BatchRunner(self.entity_resolver, self.relationship_resolver, self.config.batch)
        self._lock = asyncio.Lock()

    @classmethod
    def from_env(
        cls,
        db_path: Union[str, Path, None] = None,
        config_path: Optional[str] = None,
        llm_client: Optional[BaseLLMProvider] = None,
    ) -> "ResolutionService":
        """Open the configured database, create the schema and build the service."""
        db = Database(db_path)
        db.init_schema()
        return cls(db, load_resolution_config(config_path), llm_client=llm_client)

    def close(self) -> None:
        self.db.close()

    # =========================================================================
    # Ingestion
    # =========================================================================

    def enqueue(
        self,
        entities: Iterable[StagedEntity] = (),
        relationships: Iterable[StagedRelationship] = (),
    ) -> Dict[str, int]:
        return {
            "entities": self.staging.enqueue_entities(entities),
            "relationships": self.staging.enqueue_relationships(relationships),
        }

    # =========================================================================
    # Resolution
    # =========================================================================

    async def resolve_entities(
        self,
        entity_batch_size: Optional[int] = None,
        use_hybrid: bool = True,
        use_llm: bool = True,
        clear_cache: bool = False,
        max_batches: Optional[int] = None,
        clear_older_than_days: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Resolve pending staged entities until drained or ``max_batches`` is hit.

        Returns:
            {processed, created, merged, errors, totalCost, strategyStats,
             mergeDetails, timeTakenMs, entitiesPerSecond, aborted, ...}
        """
        async with self._lock:
            if clear_cache:
                self.caches.flush()

            run = await self.runner.run(
                entity_batch_size=entity_batch_size,
                max_batches=max_batches,
                use_hybrid=use_hybrid,
                use_llm=use_llm,
                relationships=False,
            )
            response = run.entities.to_dict()
            response.update({
                "batches": run.entity_batches,
                "timeTakenMs": run.time_taken_ms,
                "entitiesPerSecond": round(run.entities_per_second, 2),
                "aborted": run.aborted,
                "abortReason": run.abort_reason,
            })
            if clear_older_than_days is not None:
                response["cleanup"] = self.staging.purge_older_than_days(clear_older_than_days)
            return response

    async def resolve_relationships_robust(
        self,
        batch_size: Optional[int] = None,
        strict: bool = False,
        max_batches: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Resolve pending staged relationships until drained or ``max_batches`` is hit.

        Returns:
            {processed, created, strengthened, skipped, errors, details, ...}
        """
        async with self._lock:
            run = await self.runner.run(
                relationship_batch_size=batch_size,
                max_batches=max_batches,
                strict=strict,
                entities=False,
            )
            response = run.relationships.to_dict()
            response.update({
                "batches": run.relationship_batches,
                "timeTakenMs": run.time_taken_ms,
                "relationshipsPerSecond": round(run.relationships_per_second, 2),
                "aborted": run.aborted,
                "abortReason": run.abort_reason,
            })
            return response

    async def run(
        self,
        entity_batch_size: Optional[int] = None,
        relationship_batch_size: Optional[int] = None,
        max_batches: Optional[int] = None,
        use_hybrid: bool = True,
        use_llm: bool = True,
        clear_cache: bool = False,
        clear_older_than_days: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Full run: entities, then relationships."""
        async with self._lock:
            if clear_cache:
                self.caches.flush()
            run = await self.runner.run(
                entity_batch_size=entity_batch_size,
                relationship_batch_size=relationship_batch_size,
                max_batches=max_batches,
                use_hybrid=use_hybrid,
                use_llm=use_llm,
            )
            response = run.to_dict()
            if clear_older_than_days is not None:
                response["cleanup"] = self.staging.purge_older_than_days(clear_older_than_days)
            return response

    async def seed_obvious_relationships(self) -> Dict[str, Any]:
        async with self._lock:
            return create_obvious_relationships(self.graph, self.cascade)

    # =========================================================================
    # Stats & maintenance
    # =========================================================================

    def staging_stats(self) -> Dict[str, int]:
        return self.staging.stats()

    def cache_stats(self) -> Dict[str, Any]:
        return self.caches.stats()

    def clear_cache(self) -> Dict[str, Any]:
        self.caches.flush()
        return self.caches.stats()

    def relationship_stats(self) -> Dict[str, Any]:
        stats = self.graph.connection_stats()
        stats["unresolvedRelationships"] = self.staging.stats()["unresolvedRelationships"]
        return stats

    def purge(self, older_than_days: int) -> Dict[str, int]:
        logger.info(f"Purging processed staged rows older than {older_than_days} days")
        return self.staging.purge_older_than_days(older_than_days)

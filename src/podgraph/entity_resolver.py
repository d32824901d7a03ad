"""
Entity resolver: turn staged entity mentions into canonical entities.

For each staged row, oldest first:
1. Look up the (type, name) cache, else run the matching cascade
2. Merge into the matched entity when confidence reaches the merge threshold,
   otherwise create a new canonical entity
3. Record the mention for the row's episode
4. Mark the row resolved

A failing row is left pending and counted in ``errors``; the batch moves on.
Only a store or LLM outage stops the batch, carrying the partial result.
"""

from typing import Optional

from .cache import CachedMatch, CacheService, entity_cache_key
from .match_results import CachedMatchResult, MatchResult, NoMatch
from .matching import MatchingCascade
from .models import (
    Entity,
    EntityResolutionResult,
    MergeDetail,
    StagedEntity,
    StagedKind,
    StagedStatus,
)
from .resolution_config import MatchingConfig
from .staging_store import StagingStore
from .storage import GraphStore
from .utils.errors import FatalConnectivityError
from .utils.logger import logger


class EntityResolver:
    """Create-or-merge resolution of staged entities."""

    def __init__(
        self,
        staging: StagingStore,
        graph: GraphStore,
        cascade: MatchingCascade,
        caches: CacheService,
        config: Optional[MatchingConfig] = None,
    ):
        self.staging = staging
        self.graph = graph
        self.cascade = cascade
        self.caches = caches
        self.config = config or cascade.config

    async def resolve_batch(
        self,
        batch_size: int = 100,
        use_hybrid: bool = True,
        use_llm: bool = True,
    ) -> EntityResolutionResult:
        """
        Resolve up to ``batch_size`` pending staged entities.

        Args:
            batch_size: Maximum rows to dequeue
            use_hybrid: Full cascade; False means conservative matching
            use_llm: Allow the LLM strategy in hybrid mode

        Returns:
            EntityResolutionResult; ``processed`` counts rows marked resolved

        Raises:
            FatalConnectivityError: with ``partial_result`` set to the rows done so far
        """
        result = EntityResolutionResult()
        rows = self.staging.dequeue(StagedKind.ENTITY, batch_size)
        if not rows:
            return result

        logger.info(f"Resolving {len(rows)} staged entities (hybrid={use_hybrid}, llm={use_llm})")

        for row in rows:
            try:
                await self._resolve_one(row, result, use_hybrid, use_llm)
            except FatalConnectivityError as e:
                logger.error(f"Aborting entity batch at '{row.name}' ({row.id}): {e}")
                e.partial_result = result
                raise
            except Exception as e:
                result.errors += 1
                logger.warning(f"Failed to resolve staged entity '{row.name}' ({row.id}), left pending: {e}")

        logger.info(
            f"Entity batch: processed={result.processed} created={result.created} "
            f"merged={result.merged} errors={result.errors} cost=${result.total_cost:.4f}"
        )
        return result

    async def _lookup(self, row: StagedEntity, use_hybrid: bool, use_llm: bool) -> MatchResult:
        key = entity_cache_key(row.type, row.name)
        cached: Optional[CachedMatch] = self.caches.entity.get(key)
        if cached is not None:
            entity = self.graph.get_entity(cached.entity_id)
            if entity is not None:
                return CachedMatchResult(
                    entity=entity,
                    confidence=cached.confidence,
                    original_strategy=cached.strategy,
                )
            self.caches.entity.invalidate(key)

        return await self.cascade.resolve(row.name, row.type, use_llm=use_llm, conservative=not use_hybrid)

    async def _resolve_one(
        self,
        row: StagedEntity,
        result: EntityResolutionResult,
        use_hybrid: bool,
        use_llm: bool,
    ) -> None:
        match = await self._lookup(row, use_hybrid, use_llm)
        result.total_cost += match.cost
        key = entity_cache_key(row.type, row.name)

        if not isinstance(match, NoMatch) and match.confidence >= self.config.merge_threshold:
            entity = self._merge(row, match.entity)
            strategy = match.strategy
            result.merged += 1
            result.merge_details.append(
                MergeDetail(source=row.name, target=entity.name, strategy=strategy, confidence=round(match.confidence, 4))
            )
            if not isinstance(match, CachedMatchResult):
                self.caches.entity.put(key, CachedMatch(entity.id, strategy, match.confidence))
            note = f"merged into '{entity.name}' via {strategy}"
        else:
            entity, created = self.graph.create_entity(row.name, row.type, row.description)
            if created:
                strategy = "no_match"
                result.created += 1
                note = "created"
                logger.debug(f"Created {row.type} '{entity.name}'")
            else:
                # Same normalized name and type already stored
                strategy = "normalized_conflict"
                entity = self._merge(row, entity)
                result.merged += 1
                result.merge_details.append(
                    MergeDetail(source=row.name, target=entity.name, strategy=strategy, confidence=1.0)
                )
                note = f"merged into '{entity.name}' on conflict"
            self.caches.entity.put(key, CachedMatch(entity.id, strategy, 1.0))

        result.count_strategy(strategy)
        self.graph.upsert_mention(row.episode_id, entity.id)
        self.staging.mark_processed(StagedKind.ENTITY, [row.id], StagedStatus.RESOLVED, note)
        result.processed += 1

    def _merge(self, row: StagedEntity, entity: Entity) -> Entity:
        """Fold a staged mention into an existing entity, upgrading name and description."""
        new_name = None
        new_description = None

        staged_name = row.name.strip()
        if len(staged_name) > len(entity.name) and entity.name.lower() in staged_name.lower():
            new_name = staged_name

        if row.description and len(row.description) > len(entity.description or ""):
            new_description = row.description

        if new_name is not None or new_description is not None:
            self.graph.update_entity(entity.id, name=new_name, description=new_description)
            if new_name:
                logger.debug(f"Promoted canonical name '{entity.name}' -> '{new_name}'")
                entity.name = new_name
            if new_description:
                entity.description = new_description

        return entity

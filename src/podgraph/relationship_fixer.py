"""
Seed well-known relationships the extraction stage tends to miss.

Each entry of the obvious-relationship table is resolved through the matching
cascade. A connection is created only when both endpoints exist, no connection
between them exists yet in any episode, and some episode mentions both.
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .business_rules import OBVIOUS_RELATIONSHIPS
from .match_results import MatchResult
from .matching import MatchingCascade
from .storage import GraphStore
from .utils.errors import FatalConnectivityError
from .utils.logger import logger


@dataclass
class FixDetail:
    description: str
    success: bool
    error: Optional[str] = None


def _best(candidates: List[MatchResult]) -> Optional[MatchResult]:
    return candidates[0] if candidates else None


def create_obvious_relationships(
    graph: GraphStore,
    cascade: MatchingCascade,
    relationships: Optional[Sequence[Tuple[str, str, str]]] = None,
    min_confidence: float = 0.8,
) -> Dict[str, Any]:
    """
    Create the connections listed in ``relationships`` (default: built-in table).

    Returns:
        {"created": int, "details": [{"description", "success", "error"}]}
    """
    table = OBVIOUS_RELATIONSHIPS if relationships is None else relationships
    created = 0
    details: List[FixDetail] = []

    for source_name, target_name, description in table:
        try:
            source = _best(cascade.collect_candidates(source_name, fuzzy_floor=min_confidence, limit=1))
            target = _best(cascade.collect_candidates(target_name, fuzzy_floor=min_confidence, limit=1))
            if source is not None and source.confidence < min_confidence:
                source = None
            if target is not None and target.confidence < min_confidence:
                target = None

            if source is None or target is None:
                missing = [n for n, m in ((source_name, source), (target_name, target)) if m is None]
                details.append(FixDetail(
                    description=f"Missing entities: {', '.join(missing)}",
                    success=False,
                    error=f"Could not find entities: {', '.join(missing)}",
                ))
                continue

            if source.entity.id == target.entity.id:
                details.append(FixDetail(
                    description=f"Skipped: {source_name} -> {target_name} (same entity)",
                    success=False,
                    error="Both names resolve to the same entity",
                ))
                continue

            if graph.connection_exists_between(source.entity.id, target.entity.id):
                details.append(FixDetail(description=f"Exists: {source_name} -> {target_name}", success=True))
                continue

            episode_id = graph.common_episode(source.entity.id, target.entity.id)
            if episode_id is None:
                details.append(FixDetail(
                    description=f"Skipped: {source_name} -> {target_name} (no common episode)",
                    success=False,
                    error="No episode where both entities are mentioned",
                ))
                continue

            graph.upsert_connection(
                episode_id,
                source.entity.id,
                target.entity.id,
                description=description,
                confidence=round(min(source.confidence, target.confidence), 4),
            )
            created += 1
            details.append(FixDetail(
                description=f"Created: {source.entity.name} -> {target.entity.name}",
                success=True,
            ))
        except FatalConnectivityError:
            raise
        except Exception as e:
            logger.warning(f"Could not seed {source_name} -> {target_name}: {e}")
            details.append(FixDetail(
                description=f"Error: {source_name} -> {target_name}",
                success=False,
                error=str(e),
            ))

    logger.info(f"Seeded {created} obvious relationships")
    return {"created": created, "details": [asdict(d) for d in details]}

"""
podgraph - Entity and relationship resolution for podcast knowledge graphs.

Raw mentions extracted from episode transcripts are staged, then resolved in
batches into a deduplicated graph of canonical entities and weighted
connections.

Example:
    import asyncio
    from podgraph import ResolutionService, StagedEntity

    service = ResolutionService.from_env()
    service.enqueue(entities=[StagedEntity("Apple Inc.", "Company", "ep-1")])
    result = asyncio.run(service.resolve_entities(use_llm=False))
    print(result["created"], result["merged"])

    # HTTP API
    from podgraph.server import serve
    serve(service, port=8000)
"""

__version__ = "0.1.0"

from .models import (
    Connection,
    Entity,
    EntityResolutionResult,
    RelationshipResolutionResult,
    StagedEntity,
    StagedRelationship,
    StagedStatus,
)
from .resolution_config import ResolutionConfig, load_resolution_config
from .service import ResolutionService

__all__ = [
    "ResolutionService",
    "ResolutionConfig",
    "load_resolution_config",
    "StagedEntity",
    "StagedRelationship",
    "StagedStatus",
    "Entity",
    "Connection",
    "EntityResolutionResult",
    "RelationshipResolutionResult",
    "__version__",
]

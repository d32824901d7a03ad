"""
HTTP surface for the resolution pipeline (FastAPI).

Endpoints:
    POST /api/resolve-entities
    POST /api/resolve-relationships-robust
    POST /api/fix-relationships
    POST /api/cache/clear
    GET  /api/staging-stats
    GET  /api/cache-stats
    GET  /api/relationship-stats

When an API key is configured every request must carry
``Authorization: Bearer <key>``.
"""

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .service import ResolutionService
from .utils.errors import PodgraphError
from .utils.logger import logger


class ResolveEntitiesRequest(BaseModel):
    """Body of POST /api/resolve-entities. JSON keys are camelCase via aliases."""

    model_config = ConfigDict(populate_by_name=True)

    entity_batch_size: Optional[int] = Field(default=None, alias="entityBatchSize", gt=0)
    use_hybrid: bool = Field(default=True, alias="useHybrid")
    use_llm: bool = Field(default=True, alias="useLLM")
    clear_cache: bool = Field(default=False, alias="clearCache")
    max_batches: Optional[int] = Field(default=None, alias="maxBatches", gt=0)
    clear_older_than: Optional[int] = Field(default=None, alias="clearOlderThan", ge=0)


class ResolveRelationshipsRequest(BaseModel):
    """Body of POST /api/resolve-relationships-robust."""

    model_config = ConfigDict(populate_by_name=True)

    batch_size: Optional[int] = Field(default=None, alias="batchSize", gt=0)
    strict: bool = False
    max_batches: Optional[int] = Field(default=None, alias="maxBatches", gt=0)


def create_app(service: ResolutionService, api_key: Optional[str] = None) -> FastAPI:
    """
    Build the FastAPI app around an existing service.

    Args:
        service: Pipeline to expose
        api_key: Bearer key required on every request (None disables the check)
    """
    app = FastAPI(title="podgraph", description="Entity and relationship resolution")
    app.state.service = service

    @app.middleware("http")
    async def check_api_key(request: Request, call_next):
        if api_key and request.headers.get("authorization") != f"Bearer {api_key}":
            logger.warning(f"Unauthorized request to {request.url.path}")
            return JSONResponse(status_code=401, content={"error": "Unauthorized"})
        return await call_next(request)

    @app.exception_handler(PodgraphError)
    async def pipeline_error(request: Request, exc: PodgraphError):
        logger.error(f"{request.url.path} failed: {exc}")
        return JSONResponse(status_code=503, content={"error": str(exc)})

    @app.exception_handler(ValueError)
    async def bad_request(request: Request, exc: ValueError):
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.post("/api/resolve-entities")
    async def resolve_entities(body: Optional[ResolveEntitiesRequest] = None):
        body = body or ResolveEntitiesRequest()
        result = await service.resolve_entities(
            entity_batch_size=body.entity_batch_size,
            use_hybrid=body.use_hybrid,
            use_llm=body.use_llm,
            clear_cache=body.clear_cache,
            max_batches=body.max_batches,
            clear_older_than_days=body.clear_older_than,
        )
        return {
            "success": not result["aborted"],
            "result": result,
            "stats": service.staging_stats(),
            "cacheStats": service.cache_stats(),
        }

    @app.post("/api/resolve-relationships-robust")
    async def resolve_relationships(body: Optional[ResolveRelationshipsRequest] = None):
        body = body or ResolveRelationshipsRequest()
        result = await service.resolve_relationships_robust(
            batch_size=body.batch_size,
            strict=body.strict,
            max_batches=body.max_batches,
        )
        return {
            "success": not result["aborted"],
            "result": result,
            "stats": service.staging_stats(),
        }

    @app.post("/api/fix-relationships")
    async def fix_relationships():
        result = await service.seed_obvious_relationships()
        return {"success": True, **result, "relationshipStats": service.relationship_stats()}

    @app.get("/api/staging-stats")
    async def staging_stats():
        return {"success": True, "stats": service.staging_stats(), "cacheStats": service.cache_stats()}

    @app.get("/api/cache-stats")
    async def cache_stats():
        return service.cache_stats()

    @app.post("/api/cache/clear")
    async def clear_cache():
        return {"success": True, "cacheStats": service.clear_cache()}

    @app.get("/api/relationship-stats")
    async def relationship_stats():
        return service.relationship_stats()

    return app


def serve(service: ResolutionService, host: str = "127.0.0.1", port: int = 8000, api_key: Optional[str] = None) -> None:
    """Run the HTTP server until interrupted."""
    import uvicorn

    app = create_app(service, api_key=api_key)
    logger.info(f"Serving podgraph API on http://{host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level="info")

"""
Configuration constants for the podgraph resolution pipeline.

This module loads configuration from environment variables with sensible defaults.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from current working directory
load_dotenv(Path.cwd() / ".env")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# =============================================================================
# Paths
# =============================================================================

_project_dir_env = os.getenv("PODGRAPH_PROJECT_DIR")
PROJECT_DIR = Path(_project_dir_env) if _project_dir_env else Path.cwd()

_data_dir_env = os.getenv("PODGRAPH_DATA_DIR")
DATA_DIR = Path(_data_dir_env) if _data_dir_env else PROJECT_DIR / "data"

_db_path_env = os.getenv("PODGRAPH_DB_PATH")
DB_PATH = Path(_db_path_env) if _db_path_env else DATA_DIR / "podgraph.db"

RESOLUTION_CONFIG_PATH = os.getenv("PODGRAPH_CONFIG", str(PROJECT_DIR / "config" / "resolution.yaml"))

# =============================================================================
# Entity types
# =============================================================================

# Types searched when a staged relationship names an endpoint without a type
RELATIONSHIP_ENDPOINT_TYPES = ("Company", "Person", "Topic")

# =============================================================================
# Cache
# =============================================================================

ENTITY_CACHE_TTL_SECONDS = _env_int("ENTITY_CACHE_TTL_SECONDS", 1800)  # 30 minutes
LLM_CACHE_TTL_SECONDS = _env_int("LLM_CACHE_TTL_SECONDS", 3600)  # LLM verdicts live longer
CACHE_MAX_SIZE = _env_int("CACHE_MAX_SIZE", 10000)

# =============================================================================
# Matching cascade
# =============================================================================

# Any strategy clearing this bar ends the cascade
CASCADE_SHORT_CIRCUIT = _env_float("CASCADE_SHORT_CIRCUIT", 0.8)

EXACT_CONFIDENCE = 0.95
NORMALIZED_CONFIDENCE = 0.9
CONTAINMENT_CONFIDENCE = 0.5
CONTAINMENT_MIN_LENGTH = 5

# Fuzzy trigram bar for the hybrid cascade; conservative mode uses the stricter one
FUZZY_THRESHOLD = _env_float("FUZZY_THRESHOLD", 0.8)
CONSERVATIVE_FUZZY_THRESHOLD = _env_float("CONSERVATIVE_FUZZY_THRESHOLD", 0.85)

# Minimum confidence for the entity resolver to merge into an existing entity
MERGE_CONFIDENCE_THRESHOLD = _env_float("MERGE_CONFIDENCE_THRESHOLD", 0.8)

# LLM strategy
LLM_CANDIDATE_FLOOR = _env_float("LLM_CANDIDATE_FLOOR", 0.2)
LLM_MAX_CANDIDATES = _env_int("LLM_MAX_CANDIDATES", 5)
LLM_FALLBACK_CANDIDATES = _env_int("LLM_FALLBACK_CANDIDATES", 10)
LLM_CONFIDENCE_CAP = _env_float("LLM_CONFIDENCE_CAP", 0.9)

# Consecutive timeouts / connection failures before the endpoint is treated as down
LLM_MAX_CONSECUTIVE_FAILURES = _env_int("LLM_MAX_CONSECUTIVE_FAILURES", 3)

# =============================================================================
# Relationship resolution
# =============================================================================

RELATIONSHIP_FUZZY_FLOOR = _env_float("RELATIONSHIP_FUZZY_FLOOR", 0.4)
RELATIONSHIP_MAX_CANDIDATES = _env_int("RELATIONSHIP_MAX_CANDIDATES", 5)
RELATIONSHIP_MIN_CONFIDENCE = _env_float("RELATIONSHIP_MIN_CONFIDENCE", 0.5)
RELATIONSHIP_STRICT_MIN_CONFIDENCE = _env_float("RELATIONSHIP_STRICT_MIN_CONFIDENCE", 0.6)
# Confidence of the catch-all co-mention validation rule
RELATIONSHIP_DEFAULT_VALIDATION = _env_float("RELATIONSHIP_DEFAULT_VALIDATION", 0.6)
REPLACE_CONNECTION_DESCRIPTION = _env_bool("REPLACE_CONNECTION_DESCRIPTION", True)

# =============================================================================
# Batch runner
# =============================================================================

ENTITY_BATCH_SIZE = _env_int("ENTITY_BATCH_SIZE", 100)
RELATIONSHIP_BATCH_SIZE = _env_int("RELATIONSHIP_BATCH_SIZE", 100)
MAX_BATCHES = _env_int("MAX_BATCHES", 10)

# =============================================================================
# LLM Provider Configuration
# =============================================================================

DEFAULT_LLM_PROVIDER = os.getenv("DEFAULT_LLM_PROVIDER", "openai").lower()

OPENAI_LLM_MODEL = os.getenv("OPENAI_LLM_MODEL", "gpt-4o-mini")
OLLAMA_LLM_MODEL = os.getenv("OLLAMA_LLM_MODEL", "granite3.3:8b")
OLLAMA_URL = os.getenv("OLLAMA_HOST", "http://localhost:11434")

LLM_TEMPERATURE = _env_float("LLM_TEMPERATURE", 0.1)
LLM_MAX_TOKENS = _env_int("LLM_MAX_TOKENS", 200)
LLM_REQUEST_TIMEOUT = _env_float("LLM_REQUEST_TIMEOUT", 60.0)

# Flat per-call cost used when the provider reports no token usage
LLM_CALL_COST_USD = _env_float("LLM_CALL_COST_USD", 0.002)

# USD per 1K tokens (input, output)
MODEL_PRICING = {
    "gpt-4o-mini": {"input": 0.00015, "output": 0.0006},
    "gpt-4o": {"input": 0.0025, "output": 0.01},
    "gpt-3.5-turbo": {"input": 0.0005, "output": 0.0015},
}

# =============================================================================
# HTTP surface
# =============================================================================

API_KEY = os.getenv("PODGRAPH_API_KEY")
SERVER_HOST = os.getenv("PODGRAPH_HOST", "127.0.0.1")
SERVER_PORT = _env_int("PODGRAPH_PORT", 8000)


def get_model_pricing(model: str) -> dict:
    """Get per-1K-token pricing for a model, or an empty dict for local/unknown models."""
    if model in MODEL_PRICING:
        return MODEL_PRICING[model]
    for known, pricing in MODEL_PRICING.items():
        if model.startswith(known):
            return pricing
    return {}

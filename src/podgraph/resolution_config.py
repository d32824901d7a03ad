"""
Resolution configuration loader.

Groups the env-driven constants into dataclasses and lets an optional YAML
file override them. Provides validation used by the CLI before a run.
"""

from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .utils.logger import logger


@dataclass
class MatchingConfig:
    """Matching cascade thresholds."""

    # Any strategy clearing this ends the cascade
    short_circuit: float = 0.8

    # Trigram similarity bar (hybrid / conservative)
    fuzzy_threshold: float = 0.8
    conservative_fuzzy_threshold: float = 0.85

    # Minimum confidence to merge into an existing canonical entity
    merge_threshold: float = 0.8

    # LLM-semantic strategy
    llm_candidate_floor: float = 0.2
    llm_max_candidates: int = 5
    llm_fallback_candidates: int = 10
    llm_confidence_cap: float = 0.9
    llm_max_consecutive_failures: int = 3

    @classmethod
    def from_env(cls) -> "MatchingConfig":
        """Create config from environment variables."""
        from .constants import (
            CASCADE_SHORT_CIRCUIT,
            CONSERVATIVE_FUZZY_THRESHOLD,
            FUZZY_THRESHOLD,
            LLM_CANDIDATE_FLOOR,
            LLM_CONFIDENCE_CAP,
            LLM_FALLBACK_CANDIDATES,
            LLM_MAX_CANDIDATES,
            LLM_MAX_CONSECUTIVE_FAILURES,
            MERGE_CONFIDENCE_THRESHOLD,
        )

        return cls(
            short_circuit=CASCADE_SHORT_CIRCUIT,
            fuzzy_threshold=FUZZY_THRESHOLD,
            conservative_fuzzy_threshold=CONSERVATIVE_FUZZY_THRESHOLD,
            merge_threshold=MERGE_CONFIDENCE_THRESHOLD,
            llm_candidate_floor=LLM_CANDIDATE_FLOOR,
            llm_max_candidates=LLM_MAX_CANDIDATES,
            llm_fallback_candidates=LLM_FALLBACK_CANDIDATES,
            llm_confidence_cap=LLM_CONFIDENCE_CAP,
            llm_max_consecutive_failures=LLM_MAX_CONSECUTIVE_FAILURES,
        )


@dataclass
class RelationshipConfig:
    """Relationship resolution settings."""

    fuzzy_floor: float = 0.4
    max_candidates: int = 5
    min_confidence: float = 0.5
    strict_min_confidence: float = 0.6
    replace_description: bool = True

    @classmethod
    def from_env(cls) -> "RelationshipConfig":
        """Create config from environment variables."""
        from .constants import (
            RELATIONSHIP_FUZZY_FLOOR,
            RELATIONSHIP_MAX_CANDIDATES,
            RELATIONSHIP_MIN_CONFIDENCE,
            RELATIONSHIP_STRICT_MIN_CONFIDENCE,
            REPLACE_CONNECTION_DESCRIPTION,
        )

        return cls(
            fuzzy_floor=RELATIONSHIP_FUZZY_FLOOR,
            max_candidates=RELATIONSHIP_MAX_CANDIDATES,
            min_confidence=RELATIONSHIP_MIN_CONFIDENCE,
            strict_min_confidence=RELATIONSHIP_STRICT_MIN_CONFIDENCE,
            replace_description=REPLACE_CONNECTION_DESCRIPTION,
        )


@dataclass
class BatchConfig:
    """Batch runner bounds."""

    entity_batch_size: int = 100
    relationship_batch_size: int = 100
    max_batches: int = 10

    @classmethod
    def from_env(cls) -> "BatchConfig":
        """Create config from environment variables."""
        from .constants import ENTITY_BATCH_SIZE, MAX_BATCHES, RELATIONSHIP_BATCH_SIZE

        return cls(
            entity_batch_size=ENTITY_BATCH_SIZE,
            relationship_batch_size=RELATIONSHIP_BATCH_SIZE,
            max_batches=MAX_BATCHES,
        )


@dataclass
class CacheConfig:
    """TTL cache settings."""

    entity_ttl_seconds: int = 1800
    llm_ttl_seconds: int = 3600
    max_size: int = 10000

    @classmethod
    def from_env(cls) -> "CacheConfig":
        """Create config from environment variables."""
        from .constants import CACHE_MAX_SIZE, ENTITY_CACHE_TTL_SECONDS, LLM_CACHE_TTL_SECONDS

        return cls(
            entity_ttl_seconds=ENTITY_CACHE_TTL_SECONDS,
            llm_ttl_seconds=LLM_CACHE_TTL_SECONDS,
            max_size=CACHE_MAX_SIZE,
        )


@dataclass
class ResolutionConfig:
    """Complete resolution configuration."""

    matching: MatchingConfig = field(default_factory=MatchingConfig)
    relationships: RelationshipConfig = field(default_factory=RelationshipConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)

    @classmethod
    def from_env(cls) -> "ResolutionConfig":
        return cls(
            matching=MatchingConfig.from_env(),
            relationships=RelationshipConfig.from_env(),
            batch=BatchConfig.from_env(),
            cache=CacheConfig.from_env(),
        )

    def validate(self) -> List[str]:
        """
        Check the configuration for values that would make a run meaningless.

        Returns:
            List of human-readable issues (empty when valid)
        """
        issues = []
        thresholds = {
            "matching.short_circuit": self.matching.short_circuit,
            "matching.fuzzy_threshold": self.matching.fuzzy_threshold,
            "matching.conservative_fuzzy_threshold": self.matching.conservative_fuzzy_threshold,
            "matching.merge_threshold": self.matching.merge_threshold,
            "matching.llm_candidate_floor": self.matching.llm_candidate_floor,
            "matching.llm_confidence_cap": self.matching.llm_confidence_cap,
            "relationships.fuzzy_floor": self.relationships.fuzzy_floor,
            "relationships.min_confidence": self.relationships.min_confidence,
            "relationships.strict_min_confidence": self.relationships.strict_min_confidence,
        }
        for name, value in thresholds.items():
            if not 0.0 <= value <= 1.0:
                issues.append(f"{name} must be within [0, 1], got {value}")

        sizes = {
            "matching.llm_max_candidates": self.matching.llm_max_candidates,
            "matching.llm_fallback_candidates": self.matching.llm_fallback_candidates,
            "matching.llm_max_consecutive_failures": self.matching.llm_max_consecutive_failures,
            "relationships.max_candidates": self.relationships.max_candidates,
            "batch.entity_batch_size": self.batch.entity_batch_size,
            "batch.relationship_batch_size": self.batch.relationship_batch_size,
            "batch.max_batches": self.batch.max_batches,
            "cache.max_size": self.cache.max_size,
        }
        for name, value in sizes.items():
            if value <= 0:
                issues.append(f"{name} must be positive, got {value}")

        if self.cache.entity_ttl_seconds < 0 or self.cache.llm_ttl_seconds < 0:
            issues.append("cache TTLs must not be negative")

        return issues


def _override(section: Any, data: Optional[Dict[str, Any]], section_name: str) -> Any:
    """Return a copy of a config section with YAML values applied."""
    if not data:
        return section

    known = {f.name for f in fields(section)}
    unknown = set(data) - known
    if unknown:
        logger.warning(f"Ignoring unknown keys in '{section_name}': {sorted(unknown)}")

    return replace(section, **{k: v for k, v in data.items() if k in known})


def load_resolution_config(config_path: Optional[str] = None) -> ResolutionConfig:
    """
    Load resolution configuration, starting from environment defaults.

    Args:
        config_path: Path to a YAML file. Uses PODGRAPH_CONFIG if not specified.

    Returns:
        ResolutionConfig with YAML values overriding env defaults.
    """
    config = ResolutionConfig.from_env()
    explicit = config_path is not None

    if config_path is None:
        from .constants import RESOLUTION_CONFIG_PATH

        config_path = RESOLUTION_CONFIG_PATH

    path = Path(config_path)
    if not path.exists():
        if explicit:
            logger.warning(f"Config file not found at {path}, using defaults")
        return config

    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if not data:
        return config

    return ResolutionConfig(
        matching=_override(config.matching, data.get("matching"), "matching"),
        relationships=_override(config.relationships, data.get("relationships"), "relationships"),
        batch=_override(config.batch, data.get("batch"), "batch"),
        cache=_override(config.cache, data.get("cache"), "cache"),
    )

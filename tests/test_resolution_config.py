"""Tests for resolution_config.py: defaults, YAML overrides and validation."""

import textwrap

from podgraph.resolution_config import (
    BatchConfig,
    MatchingConfig,
    RelationshipConfig,
    ResolutionConfig,
    load_resolution_config,
)


def write_yaml(tmp_path, text):
    path = tmp_path / "resolution.yaml"
    path.write_text(textwrap.dedent(text), encoding="utf-8")
    return str(path)


# ---------------------------------------------------------------------------
# Dataclass defaults
# ---------------------------------------------------------------------------


class TestDefaults:

    def test_matching(self):
        config = MatchingConfig()
        assert config.short_circuit == 0.8
        assert config.fuzzy_threshold == 0.8
        assert config.conservative_fuzzy_threshold == 0.85
        assert config.llm_confidence_cap == 0.9
        assert config.llm_max_consecutive_failures == 3

    def test_relationships(self):
        config = RelationshipConfig()
        assert config.min_confidence == 0.5
        assert config.strict_min_confidence == 0.6
        assert config.replace_description is True

    def test_batch(self):
        assert BatchConfig().max_batches == 10

    def test_defaults_are_valid(self):
        assert ResolutionConfig().validate() == []


# ---------------------------------------------------------------------------
# YAML loading
# ---------------------------------------------------------------------------


class TestLoadResolutionConfig:

    def test_yaml_overrides_sections(self, tmp_path):
        path = write_yaml(tmp_path, """
            matching:
              fuzzy_threshold: 0.75
            relationships:
              strict_min_confidence: 0.7
            batch:
              entity_batch_size: 25
        """)

        config = load_resolution_config(path)

        assert config.matching.fuzzy_threshold == 0.75
        assert config.relationships.strict_min_confidence == 0.7
        assert config.batch.entity_batch_size == 25
        # untouched values keep their env defaults
        assert config.matching.merge_threshold == MatchingConfig.from_env().merge_threshold

    def test_unknown_keys_are_ignored(self, tmp_path):
        path = write_yaml(tmp_path, """
            cache:
              max_size: 50
              colour: blue
        """)
        config = load_resolution_config(path)
        assert config.cache.max_size == 50
        assert not hasattr(config.cache, "colour")

    def test_missing_file_uses_defaults(self, tmp_path):
        config = load_resolution_config(str(tmp_path / "absent.yaml"))
        assert config == ResolutionConfig.from_env()

    def test_empty_file_uses_defaults(self, tmp_path):
        path = write_yaml(tmp_path, "")
        assert load_resolution_config(path) == ResolutionConfig.from_env()


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestValidate:

    def test_threshold_out_of_range(self):
        config = ResolutionConfig(matching=MatchingConfig(fuzzy_threshold=1.5))
        issues = config.validate()
        assert issues == ["matching.fuzzy_threshold must be within [0, 1], got 1.5"]

    def test_non_positive_sizes(self):
        config = ResolutionConfig(batch=BatchConfig(entity_batch_size=0, max_batches=-1))
        issues = config.validate()
        assert "batch.entity_batch_size must be positive, got 0" in issues
        assert "batch.max_batches must be positive, got -1" in issues

    def test_failure_limit_must_be_positive(self):
        config = ResolutionConfig(matching=MatchingConfig(llm_max_consecutive_failures=0))
        assert config.validate() == ["matching.llm_max_consecutive_failures must be positive, got 0"]

    def test_negative_ttl(self):
        config = ResolutionConfig()
        config.cache.llm_ttl_seconds = -5
        assert config.validate() == ["cache TTLs must not be negative"]

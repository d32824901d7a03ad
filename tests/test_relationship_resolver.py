"""
Tests for the relationship resolver: candidate pairs, validation rules,
skip reasons and connection strength.
"""

from unittest.mock import patch

import pytest

from podgraph.business_rules import VALIDATION_RULES, validate_relationship
from podgraph.constants import RELATIONSHIP_DEFAULT_VALIDATION
from podgraph.models import StagedKind, StagedStatus
from podgraph.relationship_resolver import RelationshipResolver
from podgraph.resolution_config import RelationshipConfig
from podgraph.utils.errors import TransientStoreError

from conftest import staged_relationship


@pytest.fixture
def seeded(service):
    """Canonical Tim Cook, Apple and Microsoft, all mentioned in ep-1."""
    ids = {}
    for name, entity_type in (("Tim Cook", "Person"), ("Apple", "Company"), ("Microsoft", "Company")):
        entity, _ = service.graph.create_entity(name, entity_type)
        service.graph.upsert_mention("ep-1", entity.id)
        ids[name] = entity.id
    return ids


# =============================================================================
# Validation rules
# =============================================================================


class TestValidation:
    def test_leadership(self):
        result = validate_relationship("Person", "Company", "Apple", "CEO of Apple")
        assert result.valid
        assert result.confidence == 0.9
        assert "leadership" in result.reason

    def test_strategic_power_by_target_name(self):
        result = validate_relationship("Company", "Topic", "Branding", "")
        assert result.confidence == 0.8

    def test_fallback_co_mention(self):
        result = validate_relationship("Topic", "Person", "Tim Cook", "discussed")
        assert result.valid
        assert result.confidence == RELATIONSHIP_DEFAULT_VALIDATION
        assert result.reason == "Co-mentioned in same episode"

    def test_no_rule_is_implausible(self):
        result = validate_relationship("Company", "Company", "Microsoft", "competes", rules=VALIDATION_RULES[:1])
        assert not result.valid
        assert result.confidence == 0.3


# =============================================================================
# Resolution
# =============================================================================


class TestResolveBatch:
    @pytest.mark.asyncio
    async def test_leadership_connection_created(self, service, seeded):
        service.enqueue(relationships=[staged_relationship("Tim Cook", "Apple", "CEO of Apple")])

        result = await service.relationship_resolver.resolve_batch()

        assert result.created == 1
        (detail,) = result.details
        assert detail.result == "created"
        assert detail.confidence >= 0.9
        assert detail.confidence == pytest.approx((0.95 + 0.95 + 0.9) / 3, abs=1e-4)
        assert "leadership" in detail.reason

        connection = service.graph.get_connection("ep-1", seeded["Tim Cook"], seeded["Apple"])
        assert connection.strength == 1
        assert connection.description == "CEO of Apple"

    @pytest.mark.asyncio
    async def test_repeat_mention_strengthens(self, service, seeded):
        service.enqueue(relationships=[
            staged_relationship("Tim Cook", "Apple", "CEO of Apple"),
            staged_relationship("tim cook", "Apple Inc.", "Apple's CEO"),
        ])

        result = await service.relationship_resolver.resolve_batch()

        assert result.created == 1
        assert result.strengthened == 1
        assert result.success_rate == 1.0
        connection = service.graph.get_connection("ep-1", seeded["Tim Cook"], seeded["Apple"])
        assert connection.strength == 2
        assert connection.description == "Apple's CEO"

    @pytest.mark.asyncio
    async def test_missing_entity_is_skipped(self, service, seeded):
        service.enqueue(relationships=[staged_relationship("Zzyxx Corp", "Apple", "partner")])

        result = await service.relationship_resolver.resolve_batch()

        assert result.skipped == 1
        assert result.details[0].reason == "missing entity: source 'Zzyxx Corp'"
        assert service.graph.connection_stats()["connections"] == 0
        (row,) = service.staging.dequeue(StagedKind.RELATIONSHIP, 10, processed=True)
        assert row.status == StagedStatus.UNRESOLVED.value
        assert row.resolution_note.startswith("missing entity")

    @pytest.mark.asyncio
    async def test_same_name_is_a_self_loop(self, service, seeded):
        service.enqueue(relationships=[staged_relationship("Apple", "Apple Inc.", "rebrand")])
        result = await service.relationship_resolver.resolve_batch()
        assert result.details[0].reason == "self-referential relationship"

    @pytest.mark.asyncio
    async def test_names_resolving_to_one_entity_are_a_self_loop(self, service, seeded):
        service.enqueue(relationships=[staged_relationship("Apple", "Apple Computer", "renamed")])
        result = await service.relationship_resolver.resolve_batch()

        assert result.skipped == 1
        assert result.details[0].reason == "self-referential relationship"
        assert service.graph.connection_stats()["connections"] == 0

    @pytest.mark.asyncio
    async def test_implausible_pair(self, service, seeded):
        resolver = RelationshipResolver(
            service.staging, service.graph, service.cascade, validation_rules=VALIDATION_RULES[:1]
        )
        service.enqueue(relationships=[staged_relationship("Apple", "Microsoft", "competes with")])

        result = await resolver.resolve_batch()

        assert result.skipped == 1
        assert result.details[0].reason == "implausible relationship"

    @pytest.mark.asyncio
    async def test_low_confidence(self, service, seeded):
        resolver = RelationshipResolver(
            service.staging, service.graph, service.cascade, RelationshipConfig(min_confidence=0.9)
        )
        service.enqueue(relationships=[staged_relationship("Apple", "Microsoft", "competes with")])

        result = await resolver.resolve_batch()

        assert result.skipped == 1
        assert result.details[0].reason.startswith("low confidence")
        assert result.details[0].confidence == pytest.approx((0.95 + 0.95 + 0.6) / 3, abs=1e-4)

    def test_strict_threshold(self, service):
        assert service.relationship_resolver.min_confidence(strict=False) == 0.5
        assert service.relationship_resolver.min_confidence(strict=True) == 0.6

    @pytest.mark.asyncio
    async def test_store_error_leaves_row_pending(self, service, seeded):
        service.enqueue(relationships=[staged_relationship("Tim Cook", "Apple", "CEO of Apple")])

        with patch.object(service.graph, "upsert_connection", side_effect=TransientStoreError("locked")):
            result = await service.relationship_resolver.resolve_batch()

        assert result.errors == 1
        assert result.processed == 0
        assert service.staging.stats()["pendingRelationships"] == 1

    @pytest.mark.asyncio
    async def test_average_confidence(self, service, seeded):
        service.enqueue(relationships=[
            staged_relationship("Tim Cook", "Apple", "CEO of Apple"),
            staged_relationship("Zzyxx Corp", "Apple", "partner"),
        ])

        result = await service.relationship_resolver.resolve_batch()

        assert result.success_rate == 0.5
        assert result.average_confidence == pytest.approx((0.95 + 0.95 + 0.9) / 3, abs=1e-4)

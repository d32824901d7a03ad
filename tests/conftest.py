"""
Pytest configuration and fixtures for podgraph tests.
"""

import json
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add src directory to Python path for imports
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from podgraph.cache import CacheService
from podgraph.models import StagedEntity, StagedRelationship
from podgraph.resolution_config import ResolutionConfig
from podgraph.service import ResolutionService
from podgraph.staging_store import StagingStore
from podgraph.storage import Database, GraphStore
from podgraph.utils.llm_providers import BaseLLMProvider, LLMProvider, LLMResponse


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (run with --run-slow)"
    )


def pytest_collection_modifyitems(config, items):
    """Skip slow tests unless --run-slow is provided."""
    if config.getoption("--run-slow", default=False):
        return

    skip_slow = pytest.mark.skip(reason="Slow test - use --run-slow to run")
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_slow)


def pytest_addoption(parser):
    """Add --run-slow command line option."""
    try:
        parser.addoption(
            "--run-slow",
            action="store_true",
            default=False,
            help="Run slow tests against a real LLM provider",
        )
    except ValueError:
        # Option already added
        pass


# =============================================================================
# Storage fixtures
# =============================================================================


@pytest.fixture
def db(tmp_path):
    """Fresh SQLite database with the schema created."""
    database = Database(tmp_path / "podgraph.db")
    database.init_schema()
    yield database
    database.close()


@pytest.fixture
def graph(db):
    return GraphStore(db)


@pytest.fixture
def staging(db):
    return StagingStore(db)


@pytest.fixture
def caches():
    return CacheService.create(max_size=100, entity_ttl_seconds=60, llm_ttl_seconds=60)


# =============================================================================
# LLM fixtures
# =============================================================================


NO_MATCH_VERDICT = json.dumps({
    "match": False,
    "candidateIndex": None,
    "confidence": 0.1,
    "reasoning": "Different entities",
})


def make_llm(*contents, usage=None):
    """
    Fake provider whose ``achat`` returns the given contents in order.

    A single content is returned for every call. Exceptions are raised.
    """
    client = MagicMock(spec=BaseLLMProvider)
    responses = []
    for content in contents or (NO_MATCH_VERDICT,):
        if isinstance(content, BaseException):
            responses.append(content)
        else:
            responses.append(
                LLMResponse(content=content, model="gpt-4o-mini", provider=LLMProvider.OPENAI, usage=usage)
            )
    if len(responses) == 1:
        if isinstance(responses[0], BaseException):
            client.achat = AsyncMock(side_effect=responses[0])
        else:
            client.achat = AsyncMock(return_value=responses[0])
    else:
        client.achat = AsyncMock(side_effect=responses)
    return client


@pytest.fixture
def fake_llm():
    """Provider that declines every candidate."""
    return make_llm()


# =============================================================================
# Service fixtures
# =============================================================================


@pytest.fixture
def service(db, fake_llm):
    return ResolutionService(db, ResolutionConfig(), llm_client=fake_llm)


def staged_entity(name, entity_type="Company", episode_id="ep-1", description=None, extracted_at=None):
    kwargs = {"name": name, "type": entity_type, "episode_id": episode_id, "description": description}
    if extracted_at:
        kwargs["extracted_at"] = extracted_at
    return StagedEntity(**kwargs)


def staged_relationship(source, target, description="", episode_id="ep-1", extracted_at=None):
    kwargs = {
        "source_name": source,
        "target_name": target,
        "description": description,
        "episode_id": episode_id,
    }
    if extracted_at:
        kwargs["extracted_at"] = extracted_at
    return StagedRelationship(**kwargs)

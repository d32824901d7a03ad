"""
Tests for the LLM-semantic matching strategy: verdict parsing, caching and
provider error handling.
"""

import json

import pytest

from podgraph.cache import ResolutionCache
from podgraph.llm_matcher import LLMMatcher, format_candidates, parse_match_response
from podgraph.match_results import LLMMatch, NoMatch
from podgraph.models import Entity
from podgraph.utils.errors import (
    LLMUnavailableError,
    MalformedLLMResponseError,
    TransientResolutionError,
)

from conftest import NO_MATCH_VERDICT, make_llm


def verdict(index, confidence=0.85, match=True):
    return json.dumps({
        "match": match,
        "candidateIndex": index,
        "confidence": confidence,
        "reasoning": "Same company",
    })


@pytest.fixture
def candidates():
    return [
        Entity(id="e-1", name="Berkshire Hathaway", type="Company", normalized_name="berkshire hathaway"),
        Entity(id="e-2", name="Berkshire Partners", type="Company", normalized_name="berkshire partners"),
    ]


@pytest.fixture
def cache():
    return ResolutionCache("llm", max_size=100, ttl_seconds=60)


# =============================================================================
# Parsing
# =============================================================================


class TestParseMatchResponse:
    def test_plain_json(self):
        assert parse_match_response('{"match": true, "candidateIndex": 1}')["candidateIndex"] == 1

    def test_fenced_json(self):
        response = 'Here you go:\n```json\n{"match": false, "candidateIndex": null}\n```'
        assert parse_match_response(response)["match"] is False

    def test_json_embedded_in_prose(self):
        response = 'I think {"match": true, "candidateIndex": 2, "confidence": 0.8} is right.'
        assert parse_match_response(response)["candidateIndex"] == 2

    def test_garbage_raises(self):
        with pytest.raises(MalformedLLMResponseError) as exc_info:
            parse_match_response("no idea")
        assert exc_info.value.raw == "no idea"

    def test_format_candidates_is_one_based(self, candidates):
        text = format_candidates(candidates)
        assert text.startswith('1. Name: "Berkshire Hathaway"')
        assert '2. Name: "Berkshire Partners"' in text
        assert "No description" in text


# =============================================================================
# Matching
# =============================================================================


class TestLLMMatcher:
    @pytest.mark.asyncio
    async def test_no_candidates_skips_the_call(self, cache):
        client = make_llm()
        result = await LLMMatcher(cache, client=client).match("Berkshire", "Company", [])

        assert isinstance(result, NoMatch)
        assert result.cost == 0.0
        client.achat.assert_not_called()

    @pytest.mark.asyncio
    async def test_match_picks_candidate_and_caps_confidence(self, cache, candidates):
        client = make_llm(verdict(1, confidence=0.99))
        result = await LLMMatcher(cache, client=client, confidence_cap=0.9).match("Berkshire", "Company", candidates)

        assert isinstance(result, LLMMatch)
        assert result.entity.id == "e-1"
        assert result.confidence == 0.9
        assert result.cost == pytest.approx(0.002)
        assert result.strategy == "llm"

    @pytest.mark.asyncio
    async def test_verdict_is_cached(self, cache, candidates):
        client = make_llm(verdict(2))
        matcher = LLMMatcher(cache, client=client)

        await matcher.match("Berkshire", "Company", candidates)
        again = await matcher.match("berkshire", "Company", list(reversed(candidates)))

        assert client.achat.await_count == 1
        assert isinstance(again, LLMMatch)
        assert again.entity.id == "e-2"
        assert again.strategy == "llm_cached"
        assert again.cost == 0.0

    @pytest.mark.asyncio
    async def test_negative_verdict_is_cached(self, cache, candidates):
        client = make_llm(NO_MATCH_VERDICT)
        matcher = LLMMatcher(cache, client=client)

        first = await matcher.match("Berkshire", "Company", candidates)
        second = await matcher.match("Berkshire", "Company", candidates)

        assert isinstance(first, NoMatch) and first.cost > 0
        assert isinstance(second, NoMatch) and second.strategy == "llm_cached"
        assert client.achat.await_count == 1

    @pytest.mark.asyncio
    async def test_malformed_answer_is_no_match_but_paid(self, cache, candidates):
        client = make_llm("I cannot decide")
        matcher = LLMMatcher(cache, client=client)

        result = await matcher.match("Berkshire", "Company", candidates)
        assert isinstance(result, NoMatch)
        assert result.cost == pytest.approx(0.002)

        await matcher.match("Berkshire", "Company", candidates)
        assert client.achat.await_count == 2

    @pytest.mark.asyncio
    async def test_out_of_range_index(self, cache, candidates):
        client = make_llm(verdict(7))
        result = await LLMMatcher(cache, client=client).match("Berkshire", "Company", candidates)
        assert isinstance(result, NoMatch)

    @pytest.mark.asyncio
    async def test_rate_limit_is_transient(self, cache, candidates):
        client = make_llm(Exception("429 Too Many Requests"))
        with pytest.raises(TransientResolutionError):
            await LLMMatcher(cache, client=client).match("Berkshire", "Company", candidates)

    @pytest.mark.asyncio
    async def test_exhausted_quota_is_fatal(self, cache, candidates):
        client = make_llm(Exception("insufficient_quota: check your plan"))
        with pytest.raises(LLMUnavailableError):
            await LLMMatcher(cache, client=client).match("Berkshire", "Company", candidates)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [TimeoutError("Request timed out."), ConnectionError("connection refused")])
    async def test_single_timeout_only_fails_the_row(self, cache, candidates, error):
        matcher = LLMMatcher(cache, client=make_llm(error))
        with pytest.raises(TransientResolutionError):
            await matcher.match("Berkshire", "Company", candidates)
        assert matcher.consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_consecutive_timeouts_declare_endpoint_down(self, cache, candidates):
        client = make_llm(TimeoutError("Request timed out."), TimeoutError("Request timed out."))
        matcher = LLMMatcher(cache, client=client, max_consecutive_failures=2)

        with pytest.raises(TransientResolutionError):
            await matcher.match("Berkshire", "Company", candidates)
        with pytest.raises(LLMUnavailableError, match="2 consecutive failures"):
            await matcher.match("Berkshire", "Company", candidates)

    @pytest.mark.asyncio
    async def test_successful_call_resets_failure_count(self, cache, candidates):
        client = make_llm(
            TimeoutError("Request timed out."),
            NO_MATCH_VERDICT,
            TimeoutError("Request timed out."),
        )
        matcher = LLMMatcher(cache, client=client, max_consecutive_failures=2)

        with pytest.raises(TransientResolutionError):
            await matcher.match("Berkshire", "Company", candidates)
        assert isinstance(await matcher.match("Berkshire", "Company", candidates), NoMatch)
        assert matcher.consecutive_failures == 0
        with pytest.raises(TransientResolutionError):
            await matcher.match("Berkshire Co", "Company", candidates)
        assert client.achat.await_count == 3

    @pytest.mark.asyncio
    async def test_permanent_error_is_no_match(self, cache, candidates):
        client = make_llm(ValueError("invalid request: bad model"))
        result = await LLMMatcher(cache, client=client).match("Berkshire", "Company", candidates)
        assert isinstance(result, NoMatch)
        assert result.cost == pytest.approx(0.002)

"""
LLM-semantic matching: ask a chat model which candidate, if any, is the same
real-world entity as the target name.

Verdicts are cached by (name, type, candidate id set). Malformed answers are
treated as no match; the call is still paid for. A timeout or dropped
connection only fails the current row; the endpoint is declared down after
``max_consecutive_failures`` such failures in a row, or at once when the
quota is exhausted.
"""

import json
import re
from typing import Any, Dict, List, Optional

from .cache import CachedVerdict, ResolutionCache, llm_cache_key
from .match_results import LLMMatch, MatchResult, NoMatch
from .models import Entity
from .utils.errors import (
    ErrorType,
    LLMUnavailableError,
    MalformedLLMResponseError,
    TransientResolutionError,
    classify_error,
)
from .utils.llm_client import llm_chat_async
from .utils.llm_providers import BaseLLMProvider
from .utils.logger import logger

ENTITY_MATCH_PROMPT = """You are an expert at entity resolution. Given a target entity and a list of candidate entities, determine if any of the candidates represent the same real-world entity as the target.

TARGET ENTITY:
Name: "{name}"
Type: {entity_type}

CANDIDATE ENTITIES:
{candidates}

INSTRUCTIONS:
- Consider common abbreviations, alternative names, and variations
- For companies: "TSMC" = "Taiwan Semiconductor Manufacturing Company"
- For people: Consider nicknames, full names vs shortened names
- For topics: Consider synonyms and related concepts
- Be strict: only match if you're confident they represent the SAME entity

Respond with ONLY a JSON object:
{{
  "match": true/false,
  "candidateIndex": number (1-based index if match found, null if no match),
  "confidence": number (0.0-1.0),
  "reasoning": "brief explanation"
}}"""


def format_candidates(candidates: List[Entity]) -> str:
    return "\n\n".join(
        f'{i}. Name: "{c.name}"\n   Type: {c.type}\n   Description: {c.description or "No description"}'
        for i, c in enumerate(candidates, start=1)
    )


def parse_match_response(response: str) -> Dict[str, Any]:
    """
    Parse the model's verdict.

    Tries a direct JSON parse, then a fenced code block, then the first
    ``{...}`` span.

    Raises:
        MalformedLLMResponseError: if no JSON object can be recovered
    """
    try:
        data = json.loads(response)
        if isinstance(data, dict):
            return data
    except (json.JSONDecodeError, TypeError):
        logger.debug("Direct JSON parse failed, trying code block extraction")

    json_match = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", response or "")
    if json_match:
        try:
            data = json.loads(json_match.group(1))
            if isinstance(data, dict):
                return data
        except json.JSONDecodeError:
            logger.debug("Code block JSON parse failed, trying raw object extraction")

    json_match = re.search(r"\{[\s\S]*\}", response or "")
    if json_match:
        try:
            data = json.loads(json_match.group(0))
            if isinstance(data, dict):
                return data
        except json.JSONDecodeError:
            logger.debug("Raw JSON object parse failed")

    raise MalformedLLMResponseError("Could not parse LLM match verdict", raw=response or "")


def _as_index(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _as_confidence(value: Any) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0
    return max(0.0, min(1.0, confidence))


class LLMMatcher:
    """LLM-semantic strategy of the matching cascade."""

    def __init__(
        self,
        cache: ResolutionCache,
        client: Optional[BaseLLMProvider] = None,
        confidence_cap: float = 0.9,
        max_consecutive_failures: int = 3,
    ):
        self.cache = cache
        self._client = client
        self.confidence_cap = confidence_cap
        self.max_consecutive_failures = max(1, max_consecutive_failures)
        self.consecutive_failures = 0

    def _get_client(self) -> BaseLLMProvider:
        if self._client is None:
            from .utils.llm_client import get_llm_client

            try:
                self._client = get_llm_client()
            except (ValueError, ImportError) as e:
                raise LLMUnavailableError(f"LLM provider is not configured: {e}") from e
        return self._client

    async def match(self, name: str, entity_type: str, candidates: List[Entity]) -> MatchResult:
        """
        Pick the candidate the model identifies with ``name``.

        Raises:
            LLMUnavailableError: quota exhausted, no provider configured, or
                too many consecutive timeouts / connection failures
            TransientResolutionError: rate limited or a single timeout; the row
                should be retried later
        """
        if not candidates:
            return NoMatch(reason="no llm candidates", strategy="llm")

        key = llm_cache_key(name, entity_type, [c.id for c in candidates])
        cached: Optional[CachedVerdict] = self.cache.get(key)
        if cached is not None:
            by_id = {c.id: c for c in candidates}
            if cached.entity_id and cached.entity_id in by_id:
                return LLMMatch(
                    entity=by_id[cached.entity_id],
                    confidence=cached.confidence,
                    reasoning=cached.reasoning,
                    strategy="llm_cached",
                )
            return NoMatch(reason="llm found no match (cached)", strategy="llm_cached")

        prompt = ENTITY_MATCH_PROMPT.format(
            name=name,
            entity_type=entity_type,
            candidates=format_candidates(candidates),
        )

        try:
            chat = await llm_chat_async(
                [{"role": "user", "content": prompt}],
                client=self._get_client(),
                json_mode=True,
            )
        except LLMUnavailableError:
            raise
        except Exception as e:
            error_type = classify_error(e)
            if error_type == ErrorType.QUOTA_EXHAUSTED:
                raise LLMUnavailableError(f"LLM quota exhausted: {e}") from e
            if error_type == ErrorType.TRANSIENT:
                self.consecutive_failures += 1
                if self.consecutive_failures >= self.max_consecutive_failures:
                    raise LLMUnavailableError(
                        f"LLM endpoint unavailable after {self.consecutive_failures} consecutive failures: {e}"
                    ) from e
                logger.warning(
                    f"LLM call failed for '{name}' "
                    f"({self.consecutive_failures}/{self.max_consecutive_failures}): {e}"
                )
                raise TransientResolutionError(f"LLM call failed: {e}") from e
            if error_type == ErrorType.RATE_LIMITED:
                raise TransientResolutionError(f"LLM rate limited: {e}") from e
            from .constants import LLM_CALL_COST_USD

            logger.warning(f"LLM matching failed for '{name}': {e}")
            return NoMatch(reason=f"llm error: {e}", cost=LLM_CALL_COST_USD, strategy="llm")

        self.consecutive_failures = 0

        try:
            verdict = parse_match_response(chat.content)
        except MalformedLLMResponseError as e:
            logger.warning(f"Malformed LLM verdict for '{name}': {e.raw[:200]}")
            return NoMatch(reason="malformed llm response", cost=chat.cost, strategy="llm")

        confidence = min(_as_confidence(verdict.get("confidence")), self.confidence_cap)
        reasoning = str(verdict.get("reasoning") or "")
        index = _as_index(verdict.get("candidateIndex"))

        if verdict.get("match") is True and index is not None and 1 <= index <= len(candidates):
            entity = candidates[index - 1]
            self.cache.put(key, CachedVerdict(entity_id=entity.id, confidence=confidence, reasoning=reasoning))
            logger.debug(f"LLM matched '{name}' -> '{entity.name}' ({confidence:.2f}): {reasoning}")
            return LLMMatch(entity=entity, confidence=confidence, reasoning=reasoning, cost=chat.cost)

        if verdict.get("match") is True:
            logger.warning(f"LLM picked out-of-range candidate {verdict.get('candidateIndex')!r} for '{name}'")
            return NoMatch(reason="llm picked a nonexistent candidate", cost=chat.cost, strategy="llm")

        self.cache.put(key, CachedVerdict(entity_id=None, confidence=0.0, reasoning=reasoning))
        return NoMatch(reason="llm found no match", cost=chat.cost, strategy="llm")

"""LLM filter that separates working chefs from hosts, judges and crew."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence

import httpx

from core import ChefCandidate, TokenUsage
from utils.exceptions import EnrichmentError
from utils.retry import RetryPolicy

from .providers import SynthesisProvider
from .schemas import ChefFilterDecision


logger = logging.getLogger(__name__)

FILTER_MODEL = "gpt-5-nano"
DEFAULT_CONCURRENCY = 5
DEFAULT_DELAY_MS = 100

FILTER_SYSTEM_PROMPT = """You identify TV cooking competition participants who are professional chefs with restaurants.
Decide whether the person owns, operates or leads the kitchen of at least one restaurant (is_chef: true)
or is a host, producer, crew member or a contestant who never worked in restaurants (is_chef: false).
Most contestants on chef competitions are professional chefs; winners and finalists almost always are.
Judges who run restaurants count as chefs; hosts who do not cook professionally do not.
When unsure, still decide, with a confidence between 0.5 and 0.7.
Respond with JSON only: {"is_chef": bool, "reason": str, "confidence": 0..1}"""


@dataclass
class ChefFilterResult:
    is_chef: bool
    reason: str
    confidence: float
    tokens_used: TokenUsage = field(default_factory=TokenUsage)


def _filter_prompt(candidate: ChefCandidate) -> str:
    lines = ["Is this person a chef with restaurants?", "", f"Name: {candidate.name}"]
    if candidate.show_name:
        lines.append(f"Show: {candidate.show_name}")
    if candidate.season:
        lines.append(f"Season: {candidate.season}")
    if candidate.result:
        lines.append(f"Result: {candidate.result}")
    return "\n".join(lines)


async def filter_chef_candidate(
    candidate: ChefCandidate,
    synthesis: SynthesisProvider,
    retry_policy: Optional[RetryPolicy] = None,
    model: str = FILTER_MODEL,
) -> ChefFilterResult:
    """Classify one candidate; provider failures end in an exclusion with confidence 0."""
    policy = retry_policy or RetryPolicy()
    prompt = _filter_prompt(candidate)
    attempts = 0

    async def _classify():
        nonlocal attempts
        attempts += 1
        return await synthesis.synthesize(FILTER_SYSTEM_PROMPT, prompt, ChefFilterDecision, model=model, temperature=0.1)

    try:
        result = await policy.call(_classify, label=f"filter:{candidate.name}")
    except (EnrichmentError, httpx.HTTPError) as exc:
        logger.error(
            "[ChefFilter] %s excluded after %d attempt(s): %s",
            candidate.name,
            attempts,
            exc,
        )
        return ChefFilterResult(
            is_chef=False,
            reason=f"LLM error after {attempts} attempt(s), excluding: {exc}",
            confidence=0.0,
        )

    decision = result.value
    return ChefFilterResult(
        is_chef=decision.is_chef,
        reason=decision.reason,
        confidence=decision.confidence,
        tokens_used=result.usage,
    )


async def filter_chef_candidates_batch(
    candidates: Sequence[ChefCandidate],
    synthesis: SynthesisProvider,
    *,
    concurrency: int = DEFAULT_CONCURRENCY,
    delay_ms: int = DEFAULT_DELAY_MS,
    retry_policy: Optional[RetryPolicy] = None,
    model: str = FILTER_MODEL,
) -> Dict[str, ChefFilterResult]:
    """Filter ``candidates`` with at most ``concurrency`` calls in flight.

    Each worker sleeps ``delay_ms`` after every call. Results are keyed by candidate name.
    """
    queue: asyncio.Queue = asyncio.Queue()
    for candidate in candidates:
        queue.put_nowait(candidate)

    results: Dict[str, ChefFilterResult] = {}
    delay = max(0, delay_ms) / 1000.0

    async def worker() -> None:
        while True:
            try:
                candidate = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            try:
                results[candidate.name] = await filter_chef_candidate(
                    candidate,
                    synthesis,
                    retry_policy=retry_policy,
                    model=model,
                )
                if delay > 0:
                    await asyncio.sleep(delay)
            finally:
                queue.task_done()

    workers = [asyncio.create_task(worker()) for _ in range(max(1, min(concurrency, len(candidates) or 1)))]
    await asyncio.gather(*workers)

    kept = sum(1 for item in results.values() if item.is_chef)
    logger.info("[ChefFilter] %d/%d candidate(s) kept", kept, len(results))
    return results

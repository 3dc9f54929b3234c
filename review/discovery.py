"""Stages new chefs discovered on show source pages."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError

from core import ChefCandidate, NewChefPayload, ReviewItemType, TokenUsage
from extraction.candidate_filter import filter_chef_candidates_batch
from extraction.providers import SynthesisProvider
from resolver import EntityResolver, chef_slug, show_slug_from_source_url
from storage.source_cache import CandidateParser, ShowSourceFetcher
from utils.retry import RetryPolicy

from .queue import ReviewQueue


logger = logging.getLogger(__name__)


def parse_candidate_json(content: str) -> List[ChefCandidate]:
    """
    Parse a JSON candidate list: either ``[{...}]`` or ``{"candidates": [{...}]}``.

    Bare strings are treated as names. Entries without a usable name are skipped.
    """
    data = json.loads(content or "[]")
    if isinstance(data, dict):
        data = data.get("candidates") or []
    candidates: List[ChefCandidate] = []
    for entry in data if isinstance(data, list) else []:
        if isinstance(entry, str):
            entry = {"name": entry}
        if not isinstance(entry, dict):
            continue
        if entry.get("season") is not None:
            entry = {**entry, "season": str(entry["season"])}
        try:
            candidates.append(ChefCandidate(**entry))
        except PydanticValidationError:
            logger.debug("[Discovery] Skipping malformed candidate: %r", entry)
    return candidates


class ShowDiscoveryService:
    """
    Source page -> candidate list -> LLM filter -> ``new_chef`` review items.

    Candidates already in the chef table, already pending review, or on the
    exclusion list never reach the LLM.
    """

    def __init__(
        self,
        fetcher: ShowSourceFetcher,
        resolver: EntityResolver,
        reviews: ReviewQueue,
        synthesis: SynthesisProvider,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        concurrency: int = 5,
        delay_ms: int = 100,
        filter_model: str = "gpt-5-nano",
        excluded_names: Iterable[str] = (),
    ) -> None:
        self.fetcher = fetcher
        self.resolver = resolver
        self.reviews = reviews
        self.synthesis = synthesis
        self.retry_policy = retry_policy
        self.concurrency = concurrency
        self.delay_ms = delay_ms
        self.filter_model = filter_model
        self.excluded = {name.strip().lower() for name in excluded_names if name and name.strip()}

    async def discover(
        self,
        source_url: str,
        parser: CandidateParser,
        *,
        show_name: Optional[str] = None,
        show_slug: Optional[str] = None,
        force: bool = False,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        slug = show_slug or show_slug_from_source_url(source_url)
        entry = await self.fetcher.fetch(slug, source_url, parser, force=force, now=now)

        summary: Dict[str, Any] = {
            "show_slug": slug,
            "candidates": len(entry.candidates),
            "excluded": 0,
            "known": 0,
            "already_pending": 0,
            "filtered": 0,
            "staged": [],
            "rejected": [],
            "tokens": 0,
        }

        remaining: List[ChefCandidate] = []
        seen = set()
        for candidate in entry.candidates:
            key = chef_slug(candidate.name)
            if key in seen:
                continue
            seen.add(key)
            if candidate.name.strip().lower() in self.excluded:
                summary["excluded"] += 1
            elif self.resolver.find_chef(candidate.name) is not None:
                summary["known"] += 1
            elif self.reviews.has_pending(ReviewItemType.NEW_CHEF, key):
                summary["already_pending"] += 1
            else:
                remaining.append(candidate)

        if not remaining:
            logger.info("[Discovery] %s: no new candidates", slug)
            return summary

        results = await filter_chef_candidates_batch(
            remaining,
            self.synthesis,
            concurrency=self.concurrency,
            delay_ms=self.delay_ms,
            retry_policy=self.retry_policy,
            model=self.filter_model,
        )
        summary["filtered"] = len(results)

        usage = TokenUsage()
        for candidate in remaining:
            verdict = results.get(candidate.name)
            if verdict is None:
                continue
            usage = usage + verdict.tokens_used
            if not verdict.is_chef:
                summary["rejected"].append({"name": candidate.name, "reason": verdict.reason})
                continue
            self.reviews.add(
                ReviewItemType.NEW_CHEF,
                NewChefPayload(
                    name=candidate.name,
                    slug=chef_slug(candidate.name),
                    show_name=candidate.show_name or show_name,
                    show_slug=slug,
                    season=candidate.season,
                    result=candidate.result,
                    source_url=candidate.source_url or source_url,
                ),
                source=f"show_discovery:{slug}",
                confidence=verdict.confidence,
                notes=verdict.reason,
            )
            summary["staged"].append(candidate.name)

        summary["tokens"] = usage.total
        logger.info(
            "[Discovery] %s: %d staged, %d rejected of %d candidate(s)",
            slug,
            len(summary["staged"]),
            len(summary["rejected"]),
            summary["candidates"],
        )
        return summary

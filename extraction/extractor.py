"""
Search-grounded LLM extraction for chefs and restaurants.

Each call assembles web search snippets (except duplicate checks) plus what the store knows about the
entity, asks the synthesis provider for a fixed schema, and records token spend on a
``TokenTracker``. Provider failures are retried by the shared ``RetryPolicy``; once the
policy gives up the call returns a failed ``ExtractionOutcome`` instead of raising.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Generic, List, Optional, Sequence, Type, TypeVar

import httpx
from pydantic import BaseModel

from budget.pricing import TokenTracker
from core import ChefRecord, RestaurantRecord
from utils.exceptions import EnrichmentError
from utils.retry import RetryPolicy

from .providers import SearchProvider, SearchSnippet, SynthesisProvider
from .schemas import (
    ChefBioExtraction,
    DuplicateVerdict,
    RestaurantExtraction,
    RestaurantsExtraction,
    ShowAppearancesExtraction,
    StatusExtraction,
)


logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

MAX_SNIPPET_CHARS = 800

BIO_SYSTEM_PROMPT = """You research professional chefs for a restaurant directory.
Using only the search results provided, write a 2-3 sentence biography in the third person,
report their James Beard status (winner, nominated, semifinalist or null) and list notable awards.
Do not include citations, links or reference markers in any text field.
Respond with JSON only: {"mini_bio": str, "james_beard_status": str|null, "notable_awards": [str], "confidence": 0..1}"""

RESTAURANTS_SYSTEM_PROMPT = """You research where professional chefs currently cook.
Using only the search results provided, list restaurants the chef currently owns, runs or leads
as executive chef. Skip pop-ups, past employers and restaurants that are permanently closed unless
you are certain of the closure, in which case report status "closed".
Do not include citations, links or reference markers in any text field.
Respond with JSON only: {"restaurants": [{"name": str, "address": str|null, "city": str|null,
"state": str|null, "country": str|null, "cuisine": [str], "status": "open"|"closed"|"unknown",
"website": str|null, "role": "owner"|"chef"|"partner"|"executive chef"|null, "confidence": 0..1}]}"""

STATUS_SYSTEM_PROMPT = """You verify whether a restaurant is still operating.
Using only the search results provided, decide if the restaurant is open, permanently closed, or
unknown when the evidence is thin or contradictory. Temporary closures count as open.
Respond with JSON only: {"status": "open"|"closed"|"unknown", "confidence": 0..1, "reason": str}"""

SHOWS_SYSTEM_PROMPT = """You research professional chefs' television appearances.
Using only the search results provided, list cooking competition or food TV shows the chef competed
on, judged or hosted. Give the season as it is usually written (a number, or a named edition) and the
result: winner, finalist, contestant, judge or host.
Do not include citations, links or reference markers in any text field.
Respond with JSON only: {"shows": [{"show_name": str, "season": str|null, "result": str|null, "confidence": 0..1}]}"""

DUPLICATE_SYSTEM_PROMPT = """You deduplicate a restaurant directory.
Decide whether the discovered restaurant and the restaurant on file are the same place. Renamed,
relocated or rebranded restaurants of the same chef count as the same place; sister restaurants,
different concepts and other branches do not.
Respond with JSON only: {"is_duplicate": bool, "confidence": 0..1, "reason": str}"""


@dataclass
class ExtractionOutcome(Generic[T]):
    """Result of one extraction call; ``success=False`` is a definitive negative."""

    success: bool
    value: Optional[T] = None
    confidence: float = 0.0
    error: Optional[str] = None
    sources: List[str] = field(default_factory=list)


def _format_snippets(snippets: Sequence[SearchSnippet]) -> str:
    if not snippets:
        return "(no search results)"
    blocks = []
    for index, item in enumerate(snippets, start=1):
        content = item.content[:MAX_SNIPPET_CHARS]
        blocks.append(f"[{index}] {item.title}\n{item.url}\n{content}")
    return "\n\n".join(blocks)


def _describe_restaurant(record: Any) -> str:
    parts = [record.name]
    parts.extend(part for part in (record.address, record.city, record.state, record.website) if part)
    return ", ".join(parts)


class EntityExtractor:
    """Bio, restaurant, show and status extraction over a search and a synthesis provider."""

    def __init__(
        self,
        search: SearchProvider,
        synthesis: SynthesisProvider,
        retry_policy: Optional[RetryPolicy] = None,
        max_results: int = 5,
    ) -> None:
        self.search = search
        self.synthesis = synthesis
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_results = max_results

    async def _run(
        self,
        label: str,
        query: Optional[str],
        system: str,
        context: str,
        schema: Type[T],
        tracker: TokenTracker,
    ) -> ExtractionOutcome[T]:
        """Search for ``query`` (skipped when None), then synthesize ``schema``."""
        snippets: List[SearchSnippet] = []
        try:
            if query:
                snippets = await self.retry_policy.call(
                    lambda: self.search.search(query, self.max_results),
                    label=f"{label} search",
                )
                prompt = f"{context}\n\nSearch results:\n{_format_snippets(snippets)}"
            else:
                prompt = context
            result = await self.retry_policy.call(
                lambda: self.synthesis.synthesize(system, prompt, schema),
                label=f"{label} synthesis",
            )
        except (EnrichmentError, httpx.HTTPError) as exc:
            logger.error("[Extractor] %s failed: %s", label, exc)
            return ExtractionOutcome(success=False, error=str(exc))

        tracker.track(result.usage, result.model or self.synthesis.model)
        confidence = float(getattr(result.value, "confidence", 0.0) or 0.0)
        return ExtractionOutcome(
            success=True,
            value=result.value,
            confidence=confidence,
            sources=[item.url for item in snippets if item.url],
        )

    async def extract_chef_bio(
        self,
        chef: ChefRecord,
        tracker: TokenTracker,
        show_names: Sequence[str] = (),
    ) -> ExtractionOutcome[ChefBioExtraction]:
        context = [f"Chef: {chef.name}"]
        if show_names:
            context.append(f"Appeared on: {', '.join(show_names)}")
        if chef.mini_bio:
            context.append(f"Current bio: {chef.mini_bio}")
        return await self._run(
            f"bio:{chef.slug}",
            f"{chef.name} chef biography James Beard awards",
            BIO_SYSTEM_PROMPT,
            "\n".join(context),
            ChefBioExtraction,
            tracker,
        )

    async def discover_restaurants(
        self,
        chef: ChefRecord,
        tracker: TokenTracker,
        known: Sequence[RestaurantRecord] = (),
    ) -> ExtractionOutcome[RestaurantsExtraction]:
        context = [f"Chef: {chef.name}"]
        if known:
            listed = "; ".join(
                f"{item.name} ({item.city or 'unknown city'}, {item.status.value})" for item in known
            )
            context.append(f"Restaurants already on file: {listed}")
        return await self._run(
            f"restaurants:{chef.slug}",
            f"{chef.name} chef restaurants current",
            RESTAURANTS_SYSTEM_PROMPT,
            "\n".join(context),
            RestaurantsExtraction,
            tracker,
        )

    async def verify_restaurant_status(
        self,
        restaurant: RestaurantRecord,
        tracker: TokenTracker,
        chef_name: Optional[str] = None,
    ) -> ExtractionOutcome[StatusExtraction]:
        location = ", ".join(part for part in (restaurant.city, restaurant.state, restaurant.country) if part)
        context = [f"Restaurant: {restaurant.name}"]
        if location:
            context.append(f"Location: {location}")
        if restaurant.address:
            context.append(f"Address: {restaurant.address}")
        if chef_name:
            context.append(f"Chef: {chef_name}")
        context.append(f"Status on file: {restaurant.status.value}")
        return await self._run(
            f"status:{restaurant.slug}",
            f"{restaurant.name} {location} restaurant open or permanently closed".strip(),
            STATUS_SYSTEM_PROMPT,
            "\n".join(context),
            StatusExtraction,
            tracker,
        )

    async def discover_shows(
        self,
        chef: ChefRecord,
        tracker: TokenTracker,
    ) -> ExtractionOutcome[ShowAppearancesExtraction]:
        return await self._run(
            f"shows:{chef.slug}",
            f"{chef.name} chef TV shows Top Chef Chopped Iron Chef competition",
            SHOWS_SYSTEM_PROMPT,
            f"Chef: {chef.name}",
            ShowAppearancesExtraction,
            tracker,
        )

    async def judge_duplicate(
        self,
        discovered: RestaurantExtraction,
        existing: RestaurantRecord,
        tracker: TokenTracker,
        chef_name: Optional[str] = None,
    ) -> ExtractionOutcome[DuplicateVerdict]:
        """Ask whether ``discovered`` is ``existing``; no search, both records are in the prompt."""
        context = [f"Discovered: {_describe_restaurant(discovered)}", f"On file: {_describe_restaurant(existing)}"]
        if chef_name:
            context.append(f"Chef: {chef_name}")
        return await self._run(
            f"duplicate:{existing.slug}",
            None,
            DUPLICATE_SYSTEM_PROMPT,
            "\n".join(context),
            DuplicateVerdict,
            tracker,
        )

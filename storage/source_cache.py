"""Per-show cache of fetched source pages and the candidates parsed from them."""

from __future__ import annotations

import hashlib
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Optional

import httpx
from pydantic import BaseModel, Field, field_validator

from core import ChefCandidate
from utils.exceptions import TransientProviderError
from utils.retry import RetryPolicy

from .base import DataStore, Tables, eq


logger = logging.getLogger(__name__)

CandidateParser = Callable[[str], List[ChefCandidate]]

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class ShowSourceEntry(BaseModel):
    show_slug: str
    source_url: str
    content: str = ""
    content_hash: str = ""
    candidates: List[ChefCandidate] = Field(default_factory=list)
    fetched_at: datetime = Field(default_factory=_utcnow)

    @field_validator("candidates", mode="before")
    @classmethod
    def _candidate_list(cls, value: Any) -> List[Any]:
        return list(value or [])


class ShowSourceCache:
    """Store-backed cache keyed by show slug."""

    def __init__(self, store: DataStore, max_age_days: int = 30) -> None:
        self.store = store
        self.max_age_days = max_age_days

    def get(self, show_slug: str) -> Optional[ShowSourceEntry]:
        row = self.store.select_one(Tables.SOURCE_CACHE, [eq("show_slug", show_slug)])
        return ShowSourceEntry(**row) if row else None

    def save(self, entry: ShowSourceEntry) -> ShowSourceEntry:
        row = entry.model_dump()
        self.store.upsert(Tables.SOURCE_CACHE, row, on_conflict="show_slug")
        return entry

    def is_fresh(self, entry: ShowSourceEntry, now: Optional[datetime] = None) -> bool:
        current = now or _utcnow()
        return current - entry.fetched_at < timedelta(days=self.max_age_days)


class ShowSourceFetcher:
    """Fetch a show's source page once per freshness window and re-parse only on change."""

    def __init__(
        self,
        cache: ShowSourceCache,
        *,
        client: Optional[httpx.AsyncClient] = None,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: float = 20.0,
    ) -> None:
        self.cache = cache
        self._client = client
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout = timeout

    async def _get_text(self, url: str) -> str:
        async def _call() -> str:
            if self._client is not None:
                response = await self._client.get(url)
            else:
                async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
                    response = await client.get(url)
            if response.status_code in RETRYABLE_STATUS:
                raise TransientProviderError(f"HTTP {response.status_code} fetching {url}", provider="source")
            response.raise_for_status()
            return response.text

        return await self.retry_policy.call(_call, label=f"fetch {url}")

    async def fetch(
        self,
        show_slug: str,
        url: str,
        parser: CandidateParser,
        *,
        force: bool = False,
        now: Optional[datetime] = None,
    ) -> ShowSourceEntry:
        current = now or _utcnow()
        cached = self.cache.get(show_slug)
        if cached and not force and cached.source_url == url and self.cache.is_fresh(cached, current):
            logger.info("[SourceCache] %s served from cache (%d candidates)", show_slug, len(cached.candidates))
            return cached

        content = await self._get_text(url)
        digest = content_hash(content)
        if cached and cached.content_hash == digest:
            logger.info("[SourceCache] %s unchanged since %s", show_slug, cached.fetched_at.isoformat())
            return self.cache.save(cached.model_copy(update={"fetched_at": current, "source_url": url}))

        candidates = parser(content)
        logger.info("[SourceCache] %s parsed %d candidates", show_slug, len(candidates))
        entry = ShowSourceEntry(
            show_slug=show_slug,
            source_url=url,
            content=content,
            content_hash=digest,
            candidates=candidates,
            fetched_at=current,
        )
        return self.cache.save(entry)

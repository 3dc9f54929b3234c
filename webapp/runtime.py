"""Shared runtime for web/CLI entrypoints."""

from __future__ import annotations

import logging
from typing import Optional

from budget import BudgetLedger
from config import Settings, get_settings
from core import GateMode
from extraction import (
    ConfidenceGate,
    EnrichmentWorkflow,
    EntityExtractor,
    SearchProvider,
    SynthesisProvider,
    build_search_provider,
    build_synthesis_provider,
)
from orchestrator import EnrichmentJobStore, EnrichmentOrchestrator, JobLeaseQueue, QueueWorker
from resolver import EntityResolver, ShowResolver
from review import ApprovedItemMaterializer, ReviewQueue, ShowDiscoveryService
from scheduling import RefreshScheduler
from storage import DataStore, ShowSourceCache, ShowSourceFetcher, build_store
from utils.retry import RetryPolicy


logger = logging.getLogger(__name__)


class EnrichmentRuntime:
    """
    Wires every component from one ``Settings`` object.

    Providers are built on first use, so admin and cron routes that never call an LLM
    work without provider credentials.
    """

    def __init__(
        self,
        settings: Settings,
        store: DataStore,
        *,
        search: Optional[SearchProvider] = None,
        synthesis: Optional[SynthesisProvider] = None,
        retry_policy: Optional[RetryPolicy] = None,
        gate_mode: Optional[GateMode] = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self._search = search
        self._synthesis = synthesis
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings.extraction)

        self.ledger = BudgetLedger.from_settings(store, settings.budget)
        self.jobs = EnrichmentJobStore(store, error_max_length=settings.worker.error_message_max_length)
        self.queue = JobLeaseQueue(store, lease_minutes=settings.worker.lease_minutes)
        self.resolver = EntityResolver(store)
        self.shows = ShowResolver(store)
        self.reviews = ReviewQueue(store)
        self.source_cache = ShowSourceCache(store, max_age_days=settings.store.source_cache_max_age_days)

        gate = ConfidenceGate.from_settings(settings.extraction)
        if gate_mode is not None:
            gate = ConfidenceGate(threshold=gate.threshold, mode=gate_mode)
        self.gate = gate

        self.orchestrator = EnrichmentOrchestrator(self.ledger, self.jobs, self.resolver, costs=settings.costs)
        self.scheduler = RefreshScheduler(
            self.ledger,
            self.jobs,
            self.resolver,
            settings.scheduler,
            costs=settings.costs,
        )
        self.materializer = ApprovedItemMaterializer(
            self.reviews,
            self.resolver,
            self.shows,
            self.jobs,
            self.ledger,
            costs=settings.costs,
        )
        self._worker: Optional[QueueWorker] = None
        self._discovery: Optional[ShowDiscoveryService] = None

    @property
    def search(self) -> SearchProvider:
        if self._search is None:
            self._search = build_search_provider(self.settings.search)
        return self._search

    @property
    def synthesis(self) -> SynthesisProvider:
        if self._synthesis is None:
            self._synthesis = build_synthesis_provider(self.settings.llm)
        return self._synthesis

    @property
    def worker(self) -> QueueWorker:
        if self._worker is None:
            extractor = EntityExtractor(
                self.search,
                self.synthesis,
                retry_policy=self.retry_policy,
                max_results=self.settings.search.max_results,
            )
            workflow = EnrichmentWorkflow(self.resolver, self.reviews, extractor, self.gate, shows=self.shows)
            self._worker = QueueWorker(
                self.queue,
                self.jobs,
                self.ledger,
                workflow,
                batch_size=self.settings.worker.batch_size,
                max_runtime_seconds=self.settings.worker.max_runtime_seconds,
            )
        return self._worker

    @property
    def discovery(self) -> ShowDiscoveryService:
        if self._discovery is None:
            extraction = self.settings.extraction
            self._discovery = ShowDiscoveryService(
                ShowSourceFetcher(self.source_cache, retry_policy=self.retry_policy),
                self.resolver,
                self.reviews,
                self.synthesis,
                retry_policy=self.retry_policy,
                concurrency=extraction.filter_concurrency,
                delay_ms=extraction.filter_delay_ms,
                filter_model=extraction.filter_model,
            )
        return self._discovery


def build_runtime(
    settings: Optional[Settings] = None,
    store: Optional[DataStore] = None,
    *,
    search: Optional[SearchProvider] = None,
    synthesis: Optional[SynthesisProvider] = None,
    retry_policy: Optional[RetryPolicy] = None,
    gate_mode: Optional[GateMode] = None,
) -> EnrichmentRuntime:
    settings = settings or get_settings()
    store = store or build_store(settings.store)
    logger.info("[Runtime] Using %s store", settings.store.backend)
    return EnrichmentRuntime(
        settings,
        store,
        search=search,
        synthesis=synthesis,
        retry_policy=retry_policy,
        gate_mode=gate_mode,
    )


_RUNTIME: Optional[EnrichmentRuntime] = None


def get_runtime() -> EnrichmentRuntime:
    global _RUNTIME
    if _RUNTIME is None:
        _RUNTIME = build_runtime()
    return _RUNTIME

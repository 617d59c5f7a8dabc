"""
Run orchestration.

One run:
  1. load every stored record once into a DedupPool
  2. fetch from the adapters (concurrently by default); an adapter that
     raises contributes no events and one error, its siblings carry on
  3. feed the candidates through the MergeEngine one at a time, grouped by
     source in priority order so the most trusted source claims a record first
  4. report per-source and total counts
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Optional

from eventsync.db import RecordStore
from eventsync.dedup import DedupPool
from eventsync.merge import Action, MergeEngine
from eventsync.models import FetchOptions, FetchResult, FetchStats, NormalisedEvent
from eventsync.notify import Notifier
from eventsync.scrapers.base import BaseScraper

logger = logging.getLogger(__name__)

# Higher runs first and so wins the primary slot on new records
SOURCE_PRIORITY = {
    "marriner": 5,
    "ticketmaster": 4,
    "whatson": 3,
    "feverup": 2,
}


def source_order(source: str) -> tuple[int, str]:
    return (-SOURCE_PRIORITY.get(source, 0), source)


@dataclass
class SourceStats:
    source: str
    fetched: int = 0
    normalised: int = 0
    errors: int = 0
    inserted: int = 0
    updated: int = 0
    merged: int = 0
    skipped: int = 0
    notifications: int = 0
    duration: float = 0.0
    failures: list[str] = field(default_factory=list, repr=False)

    @classmethod
    def from_fetch(cls, stats: FetchStats) -> "SourceStats":
        return cls(
            source=stats.source,
            fetched=stats.fetched,
            normalised=stats.normalised,
            errors=stats.errors,
            duration=stats.duration,
            failures=list(stats.failures),
        )

    def count(self, action: Action, notifications: int) -> None:
        if action is Action.INSERTED:
            self.inserted += 1
        elif action is Action.UPDATED:
            self.updated += 1
        elif action is Action.MERGED:
            self.merged += 1
        else:
            self.skipped += 1
        self.notifications += notifications


@dataclass
class RunStats:
    sources: dict[str, SourceStats] = field(default_factory=dict)
    active: int = 0
    archived: int = 0
    duration: float = 0.0

    def total(self, name: str) -> int:
        return sum(getattr(s, name) for s in self.sources.values())

    @property
    def errors(self) -> int:
        return self.total("errors")


def _fetch(adapter: BaseScraper, options: FetchOptions) -> FetchResult:
    """Run one adapter, turning anything it raises into an empty result."""
    start = time.monotonic()
    try:
        return adapter.fetch_all(options)
    except Exception as exc:
        logger.exception("[%s] adapter failed", adapter.source)
        stats = FetchStats(adapter.source, duration=time.monotonic() - start)
        stats.record_failure(f"{type(exc).__name__}: {exc}")
        return FetchResult([], stats)


class Orchestrator:
    def __init__(
        self,
        store: RecordStore,
        notifier: Notifier,
        adapters: list[BaseScraper],
        parallel: bool = True,
        max_workers: Optional[int] = None,
    ):
        self.store = store
        self.notifier = notifier
        self.adapters = adapters
        self.parallel = parallel
        self.max_workers = max_workers or max(len(adapters), 1)

    def load_pool(self) -> DedupPool:
        records = self.store.find_all()
        logger.info("Loaded %d stored events", len(records))
        return DedupPool(records)

    def fetch(self, options_by_source: dict[str, FetchOptions]) -> list[FetchResult]:
        def options_for(adapter: BaseScraper) -> FetchOptions:
            return options_by_source.get(adapter.source) or adapter.default_options()

        if not self.parallel or len(self.adapters) < 2:
            return [_fetch(a, options_for(a)) for a in self.adapters]

        results: list[FetchResult] = []
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = {pool.submit(_fetch, a, options_for(a)): a for a in self.adapters}
            for future in as_completed(futures):
                results.append(future.result())
        return results

    def run(self, options_by_source: Optional[dict[str, FetchOptions]] = None) -> RunStats:
        start = time.monotonic()
        pool = self.load_pool()
        engine = MergeEngine(self.store, self.notifier, pool)
        stats = RunStats()

        results = self.fetch(options_by_source or {})
        for result in results:
            stats.sources[result.stats.source] = SourceStats.from_fetch(result.stats)
            logger.info(
                "[%s] fetched %d, normalised %d, errors %d",
                result.stats.source, result.stats.fetched, result.stats.normalised, result.stats.errors,
            )

        by_source: dict[str, list[NormalisedEvent]] = {}
        for result in results:
            for event in result.events:
                by_source.setdefault(event.source, []).append(event)

        for source in sorted(by_source, key=source_order):
            source_stats = stats.sources.setdefault(source, SourceStats(source))
            for event in by_source[source]:
                outcome = engine.process(event)
                source_stats.count(outcome.action, outcome.notifications)
                logger.debug("%s %s: %s", outcome.action.value, event.source_key, outcome.reason or "")

        stats.active = self.store.count_by_filter(is_archived=False)
        stats.archived = self.store.count_by_filter(is_archived=True)
        stats.duration = time.monotonic() - start
        return stats

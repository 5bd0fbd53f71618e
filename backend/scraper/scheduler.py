"""Fixed-size worker pool that drains a shared queue of work items."""
from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from .aggregator import MetadataAggregator
from .fallback import ProviderFallbackChain
from .matching import MatchResolver
from .schemas import ScrapeCriteria, WorkItem
from .settings import ScrapeOptions

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float, WorkItem], None]


@dataclass(slots=True)
class BatchReport:
    """Counts per final item status after a batch has finished."""

    total: int = 0
    scraped: int = 0
    ambiguous: int = 0
    no_match: int = 0
    failed: int = 0
    cancelled: int = 0
    was_cancelled: bool = False

    @property
    def skipped(self) -> int:
        return self.ambiguous + self.no_match + self.cancelled

    @classmethod
    def from_items(cls, items: Iterable[WorkItem], *, was_cancelled: bool) -> BatchReport:
        report = cls(was_cancelled=was_cancelled)
        for item in items:
            report.total += 1
            if item.status in ("scraped", "ambiguous", "no_match", "failed", "cancelled"):
                setattr(report, item.status, getattr(report, item.status) + 1)
        return report


class BatchScheduler:
    """Scrapes a batch of items with ``concurrency`` workers.

    Workers take items from one lock-guarded queue, so an item is only ever
    seen by one worker and needs no lock of its own. ``cancel`` empties the
    queue; items already being scraped are finished.
    """

    def __init__(
        self,
        resolver: MatchResolver,
        aggregator: MetadataAggregator,
        fallback_chain: ProviderFallbackChain,
        options: ScrapeOptions,
        *,
        progress: Optional[ProgressCallback] = None,
    ) -> None:
        self._resolver = resolver
        self._aggregator = aggregator
        self._fallback_chain = fallback_chain
        self._options = options
        self._progress = progress
        self._lock = threading.Lock()
        self._queue: deque[WorkItem] = deque()
        self._total = 0
        self._cancelled = False

    @property
    def options(self) -> ScrapeOptions:
        return self._options

    def run(self, items: list[WorkItem], concurrency: Optional[int] = None) -> BatchReport:
        """Block until every item has been processed or the batch was cancelled."""

        workers = concurrency or self._options.concurrency
        if workers < 1:
            raise ValueError("concurrency must be at least 1")

        with self._lock:
            self._queue = deque(items)
            self._total = len(items)
            self._cancelled = False

        logger.info("scraping %d items with %d workers", len(items), workers)
        threads = [
            threading.Thread(target=self._work, name=f"scrape-worker-{index}", daemon=True)
            for index in range(workers)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        report = BatchReport.from_items(items, was_cancelled=self._cancelled)
        logger.info(
            "batch finished: scraped=%d ambiguous=%d no_match=%d failed=%d cancelled=%d",
            report.scraped,
            report.ambiguous,
            report.no_match,
            report.failed,
            report.cancelled,
        )
        return report

    def cancel(self) -> None:
        """Drop every pending item; in-flight items finish normally."""

        with self._lock:
            self._cancelled = True
            drained = list(self._queue)
            self._queue.clear()
            for item in drained:
                item.status = "cancelled"
        logger.info("batch cancelled, %d pending items dropped", len(drained))

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def _next_item(self) -> Optional[tuple[WorkItem, float]]:
        with self._lock:
            if not self._queue:
                return None
            item = self._queue.popleft()
            return item, (self._total - len(self._queue)) / self._total

    def _report_progress(self, progress: float, item: WorkItem) -> None:
        if self._progress is None:
            return
        try:
            self._progress(progress, item)
        except Exception:
            logger.exception("progress callback failed for %r", item.name)

    def _work(self) -> None:
        while True:
            entry = self._next_item()
            if entry is None:
                return
            item, progress = entry
            # outside the queue lock; the callback may call cancel()
            self._report_progress(progress, item)
            try:
                self.scrape_item(item)
            except Exception as exc:
                logger.exception("scraping %r failed", item.name)
                item.status = "failed"
                item.error = str(exc)

    def scrape_item(self, item: WorkItem) -> WorkItem:
        """Resolve, aggregate and collect art for one item, writing the result onto it."""

        outcome = self._resolver.match(
            item.name,
            item.external_id,
            self._options.preferred_country,
            year_hint=item.year,
        )
        if outcome.candidate is None:
            item.status = outcome.status
            logger.info("no usable match for %r (%s)", item.name, outcome.status)
            return item

        metadata = self._aggregator.aggregate(outcome.candidate, self._options)
        criteria = ScrapeCriteria.from_record(
            metadata,
            language=self._options.preferred_language,
            country=self._options.preferred_country,
        )
        artwork = self._fallback_chain.collect_artwork(criteria)
        trailers = self._fallback_chain.collect_trailers(criteria)

        item.metadata = metadata
        item.artwork = artwork.items
        item.trailers = trailers.items
        item.status = "scraped"
        item.error = None
        return item

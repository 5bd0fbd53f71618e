"""Assembles one metadata record from concurrent detail fetches."""
from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional

from .providers.base import MetadataProvider
from .schemas import MetadataRecord, SearchCandidate
from .settings import ScrapeOptions

logger = logging.getLogger(__name__)

LOCALIZED_FIELDS = ("title", "original_title", "tagline", "plot")
COLLECTION_FIELDS = ("collection_id", "collection_name")


class AggregationError(RuntimeError):
    """Raised when the primary detail fetch for a match fails."""


def merge_records(
    primary: MetadataRecord,
    supplementary: Optional[MetadataRecord],
    enrichment: Optional[MetadataRecord],
    options: ScrapeOptions,
    *,
    enrichment_id: str = "tmdb",
) -> MetadataRecord:
    """Merge partial fetch results with fixed precedence.

    Primary fields come first. Supplementary fields only fill blanks. A
    localized enrichment record with a plot overwrites the localized fields and
    collection linkage when foreign language scraping is on; collection info is
    written on its own when requested. A blank original title falls back to the
    title.
    """

    record = primary.model_copy(deep=True)
    if supplementary is not None:
        record.fill_missing(supplementary)

    if enrichment is not None:
        if options.scrape_foreign_language and not enrichment.is_blank("plot"):
            if enrichment_id in enrichment.ids:
                record.ids[enrichment_id] = enrichment.ids[enrichment_id]
            for name in LOCALIZED_FIELDS + COLLECTION_FIELDS:
                setattr(record, name, getattr(enrichment, name))
        if options.scrape_collection_info:
            for name in COLLECTION_FIELDS:
                setattr(record, name, getattr(enrichment, name))

    if record.is_blank("original_title"):
        record.original_title = record.title
    return record


class MetadataAggregator:
    """Runs the primary, supplementary and enrichment fetches for a match and joins them."""

    def __init__(
        self,
        provider: MetadataProvider,
        enrichment: Optional[MetadataProvider] = None,
    ) -> None:
        self._provider = provider
        self._enrichment = enrichment

    def aggregate(self, candidate: SearchCandidate, options: ScrapeOptions) -> MetadataRecord:
        if candidate.metadata is not None:
            logger.debug("using cached metadata for %s", candidate.external_id)
            return candidate.metadata

        external_id = candidate.external_id
        enrichment_provider = self._enrichment
        wants_enrichment = (
            enrichment_provider is not None
            and enrichment_provider.enabled
            and (options.scrape_foreign_language or options.scrape_collection_info)
        )

        with ThreadPoolExecutor(max_workers=3, thread_name_prefix="aggregate") as executor:
            primary_future = executor.submit(self._provider.fetch_metadata, external_id, options)
            supplementary_future = executor.submit(self._provider.fetch_supplementary, external_id, options)
            enrichment_future: Future[MetadataRecord] | None = None
            if wants_enrichment and enrichment_provider is not None:
                enrichment_future = executor.submit(enrichment_provider.fetch_metadata, external_id, options)

            # joined in fixed order so the merge never depends on completion order
            try:
                primary = primary_future.result()
            except Exception as exc:
                raise AggregationError(
                    f"{self._provider.provider_id} detail fetch failed for {external_id}: {exc}"
                ) from exc
            supplementary = self._optional_result(supplementary_future, "supplementary", external_id)
            enrichment = None
            if enrichment_future is not None:
                enrichment = self._optional_result(enrichment_future, "enrichment", external_id)

        record = merge_records(
            primary,
            supplementary,
            enrichment,
            options,
            enrichment_id=enrichment_provider.provider_id if enrichment_provider else "tmdb",
        )
        candidate.metadata = record
        return record

    @staticmethod
    def _optional_result(
        future: Future[MetadataRecord], label: str, external_id: str
    ) -> Optional[MetadataRecord]:
        try:
            return future.result()
        except Exception as exc:
            logger.warning("%s fetch failed for %s: %s", label, external_id, exc)
            return None

"""
Batch metadata scraper.

Resolves media items against external providers, aggregates their metadata
and collects artwork and trailer references with a fixed pool of workers.
"""

from .aggregator import AggregationError, MetadataAggregator, merge_records
from .fallback import FallbackResult, ProviderFallbackChain, ProviderOutcome
from .fetch_cache import FetchCache, FetchError, normalize_url
from .matching import MatchOutcome, MatchResolver, calculate_score, clean_search_term
from .scheduler import BatchReport, BatchScheduler
from .schemas import (
    ArtworkRef,
    CastMember,
    MetadataRecord,
    ScrapeCriteria,
    SearchCandidate,
    TrailerRef,
    WorkItem,
)
from .settings import ScrapeOptions, ScraperSettings

__all__ = [
    "AggregationError",
    "ArtworkRef",
    "BatchReport",
    "BatchScheduler",
    "CastMember",
    "FallbackResult",
    "FetchCache",
    "FetchError",
    "MatchOutcome",
    "MatchResolver",
    "MetadataAggregator",
    "MetadataRecord",
    "ProviderFallbackChain",
    "ProviderOutcome",
    "ScrapeCriteria",
    "ScrapeOptions",
    "ScraperSettings",
    "SearchCandidate",
    "TrailerRef",
    "WorkItem",
    "calculate_score",
    "clean_search_term",
    "merge_records",
    "normalize_url",
]

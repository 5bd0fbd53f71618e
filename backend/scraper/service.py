"""Wiring of providers, cache and scrape components from settings."""
from __future__ import annotations

from typing import Mapping, Optional

from sqlalchemy.engine import Engine

from .aggregator import MetadataAggregator
from .fallback import ProviderFallbackChain
from .fetch_cache import FetchCache
from .matching import MatchResolver
from .providers import ImdbProvider, MetadataProvider, TmdbProvider
from .scheduler import BatchScheduler, ProgressCallback
from .settings import ScrapeOptions, ScraperSettings


def build_fetch_cache(settings: ScraperSettings, engine: Engine) -> FetchCache:
    return FetchCache(
        engine,
        timeout=settings.fetch_timeout_seconds,
        user_agent=settings.user_agent,
        max_age_seconds=settings.cache_max_age_seconds,
    )


def build_providers(settings: ScraperSettings, cache: FetchCache) -> dict[str, MetadataProvider]:
    """Instantiate every bundled provider keyed by its id."""

    providers: list[MetadataProvider] = [
        ImdbProvider(cache, base_url=settings.imdb_base_url),
        TmdbProvider(
            cache,
            settings.tmdb_api_key,
            api_url=settings.tmdb_api_url,
            image_url=settings.tmdb_image_url,
        ),
    ]
    return {provider.provider_id: provider for provider in providers}


def build_scheduler(
    settings: ScraperSettings,
    providers: Mapping[str, MetadataProvider],
    options: Optional[ScrapeOptions] = None,
    *,
    progress: Optional[ProgressCallback] = None,
) -> BatchScheduler:
    """Assemble a scheduler whose components all receive their collaborators explicitly."""

    resolved_options = options or settings.scrape_options()
    if settings.metadata_provider not in providers:
        raise ValueError(f"Unknown metadata provider: {settings.metadata_provider}")
    metadata_provider = providers[settings.metadata_provider]
    enrichment_provider = providers.get(settings.enrichment_provider)
    if enrichment_provider is metadata_provider:
        enrichment_provider = None

    return BatchScheduler(
        MatchResolver(metadata_provider, resolved_options),
        MetadataAggregator(metadata_provider, enrichment_provider),
        ProviderFallbackChain.from_options(providers, resolved_options),
        resolved_options,
        progress=progress,
    )

"""Ordered provider chains for artwork and trailers."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Generic, Mapping, Sequence, TypeVar

from .providers.base import MetadataProvider
from .schemas import ArtworkRef, ScrapeCriteria, TrailerRef
from .settings import ScrapeOptions

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class ProviderOutcome(Generic[T]):
    """What a single provider returned, or why it returned nothing."""

    provider_id: str
    items: list[T] = field(default_factory=list)
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class FallbackResult(Generic[T]):
    items: list[T] = field(default_factory=list)
    outcomes: list[ProviderOutcome[T]] = field(default_factory=list)

    @property
    def errors(self) -> dict[str, Exception]:
        return {outcome.provider_id: outcome.error for outcome in self.outcomes if outcome.error}


def _attempt(provider: MetadataProvider, call: Callable[[], list[T]]) -> ProviderOutcome[T]:
    try:
        return ProviderOutcome(provider_id=provider.provider_id, items=list(call() or []))
    except Exception as exc:
        logger.info("%s failed, treating as empty: %s", provider.provider_id, exc)
        return ProviderOutcome(provider_id=provider.provider_id, error=exc)


class ProviderFallbackChain:
    """First non-empty artwork wins; trailers are accumulated from every provider."""

    def __init__(
        self,
        artwork_providers: Sequence[MetadataProvider],
        trailer_providers: Sequence[MetadataProvider],
    ) -> None:
        self._artwork_providers = list(artwork_providers)
        self._trailer_providers = list(trailer_providers)

    @classmethod
    def from_options(
        cls, providers: Mapping[str, MetadataProvider], options: ScrapeOptions
    ) -> ProviderFallbackChain:
        def _lookup(order: Sequence[str]) -> list[MetadataProvider]:
            missing = [provider_id for provider_id in order if provider_id not in providers]
            if missing:
                raise ValueError(f"Unknown provider id(s): {', '.join(missing)}")
            return [providers[provider_id] for provider_id in order]

        return cls(_lookup(options.artwork_provider_order), _lookup(options.trailer_provider_order))

    def collect_artwork(self, criteria: ScrapeCriteria) -> FallbackResult[ArtworkRef]:
        result: FallbackResult[ArtworkRef] = FallbackResult()
        for provider in self._artwork_providers:
            outcome = _attempt(provider, lambda: provider.fetch_artwork(criteria))
            result.outcomes.append(outcome)
            if outcome.items:
                result.items = outcome.items
                break
        return result

    def collect_trailers(self, criteria: ScrapeCriteria) -> FallbackResult[TrailerRef]:
        result: FallbackResult[TrailerRef] = FallbackResult()
        for provider in self._trailer_providers:
            outcome = _attempt(provider, lambda: provider.fetch_trailers(criteria))
            result.outcomes.append(outcome)
            result.items.extend(outcome.items)
        return result

"""Capability interface implemented by every metadata, artwork and trailer source."""
from __future__ import annotations

from abc import ABC, abstractmethod

from ..schemas import ArtworkRef, MetadataRecord, ScrapeCriteria, SearchCandidate, TrailerRef
from ..settings import ScrapeOptions


class ProviderError(RuntimeError):
    """Raised when a provider cannot produce a result."""


class ProviderParseError(ProviderError):
    """Raised when a fetched document does not have the expected structure."""

    def __init__(self, message: str, *, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class ProviderUnavailableError(ProviderError):
    """Raised when a provider is not configured for use."""


class MetadataProvider(ABC):
    """Uniform view over one external source.

    An empty list is a legitimate "nothing found" answer; failures are always
    raised as :class:`ProviderError` or :class:`~backend.scraper.fetch_cache.FetchError`.
    """

    provider_id: str = ""

    @property
    def enabled(self) -> bool:
        return True

    def is_valid_id(self, value: str | None) -> bool:
        """Whether ``value`` is a syntactically valid id for this provider."""

        return False

    @abstractmethod
    def search(
        self,
        query: str,
        *,
        language: str,
        country: str,
        year: int | None = None,
    ) -> list[SearchCandidate]:
        """Return candidates for a free-text query."""

    @abstractmethod
    def fetch_metadata(self, external_id: str, options: ScrapeOptions) -> MetadataRecord:
        """Return the primary detail record for ``external_id``."""

    def fetch_supplementary(self, external_id: str, options: ScrapeOptions) -> MetadataRecord:
        """Return fields from a secondary page; providers without one return an empty record."""

        return MetadataRecord()

    def fetch_artwork(self, criteria: ScrapeCriteria) -> list[ArtworkRef]:
        return []

    def fetch_trailers(self, criteria: ScrapeCriteria) -> list[TrailerRef]:
        return []

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.provider_id}>"

"""Pydantic models shared by the scraper components."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

CastType = Literal["director", "writer", "producer", "actor"]
ItemStatus = Literal["pending", "scraped", "ambiguous", "no_match", "failed", "cancelled"]

MERGEABLE_FIELDS = (
    "title",
    "original_title",
    "tagline",
    "plot",
    "release_date",
    "year",
    "runtime",
    "rating",
    "vote_count",
    "countries",
    "languages",
    "certifications",
    "genres",
    "cast",
    "production_companies",
    "collection_id",
    "collection_name",
)


class CastMember(BaseModel):
    """A person credited on a title."""

    type: CastType
    name: str
    part: str | None = Field(default=None, description="Character name or job detail.")
    image_url: str | None = None


class ArtworkRef(BaseModel):
    """Reference to a remote image; nothing is downloaded."""

    provider_id: str
    type: Literal["poster", "backdrop"] = "poster"
    url: str
    language: str | None = None
    width: int | None = None
    height: int | None = None


class TrailerRef(BaseModel):
    """Reference to a remote trailer video."""

    provider_id: str
    name: str
    url: str
    quality: str | None = None
    language: str | None = None
    site: str | None = None


class MetadataRecord(BaseModel):
    """Unified metadata for one title; every field is optional until populated."""

    ids: dict[str, str] = Field(default_factory=dict, description="Provider id to external id.")
    title: str | None = None
    original_title: str | None = None
    tagline: str | None = None
    plot: str | None = None
    release_date: str | None = None
    year: int | None = None
    runtime: int | None = Field(default=None, description="Runtime in minutes.")
    rating: float | None = None
    vote_count: int | None = None
    countries: list[str] = Field(default_factory=list)
    languages: list[str] = Field(default_factory=list)
    certifications: list[str] = Field(default_factory=list)
    genres: list[str] = Field(default_factory=list)
    cast: list[CastMember] = Field(default_factory=list)
    production_companies: list[str] = Field(default_factory=list)
    collection_id: str | None = None
    collection_name: str | None = None

    def is_blank(self, name: str) -> bool:
        value = getattr(self, name)
        if value is None:
            return True
        if isinstance(value, str):
            return not value.strip()
        if isinstance(value, list):
            return not value
        return False

    def fill_missing(self, other: MetadataRecord) -> None:
        """Copy fields from ``other`` only where this record is still blank."""

        for name in MERGEABLE_FIELDS:
            if self.is_blank(name) and not other.is_blank(name):
                setattr(self, name, _copy(getattr(other, name)))
        for provider_id, external_id in other.ids.items():
            self.ids.setdefault(provider_id, external_id)


def _copy(value: Any) -> Any:
    if isinstance(value, list):
        return list(value)
    return value


class SearchCandidate(BaseModel):
    """A search result proposing an identity for a queried title."""

    provider_id: str
    external_id: str
    title: str
    year: int | None = None
    score: float | None = Field(default=None, ge=0, le=1)
    localized_title: str | None = None
    poster_url: str | None = None
    metadata: MetadataRecord | None = Field(
        default=None, description="Full record when the provider already resolved it during search."
    )


class ScrapeCriteria(BaseModel):
    """Lookup keys handed to artwork and trailer providers."""

    imdb_id: str | None = None
    tmdb_id: str | None = None
    title: str | None = None
    year: int | None = None
    language: str = "en"
    country: str = "US"

    @classmethod
    def from_record(cls, record: MetadataRecord, *, language: str, country: str) -> ScrapeCriteria:
        return cls(
            imdb_id=record.ids.get("imdb"),
            tmdb_id=record.ids.get("tmdb"),
            title=record.title,
            year=record.year,
            language=language,
            country=country,
        )


class WorkItem(BaseModel):
    """One media entity queued for resolution within a batch."""

    name: str
    external_id: str | None = Field(default=None, description="Optional provider id hint.")
    year: int | None = Field(default=None, description="Optional release year hint.")
    metadata: MetadataRecord | None = None
    artwork: list[ArtworkRef] = Field(default_factory=list)
    trailers: list[TrailerRef] = Field(default_factory=list)
    status: ItemStatus = "pending"
    error: str | None = None


class ScrapeRunModel(BaseModel):
    """Represents one tracked scrape batch."""

    id: str
    status: Literal["queued", "running", "completed", "failed", "cancelled"]
    progress: float = Field(ge=0, le=1)
    total: int = 0
    scraped: int = 0
    failed: int = 0
    skipped: int = 0
    options: dict[str, Any] | None = None
    created_at: datetime
    updated_at: datetime
    started_at: datetime | None = None
    finished_at: datetime | None = None
    error_message: str | None = None
    duration_seconds: float | None = None

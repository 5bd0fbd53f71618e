"""Runtime configuration for the scraper."""
from __future__ import annotations

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ScrapeOptions(BaseModel):
    """Caller-supplied options that shape one scrape batch."""

    scrape_foreign_language: bool = Field(
        default=False,
        description="Overwrite title, tagline and plot with the enrichment provider's localized text.",
    )
    scrape_collection_info: bool = Field(
        default=False, description="Fetch collection (movie set) linkage from the enrichment provider."
    )
    preferred_language: str = Field(default="en", description="ISO 639-1 language for localized content.")
    preferred_country: str = Field(
        default="US", description="ISO 3166-1 country used for certifications and release dates."
    )
    artwork_provider_order: list[str] = Field(
        default_factory=lambda: ["tmdb", "imdb"],
        description="Artwork providers tried in order until one returns images.",
    )
    trailer_provider_order: list[str] = Field(
        default_factory=lambda: ["tmdb", "imdb"],
        description="Trailer providers whose results are accumulated in order.",
    )
    concurrency: int = Field(default=3, ge=1, description="Number of scrape workers.")


class ScraperSettings(BaseSettings):
    """Environment-aware settings for the scraper."""

    database_url: str = Field(
        default="sqlite:///./data/reelscrape.db",
        description="Connection URL for the fetch cache and run tracking database.",
    )
    database_echo: bool = Field(default=False, description="Enable SQL echo for debugging queries.")
    metadata_provider: str = Field(
        default="imdb", description="Provider used for search and the primary detail pages."
    )
    enrichment_provider: str = Field(
        default="tmdb", description="Provider used for localized content and collection info."
    )
    tmdb_api_key: str | None = Field(
        default=None, description="TMDB API key; the TMDB provider is disabled without it."
    )
    tmdb_api_url: str = Field(default="https://api.themoviedb.org/3")
    tmdb_image_url: str = Field(default="https://image.tmdb.org/t/p/original")
    imdb_base_url: str = Field(default="https://www.imdb.com")
    user_agent: str = Field(
        default=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) "
            "Gecko/20100101 Firefox/121.0"
        ),
        description="User-Agent header sent with every fetch.",
    )
    fetch_timeout_seconds: float = Field(
        default=20.0, gt=0, description="Per-request timeout so a stuck provider cannot stall a worker."
    )
    cache_max_age_seconds: float | None = Field(
        default=None, description="Re-fetch cached bodies older than this; None keeps entries forever."
    )
    scrape_foreign_language: bool = Field(default=False)
    scrape_collection_info: bool = Field(default=False)
    preferred_language: str = Field(default="en")
    preferred_country: str = Field(default="US")
    artwork_provider_order: list[str] = Field(default_factory=lambda: ["tmdb", "imdb"])
    trailer_provider_order: list[str] = Field(default_factory=lambda: ["tmdb", "imdb"])
    concurrency: int = Field(default=3, ge=1)

    model_config = SettingsConfigDict(
        env_prefix="REELSCRAPE_",
        env_file=".env",
        env_file_encoding="utf-8",
    )

    def scrape_options(self, **overrides: object) -> ScrapeOptions:
        """Build batch options from the configured defaults."""

        payload = {name: getattr(self, name) for name in ScrapeOptions.model_fields}
        payload.update({key: value for key, value in overrides.items() if value is not None})
        return ScrapeOptions.model_validate(payload)

"""
TMDB provider for localized metadata, collection info, artwork and trailers.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from ..fetch_cache import FetchCache
from ..schemas import (
    ArtworkRef,
    CastMember,
    MetadataRecord,
    ScrapeCriteria,
    SearchCandidate,
    TrailerRef,
)
from ..settings import ScrapeOptions
from .base import MetadataProvider, ProviderParseError, ProviderUnavailableError

logger = logging.getLogger(__name__)

CREW_JOBS = {
    "Director": "director",
    "Screenplay": "writer",
    "Writer": "writer",
    "Producer": "producer",
}


class TmdbProvider(MetadataProvider):
    TMDB_ENDPOINT = "https://api.themoviedb.org/3"
    IMAGE_ENDPOINT = "https://image.tmdb.org/t/p/original"

    provider_id = "tmdb"

    def __init__(
        self,
        cache: FetchCache,
        api_key: Optional[str] = None,
        *,
        api_url: str = TMDB_ENDPOINT,
        image_url: str = IMAGE_ENDPOINT,
    ) -> None:
        self._cache = cache
        self.api_key = api_key
        self.api_url = api_url.rstrip("/")
        self.image_url = image_url.rstrip("/")

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def is_valid_id(self, value: str | None) -> bool:
        return bool(value) and str(value).isdigit() and int(str(value)) > 0

    def search(
        self,
        query: str,
        *,
        language: str,
        country: str,
        year: int | None = None,
    ) -> list[SearchCandidate]:
        if not query:
            return []
        data = self._get(
            "/search/movie",
            query=query,
            include_adult="false",
            language=_tmdb_language(language, country),
            region=country.upper(),
        )
        candidates: list[SearchCandidate] = []
        for entry in data.get("results") or []:
            if not entry.get("id"):
                continue
            title = entry.get("title") or entry.get("original_title") or ""
            original = entry.get("original_title")
            candidates.append(
                SearchCandidate(
                    provider_id=self.provider_id,
                    external_id=str(entry["id"]),
                    title=title,
                    year=self._extract_year(entry.get("release_date")) or None,
                    localized_title=original if original and original != title else None,
                    poster_url=self._build_image_url(entry.get("poster_path")),
                )
            )
        return candidates

    def fetch_metadata(self, external_id: str, options: ScrapeOptions) -> MetadataRecord:
        movie_id = self.resolve_movie_id(external_id)
        if movie_id is None:
            return MetadataRecord()

        data = self._get(
            f"/movie/{movie_id}",
            language=_tmdb_language(options.preferred_language, options.preferred_country),
            append_to_response="credits,release_dates",
        )
        md = MetadataRecord(ids={self.provider_id: movie_id})
        if data.get("imdb_id"):
            md.ids["imdb"] = data["imdb_id"]
        md.title = data.get("title") or None
        md.original_title = data.get("original_title") or None
        md.tagline = (data.get("tagline") or "").strip() or None
        md.plot = (data.get("overview") or "").strip() or None
        md.release_date = data.get("release_date") or None
        md.year = self._extract_year(md.release_date) or None
        md.runtime = data.get("runtime") or None
        md.rating = data.get("vote_average")
        md.vote_count = data.get("vote_count")
        md.countries = [c["iso_3166_1"] for c in data.get("production_countries") or [] if c.get("iso_3166_1")]
        md.languages = [lang["iso_639_1"] for lang in data.get("spoken_languages") or [] if lang.get("iso_639_1")]
        md.genres = [g["name"] for g in data.get("genres") or [] if g.get("name")]
        md.production_companies = [c["name"] for c in data.get("production_companies") or [] if c.get("name")]

        collection = data.get("belongs_to_collection") or {}
        if collection.get("id"):
            md.collection_id = str(collection["id"])
            md.collection_name = collection.get("name")

        certification = self._certification(data.get("release_dates") or {}, options.preferred_country)
        if certification:
            md.certifications = [f"{options.preferred_country.upper()}:{certification}"]

        md.cast = self._cast(data.get("credits") or {})
        return md

    def fetch_artwork(self, criteria: ScrapeCriteria) -> list[ArtworkRef]:
        movie_id = criteria.tmdb_id or self.resolve_movie_id(criteria.imdb_id)
        if not movie_id:
            return []
        data = self._get(
            f"/movie/{movie_id}/images",
            include_image_language=f"{criteria.language},null",
        )
        artwork: list[ArtworkRef] = []
        for key, art_type in (("posters", "poster"), ("backdrops", "backdrop")):
            for image in data.get(key) or []:
                url = self._build_image_url(image.get("file_path"))
                if not url:
                    continue
                artwork.append(
                    ArtworkRef(
                        provider_id=self.provider_id,
                        type=art_type,
                        url=url,
                        language=image.get("iso_639_1"),
                        width=image.get("width"),
                        height=image.get("height"),
                    )
                )
        return artwork

    def fetch_trailers(self, criteria: ScrapeCriteria) -> list[TrailerRef]:
        movie_id = criteria.tmdb_id or self.resolve_movie_id(criteria.imdb_id)
        if not movie_id:
            return []
        data = self._get(
            f"/movie/{movie_id}/videos",
            language=_tmdb_language(criteria.language, criteria.country),
        )
        trailers: list[TrailerRef] = []
        for video in data.get("results") or []:
            if video.get("type") != "Trailer" or video.get("site") != "YouTube" or not video.get("key"):
                continue
            trailers.append(
                TrailerRef(
                    provider_id=self.provider_id,
                    name=video.get("name") or "Trailer",
                    url=f"https://www.youtube.com/watch?v={video['key']}",
                    quality=f"{video['size']}p" if video.get("size") else None,
                    language=video.get("iso_639_1"),
                    site="youtube",
                )
            )
        return trailers

    def resolve_movie_id(self, external_id: Optional[str]) -> Optional[str]:
        """Translate an IMDb id into a TMDB movie id; TMDB ids pass through."""

        if not external_id:
            return None
        if self.is_valid_id(external_id):
            return str(external_id)
        if not external_id.startswith("tt"):
            return None
        data = self._get(f"/find/{external_id}", external_source="imdb_id")
        results = data.get("movie_results") or []
        if not results or not results[0].get("id"):
            logger.debug("TMDB has no movie for %s", external_id)
            return None
        return str(results[0]["id"])

    def _get(self, path: str, **params: str) -> Dict[str, Any]:
        if not self.enabled:
            raise ProviderUnavailableError("TMDB API key is not configured")
        query = urlencode({"api_key": self.api_key, **params})
        url = f"{self.api_url}{path}?{query}"
        body = self._cache.get_or_fetch(url, headers={"Accept": "application/json"})
        try:
            data = json.loads(body)
        except ValueError as exc:
            self._cache.invalidate(url)
            raise ProviderParseError(f"TMDB returned invalid JSON for {path}", url=url) from exc
        if not isinstance(data, dict):
            self._cache.invalidate(url)
            raise ProviderParseError(f"TMDB response for {path} must be an object", url=url)
        return data

    def _cast(self, credits: Dict[str, Any]) -> List[CastMember]:
        members: List[CastMember] = []
        for crew in credits.get("crew") or []:
            cast_type = CREW_JOBS.get(crew.get("job", ""))
            if cast_type and crew.get("name"):
                members.append(
                    CastMember(
                        type=cast_type,
                        name=crew["name"],
                        part=crew.get("job"),
                        image_url=self._build_image_url(crew.get("profile_path")),
                    )
                )
        for actor in credits.get("cast") or []:
            if actor.get("name"):
                members.append(
                    CastMember(
                        type="actor",
                        name=actor["name"],
                        part=actor.get("character") or None,
                        image_url=self._build_image_url(actor.get("profile_path")),
                    )
                )
        return members

    @staticmethod
    def _certification(release_dates: Dict[str, Any], country: str) -> Optional[str]:
        for entry in release_dates.get("results") or []:
            if (entry.get("iso_3166_1") or "").upper() != country.upper():
                continue
            for release in entry.get("release_dates") or []:
                if release.get("certification"):
                    return release["certification"]
        return None

    def _build_image_url(self, path: Optional[str]) -> Optional[str]:
        if not path:
            return None
        return f"{self.image_url}{path}"

    def _extract_year(self, date_str: Optional[str]) -> int:
        if not date_str:
            return 0
        try:
            return int(date_str.split("-")[0])
        except ValueError:
            return 0


def _tmdb_language(language: str, country: str) -> str:
    if language and country:
        return f"{language.lower()}-{country.upper()}"
    return language or "en"

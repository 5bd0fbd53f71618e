"""
IMDb metadata provider built on the public title, plot summary and find pages.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Iterable, Optional
from urllib.parse import quote_plus

from bs4 import BeautifulSoup, Tag

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
from .base import MetadataProvider, ProviderParseError

logger = logging.getLogger(__name__)

IMDB_ID_RE = re.compile(r"^tt\d{7,8}$")
TITLE_HREF_RE = re.compile(r"/title/(tt\d{7,8})/")
YEAR_RE = re.compile(r"\b(18\d{2}|19\d{2}|20\d{2})\b")
UNWANTED_TYPES = frozenset({"TV Series", "TV Episode", "TV Mini Series", "Short", "Video Game"})
UNWANTED_RESULT_RE = re.compile(r"\((TV Series|TV Episode|TV Mini Series|Short|Video Game)\)")
DURATION_RE = re.compile(r"^PT(?:(\d+)H)?(?:(\d+)M)?")
COUNTRY_HREF_RE = re.compile(r"country_of_origin=([a-zA-Z]{2})")
LANGUAGE_HREF_RE = re.compile(r"primary_language=([a-zA-Z]{2,3})")
MAX_SEARCH_RESULTS = 40


def clean_string(value: Optional[str]) -> str:
    """Replace non-breaking spaces and trim."""

    if not value:
        return ""
    return value.replace("\xa0", " ").strip()


def resize_image_url(url: str) -> str:
    """Ask IMDb's image CDN for a 400px rendition without cropping."""

    url = re.sub(r"SX[0-9]{2,4}_", "SX400_", url)
    url = re.sub(r"SY[0-9]{2,4}_", "SY400_", url)
    return re.sub(r"CR[0-9]{1,3},[0-9]{1,3},[0-9]{1,3},[0-9]{1,3}_", "", url)


def accept_language(language: str, country: str) -> str:
    """Build an Accept-Language header preferring ``language``-``country``, falling back to English."""

    ordered: list[str] = []
    if language and country:
        ordered.append(f"{language}-{country}".lower())
    if language:
        ordered.append(language.lower())
    for fallback in ("en-us", "en"):
        if fallback not in ordered:
            ordered.append(fallback)

    parts: list[str] = []
    qualifier = 1.0
    for entry in ordered:
        parts.append(entry if qualifier >= 1 else f"{entry};q={qualifier:.1f}")
        qualifier -= 0.1
    return ",".join(parts)


class ImdbProvider(MetadataProvider):
    provider_id = "imdb"

    def __init__(self, cache: FetchCache, *, base_url: str = "https://www.imdb.com") -> None:
        self._cache = cache
        self.base_url = base_url.rstrip("/")

    def is_valid_id(self, value: str | None) -> bool:
        return bool(value) and bool(IMDB_ID_RE.match(value or ""))

    # ------------------------------------------------------------------ #
    # Search
    # ------------------------------------------------------------------ #

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
        url = f"{self.base_url}/find/?q={quote_plus(query)}&s=tt&ttype=ft"
        soup = self._soup(url, language, country)

        redirected = self._canonical_title_id(soup)
        if redirected:
            data = self._json_ld(soup)
            if data and data.get("name"):
                return [
                    SearchCandidate(
                        provider_id=self.provider_id,
                        external_id=redirected,
                        title=clean_string(str(data["name"])),
                        year=_year_from_date(data.get("datePublished")),
                        score=1.0,
                        poster_url=_image_url(data.get("image")),
                    )
                ]

        results: list[SearchCandidate] = []
        for imdb_id, anchor in self._result_anchors(soup):
            container = anchor.find_parent(["li", "tr"]) or anchor.parent
            text = container.get_text(" ", strip=True) if container else ""
            if _is_unwanted(container, text):
                continue

            title = clean_string(anchor.get_text(" ", strip=True))
            localized = ""
            italic = container.find("i") if isinstance(container, Tag) else None
            if italic is not None:
                localized = clean_string(italic.get_text(strip=True).replace('"', ""))
            if localized and language.lower() != "en":
                title, localized = localized, title

            year_match = YEAR_RE.search(text)
            poster = ""
            image = container.find("img") if isinstance(container, Tag) else None
            if image is not None and image.get("src"):
                poster = resize_image_url(str(image["src"]))

            results.append(
                SearchCandidate(
                    provider_id=self.provider_id,
                    external_id=imdb_id,
                    title=title,
                    year=int(year_match.group(1)) if year_match else None,
                    localized_title=localized or None,
                    poster_url=poster or None,
                )
            )
            if len(results) >= MAX_SEARCH_RESULTS:
                break
        logger.debug("imdb search %r returned %d results", query, len(results))
        return results

    def _canonical_title_id(self, soup: BeautifulSoup) -> str | None:
        for link in soup.find_all("link", rel="canonical"):
            match = TITLE_HREF_RE.search(str(link.get("href", "")))
            if match:
                return match.group(1)
        return None

    def _result_anchors(self, soup: BeautifulSoup) -> Iterable[tuple[str, Tag]]:
        seen: set[str] = set()
        for anchor in soup.find_all("a", href=TITLE_HREF_RE):
            match = TITLE_HREF_RE.search(str(anchor["href"]))
            if not match or match.group(1) in seen:
                continue
            # poster links carry no text; the title link for the same id follows
            if not anchor.get_text(strip=True):
                continue
            seen.add(match.group(1))
            yield match.group(1), anchor

    # ------------------------------------------------------------------ #
    # Detail pages
    # ------------------------------------------------------------------ #

    def title_url(self, imdb_id: str) -> str:
        return f"{self.base_url}/title/{imdb_id}/"

    def plot_url(self, imdb_id: str) -> str:
        return f"{self.base_url}/title/{imdb_id}/plotsummary/"

    def fetch_metadata(self, external_id: str, options: ScrapeOptions) -> MetadataRecord:
        if not self.is_valid_id(external_id):
            return MetadataRecord()
        url = self.title_url(external_id)
        soup = self._soup(url, options.preferred_language, options.preferred_country)
        data = self._json_ld(soup)
        if data is None:
            self._cache.invalidate(url)
            raise ProviderParseError(f"No structured data on {url}", url=url)
        try:
            return self._parse_title_page(soup, data, external_id, options)
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            self._cache.invalidate(url)
            raise ProviderParseError(f"Unexpected title page layout on {url}: {exc}", url=url) from exc

    def fetch_supplementary(self, external_id: str, options: ScrapeOptions) -> MetadataRecord:
        if not self.is_valid_id(external_id):
            return MetadataRecord()
        url = self.plot_url(external_id)
        soup = self._soup(url, options.preferred_language, options.preferred_country)
        md = MetadataRecord(ids={self.provider_id: external_id})

        summaries = soup.select('[data-testid="sub-section-summaries"] .ipc-html-content-inner-div')
        if not summaries:
            summaries = soup.select(".ipc-html-content-inner-div")
        if not summaries:
            self._cache.invalidate(url)
            raise ProviderParseError(f"No plot summary on {url}", url=url)
        md.plot = clean_string(summaries[0].get_text(" ", strip=True))
        return md

    def _parse_title_page(
        self,
        soup: BeautifulSoup,
        data: dict[str, Any],
        imdb_id: str,
        options: ScrapeOptions,
    ) -> MetadataRecord:
        md = MetadataRecord(ids={self.provider_id: imdb_id})
        md.title = clean_string(data.get("name")) or None
        md.original_title = clean_string(data.get("alternateName")) or None
        md.release_date = data.get("datePublished") or None
        md.year = _year_from_date(md.release_date)

        rating = data.get("aggregateRating")
        if not isinstance(rating, dict):
            rating = {}
        if rating.get("ratingValue") is not None:
            md.rating = float(rating["ratingValue"])
        if rating.get("ratingCount") is not None:
            md.vote_count = int(rating["ratingCount"])

        md.runtime = _duration_minutes(data.get("duration"))
        md.genres = _as_list(data.get("genre"))
        if data.get("contentRating"):
            md.certifications = [f"{options.preferred_country.upper()}:{data['contentRating']}"]

        tagline = soup.select_one(
            '[data-testid="storyline-taglines"] .ipc-metadata-list-item__list-content-item'
        )
        if tagline is not None:
            md.tagline = clean_string(tagline.get_text(" ", strip=True)) or None

        md.countries = _codes(soup, '[data-testid="title-details-origin"] a', COUNTRY_HREF_RE, upper=True)
        md.languages = _codes(soup, '[data-testid="title-details-languages"] a', LANGUAGE_HREF_RE)
        md.production_companies = [
            clean_string(anchor.get_text(" ", strip=True))
            for anchor in soup.select('[data-testid="title-details-companies"] a[href*="/company/"]')
            if anchor.get_text(strip=True)
        ]

        for person in _persons(data.get("director")):
            md.cast.append(CastMember(type="director", name=person))
        for person in _persons(data.get("creator")):
            md.cast.append(CastMember(type="writer", name=person))
        md.cast.extend(self._actors(soup, data))
        return md

    def _actors(self, soup: BeautifulSoup, data: dict[str, Any]) -> list[CastMember]:
        actors: list[CastMember] = []
        for item in soup.select('[data-testid="title-cast-item"]'):
            name_link = item.select_one('[data-testid="title-cast-item__actor"]')
            if name_link is None:
                continue
            part = item.select_one('[data-testid="cast-item-characters-link"]')
            image = item.find("img")
            actors.append(
                CastMember(
                    type="actor",
                    name=clean_string(name_link.get_text(" ", strip=True)),
                    part=clean_string(part.get_text(" ", strip=True)) if part is not None else None,
                    image_url=resize_image_url(str(image["src"])) if image is not None and image.get("src") else None,
                )
            )
        if actors:
            return actors
        return [CastMember(type="actor", name=name) for name in _persons(data.get("actor"))]

    # ------------------------------------------------------------------ #
    # Artwork and trailers
    # ------------------------------------------------------------------ #

    def fetch_artwork(self, criteria: ScrapeCriteria) -> list[ArtworkRef]:
        data = self._title_data(criteria)
        if not data:
            return []
        poster = _image_url(data.get("image"))
        if not poster:
            return []
        return [ArtworkRef(provider_id=self.provider_id, type="poster", url=poster)]

    def fetch_trailers(self, criteria: ScrapeCriteria) -> list[TrailerRef]:
        data = self._title_data(criteria)
        trailer = (data or {}).get("trailer")
        if not isinstance(trailer, dict):
            return []
        url = trailer.get("embedUrl") or trailer.get("url")
        if not url:
            return []
        return [
            TrailerRef(
                provider_id=self.provider_id,
                name=clean_string(trailer.get("name")) or "Trailer",
                url=str(url),
                site="imdb",
            )
        ]

    def _title_data(self, criteria: ScrapeCriteria) -> dict[str, Any] | None:
        if not self.is_valid_id(criteria.imdb_id):
            return None
        url = self.title_url(criteria.imdb_id or "")
        data = self._json_ld(self._soup(url, criteria.language, criteria.country))
        if data is None:
            self._cache.invalidate(url)
            raise ProviderParseError(f"No structured data on {url}", url=url)
        return data

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _soup(self, url: str, language: str, country: str) -> BeautifulSoup:
        body = self._cache.get_or_fetch(url, headers={"Accept-Language": accept_language(language, country)})
        return BeautifulSoup(body, "html.parser")

    @staticmethod
    def _json_ld(soup: BeautifulSoup) -> dict[str, Any] | None:
        script = soup.find("script", type="application/ld+json")
        if script is None or not script.string:
            return None
        try:
            data = json.loads(script.string)
        except ValueError:
            return None
        return data if isinstance(data, dict) else None


def _year_from_date(value: Any) -> int | None:
    if not value:
        return None
    match = YEAR_RE.match(str(value))
    return int(match.group(1)) if match else None


def _duration_minutes(value: Any) -> int | None:
    if not value:
        return None
    match = DURATION_RE.match(str(value))
    if not match or not any(match.groups()):
        return None
    hours, minutes = match.groups()
    return int(hours or 0) * 60 + int(minutes or 0)


def _as_list(value: Any) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return [str(entry) for entry in value if entry]


def _persons(value: Any) -> list[str]:
    if not value:
        return []
    entries = value if isinstance(value, list) else [value]
    names: list[str] = []
    for entry in entries:
        if isinstance(entry, dict) and entry.get("@type") == "Person" and entry.get("name"):
            names.append(clean_string(entry["name"]))
    return names


def _image_url(value: Any) -> str | None:
    if isinstance(value, dict):
        value = value.get("url")
    return str(value) if value else None


def _codes(soup: BeautifulSoup, selector: str, pattern: re.Pattern[str], *, upper: bool = False) -> list[str]:
    codes: list[str] = []
    for anchor in soup.select(selector):
        match = pattern.search(str(anchor.get("href", "")))
        if match:
            code = match.group(1).upper() if upper else match.group(1).lower()
            if code not in codes:
                codes.append(code)
    return codes


def _is_unwanted(container: Any, text: str) -> bool:
    """Drop series, episodes, shorts and games; the find page labels them inline or in list items."""

    if UNWANTED_RESULT_RE.search(text):
        return True
    if not isinstance(container, Tag):
        return False
    labels = {element.get_text(strip=True) for element in container.find_all(["span", "li"])}
    return bool(labels & UNWANTED_TYPES)

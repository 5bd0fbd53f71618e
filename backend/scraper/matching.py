"""Candidate scoring and match resolution."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Literal, Optional

from rapidfuzz.distance import Levenshtein

from .providers.base import MetadataProvider
from .schemas import SearchCandidate
from .settings import ScrapeOptions

logger = logging.getLogger(__name__)

PERFECT_SCORE = 1.0
MISMATCH_PENALTY = 0.01
NON_SEARCH_CHARS_RE = re.compile(r"[\[\](){}/\\!?*:;\"<>|~^_+,]")
PLACEHOLDER_POSTER_MARKERS = ("nopicture",)

MatchStatus = Literal["matched", "ambiguous", "no_match"]


def clean_search_term(value: str) -> str:
    """Strip characters that confuse provider search and collapse whitespace."""

    cleaned = NON_SEARCH_CHARS_RE.sub(" ", value or "")
    return re.sub(r"\s+", " ", cleaned).strip()


def calculate_score(query: str, title: str) -> float:
    """Similarity in [0, 1] as 1 - normalized edit distance of the cleaned strings."""

    left = clean_search_term(query).lower()
    right = clean_search_term(title).lower()
    if not left or not right:
        return 0.0
    return float(Levenshtein.normalized_similarity(left, right))


def score_candidate(
    query: str,
    candidate: SearchCandidate,
    *,
    year_hint: Optional[int] = None,
    id_hint: Optional[str] = None,
) -> float:
    if id_hint and candidate.external_id == id_hint:
        return PERFECT_SCORE

    score = calculate_score(query, candidate.title)
    poster = candidate.poster_url or ""
    if not poster or any(marker in poster for marker in PLACEHOLDER_POSTER_MARKERS):
        logger.debug("no poster for %s - downgrading score by %.2f", candidate.external_id, MISMATCH_PENALTY)
        score -= MISMATCH_PENALTY
    if year_hint and candidate.year != year_hint:
        logger.debug("year of %s does not match %s - downgrading score", candidate.external_id, year_hint)
        score -= MISMATCH_PENALTY
    return min(max(score, 0.0), PERFECT_SCORE)


@dataclass(slots=True)
class MatchOutcome:
    """Result of resolving one query against a provider."""

    status: MatchStatus
    candidate: SearchCandidate | None = None
    candidates_seen: int = 0


class MatchResolver:
    """Picks the best candidate from a provider search, abstaining on ties at a perfect score."""

    def __init__(self, provider: MetadataProvider, options: ScrapeOptions) -> None:
        self._provider = provider
        self._options = options

    @property
    def provider(self) -> MetadataProvider:
        return self._provider

    def resolve(
        self,
        name_query: str,
        external_id_hint: Optional[str] = None,
        country_hint: Optional[str] = None,
        *,
        year_hint: Optional[int] = None,
    ) -> SearchCandidate | None:
        return self.match(name_query, external_id_hint, country_hint, year_hint=year_hint).candidate

    def match(
        self,
        name_query: str,
        external_id_hint: Optional[str] = None,
        country_hint: Optional[str] = None,
        *,
        year_hint: Optional[int] = None,
    ) -> MatchOutcome:
        if self._provider.is_valid_id(external_id_hint):
            candidate = SearchCandidate(
                provider_id=self._provider.provider_id,
                external_id=str(external_id_hint),
                title=name_query,
                year=year_hint,
                score=PERFECT_SCORE,
            )
            return MatchOutcome(status="matched", candidate=candidate, candidates_seen=1)

        query = clean_search_term(name_query)
        if not query:
            return MatchOutcome(status="no_match")

        results = self._provider.search(
            query,
            language=self._options.preferred_language,
            country=country_hint or self._options.preferred_country,
            year=year_hint,
        )
        for candidate in results:
            if candidate.score is None:
                candidate.score = score_candidate(
                    query, candidate, year_hint=year_hint, id_hint=external_id_hint
                )
        ranked = rank_candidates(results)
        if not ranked:
            return MatchOutcome(status="no_match")

        if is_ambiguous(ranked):
            logger.info(
                "%r is ambiguous: %s and %s both match perfectly",
                name_query,
                ranked[0].external_id,
                ranked[1].external_id,
            )
            return MatchOutcome(status="ambiguous", candidates_seen=len(ranked))
        return MatchOutcome(status="matched", candidate=ranked[0], candidates_seen=len(ranked))


def rank_candidates(candidates: list[SearchCandidate]) -> list[SearchCandidate]:
    """Sort by descending score; ties keep provider order."""

    return sorted(candidates, key=lambda candidate: candidate.score or 0.0, reverse=True)


def is_ambiguous(ranked: list[SearchCandidate]) -> bool:
    """Two perfect scores at the top mean the title is not unique."""

    if len(ranked) < 2:
        return False
    return (ranked[0].score or 0.0) >= PERFECT_SCORE and (ranked[1].score or 0.0) >= PERFECT_SCORE

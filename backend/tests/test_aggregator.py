"""Tests for metadata aggregation and merge precedence."""
from __future__ import annotations

import sys
import threading
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from backend.scraper.aggregator import AggregationError, MetadataAggregator, merge_records  # noqa: E402
from backend.scraper.matching import MatchResolver  # noqa: E402
from backend.scraper.providers.base import MetadataProvider, ProviderError  # noqa: E402
from backend.scraper.schemas import MetadataRecord, SearchCandidate  # noqa: E402
from backend.scraper.settings import ScrapeOptions  # noqa: E402


class StubDetailProvider(MetadataProvider):
    """Returns canned records for the primary, supplementary and search calls."""

    def __init__(
        self,
        provider_id: str,
        primary: MetadataRecord | Exception,
        supplementary: MetadataRecord | Exception | None = None,
        candidates: list[SearchCandidate] | None = None,
    ) -> None:
        self.provider_id = provider_id
        self.primary = primary
        self.supplementary = supplementary
        self.candidates = candidates or []
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def search(self, query, *, language, country, year=None):
        return list(self.candidates)

    def fetch_metadata(self, external_id, options):
        with self._lock:
            self.calls.append(f"metadata:{external_id}")
        if isinstance(self.primary, Exception):
            raise self.primary
        return self.primary.model_copy(deep=True)

    def fetch_supplementary(self, external_id, options):
        with self._lock:
            self.calls.append(f"supplementary:{external_id}")
        if isinstance(self.supplementary, Exception):
            raise self.supplementary
        if self.supplementary is None:
            return MetadataRecord()
        return self.supplementary.model_copy(deep=True)


def _candidate(external_id: str = "tt1217209", **extra) -> SearchCandidate:
    return SearchCandidate(provider_id="primary", external_id=external_id, title="Brave", score=1.0, **extra)


def test_brave_end_to_end() -> None:
    """Resolver picks the perfect match and the supplementary plot fills the blank."""

    provider = StubDetailProvider(
        "primary",
        MetadataRecord(ids={"primary": "tt1217209"}, title="Brave", plot=""),
        MetadataRecord(plot="A princess..."),
        candidates=[
            SearchCandidate(provider_id="primary", external_id="tt1217209", title="Brave", year=2012, score=1.0),
            SearchCandidate(provider_id="primary", external_id="tt0808399", title="Brave Story", year=2006, score=0.6),
        ],
    )
    options = ScrapeOptions()

    candidate = MatchResolver(provider, options).resolve("Brave", year_hint=2012)
    assert candidate is not None
    assert candidate.external_id == "tt1217209"

    record = MetadataAggregator(provider).aggregate(candidate, options)

    assert record.plot == "A princess..."
    assert record.original_title == "Brave"
    assert record.title == "Brave"


def test_supplementary_never_overwrites_primary() -> None:
    primary = MetadataRecord(title="Heat", plot="Primary plot", genres=["Crime"])
    supplementary = MetadataRecord(title="Other", plot="Other plot", genres=["Drama"], tagline="A Los Angeles crime saga")

    record = merge_records(primary, supplementary, None, ScrapeOptions())

    assert record.title == "Heat"
    assert record.plot == "Primary plot"
    assert record.genres == ["Crime"]
    assert record.tagline == "A Los Angeles crime saga"


def test_merge_does_not_mutate_inputs() -> None:
    primary = MetadataRecord(title="Heat")
    supplementary = MetadataRecord(plot="Plot")

    merge_records(primary, supplementary, None, ScrapeOptions())

    assert primary.plot is None
    assert primary.original_title is None


@pytest.mark.parametrize("with_enrichment", [False, True])
def test_merge_is_idempotent(with_enrichment: bool) -> None:
    """Merging the same fetch results twice yields identical records."""

    primary = MetadataRecord(ids={"imdb": "tt1217209"}, title="Brave", plot="", genres=["Animation"])
    supplementary = MetadataRecord(plot="A princess...", tagline="Change your fate")
    enrichment = (
        MetadataRecord(ids={"tmdb": "62177"}, title="Rebelle", plot="Intrigue", collection_id="1", collection_name="Pixar")
        if with_enrichment
        else None
    )
    options = ScrapeOptions(scrape_foreign_language=True, scrape_collection_info=True)

    first = merge_records(primary, supplementary, enrichment, options)
    second = merge_records(primary, supplementary, enrichment, options)

    assert first == second
    assert first is not second
    assert first.original_title == first.title


def test_localized_enrichment_overrides_text_fields() -> None:
    primary = MetadataRecord(ids={"imdb": "tt1217209"}, title="Brave", plot="English plot", tagline="Change your fate")
    enrichment = MetadataRecord(
        ids={"tmdb": "62177"},
        title="Rebelle",
        original_title="Brave",
        plot="Intrigue française",
        tagline=None,
        collection_id="1",
        collection_name="Pixar",
    )
    options = ScrapeOptions(scrape_foreign_language=True, preferred_language="fr")

    record = merge_records(primary, None, enrichment, options)

    assert record.title == "Rebelle"
    assert record.plot == "Intrigue française"
    assert record.tagline is None
    assert record.original_title == "Brave"
    assert record.ids == {"imdb": "tt1217209", "tmdb": "62177"}
    assert record.collection_name == "Pixar"


def test_enrichment_with_blank_plot_is_ignored_for_localization() -> None:
    primary = MetadataRecord(title="Brave", plot="English plot")
    enrichment = MetadataRecord(ids={"tmdb": "62177"}, title="Rebelle", plot="  ")
    options = ScrapeOptions(scrape_foreign_language=True)

    record = merge_records(primary, None, enrichment, options)

    assert record.title == "Brave"
    assert record.plot == "English plot"
    assert "tmdb" not in record.ids


def test_collection_info_is_written_without_foreign_language() -> None:
    primary = MetadataRecord(title="Toy Story", plot="Toys")
    enrichment = MetadataRecord(title="Toy Story", plot="", collection_id="10194", collection_name="Toy Story Collection")
    options = ScrapeOptions(scrape_collection_info=True)

    record = merge_records(primary, None, enrichment, options)

    assert record.collection_id == "10194"
    assert record.collection_name == "Toy Story Collection"
    assert record.plot == "Toys"


def test_enrichment_unused_when_options_disabled() -> None:
    primary = MetadataRecord(title="Toy Story")
    enrichment = MetadataRecord(title="Toy Story FR", plot="Jouets", collection_id="10194")

    record = merge_records(primary, None, enrichment, ScrapeOptions())

    assert record.title == "Toy Story"
    assert record.collection_id is None


def test_original_title_kept_when_present() -> None:
    record = merge_records(MetadataRecord(title="Rebelle", original_title="Brave"), None, None, ScrapeOptions())

    assert record.original_title == "Brave"


def test_primary_failure_raises_aggregation_error() -> None:
    provider = StubDetailProvider("primary", ProviderError("page gone"), MetadataRecord(plot="Plot"))

    with pytest.raises(AggregationError):
        MetadataAggregator(provider).aggregate(_candidate(), ScrapeOptions())


def test_supplementary_failure_leaves_field_absent() -> None:
    provider = StubDetailProvider("primary", MetadataRecord(title="Brave"), ProviderError("plot page gone"))

    record = MetadataAggregator(provider).aggregate(_candidate(), ScrapeOptions())

    assert record.title == "Brave"
    assert record.plot is None


def test_enrichment_only_requested_when_options_need_it() -> None:
    provider = StubDetailProvider("primary", MetadataRecord(title="Brave"))
    enrichment = StubDetailProvider("tmdb", MetadataRecord(title="Rebelle", plot="Intrigue"))

    MetadataAggregator(provider, enrichment).aggregate(_candidate(), ScrapeOptions())
    assert enrichment.calls == []

    record = MetadataAggregator(provider, enrichment).aggregate(
        _candidate(), ScrapeOptions(scrape_foreign_language=True)
    )
    assert enrichment.calls == ["metadata:tt1217209"]
    assert record.title == "Rebelle"


def test_enrichment_failure_does_not_fail_item() -> None:
    provider = StubDetailProvider("primary", MetadataRecord(title="Brave", plot="Plot"))
    enrichment = StubDetailProvider("tmdb", ProviderError("api down"))

    record = MetadataAggregator(provider, enrichment).aggregate(
        _candidate(), ScrapeOptions(scrape_foreign_language=True, scrape_collection_info=True)
    )

    assert record.title == "Brave"
    assert record.collection_id is None


def test_candidate_metadata_is_reused() -> None:
    provider = StubDetailProvider("primary", MetadataRecord(title="Brave"))
    candidate = _candidate()
    aggregator = MetadataAggregator(provider)

    first = aggregator.aggregate(candidate, ScrapeOptions())
    second = aggregator.aggregate(candidate, ScrapeOptions())

    assert first is second
    assert provider.calls.count("metadata:tt1217209") == 1

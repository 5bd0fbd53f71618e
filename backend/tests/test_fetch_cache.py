"""Tests for the URL-keyed fetch cache."""
from __future__ import annotations

import sys
import threading
from collections import Counter
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator

import httpx
import pytest
from sqlmodel import Session

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from backend.scraper.db import create_engine_from_settings, init_database  # noqa: E402
from backend.scraper.fetch_cache import FetchCache, FetchError, normalize_url  # noqa: E402
from backend.scraper.models import FetchCacheRecord, as_utc  # noqa: E402
from backend.scraper.settings import ScraperSettings  # noqa: E402


class CountingHandler:
    """MockTransport handler that serves canned bodies and counts requests per path."""

    def __init__(self) -> None:
        self.hits: Counter[str] = Counter()
        self.headers: list[httpx.Headers] = []
        self._lock = threading.Lock()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.hits[request.url.path] += 1
            self.headers.append(request.headers)
            count = self.hits[request.url.path]
        if request.url.path == "/missing":
            return httpx.Response(404, text="not found")
        if request.url.path == "/broken":
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, text=f"{request.url.path} #{count}")


@pytest.fixture()
def engine(tmp_path: Path):
    settings = ScraperSettings(database_url=f"sqlite:///{tmp_path / 'cache.db'}")
    engine = create_engine_from_settings(settings)
    init_database(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def handler() -> CountingHandler:
    return CountingHandler()


@pytest.fixture()
def cache(engine, handler: CountingHandler) -> Iterator[FetchCache]:
    """Fetch cache whose network is a MockTransport."""

    with FetchCache(engine, user_agent="reelscrape-tests", transport=httpx.MockTransport(handler)) as cache:
        yield cache


def test_second_request_is_served_from_cache(cache: FetchCache, handler: CountingHandler) -> None:
    first = cache.get_or_fetch("https://example.test/title")
    second = cache.get_or_fetch("https://example.test/title")

    assert first == second == "/title #1"
    assert handler.hits["/title"] == 1
    assert handler.headers[0]["user-agent"] == "reelscrape-tests"


def test_invalidate_forces_refetch(cache: FetchCache, handler: CountingHandler) -> None:
    cache.get_or_fetch("https://example.test/title")

    assert cache.invalidate("https://example.test/title") is True
    assert cache.invalidate("https://example.test/title") is False
    assert cache.get_or_fetch("https://example.test/title") == "/title #2"
    assert handler.hits["/title"] == 2


def test_clear_removes_every_entry(cache: FetchCache, handler: CountingHandler) -> None:
    cache.get_or_fetch("https://example.test/a")
    cache.get_or_fetch("https://example.test/b")

    assert cache.clear() == 2
    assert cache.clear() == 0
    cache.get_or_fetch("https://example.test/a")
    assert handler.hits["/a"] == 2


def test_http_error_raises_and_is_not_cached(cache: FetchCache, engine, handler: CountingHandler) -> None:
    with pytest.raises(FetchError) as excinfo:
        cache.get_or_fetch("https://example.test/missing")

    assert excinfo.value.status_code == 404
    with Session(engine) as session:
        assert session.get(FetchCacheRecord, normalize_url("https://example.test/missing")) is None

    with pytest.raises(FetchError):
        cache.get_or_fetch("https://example.test/missing")
    assert handler.hits["/missing"] == 2


def test_transport_error_raises_fetch_error(cache: FetchCache) -> None:
    with pytest.raises(FetchError) as excinfo:
        cache.get_or_fetch("https://example.test/broken")

    assert excinfo.value.status_code is None
    assert excinfo.value.url == "https://example.test/broken"


def test_equivalent_urls_share_one_entry(cache: FetchCache, handler: CountingHandler) -> None:
    cache.get_or_fetch("https://Example.TEST/search?b=2&a=1&api_key=secret#top")
    cache.get_or_fetch("https://example.test/search?a=1&b=2&api_key=other")

    assert handler.hits["/search"] == 1


def test_normalize_url_drops_credentials_and_fragment() -> None:
    assert normalize_url("HTTPS://Api.Example.com/3/movie/1?language=fr-FR&api_key=abc#x") == (
        "https://api.example.com/3/movie/1?language=fr-FR"
    )
    assert normalize_url("https://example.com") == "https://example.com/"
    assert normalize_url("https://example.com/find?q=brave+2012&s=tt") == "https://example.com/find?q=brave+2012&s=tt"


def test_cache_survives_restart(engine, handler: CountingHandler) -> None:
    transport = httpx.MockTransport(handler)
    with FetchCache(engine, transport=transport) as first:
        first.get_or_fetch("https://example.test/title")
    with FetchCache(engine, transport=transport) as second:
        assert second.get_or_fetch("https://example.test/title") == "/title #1"

    assert handler.hits["/title"] == 1


def test_expired_entries_are_refetched(engine, handler: CountingHandler) -> None:
    with FetchCache(engine, max_age_seconds=60, transport=httpx.MockTransport(handler)) as cache:
        cache.get_or_fetch("https://example.test/title")
        with Session(engine) as session:
            record = session.get(FetchCacheRecord, normalize_url("https://example.test/title"))
            assert record is not None
            record.fetched_at = datetime.now(timezone.utc) - timedelta(minutes=5)
            session.add(record)
            session.commit()

        assert cache.get_or_fetch("https://example.test/title") == "/title #2"
        assert cache.get_or_fetch("https://example.test/title") == "/title #2"


def test_concurrent_access_is_safe(cache: FetchCache, handler: CountingHandler) -> None:
    """Workers fetching overlapping URLs never see errors or foreign bodies."""

    errors: list[Exception] = []
    results: list[tuple[str, str]] = []
    lock = threading.Lock()

    def _worker(offset: int) -> None:
        for index in range(20):
            path = f"/page{(index + offset) % 5}"
            try:
                body = cache.get_or_fetch(f"https://example.test{path}")
            except Exception as exc:  # pragma: no cover - surfaced by the assertion below
                with lock:
                    errors.append(exc)
                continue
            with lock:
                results.append((path, body))

    threads = [threading.Thread(target=_worker, args=(offset,)) for offset in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert len(results) == 80
    assert all(body.startswith(f"{path} #") for path, body in results)
    assert set(handler.hits) == {f"/page{index}" for index in range(5)}


def test_stored_fetch_time_is_utc(cache: FetchCache, engine) -> None:
    before = datetime.now(timezone.utc)
    cache.get_or_fetch("https://example.test/title")

    with Session(engine) as session:
        record = session.get(FetchCacheRecord, normalize_url("https://example.test/title"))
        assert record is not None
        fetched_at = as_utc(record.fetched_at)
    assert fetched_at is not None
    assert fetched_at.tzinfo is not None
    assert before - timedelta(seconds=5) <= fetched_at <= datetime.now(timezone.utc) + timedelta(seconds=5)

"""URL-keyed cache of fetched documents shared by every provider."""
from __future__ import annotations

import logging
from datetime import timedelta
from threading import Lock
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from .models import FetchCacheRecord, as_utc, utcnow

logger = logging.getLogger(__name__)

CREDENTIAL_PARAMS = frozenset({"api_key"})


class FetchError(RuntimeError):
    """Raised when a document cannot be retrieved from the network."""

    def __init__(self, message: str, *, url: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


def normalize_url(url: str) -> str:
    """Return the cache key for ``url``.

    Scheme and host are lowercased, the fragment is dropped, query parameters
    are sorted and credential parameters removed so keys never hold secrets.
    """

    parts = urlsplit(url.strip())
    query = sorted(
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key not in CREDENTIAL_PARAMS
    )
    return urlunsplit(
        (parts.scheme.lower(), parts.netloc.lower(), parts.path or "/", urlencode(query), "")
    )


class FetchCache:
    """Thread-safe get-or-fetch store backed by the scraper database."""

    def __init__(
        self,
        engine: Engine,
        *,
        timeout: float = 20.0,
        user_agent: str | None = None,
        max_age_seconds: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._engine = engine
        self._lock = Lock()
        self._max_age = timedelta(seconds=max_age_seconds) if max_age_seconds else None
        headers = {"User-Agent": user_agent} if user_agent else None
        self._client = httpx.Client(
            timeout=timeout, headers=headers, transport=transport, follow_redirects=True
        )

    def get_or_fetch(self, url: str, headers: dict[str, str] | None = None) -> str:
        """Return the cached body for ``url`` or fetch and store it."""

        key = normalize_url(url)
        cached = self._read(key)
        if cached is not None:
            logger.debug("cache hit for %s", key)
            return cached

        body, status_code = self._fetch(url, headers)
        with self._lock, Session(self._engine) as session:
            session.merge(
                FetchCacheRecord(
                    url=key,
                    body=body,
                    status_code=status_code,
                    fetched_at=utcnow(),
                )
            )
            session.commit()
        return body

    def invalidate(self, url: str) -> bool:
        """Forget ``url`` so the next request goes to the network again."""

        key = normalize_url(url)
        with self._lock, Session(self._engine) as session:
            record = session.get(FetchCacheRecord, key)
            if record is None:
                return False
            session.delete(record)
            session.commit()
        logger.debug("invalidated cache entry %s", key)
        return True

    def clear(self) -> int:
        """Drop every cached entry and return how many were removed."""

        with self._lock, Session(self._engine) as session:
            records = session.exec(select(FetchCacheRecord)).all()
            for record in records:
                session.delete(record)
            session.commit()
            return len(records)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> FetchCache:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _read(self, key: str) -> str | None:
        with Session(self._engine) as session:
            record = session.get(FetchCacheRecord, key)
            if record is None:
                return None
            if self._max_age and utcnow() - as_utc(record.fetched_at) > self._max_age:
                return None
            return record.body

    def _fetch(self, url: str, headers: dict[str, str] | None) -> tuple[str, int]:
        try:
            response = self._client.get(url, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise FetchError(
                f"{url} responded with HTTP {exc.response.status_code}",
                url=url,
                status_code=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise FetchError(f"Failed to fetch {url}: {exc}", url=url) from exc
        return response.text, response.status_code

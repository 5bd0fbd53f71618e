"""Persistent stores for the scraper."""

from .run_store import ScrapeRunStore

__all__ = ["ScrapeRunStore"]

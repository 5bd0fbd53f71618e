"""Metadata, artwork and trailer providers."""

from .base import (
    MetadataProvider,
    ProviderError,
    ProviderParseError,
    ProviderUnavailableError,
)
from .imdb import ImdbProvider
from .tmdb import TmdbProvider

__all__ = [
    "MetadataProvider",
    "ProviderError",
    "ProviderParseError",
    "ProviderUnavailableError",
    "ImdbProvider",
    "TmdbProvider",
]

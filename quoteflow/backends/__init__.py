"""Persistence backends for QuoteFlow."""

from .base import PositionsBackend
from .http import HttpPositionsBackend
from .memory import CatalogEntry, InMemoryBackend, InMemoryQuoteStore, StoredLock

__all__ = [
    "CatalogEntry",
    "HttpPositionsBackend",
    "InMemoryBackend",
    "InMemoryQuoteStore",
    "PositionsBackend",
    "StoredLock",
]

"""Change tracking module for QuoteFlow."""

from .store import ChangeOverlay, ChangeTrackingStore, FieldChange

__all__ = [
    "ChangeOverlay",
    "ChangeTrackingStore",
    "FieldChange",
]

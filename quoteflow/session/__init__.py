"""Tree editing session module for QuoteFlow."""

from .commands import (
    CommandStatus,
    FieldEditCommand,
    MoveCommand,
    PersistenceCommand,
)
from .editor import TreeEditingSession

__all__ = [
    "CommandStatus",
    "FieldEditCommand",
    "MoveCommand",
    "PersistenceCommand",
    "TreeEditingSession",
]

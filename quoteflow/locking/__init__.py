"""Edit lock module for QuoteFlow."""

from .models import LockInfo, LockState, LockStatus, UserRef
from .protocol import EditLock

__all__ = [
    "EditLock",
    "LockInfo",
    "LockState",
    "LockStatus",
    "UserRef",
]

"""Persistence contract of the editing core."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

from quoteflow.locking.models import LockStatus
from quoteflow.positions.models import PositionRecord, PositionType, PositionUpdate


class PositionsBackend(ABC):
    """Server operations the editing session depends on.

    Implementations raise ``EditLockError`` when the caller does not hold the
    edit lock a write requires, ``NotFoundError`` for unknown resources,
    ``ValidationError`` for rejected payloads and ``ServiceUnavailableError``
    for transport failures.
    """

    @abstractmethod
    async def fetch_positions(self, version_id: str) -> List[PositionRecord]:
        """Fetch all positions of a quote version with parent references."""

    @abstractmethod
    async def reorder_positions(self, version_id: str, updates: Sequence[PositionUpdate]) -> None:
        """Set the absolute order and parents of positions."""

    @abstractmethod
    async def save_positions(
        self, version_id: str, changes: Sequence[Dict[str, Any]]
    ) -> List[PositionRecord]:
        """Persist field-level changes; returns the updated records if known."""

    @abstractmethod
    async def get_lock(self, resource_type: str, resource_id: str) -> LockStatus:
        """Get the current lock state of a resource."""

    @abstractmethod
    async def acquire_lock(
        self, resource_type: str, resource_id: str, force: bool = False
    ) -> LockStatus:
        """Lock a resource for the current user."""

    @abstractmethod
    async def release_lock(self, resource_type: str, resource_id: str) -> None:
        """Release the current user's lock on a resource."""

    @abstractmethod
    async def add_position(
        self,
        version_id: str,
        kind: PositionType,
        source_id: str,
        parent_id: Optional[str],
        index: int,
    ) -> str:
        """Create a position from a catalog block or article; returns its ID."""

    async def close(self) -> None:
        """Release backend resources."""

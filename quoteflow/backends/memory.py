"""In-memory backend.

``InMemoryQuoteStore`` plays the server: it keeps the positions of every
quote version and the edit locks. ``InMemoryBackend`` is one user's view of
it, so several sessions can compete for the same lock.
"""

from collections import defaultdict, deque
from datetime import datetime, timedelta, timezone
from typing import Any, Deque, Dict, List, Optional, Sequence, Tuple
from uuid import uuid4

import structlog
from pydantic import BaseModel, ConfigDict, Field

from quoteflow.backends.base import PositionsBackend
from quoteflow.config import settings
from quoteflow.exceptions import (
    ConflictError,
    EditLockError,
    NotFoundError,
    ValidationError,
)
from quoteflow.locking.models import LockStatus, UserRef
from quoteflow.positions.models import (
    EDITABLE_FIELDS,
    PositionRecord,
    PositionType,
    PositionUpdate,
)

logger = structlog.get_logger()


class StoredLock(BaseModel):
    """A lock row."""

    locked_by: str = Field(..., description="ID of the lock holder")
    locked_by_name: Optional[str] = Field(default=None, description="Name of the lock holder")
    locked_at: datetime = Field(..., description="When the lock was taken")

    model_config = ConfigDict(from_attributes=True)


class CatalogEntry(BaseModel):
    """Text block or article a position can be created from."""

    title: Optional[str] = Field(default=None, description="Title copied into the position")
    description: Optional[str] = Field(default=None, description="Description copied into the position")
    unit_price: Optional[str] = Field(default=None, description="Article list price")


class InMemoryQuoteStore:
    """Server-side state shared by all in-memory backends."""

    def __init__(
        self,
        lock_resource_type: Optional[str] = None,
        lock_timeout: Optional[timedelta] = None,
    ):
        self.lock_resource_type = lock_resource_type or settings.lock_resource_type
        self.lock_timeout = lock_timeout
        self.versions: Dict[str, Dict[str, PositionRecord]] = {}
        self.locks: Dict[Tuple[str, str], StoredLock] = {}
        self.catalog: Dict[str, CatalogEntry] = {}
        self.calls: List[Tuple[str, str]] = []
        self._failures: Dict[str, Deque[Exception]] = defaultdict(deque)

    def add_version(self, version_id: str, records: Sequence[PositionRecord] = ()) -> None:
        self.versions[version_id] = {record.id: record for record in records}

    def add_catalog_entry(self, source_id: str, **fields: Any) -> None:
        self.catalog[source_id] = CatalogEntry(**fields)

    def records(self, version_id: str) -> List[PositionRecord]:
        """Records in the order the positions endpoint returns them."""
        return sorted(
            self._version(version_id).values(),
            key=lambda r: (r.parent_id is not None, r.parent_id or "", r.position_number or 0),
        )

    def fail_next(self, operation: str, error: Exception) -> None:
        """Make the next call of ``operation`` raise ``error``."""
        self._failures[operation].append(error)

    def expire_lock(self, resource_type: str, resource_id: str) -> None:
        """Drop a lock as if it had timed out."""
        self.locks.pop((resource_type, resource_id), None)

    def count_calls(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    def _record_call(self, operation: str, resource_id: str) -> None:
        self.calls.append((operation, resource_id))
        if self._failures[operation]:
            raise self._failures[operation].popleft()

    def _version(self, version_id: str) -> Dict[str, PositionRecord]:
        if version_id not in self.versions:
            raise NotFoundError(f"Quote version {version_id} not found")
        return self.versions[version_id]

    def _current_lock(self, resource_type: str, resource_id: str) -> Optional[StoredLock]:
        lock = self.locks.get((resource_type, resource_id))
        if lock is None:
            return None
        if self.lock_timeout is not None and datetime.now(timezone.utc) - lock.locked_at > self.lock_timeout:
            del self.locks[(resource_type, resource_id)]
            logger.info("Lock expired", resource_type=resource_type, resource_id=resource_id)
            return None
        return lock

    def _require_version_lock(self, version_id: str, user: UserRef) -> None:
        lock = self._current_lock(self.lock_resource_type, version_id)
        if lock is None:
            raise EditLockError("Quote version is not locked for editing", version_id)
        if lock.locked_by != user.id:
            raise EditLockError(
                "Quote version is already being edited",
                version_id,
                locked_by=lock.locked_by,
                locked_by_name=lock.locked_by_name,
                locked_at=lock.locked_at.isoformat(),
            )


class InMemoryBackend(PositionsBackend):
    """One user's connection to an ``InMemoryQuoteStore``."""

    def __init__(self, store: InMemoryQuoteStore, user: UserRef):
        self.store = store
        self.user = user

    async def fetch_positions(self, version_id: str) -> List[PositionRecord]:
        self.store._record_call("fetch_positions", version_id)
        return [record.model_copy() for record in self.store.records(version_id)]

    async def reorder_positions(self, version_id: str, updates: Sequence[PositionUpdate]) -> None:
        self.store._record_call("reorder_positions", version_id)
        positions = self.store._version(version_id)
        self.store._require_version_lock(version_id, self.user)

        for update in updates:
            record = positions.get(update.id)
            if record is None:
                logger.debug("Reorder skipped unknown position", position_id=update.id)
                continue
            positions[update.id] = record.model_copy(
                update={"position_number": update.position_number, "parent_id": update.parent_id}
            )

    async def save_positions(
        self, version_id: str, changes: Sequence[Dict[str, Any]]
    ) -> List[PositionRecord]:
        self.store._record_call("save_positions", version_id)
        positions = self.store._version(version_id)
        self.store._require_version_lock(version_id, self.user)

        updated: Dict[str, PositionRecord] = {}
        for change in changes:
            fields = {key: value for key, value in change.items() if key != "id"}
            position_id = change.get("id")
            if position_id not in positions:
                raise NotFoundError(f"Position {position_id} not found")
            unknown = set(fields) - EDITABLE_FIELDS
            if unknown:
                raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
            base = updated.get(position_id, positions[position_id])
            updated[position_id] = PositionRecord.model_validate({**base.model_dump(), **fields})

        positions.update(updated)
        return [record.model_copy() for record in updated.values()]

    async def get_lock(self, resource_type: str, resource_id: str) -> LockStatus:
        self.store._record_call("get_lock", resource_id)
        lock = self.store._current_lock(resource_type, resource_id)
        if lock is None:
            return LockStatus()
        return LockStatus(
            is_locked=True,
            locked_by=lock.locked_by,
            locked_by_name=lock.locked_by_name,
            locked_at=lock.locked_at,
        )

    async def acquire_lock(
        self, resource_type: str, resource_id: str, force: bool = False
    ) -> LockStatus:
        self.store._record_call("acquire_lock", resource_id)
        lock = self.store._current_lock(resource_type, resource_id)

        if not force and lock is not None and lock.locked_by != self.user.id:
            raise EditLockError(
                f"{resource_type} {resource_id} is already being edited",
                resource_id,
                locked_by=lock.locked_by,
                locked_by_name=lock.locked_by_name,
                locked_at=lock.locked_at.isoformat(),
            )

        lock = StoredLock(
            locked_by=self.user.id,
            locked_by_name=self.user.name,
            locked_at=datetime.now(timezone.utc),
        )
        self.store.locks[(resource_type, resource_id)] = lock
        return LockStatus(
            is_locked=True,
            locked_by=lock.locked_by,
            locked_by_name=lock.locked_by_name,
            locked_at=lock.locked_at,
        )

    async def release_lock(self, resource_type: str, resource_id: str) -> None:
        self.store._record_call("release_lock", resource_id)
        lock = self.store._current_lock(resource_type, resource_id)
        if lock is not None and lock.locked_by != self.user.id:
            raise ConflictError(f"Cannot unlock {resource_type} {resource_id} locked by another user")
        self.store.locks.pop((resource_type, resource_id), None)

    async def add_position(
        self,
        version_id: str,
        kind: PositionType,
        source_id: str,
        parent_id: Optional[str],
        index: int,
    ) -> str:
        self.store._record_call("add_position", version_id)
        positions = self.store._version(version_id)
        self.store._require_version_lock(version_id, self.user)

        if parent_id is not None:
            parent = positions.get(parent_id)
            if parent is None:
                raise NotFoundError(f"Position {parent_id} not found")
            if parent.type == PositionType.ARTICLE:
                raise ValidationError("Articles cannot contain other positions")

        entry = self.store.catalog.get(source_id, CatalogEntry())
        record = PositionRecord(
            id=str(uuid4()),
            parent_id=parent_id,
            type=kind,
            title=entry.title,
            description=entry.description,
            quantity="1",
            unit_price=entry.unit_price if kind == PositionType.ARTICLE else None,
            block_id=source_id if kind == PositionType.TEXTBLOCK else None,
            article_id=source_id if kind == PositionType.ARTICLE else None,
        )

        siblings = sorted(
            (r for r in positions.values() if r.parent_id == parent_id),
            key=lambda r: r.position_number or 0,
        )
        index = max(0, min(index, len(siblings)))
        siblings.insert(index, record)
        for number, sibling in enumerate(siblings, start=1):
            positions[sibling.id] = sibling.model_copy(update={"position_number": number})

        logger.info("Position added", version_id=version_id, position_id=record.id, kind=kind.value)
        return record.id

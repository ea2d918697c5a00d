"""Optimistic advisory edit lock.

The lock is cooperative: the server records who edits a resource, and
clients agree to only mutate it while holding the lock. The client flips its
state before the server answers. Entering edit mode is reverted when the
server refuses; leaving edit mode is never reverted, so a flaky release
cannot trap the user in edit mode.
"""

from typing import TYPE_CHECKING, Optional

import structlog

from quoteflow.exceptions import EditLockError
from quoteflow.locking.models import LockInfo, LockState, UserRef
from quoteflow.notices import NoticeBoard

if TYPE_CHECKING:
    from quoteflow.backends.base import PositionsBackend

logger = structlog.get_logger()


class EditLock:
    """Lock state machine for one ``(resource_type, resource_id)``."""

    def __init__(
        self,
        backend: "PositionsBackend",
        resource_type: str,
        resource_id: str,
        user: UserRef,
        notices: Optional[NoticeBoard] = None,
    ):
        self.backend = backend
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.user = user
        self.notices = notices if notices is not None else NoticeBoard()
        self.info = LockInfo.unlocked(resource_type, resource_id)
        self.logger = logger.bind(
            component="edit_lock",
            resource_type=resource_type,
            resource_id=resource_id,
            user_id=user.id,
        )

    @property
    def state(self) -> LockState:
        return self.info.state

    @property
    def is_locked(self) -> bool:
        return self.info.is_locked

    @property
    def is_locked_by_current_user(self) -> bool:
        return self.info.is_locked_by_current_user

    @property
    def locked_by_name(self) -> Optional[str]:
        return self.info.locked_by_name

    @property
    def locked_at(self):
        return self.info.locked_at

    @property
    def can_edit(self) -> bool:
        return self.info.can_edit

    def _set(self, info: LockInfo) -> None:
        if info.state != self.info.state:
            self.logger.debug("Lock state changed", old=self.info.state.value, new=info.state.value)
        self.info = info

    async def refresh(self) -> LockInfo:
        """Reload the lock state from the server, keeping the cache on failure."""
        try:
            status = await self.backend.get_lock(self.resource_type, self.resource_id)
        except Exception as e:
            self.logger.error("Failed to fetch lock status", error=str(e))
            return self.info

        self._set(LockInfo.from_status(self.resource_type, self.resource_id, status, self.user.id))
        return self.info

    async def enter_edit(self, force: bool = False) -> bool:
        """Acquire the lock and enter edit mode.

        ``force`` takes the lock over from another user. Returns True only
        once the server has confirmed the lock.
        """
        if self.state == LockState.LOCKED_BY_ME and not force:
            return True

        if not self.can_edit and not force:
            holder = self.info.locked_by_name or "another user"
            self.notices.warning(f"This document is currently being edited by {holder}")
            return False

        previous = self.info
        self._set(LockInfo.held_by(self.resource_type, self.resource_id, self.user))

        try:
            status = await self.backend.acquire_lock(
                self.resource_type, self.resource_id, force=force
            )
        except EditLockError as e:
            self._set(previous)
            holder = e.locked_by_name or e.locked_by or "another user"
            self.logger.warning("Lock held by another user", locked_by=e.locked_by)
            self.notices.error(f"Could not start editing: locked by {holder}", locked_by=e.locked_by)
            return False
        except Exception as e:
            self._set(previous)
            self.logger.error("Failed to acquire lock", error=str(e))
            self.notices.error(f"Could not start editing: {e}")
            return False

        confirmed = LockInfo.from_status(self.resource_type, self.resource_id, status, self.user.id)
        if not confirmed.is_locked_by_current_user:
            self._set(previous)
            self.logger.warning("Lock acquisition not confirmed", locked_by=status.locked_by)
            self.notices.error("Could not start editing: the lock was not granted")
            return False

        self._set(confirmed)
        self.logger.info("Lock acquired", forced=force)
        return True

    async def exit_edit(self) -> bool:
        """Leave edit mode and release the lock."""
        return await self._release("Could not release the edit lock")

    async def release_after_save(self) -> bool:
        """Release the lock once a save went through."""
        return await self._release("Changes were saved, but the edit lock could not be released")

    async def _release(self, failure_message: str) -> bool:
        if self.state != LockState.LOCKED_BY_ME:
            return True

        self._set(LockInfo.unlocked(self.resource_type, self.resource_id))

        try:
            await self.backend.release_lock(self.resource_type, self.resource_id)
        except Exception as e:
            self.logger.error("Failed to release lock", error=str(e))
            self.notices.warning(f"{failure_message}: {e}")
            return False

        self.logger.info("Lock released")
        return True

    def mark_lost(self, reason: str) -> None:
        """Drop to read mode after the server reported the lock as gone."""
        self.logger.warning("Lock lost", reason=reason)
        self._set(LockInfo.unlocked(self.resource_type, self.resource_id))
        self.notices.warning(reason)

"""Test the optimistic edit lock."""

from unittest.mock import AsyncMock

import pytest

from factories import VERSION_ID
from quoteflow.exceptions import ServiceUnavailableError
from quoteflow.locking import EditLock, LockInfo, LockState, LockStatus, UserRef
from quoteflow.notices import NoticeBoard, NoticeLevel

RESOURCE_TYPE = "quote-versions"


@pytest.fixture
def alice_lock(alice_backend, alice):
    return EditLock(alice_backend, RESOURCE_TYPE, VERSION_ID, alice, notices=NoticeBoard())


@pytest.fixture
def bob_lock(bob_backend, bob):
    return EditLock(bob_backend, RESOURCE_TYPE, VERSION_ID, bob, notices=NoticeBoard())


@pytest.mark.unit
class TestLockInfo:
    """Test the cached lock view."""

    def test_unlocked(self):
        info = LockInfo.unlocked(RESOURCE_TYPE, "v1")
        assert info.state == LockState.UNLOCKED
        assert info.can_edit is True

    def test_held_by_current_user(self):
        info = LockInfo.held_by(RESOURCE_TYPE, "v1", UserRef(id="u1", name="Ann"))
        assert info.state == LockState.LOCKED_BY_ME
        assert info.can_edit is True
        assert info.locked_by_name == "Ann"

    def test_from_status_of_other_user(self):
        status = LockStatus(is_locked=True, locked_by="u2", locked_by_name="Ben")
        info = LockInfo.from_status(RESOURCE_TYPE, "v1", status, "u1")

        assert info.state == LockState.LOCKED_BY_OTHER
        assert info.can_edit is False
        assert info.is_locked_by_current_user is False

    def test_status_from_api_payload(self):
        status = LockStatus.model_validate({
            "isLocked": True,
            "lockedBy": "u2",
            "lockedByName": "Ben",
            "lockedAt": "2024-05-01T10:00:00Z",
        })
        assert status.locked_by == "u2"
        assert status.locked_at.year == 2024


@pytest.mark.unit
class TestEditLock:
    """Test the lock state machine."""

    @pytest.mark.asyncio
    async def test_enter_and_exit(self, alice_lock, quote_store):
        assert await alice_lock.enter_edit() is True
        assert alice_lock.state == LockState.LOCKED_BY_ME
        assert alice_lock.locked_at is not None
        assert (RESOURCE_TYPE, VERSION_ID) in quote_store.locks

        assert await alice_lock.exit_edit() is True
        assert alice_lock.state == LockState.UNLOCKED
        assert quote_store.locks == {}

    @pytest.mark.asyncio
    async def test_enter_twice_is_noop(self, alice_lock, quote_store):
        await alice_lock.enter_edit()
        assert await alice_lock.enter_edit() is True
        assert quote_store.count_calls("acquire_lock") == 1

    @pytest.mark.asyncio
    async def test_refresh_sees_other_holder(self, alice_lock, bob_lock):
        await alice_lock.enter_edit()

        info = await bob_lock.refresh()

        assert info.state == LockState.LOCKED_BY_OTHER
        assert bob_lock.locked_by_name == "Alice"
        assert bob_lock.can_edit is False

    @pytest.mark.asyncio
    async def test_enter_refused_while_other_holds_lock(self, alice_lock, bob_lock, quote_store):
        await alice_lock.enter_edit()
        await bob_lock.refresh()

        assert await bob_lock.enter_edit() is False
        assert bob_lock.state == LockState.LOCKED_BY_OTHER
        assert bob_lock.notices.latest.message == (
            "This document is currently being edited by Alice"
        )
        assert quote_store.count_calls("acquire_lock") == 1

    @pytest.mark.asyncio
    async def test_failed_acquire_reverts_to_unlocked(self, alice_lock, bob_lock):
        # Bob's cache is stale: it still believes the document is free
        await bob_lock.refresh()
        await alice_lock.enter_edit()

        assert await bob_lock.enter_edit() is False

        assert bob_lock.state == LockState.UNLOCKED
        assert bob_lock.can_edit is True
        assert bob_lock.notices.latest.level == NoticeLevel.ERROR
        assert "Alice" in bob_lock.notices.latest.message

    @pytest.mark.asyncio
    async def test_network_failure_reverts(self, alice_lock, quote_store):
        quote_store.fail_next("acquire_lock", ServiceUnavailableError("offline"))

        assert await alice_lock.enter_edit() is False
        assert alice_lock.state == LockState.UNLOCKED
        assert "offline" in alice_lock.notices.latest.message

    @pytest.mark.asyncio
    async def test_unconfirmed_acquire_reverts(self, alice):
        backend = AsyncMock()
        backend.acquire_lock.return_value = LockStatus(is_locked=True, locked_by="someone-else")
        lock = EditLock(backend, RESOURCE_TYPE, VERSION_ID, alice, notices=NoticeBoard())

        assert await lock.enter_edit() is False
        assert lock.state == LockState.UNLOCKED

    @pytest.mark.asyncio
    async def test_force_takes_over(self, alice_lock, bob_lock, quote_store):
        await alice_lock.enter_edit()
        await bob_lock.refresh()

        assert await bob_lock.enter_edit(force=True) is True

        assert bob_lock.state == LockState.LOCKED_BY_ME
        assert quote_store.locks[(RESOURCE_TYPE, VERSION_ID)].locked_by == "user-bob"
        await alice_lock.refresh()
        assert alice_lock.state == LockState.LOCKED_BY_OTHER

    @pytest.mark.asyncio
    async def test_failed_release_is_not_reverted(self, alice_lock, quote_store):
        await alice_lock.enter_edit()
        quote_store.fail_next("release_lock", ServiceUnavailableError("offline"))

        assert await alice_lock.exit_edit() is False

        assert alice_lock.state == LockState.UNLOCKED
        assert alice_lock.notices.latest.level == NoticeLevel.WARNING

    @pytest.mark.asyncio
    async def test_exit_without_lock_makes_no_call(self, alice_lock, quote_store):
        assert await alice_lock.exit_edit() is True
        assert quote_store.count_calls("release_lock") == 0

    @pytest.mark.asyncio
    async def test_refresh_failure_keeps_cache(self, alice_lock, quote_store):
        await alice_lock.enter_edit()
        quote_store.fail_next("get_lock", ServiceUnavailableError("offline"))

        info = await alice_lock.refresh()

        assert info.state == LockState.LOCKED_BY_ME

    @pytest.mark.asyncio
    async def test_release_after_save(self, alice_lock, quote_store):
        await alice_lock.enter_edit()

        assert await alice_lock.release_after_save() is True
        assert quote_store.locks == {}

    def test_mark_lost(self, alice_lock):
        alice_lock.info = LockInfo.held_by(RESOURCE_TYPE, VERSION_ID, alice_lock.user)

        alice_lock.mark_lost("Lock expired")

        assert alice_lock.state == LockState.UNLOCKED
        assert alice_lock.notices.latest.message == "Lock expired"

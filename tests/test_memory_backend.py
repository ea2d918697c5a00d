"""Test the in-memory quote store and backend."""

from datetime import timedelta

import pytest

from factories import VERSION_ID
from quoteflow.exceptions import ConflictError, EditLockError, NotFoundError, ValidationError
from quoteflow.positions.models import PositionType, PositionUpdate

RESOURCE_TYPE = "quote-versions"


@pytest.mark.unit
class TestInMemoryBackend:
    """Test server-side semantics of the in-memory backend."""

    @pytest.mark.asyncio
    async def test_fetch_returns_copies(self, alice_backend, quote_store):
        records = await alice_backend.fetch_positions(VERSION_ID)
        records[0].title = "changed"

        assert len(records) == 6
        assert quote_store.versions[VERSION_ID][records[0].id].title != "changed"

    @pytest.mark.asyncio
    async def test_unknown_version(self, alice_backend):
        with pytest.raises(NotFoundError):
            await alice_backend.fetch_positions("nope")

    @pytest.mark.asyncio
    async def test_acquire_conflict(self, alice_backend, bob_backend):
        await alice_backend.acquire_lock(RESOURCE_TYPE, VERSION_ID)

        with pytest.raises(EditLockError) as exc_info:
            await bob_backend.acquire_lock(RESOURCE_TYPE, VERSION_ID)

        assert exc_info.value.locked_by == "user-alice"
        assert exc_info.value.locked_by_name == "Alice"
        assert exc_info.value.resource_id == VERSION_ID

    @pytest.mark.asyncio
    async def test_reacquire_by_holder(self, alice_backend):
        await alice_backend.acquire_lock(RESOURCE_TYPE, VERSION_ID)
        status = await alice_backend.acquire_lock(RESOURCE_TYPE, VERSION_ID)
        assert status.locked_by == "user-alice"

    @pytest.mark.asyncio
    async def test_release_by_other_user_refused(self, alice_backend, bob_backend, quote_store):
        await alice_backend.acquire_lock(RESOURCE_TYPE, VERSION_ID)

        with pytest.raises(ConflictError):
            await bob_backend.release_lock(RESOURCE_TYPE, VERSION_ID)

        assert (RESOURCE_TYPE, VERSION_ID) in quote_store.locks

    @pytest.mark.asyncio
    async def test_lock_timeout(self, alice_backend, bob_backend, quote_store):
        quote_store.lock_timeout = timedelta(seconds=-1)
        await alice_backend.acquire_lock(RESOURCE_TYPE, VERSION_ID)

        status = await bob_backend.get_lock(RESOURCE_TYPE, VERSION_ID)

        assert status.is_locked is False

    @pytest.mark.asyncio
    async def test_writes_require_lock(self, alice_backend):
        with pytest.raises(EditLockError):
            await alice_backend.reorder_positions(
                VERSION_ID, [PositionUpdate(id="A", position_number=1)]
            )

        with pytest.raises(EditLockError):
            await alice_backend.save_positions(VERSION_ID, [{"id": "C", "title": "x"}])

    @pytest.mark.asyncio
    async def test_reorder_skips_unknown_positions(self, alice_backend, quote_store):
        await alice_backend.acquire_lock(RESOURCE_TYPE, VERSION_ID)

        await alice_backend.reorder_positions(VERSION_ID, [
            PositionUpdate(id="ghost", position_number=1),
            PositionUpdate(id="C", position_number=1, parent_id="B"),
        ])

        assert quote_store.versions[VERSION_ID]["C"].parent_id == "B"
        assert "ghost" not in quote_store.versions[VERSION_ID]

    @pytest.mark.asyncio
    async def test_save_validates_input(self, alice_backend, quote_store):
        await alice_backend.acquire_lock(RESOURCE_TYPE, VERSION_ID)

        with pytest.raises(NotFoundError):
            await alice_backend.save_positions(VERSION_ID, [{"id": "ghost", "title": "x"}])

        with pytest.raises(ValidationError):
            await alice_backend.save_positions(VERSION_ID, [{"id": "C", "parent_id": "A"}])

        assert quote_store.versions[VERSION_ID]["C"].parent_id is None

    @pytest.mark.asyncio
    async def test_add_position_under_article_refused(self, alice_backend):
        await alice_backend.acquire_lock(RESOURCE_TYPE, VERSION_ID)

        with pytest.raises(ValidationError):
            await alice_backend.add_position(VERSION_ID, PositionType.TEXTBLOCK, "block-intro", "C", 0)

        with pytest.raises(NotFoundError):
            await alice_backend.add_position(VERSION_ID, PositionType.TEXTBLOCK, "block-intro", "ghost", 0)

    @pytest.mark.asyncio
    async def test_injected_failures_are_consumed(self, alice_backend, quote_store):
        quote_store.fail_next("get_lock", RuntimeError("boom"))

        with pytest.raises(RuntimeError):
            await alice_backend.get_lock(RESOURCE_TYPE, VERSION_ID)

        status = await alice_backend.get_lock(RESOURCE_TYPE, VERSION_ID)
        assert status.is_locked is False
        assert quote_store.count_calls("get_lock") == 2

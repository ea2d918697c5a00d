"""Pytest configuration and fixtures."""

import pytest
import pytest_asyncio

from factories import VERSION_ID, make_session, sample_records
from quoteflow.backends.memory import InMemoryBackend, InMemoryQuoteStore
from quoteflow.locking.models import UserRef
from quoteflow.positions.tree import build_tree


@pytest.fixture
def records():
    return sample_records()


@pytest.fixture
def tree(records):
    return build_tree(records, max_depth=4)


@pytest.fixture
def alice():
    return UserRef(id="user-alice", name="Alice")


@pytest.fixture
def bob():
    return UserRef(id="user-bob", name="Bob")


@pytest.fixture
def quote_store(records):
    store = InMemoryQuoteStore(lock_resource_type="quote-versions")
    store.add_version(VERSION_ID, records)
    store.add_catalog_entry("block-intro", title="Introduction", description="<p>Hello</p>")
    store.add_catalog_entry("article-pump", title="Pump", unit_price="99.50")
    return store


@pytest.fixture
def alice_backend(quote_store, alice):
    return InMemoryBackend(quote_store, alice)


@pytest.fixture
def bob_backend(quote_store, bob):
    return InMemoryBackend(quote_store, bob)


@pytest_asyncio.fixture
async def session(alice_backend, alice):
    """Opened session of Alice, in read mode."""
    session = make_session(alice_backend, alice)
    await session.open()
    return session


@pytest_asyncio.fixture
async def editing_session(session):
    """Opened session of Alice holding the edit lock."""
    assert await session.enter_edit()
    return session

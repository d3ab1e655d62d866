"""Shared fixtures."""

import pytest

from agentbridge.core.title_store import TitleStore
from fakes import FakePlatform


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
def alice(platform):
    return platform.add_user("alice", first_name="Alice", last_name="Liddell", email="alice@example.com")


@pytest.fixture
def bob(platform):
    return platform.add_user("bob")


@pytest.fixture
async def title_store(tmp_path):
    store = TitleStore(f"sqlite+aiosqlite:///{tmp_path / 'titles.db'}")
    await store.initialize()
    yield store
    await store.close()

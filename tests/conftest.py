"""Summary: Shared pytest fixtures.

Importance: Gives every test an isolated SQLite store and a connected user.
Alternatives: Rebuild storage inline in each test.
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest

from fakes import BASE_TIME, FakeMailbox, ScriptedAiProvider
from mailassist.models import NewUser, User
from mailassist.storage.sqlite_store import SqliteStore


@pytest.fixture
def store(tmp_path: Path) -> SqliteStore:
    store = SqliteStore(str(tmp_path / "test.db"))
    store.initialize()
    return store


@pytest.fixture
def user(store: SqliteStore) -> User:
    return store.create_user(
        NewUser(
            username="Avery",
            email="avery@example.com",
            provider_id="graph-avery",
            access_token="access-1",
            refresh_token="refresh-1",
            token_expires_at=BASE_TIME + timedelta(days=3650),
        )
    )


@pytest.fixture
def ai() -> ScriptedAiProvider:
    return ScriptedAiProvider()


@pytest.fixture
def mailbox() -> FakeMailbox:
    return FakeMailbox()

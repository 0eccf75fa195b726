from datetime import datetime, timezone

import pytest
from cryptography.fernet import Fernet

from storage import credential_store as credential_store_mod
from storage.credential_store import InMemoryCredentialStore, PostgresCredentialStore
from talk2task.models import Platform


class FakePool:
    """Just enough of asyncpg.Pool for one integrations row."""

    def __init__(self):
        self.row = None
        self.queries = []

    async def execute(self, query, *args):
        self.queries.append(query)
        if query.lstrip().startswith("INSERT"):
            user_id, platform, access, refresh, expires_at, label = args
            now = datetime(2025, 1, 15, tzinfo=timezone.utc)
            self.row = {
                "user_id": user_id,
                "platform": platform,
                "access_token": access,
                "refresh_token": refresh,
                "expires_at": expires_at,
                "label": label,
                "is_active": True,
                "created_at": now,
                "updated_at": now,
            }
            return "INSERT 0 1"
        if self.row and self.row["is_active"]:
            self.row["is_active"] = False
            return "UPDATE 1"
        return "UPDATE 0"

    async def fetchrow(self, query, *args):
        if self.row and self.row["is_active"]:
            return self.row
        return None

    async def fetch(self, query, *args):
        return [self.row] if self.row else []


@pytest.mark.asyncio
async def test_in_memory_save_and_get():
    store = InMemoryCredentialStore()
    await store.save("u1", Platform.NOTION, "tok", label="Acme")
    cred = await store.get_active("u1", Platform.NOTION)
    assert cred.access_token == "tok"
    assert cred.label == "Acme"
    assert await store.get_active("u2", Platform.NOTION) is None
    assert await store.get_active("u1", Platform.GOOGLE_CALENDAR) is None


@pytest.mark.asyncio
async def test_in_memory_deactivate_is_soft():
    store = InMemoryCredentialStore()
    await store.save("u1", Platform.GOOGLE_CALENDAR, "tok", refresh_token="refresh")
    assert await store.deactivate("u1", Platform.GOOGLE_CALENDAR)
    assert not await store.deactivate("u1", Platform.GOOGLE_CALENDAR)
    assert await store.get_active("u1", Platform.GOOGLE_CALENDAR) is None

    listed = await store.list_for_user("u1")
    assert len(listed) == 1
    assert not listed[0].is_active


@pytest.mark.asyncio
async def test_in_memory_reconnect_keeps_refresh_token():
    store = InMemoryCredentialStore()
    await store.save("u1", Platform.GOOGLE_CALENDAR, "tok-1", refresh_token="refresh", label="me@example.com")
    await store.deactivate("u1", Platform.GOOGLE_CALENDAR)
    await store.save("u1", Platform.GOOGLE_CALENDAR, "tok-2")

    cred = await store.get_active("u1", Platform.GOOGLE_CALENDAR)
    assert cred.access_token == "tok-2"
    assert cred.refresh_token == "refresh"
    assert cred.label == "me@example.com"


@pytest.mark.asyncio
async def test_store_refreshed_replaces_the_access_token():
    store = InMemoryCredentialStore()
    await store.save("u1", Platform.GOOGLE_CALENDAR, "old", refresh_token="refresh", label="me@example.com")
    cred = await store.get_active("u1", Platform.GOOGLE_CALENDAR)

    expiry = datetime(2025, 1, 15, 11, 0, tzinfo=timezone.utc)
    await store.store_refreshed(cred.model_copy(update={"access_token": "new", "expires_at": expiry}))

    cred = await store.get_active("u1", Platform.GOOGLE_CALENDAR)
    assert cred.access_token == "new"
    assert cred.expires_at == expiry
    assert cred.refresh_token == "refresh"
    assert cred.label == "me@example.com"


@pytest.mark.asyncio
async def test_lookup_for_binds_user():
    store = InMemoryCredentialStore()
    await store.save("u1", Platform.NOTION, "tok")
    lookup = store.lookup_for("u1")
    assert (await lookup(Platform.NOTION)).access_token == "tok"
    assert await store.lookup_for("u2")(Platform.NOTION) is None


@pytest.mark.asyncio
async def test_postgres_store_encrypts_tokens(monkeypatch):
    pool = FakePool()
    monkeypatch.setattr(credential_store_mod, "get_pool", lambda: pool)
    store = PostgresCredentialStore(Fernet.generate_key().decode())

    await store.save("u1", Platform.GOOGLE_CALENDAR, "access-plain", refresh_token="refresh-plain")

    assert pool.row["access_token"] != "access-plain"
    assert pool.row["refresh_token"] != "refresh-plain"

    cred = await store.get_active("u1", Platform.GOOGLE_CALENDAR)
    assert cred.access_token == "access-plain"
    assert cred.refresh_token == "refresh-plain"
    assert cred.platform == Platform.GOOGLE_CALENDAR


@pytest.mark.asyncio
async def test_postgres_store_deactivate(monkeypatch):
    pool = FakePool()
    monkeypatch.setattr(credential_store_mod, "get_pool", lambda: pool)
    store = PostgresCredentialStore(Fernet.generate_key().decode())

    await store.save("u1", Platform.NOTION, "tok")
    assert await store.deactivate("u1", Platform.NOTION)
    assert await store.get_active("u1", Platform.NOTION) is None
    assert not await store.deactivate("u1", Platform.NOTION)


@pytest.mark.asyncio
async def test_postgres_store_ignores_rows_from_another_key(monkeypatch):
    pool = FakePool()
    monkeypatch.setattr(credential_store_mod, "get_pool", lambda: pool)
    await PostgresCredentialStore(Fernet.generate_key().decode()).save("u1", Platform.NOTION, "tok")

    other = PostgresCredentialStore(Fernet.generate_key().decode())
    assert await other.get_active("u1", Platform.NOTION) is None

"""Test configuration and fixtures."""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import AsyncGenerator, Generator, Protocol
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import insert, update

from src.clients.contact_store import get_contact_store, get_identity_resolver
from src.db.models import ContactRecord
from src.identity.resolver import IdentityResolver
from src.main import app
from src.services.contact_store_service import SqlContactStore, create_contact_store

# Fixed clock for seeded contacts
BASE_TIME = datetime(2023, 4, 1, 9, 0, tzinfo=timezone.utc)


def at(minutes: int) -> datetime:
    """Timestamp ``minutes`` after BASE_TIME."""
    return BASE_TIME + timedelta(minutes=minutes)


async def seed_contact(
    store: SqlContactStore,
    *,
    email: str | None = None,
    phone_number: str | None = None,
    linked_id: int | None = None,
    created_at: datetime = BASE_TIME,
    contact_id: int | None = None,
    deleted_at: datetime | None = None,
) -> int:
    """Insert a contact row directly, bypassing the resolver."""
    values = {
        "email": email,
        "phone_number": phone_number,
        "linked_id": linked_id,
        "link_precedence": "secondary" if linked_id is not None else "primary",
        "created_at": created_at,
        "updated_at": created_at,
        "deleted_at": deleted_at,
    }
    if contact_id is not None:
        values["id"] = contact_id
    async with store.engine.begin() as conn:
        result = await conn.execute(insert(ContactRecord).values(**values))
        return int(result.inserted_primary_key[0])


async def relink_contact(store: SqlContactStore, contact_id: int, linked_id: int) -> None:
    """Point an existing contact at another one (used to build corrupt chains)."""
    async with store.engine.begin() as conn:
        await conn.execute(
            update(ContactRecord)
            .where(ContactRecord.id == contact_id)
            .values(link_precedence="secondary", linked_id=linked_id)
        )


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Configure pytest-anyio to use asyncio."""
    return "asyncio"


@pytest.fixture
def database_path(tmp_path: Path) -> Path:
    return tmp_path / "contacts.db"


@pytest.fixture
async def contact_store(database_path: Path) -> AsyncGenerator[SqlContactStore, None]:
    """SQLite-backed contact store with the schema created."""
    store = create_contact_store(f"sqlite+aiosqlite:///{database_path}")
    await store.create_schema()
    yield store
    await store.close()


@pytest.fixture
def resolver(contact_store: SqlContactStore) -> IdentityResolver:
    """Resolver over the SQLite store with no retry backoff."""
    return IdentityResolver(contact_store, retry_base_delay=0.0)


class ClientFactory(Protocol):
    """Protocol for client factory fixture."""

    def __call__(
        self,
        resolver_override: IdentityResolver | AsyncMock | None = None,
        store_override: SqlContactStore | AsyncMock | None = None,
    ) -> AsyncClient: ...


@pytest.fixture
def client_factory(
    contact_store: SqlContactStore,
    resolver: IdentityResolver,
) -> Generator[ClientFactory, None, None]:
    """Factory for creating test clients; the resolver or store may be replaced by mocks."""

    def _create_client(
        resolver_override: IdentityResolver | AsyncMock | None = None,
        store_override: SqlContactStore | AsyncMock | None = None,
    ) -> AsyncClient:
        app.dependency_overrides[get_contact_store] = lambda: (
            store_override if store_override is not None else contact_store
        )
        app.dependency_overrides[get_identity_resolver] = lambda: (
            resolver_override if resolver_override is not None else resolver
        )

        transport = ASGITransport(app=app)
        return AsyncClient(transport=transport, base_url="http://testserver")

    yield _create_client

    app.dependency_overrides.clear()


@pytest.fixture
async def client(
    client_factory: ClientFactory,
) -> AsyncGenerator[AsyncClient, None]:
    """Async client for testing endpoints."""
    async with client_factory() as c:
        yield c

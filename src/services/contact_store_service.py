"""
SQL contact store.

Implements the ``ContactStore`` contract on top of SQLAlchemy asyncio.
Each unit of work is one database transaction; on PostgreSQL it also holds
advisory locks on the caller's lock keys, taken before the transaction
begins and released after it ends.
"""

import logging
from collections import defaultdict
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from sqlalchemy import or_, select, text, update
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
)

from src.db.client import HEALTH_CHECK_OPTION, advisory_lock_id, create_db_engine
from src.db.models import Base, ContactRecord, utcnow
from src.exceptions import StoreError, TransientStoreFailure
from src.identity.types import Contact, LinkPrecedence, MergeWrite

logger = logging.getLogger(__name__)

# serialization_failure, deadlock_detected, lock_not_available
TRANSIENT_SQLSTATES = frozenset({"40001", "40P01", "55P03"})

SQLITE_BUSY_MESSAGES = ("database is locked", "database is busy")


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def contact_from_record(record: ContactRecord) -> Contact:
    """Detach a ContactRecord into an immutable Contact."""
    return Contact(
        id=record.id,
        email=record.email,
        phone_number=record.phone_number,
        link_precedence=LinkPrecedence(record.link_precedence),
        linked_id=record.linked_id,
        created_at=_as_utc(record.created_at),
        updated_at=_as_utc(record.updated_at),
        deleted_at=_as_utc(record.deleted_at),
    )


def is_transient_error(exc: BaseException) -> bool:
    """
    Determine if a database error is contention or connectivity related.

    Args:
        exc: Exception raised by SQLAlchemy or the driver

    Returns:
        True if retrying the whole transaction may succeed
    """
    if isinstance(exc, (PoolTimeoutError, ConnectionError, OSError)):
        return True
    if isinstance(exc, DBAPIError):
        if exc.connection_invalidated:
            return True
        orig = exc.orig
        sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        if sqlstate in TRANSIENT_SQLSTATES:
            return True
        message = str(orig).lower()
        if any(busy in message for busy in SQLITE_BUSY_MESSAGES):
            return True
    return False


def translate_error(exc: BaseException) -> StoreError:
    if is_transient_error(exc):
        return TransientStoreFailure(f"Transient store failure: {exc}")
    return StoreError(f"Store operation failed: {exc}")


class SqlContactRepository:
    """Contact queries bound to one open transaction."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def find_matching(
        self, email: str | None, phone_number: str | None
    ) -> list[Contact]:
        clauses = []
        if email is not None:
            clauses.append(ContactRecord.email == email)
        if phone_number is not None:
            clauses.append(ContactRecord.phone_number == phone_number)
        if not clauses:
            return []

        stmt = (
            select(ContactRecord)
            .where(or_(*clauses), ContactRecord.deleted_at.is_(None))
            .order_by(ContactRecord.created_at, ContactRecord.id)
        )
        result = await self._session.scalars(stmt)
        return [contact_from_record(r) for r in result]

    async def find_by_id(self, contact_id: int) -> Contact | None:
        stmt = select(ContactRecord).where(
            ContactRecord.id == contact_id,
            ContactRecord.deleted_at.is_(None),
        )
        record = (await self._session.scalars(stmt)).first()
        return contact_from_record(record) if record else None

    async def find_group_members(self, primary_id: int) -> list[Contact]:
        stmt = (
            select(ContactRecord)
            .where(
                or_(
                    ContactRecord.id == primary_id,
                    ContactRecord.linked_id == primary_id,
                ),
                ContactRecord.deleted_at.is_(None),
            )
            .order_by(
                ContactRecord.link_precedence,
                ContactRecord.created_at,
                ContactRecord.id,
            )
        )
        result = await self._session.scalars(stmt)
        return [contact_from_record(r) for r in result]

    async def create(
        self,
        *,
        email: str | None,
        phone_number: str | None,
        link_precedence: LinkPrecedence,
        linked_id: int | None = None,
    ) -> Contact:
        now = utcnow()
        record = ContactRecord(
            email=email,
            phone_number=phone_number,
            link_precedence=link_precedence.value,
            linked_id=linked_id,
            created_at=now,
            updated_at=now,
        )
        self._session.add(record)
        await self._session.flush()
        return contact_from_record(record)

    async def apply_merge(self, writes: Sequence[MergeWrite]) -> None:
        """
        Apply merge writes inside the current transaction.

        Writes are grouped by target values and issued as one UPDATE per
        group. If any target row is missing the StoreError aborts the
        surrounding transaction, so no write from the set survives.
        """
        if not writes:
            return

        grouped: dict[tuple[int | None, LinkPrecedence], set[int]] = defaultdict(set)
        for write in writes:
            grouped[(write.new_linked_id, write.new_precedence)].add(write.id)

        now = utcnow()
        for (linked_id, precedence), ids in grouped.items():
            stmt = (
                update(ContactRecord)
                .where(
                    ContactRecord.id.in_(sorted(ids)),
                    ContactRecord.deleted_at.is_(None),
                )
                .values(
                    link_precedence=precedence.value,
                    linked_id=linked_id,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            result = await self._session.execute(stmt)
            if result.rowcount != len(ids):
                raise StoreError(
                    f"Merge write matched {result.rowcount} of {len(ids)} contacts "
                    f"(ids={sorted(ids)})"
                )

    async def list_contacts(self) -> list[Contact]:
        stmt = (
            select(ContactRecord)
            .where(ContactRecord.deleted_at.is_(None))
            .order_by(ContactRecord.id)
        )
        result = await self._session.scalars(stmt)
        return [contact_from_record(r) for r in result]


class SqlContactStore:
    """Contact store backed by a SQLAlchemy async engine."""

    def __init__(self, engine: AsyncEngine):
        self._engine = engine
        self._session_factory = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def uses_advisory_locks(self) -> bool:
        return self._engine.dialect.name == "postgresql"

    @asynccontextmanager
    async def unit_of_work(
        self, lock_keys: Sequence[str] = ()
    ) -> AsyncIterator[SqlContactRepository]:
        """
        Open one transaction, locked on ``lock_keys``.

        Commits when the block exits normally and rolls back on any
        exception, including cancellation. SQLAlchemy errors are translated
        to StoreError / TransientStoreFailure.

        On PostgreSQL the advisory locks are session-level and taken before
        the transaction begins, so its snapshot already includes every
        commit made by the request it queued behind.
        """
        keys = sorted(set(lock_keys)) if self.uses_advisory_locks else []
        try:
            async with self._engine.connect() as conn:
                try:
                    if keys:
                        await self._lock(conn, keys)
                    async with self._session_factory(bind=conn) as session:
                        async with session.begin():
                            yield SqlContactRepository(session)
                finally:
                    if keys:
                        await self._unlock(conn)
        except (SQLAlchemyError, OSError) as e:
            raise translate_error(e) from e

    async def _lock(self, conn: AsyncConnection, keys: list[str]) -> None:
        # Sorted acquisition order keeps overlapping requests from deadlocking.
        await conn.execution_options(isolation_level="AUTOCOMMIT")
        for key in keys:
            await conn.execute(
                text("SELECT pg_advisory_lock(:lock_id)"),
                {"lock_id": advisory_lock_id(key)},
            )
        await conn.commit()
        await conn.execution_options(isolation_level="SERIALIZABLE")

    async def _unlock(self, conn: AsyncConnection) -> None:
        try:
            await conn.execution_options(isolation_level="AUTOCOMMIT")
            await conn.execute(text("SELECT pg_advisory_unlock_all()"))
            await conn.commit()
        except (SQLAlchemyError, OSError) as e:
            # Closing the server session releases its advisory locks
            logger.warning("Advisory unlock failed, discarding connection: %s", e)
            await conn.invalidate()

    async def create_schema(self) -> None:
        """Create the contacts table if it does not exist."""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def ping(self) -> bool:
        """Check database connectivity without taking any write lock."""
        try:
            async with self._engine.connect() as conn:
                await conn.execution_options(**{HEALTH_CHECK_OPTION: True})
                await conn.execute(text("SELECT 1"))
            return True
        except (SQLAlchemyError, OSError) as e:
            logger.warning("Database health check failed: %s", e)
            return False

    async def close(self) -> None:
        await self._engine.dispose()


def create_contact_store(database_url: str | None = None) -> SqlContactStore:
    """Create a SqlContactStore with default configuration."""
    return SqlContactStore(create_db_engine(database_url))

"""
Ledger store: document-style access to the booking and payment tables.

Components read and write through a `LedgerStore` handle built once at
startup. Every call is bounded by the configured timeout; timeouts and
driver failures surface as `StoreUnavailable` so callers can answer with a
retryable server error.
"""
import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Dict, List, Optional, Type, TypeVar

import structlog
from sqlalchemy import delete, select, text
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from booking_payments.config import Settings
from booking_payments.exceptions import DuplicateKeyError, IntegrityViolation, StoreUnavailable

from .connection import create_engine, create_session_factory
from .models import COLLECTIONS, Base, Booking, Payment

logger = structlog.get_logger(__name__)

T = TypeVar("T")

UNIQUE_VIOLATION = "23505"


def _model(collection: str) -> Type[Base]:
    try:
        return COLLECTIONS[collection]
    except KeyError:
        raise ValueError(f"Unknown collection: {collection}") from None


def _identity(instance: Base) -> Any:
    key = instance.__mapper__.primary_key[0].key
    return getattr(instance, key)


def _is_unique_violation(error: IntegrityError) -> bool:
    """PostgreSQL reports SQLSTATE 23505; SQLite only says so in the message."""
    code = getattr(error.orig, "sqlstate", None) or getattr(error.orig, "pgcode", None)
    if code is not None:
        return code == UNIQUE_VIOLATION
    return "UNIQUE constraint failed" in str(error.orig)


def _select(
    collection: str, filters: Optional[Dict[str, Any]], for_update: bool = False
) -> Any:
    model = _model(collection)
    stmt = select(model)
    if filters:
        stmt = stmt.filter_by(**filters)
    if for_update:
        stmt = stmt.with_for_update()
    if "created_at" in model.__table__.columns:
        stmt = stmt.order_by(model.created_at)
    return stmt


class LedgerStore:
    """
    Durable storage for bookings, payments and idempotency markers.

    Operations:
    - insert(collection, document) -> id
    - find_one(collection, filters) -> document | None
    - find(collection, filters, limit) -> [document]
    - update_one(collection, filters, patch) -> matched count
    - transaction() for writes that must commit together

    Filters are equality matches on column names.
    """

    def __init__(self, engine: AsyncEngine, timeout_seconds: float = 5.0):
        """
        Initialize the store.

        Args:
            engine: SQLAlchemy async engine
            timeout_seconds: Upper bound for a single store call
        """
        self.engine = engine
        self.timeout_seconds = timeout_seconds
        self._session_factory = create_session_factory(engine)

    @classmethod
    def from_settings(cls, settings: Settings) -> "LedgerStore":
        return cls(create_engine(settings), timeout_seconds=settings.store_timeout_seconds)

    async def _run(self, operation: str, collection: Optional[str], awaitable: Awaitable[T]) -> T:
        """Await a store call under the timeout, translating driver errors."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.error(
                "store_operation_timeout",
                operation=operation,
                collection=collection,
                timeout_seconds=self.timeout_seconds,
            )
            raise StoreUnavailable(f"Store {operation} timed out")
        except IntegrityError as e:
            if _is_unique_violation(e):
                raise DuplicateKeyError(
                    f"Duplicate key in {collection}", collection=collection
                ) from e
            logger.error(
                "store_integrity_violation",
                operation=operation,
                collection=collection,
                error=str(e.orig),
            )
            raise IntegrityViolation(
                f"Integrity constraint violated in {collection}", collection=collection
            ) from e
        except (DBAPIError, SQLAlchemyError) as e:
            logger.error(
                "store_operation_failed",
                operation=operation,
                collection=collection,
                error=str(e),
            )
            raise StoreUnavailable(f"Store {operation} failed: {e}") from e

    async def insert(self, collection: str, document: Dict[str, Any]) -> Any:
        """
        Insert a document.

        Raises:
            DuplicateKeyError: If a uniqueness constraint is violated
            StoreUnavailable: On timeout or driver failure
        """

        async def _insert() -> Any:
            async with self._session_factory() as session:
                instance = _model(collection)(**document)
                session.add(instance)
                await session.commit()
                return _identity(instance)

        return await self._run("insert", collection, _insert())

    async def find_one(
        self, collection: str, filters: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        async def _find_one() -> Optional[Dict[str, Any]]:
            async with self._session_factory() as session:
                return await _find_one_in(session, collection, filters)

        return await self._run("find_one", collection, _find_one())

    async def find(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        async def _find() -> List[Dict[str, Any]]:
            stmt = _select(collection, filters)
            if limit is not None:
                stmt = stmt.limit(limit)
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return [row.to_document() for row in result.scalars().all()]

        return await self._run("find", collection, _find())

    async def update_one(
        self, collection: str, filters: Dict[str, Any], patch: Dict[str, Any]
    ) -> int:
        """
        Apply `patch` to the first document matching `filters`.

        Returns:
            int: Matched count (0 or 1)
        """

        async def _update_one() -> int:
            async with self._session_factory() as session:
                matched = await _update_one_in(session, collection, filters, patch)
                await session.commit()
                return matched

        return await self._run("update_one", collection, _update_one())

    async def find_unapplied_payments(self, limit: int) -> List[Dict[str, Any]]:
        """
        Paid payments whose booking does not show `payment_status=paid` yet.

        Oldest first, at most `limit` rows.
        """

        async def _find() -> List[Dict[str, Any]]:
            stmt = (
                select(Payment)
                .join(Booking, Booking.id == Payment.booking_id)
                .where(Payment.status == "paid", Booking.payment_status != "paid")
                .order_by(Payment.created_at)
                .limit(limit)
            )
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return [row.to_document() for row in result.scalars().all()]

        return await self._run("find", "payments", _find())

    async def delete_older_than(self, collection: str, column: str, cutoff: datetime) -> int:
        """Delete documents whose `column` is older than `cutoff`."""
        model = _model(collection)

        async def _delete() -> int:
            async with self._session_factory() as session:
                result = await session.execute(
                    delete(model).where(getattr(model, column) < cutoff)
                )
                await session.commit()
                return result.rowcount or 0

        return await self._run("delete", collection, _delete())

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["LedgerTransaction"]:
        """
        Open a unit of work; its writes commit together on exit.

        A duplicate-key failure rolls the unit back immediately, so any
        claim on a uniqueness constraint must be its first write.
        """
        async with self._session_factory() as session:
            txn = LedgerTransaction(self, session)
            try:
                yield txn
                if not txn.rolled_back:
                    await self._run("commit", None, session.commit())
            except Exception:
                await session.rollback()
                raise

    async def ping(self) -> None:
        async def _ping() -> None:
            async with self._session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()

        await self._run("ping", None, _ping())

    async def create_all(self) -> None:
        """Create all tables that do not exist yet."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        """Dispose of the engine and its pooled connections."""
        await self.engine.dispose()


class LedgerTransaction:
    """Store operations bound to one session and one commit."""

    def __init__(self, store: LedgerStore, session: AsyncSession):
        self.store = store
        self.session = session
        self.rolled_back = False

    def _check_open(self) -> None:
        if self.rolled_back:
            raise RuntimeError("Transaction was rolled back")

    async def insert(self, collection: str, document: Dict[str, Any]) -> Any:
        self._check_open()
        instance = _model(collection)(**document)
        self.session.add(instance)
        try:
            await self.store._run("insert", collection, self.session.flush())
        except DuplicateKeyError:
            await self.session.rollback()
            self.rolled_back = True
            raise
        return _identity(instance)

    async def find_one(
        self, collection: str, filters: Dict[str, Any], for_update: bool = False
    ) -> Optional[Dict[str, Any]]:
        """
        Read within the transaction.

        With `for_update` the matched row stays locked until commit (ignored
        by SQLite, where the first write already serializes writers).
        """
        self._check_open()
        return await self.store._run(
            "find_one",
            collection,
            _find_one_in(self.session, collection, filters, for_update=for_update),
        )


async def _find_one_in(
    session: AsyncSession,
    collection: str,
    filters: Dict[str, Any],
    for_update: bool = False,
) -> Optional[Dict[str, Any]]:
    result = await session.execute(_select(collection, filters, for_update).limit(1))
    instance = result.scalars().first()
    return instance.to_document() if instance is not None else None


async def _update_one_in(
    session: AsyncSession, collection: str, filters: Dict[str, Any], patch: Dict[str, Any]
) -> int:
    result = await session.execute(_select(collection, filters).limit(1))
    instance = result.scalars().first()
    if instance is None:
        return 0
    for key, value in patch.items():
        setattr(instance, key, value)
    await session.flush()
    return 1

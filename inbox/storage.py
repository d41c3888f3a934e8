"""
Message Store implementations.

Two stores share the MessageStore protocol:
- SqlMessageStore: SQLAlchemy asyncio engine (SQLite via aiosqlite, or any
  async driver SQLAlchemy supports)
- InMemoryMessageStore: process-local dict, selected with a memory:// URL

Both provide an atomic conditional status update so concurrent transitions
for the same message never lose an update.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Literal, Optional, Protocol

from sqlalchemy import func, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from inbox.errors import DuplicateMessage, StoreUnavailable
from inbox.models import Base, MessageRecord
from inbox.schemas import Message

logger = logging.getLogger(__name__)

MEMORY_URL_PREFIX = "memory://"

AgeField = Literal["timestamp", "record_updated_at"]


def utcnow() -> datetime:
    """Current server time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class MessageStore(Protocol):
    """Durable keyed collection of messages."""

    async def initialize(self) -> None: ...

    async def close(self) -> None: ...

    async def ping(self) -> None: ...

    async def find_by_external_id(self, external_message_id: str) -> Optional[Message]: ...

    async def insert(self, message: Message) -> Message: ...

    async def update_status(
        self,
        external_message_id: str,
        new_status: str,
        expected_status: Optional[str] = None,
    ) -> Optional[Message]: ...

    async def list_by_conversation(self, conversation_id: str) -> list[Message]: ...

    async def all(self) -> list[Message]: ...

    async def find_by_status(
        self,
        status: str,
        before: datetime,
        limit: int,
        field: AgeField = "timestamp",
    ) -> list[Message]: ...

    async def recent(self, limit: int = 5) -> list[Message]: ...


# =============================================================================
# SQL Store
# =============================================================================

class SqlMessageStore:
    """
    Message store backed by an async SQLAlchemy engine.

    Driver and connection errors surface as StoreUnavailable; a primary key
    collision on insert surfaces as DuplicateMessage.
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self._session_factory = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except IntegrityError:
            raise
        except (DBAPIError, OSError) as e:
            logger.error(f"Database operation failed: {e}")
            raise StoreUnavailable(f"Database unavailable: {e}") from e

    async def initialize(self) -> None:
        """
        Create all tables.
        Called during application startup; a failure here is fatal.
        """
        logger.debug(f"Initializing database with URL: {self.engine.url!r}")
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except (DBAPIError, OSError) as e:
            logger.error(f"Failed to initialize database: {e}")
            raise StoreUnavailable(f"Failed to initialize database: {e}") from e
        logger.info("Database initialized successfully")

    async def close(self) -> None:
        await self.engine.dispose()

    async def ping(self) -> None:
        """Check the database is reachable and the schema is applied."""
        async with self._session() as session:
            await session.execute(select(func.count()).select_from(MessageRecord))

    @staticmethod
    def _to_message(record: MessageRecord) -> Message:
        return Message(
            conversation_id=record.conversation_id,
            external_message_id=record.external_message_id,
            from_number=record.from_number,
            to=record.to_number,
            timestamp=_as_utc(record.timestamp),
            content_type=record.content_type,
            body=record.body,
            status=record.status,
            sender_display_name=record.sender_display_name,
            record_created_at=_as_utc(record.record_created_at),
            record_updated_at=_as_utc(record.record_updated_at),
        )

    async def find_by_external_id(self, external_message_id: str) -> Optional[Message]:
        async with self._session() as session:
            record = await session.get(MessageRecord, external_message_id)
            logger.debug(f"Message lookup {external_message_id}: {'found' if record else 'not found'}")
            return self._to_message(record) if record else None

    async def insert(self, message: Message) -> Message:
        record = MessageRecord(
            external_message_id=message.external_message_id,
            conversation_id=message.conversation_id,
            from_number=message.from_number,
            to_number=message.to,
            timestamp=message.timestamp,
            content_type=message.content_type,
            body=message.body,
            status=message.status,
            sender_display_name=message.sender_display_name,
            record_created_at=message.record_created_at,
            record_updated_at=message.record_updated_at,
        )
        try:
            async with self._session() as session:
                session.add(record)
                await session.commit()
        except IntegrityError:
            # external_message_id already exists
            logger.info(f"Duplicate message detected: {message.external_message_id}")
            raise DuplicateMessage(message.external_message_id)

        logger.debug(f"Message stored: {message.external_message_id}")
        return message

    async def update_status(
        self,
        external_message_id: str,
        new_status: str,
        expected_status: Optional[str] = None,
    ) -> Optional[Message]:
        """
        Set the status in a single UPDATE statement.

        With expected_status the update only matches while the stored status
        still equals it (compare-and-set). Returns None when nothing matched.
        """
        stmt = update(MessageRecord).where(
            MessageRecord.external_message_id == external_message_id
        )
        if expected_status is not None:
            stmt = stmt.where(MessageRecord.status == expected_status)
        stmt = stmt.values(status=new_status, record_updated_at=utcnow())

        async with self._session() as session:
            result = await session.execute(stmt)
            await session.commit()
            if result.rowcount == 0:
                return None
            record = await session.get(MessageRecord, external_message_id)
            return self._to_message(record) if record else None

    async def list_by_conversation(self, conversation_id: str) -> list[Message]:
        query = (
            select(MessageRecord)
            .where(MessageRecord.conversation_id == conversation_id)
            .order_by(MessageRecord.timestamp.asc(), MessageRecord.external_message_id.asc())
        )
        async with self._session() as session:
            result = await session.execute(query)
            return [self._to_message(r) for r in result.scalars().all()]

    async def all(self) -> list[Message]:
        async with self._session() as session:
            result = await session.execute(select(MessageRecord))
            return [self._to_message(r) for r in result.scalars().all()]

    async def find_by_status(
        self,
        status: str,
        before: datetime,
        limit: int,
        field: AgeField = "timestamp",
    ) -> list[Message]:
        column = MessageRecord.timestamp if field == "timestamp" else MessageRecord.record_updated_at
        query = (
            select(MessageRecord)
            .where(MessageRecord.status == status, column < before)
            .order_by(column.asc())
            .limit(limit)
        )
        async with self._session() as session:
            result = await session.execute(query)
            return [self._to_message(r) for r in result.scalars().all()]

    async def recent(self, limit: int = 5) -> list[Message]:
        query = select(MessageRecord).order_by(MessageRecord.timestamp.desc()).limit(limit)
        async with self._session() as session:
            result = await session.execute(query)
            return [self._to_message(r) for r in result.scalars().all()]


# =============================================================================
# In-Memory Store
# =============================================================================

class InMemoryMessageStore:
    """
    Process-local message store.

    A single asyncio.Lock serializes writes. Returned messages are copies,
    so callers can never mutate stored state.
    """

    def __init__(self):
        self._messages: dict[str, Message] = {}
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        logger.info("Using in-memory message store")

    async def close(self) -> None:
        pass

    async def ping(self) -> None:
        pass

    async def find_by_external_id(self, external_message_id: str) -> Optional[Message]:
        message = self._messages.get(external_message_id)
        return message.model_copy() if message else None

    async def insert(self, message: Message) -> Message:
        async with self._lock:
            if message.external_message_id in self._messages:
                logger.info(f"Duplicate message detected: {message.external_message_id}")
                raise DuplicateMessage(message.external_message_id)
            self._messages[message.external_message_id] = message.model_copy()
        return message

    async def update_status(
        self,
        external_message_id: str,
        new_status: str,
        expected_status: Optional[str] = None,
    ) -> Optional[Message]:
        async with self._lock:
            current = self._messages.get(external_message_id)
            if current is None:
                return None
            if expected_status is not None and current.status != expected_status:
                return None
            updated = current.model_copy(
                update={"status": new_status, "record_updated_at": utcnow()}
            )
            self._messages[external_message_id] = updated
            return updated.model_copy()

    async def list_by_conversation(self, conversation_id: str) -> list[Message]:
        messages = [m for m in self._messages.values() if m.conversation_id == conversation_id]
        messages.sort(key=lambda m: (m.timestamp, m.external_message_id))
        return [m.model_copy() for m in messages]

    async def all(self) -> list[Message]:
        return [m.model_copy() for m in self._messages.values()]

    async def find_by_status(
        self,
        status: str,
        before: datetime,
        limit: int,
        field: AgeField = "timestamp",
    ) -> list[Message]:
        matches = [
            m for m in self._messages.values()
            if m.status == status and getattr(m, field) < before
        ]
        matches.sort(key=lambda m: getattr(m, field))
        return [m.model_copy() for m in matches[:limit]]

    async def recent(self, limit: int = 5) -> list[Message]:
        messages = sorted(self._messages.values(), key=lambda m: m.timestamp, reverse=True)
        return [m.model_copy() for m in messages[:limit]]


def build_store(database_url: str) -> MessageStore:
    """
    Create the store for a database URL.

    memory:// selects the in-memory store; anything else is handed to
    SQLAlchemy's async engine.
    """
    if database_url.startswith(MEMORY_URL_PREFIX):
        return InMemoryMessageStore()

    engine = create_async_engine(
        database_url,
        echo=False,
        pool_pre_ping=True,
    )
    return SqlMessageStore(engine)

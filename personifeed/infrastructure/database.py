"""Feedback store: tables and async data access for Personifeed."""

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, List, Optional

from sqlalchemy import (
    Boolean, CheckConstraint, Column, DateTime, ForeignKey, Index, Integer,
    String, Text, UniqueConstraint,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import select, update

from personifeed.infrastructure.config import ApplicationConfig
from personifeed.infrastructure.error_handling import StoreUnavailable
from personifeed.infrastructure.logging import LoggerMixin
from personifeed.models.user import (
    FeedbackEntry, FeedbackSource, NewsletterRecord, NewsletterStatus, User,
)

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class UserRow(Base):
    """Newsletter subscribers."""

    __tablename__ = "users"

    id = Column(String(64), primary_key=True, default=_new_id)
    email = Column(String(255), unique=True, nullable=False, index=True)
    prompt = Column(Text, nullable=False)
    active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    # Relationships
    feedback = relationship("FeedbackRow", back_populates="user", cascade="all, delete-orphan")
    newsletters = relationship("NewsletterRow", back_populates="user", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_users_active_created_at", "active", "created_at"),
    )

    def __repr__(self):
        return f"<UserRow(id={self.id}, email={self.email})>"

    def to_model(self) -> User:
        return User(
            id=self.id,
            email=self.email,
            prompt=self.prompt,
            created_at=self.created_at,
            active=self.active,
        )


class FeedbackRow(Base):
    """Initial prompts and reply feedback, append-only."""

    __tablename__ = "feedback_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False)
    body = Column(Text, nullable=False)
    source = Column(String(20), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    # Relationships
    user = relationship("UserRow", back_populates="feedback")

    __table_args__ = (
        CheckConstraint("source IN ('initial', 'reply')", name="valid_feedback_source"),
        CheckConstraint("length(body) >= 1", name="feedback_not_empty"),
        Index("idx_feedback_user_source_created", "user_id", "source", "created_at"),
    )

    def to_model(self) -> FeedbackEntry:
        return FeedbackEntry(
            id=self.id,
            user_id=self.user_id,
            body=self.body,
            source=FeedbackSource(self.source),
            created_at=self.created_at,
        )


class NewsletterRow(Base):
    """Newsletter generation and delivery tracking, one row per user per run."""

    __tablename__ = "newsletters"

    id = Column(String(64), primary_key=True, default=_new_id)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=False)
    run_id = Column(String(64), nullable=False)
    body = Column(Text, default="", nullable=False)
    status = Column(String(20), default=NewsletterStatus.PENDING.value, nullable=False)
    error_detail = Column(Text, nullable=True)
    delivery_id = Column(String(255), nullable=True)
    generation_started_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    # Relationships
    user = relationship("UserRow", back_populates="newsletters")

    __table_args__ = (
        UniqueConstraint("user_id", "run_id", name="unique_newsletter_per_run"),
        CheckConstraint("status IN ('pending', 'sent', 'failed')", name="valid_newsletter_status"),
        Index("idx_newsletters_status", "status"),
    )

    def to_model(self) -> NewsletterRecord:
        return NewsletterRecord(
            id=self.id,
            user_id=self.user_id,
            run_id=self.run_id,
            status=NewsletterStatus(self.status),
            body=self.body or "",
            error_detail=self.error_detail,
            delivery_id=self.delivery_id,
            generation_started_at=self.generation_started_at,
            delivered_at=self.delivered_at,
            created_at=self.created_at,
        )


class FeedbackStore(LoggerMixin):
    """Async record store for users, feedback entries and newsletter records.

    Every failure of the underlying database surfaces as ``StoreUnavailable``.
    """

    def __init__(self, database_url: str):
        self.database_url = database_url
        self.engine = create_async_engine(
            database_url,
            echo=False,  # Set to True for SQL debugging
            pool_pre_ping=True,
        )
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    async def init_tables(self) -> None:
        """Initialize database tables."""
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            raise StoreUnavailable("Failed to initialize tables", {"error": str(e)}) from e

    async def close(self) -> None:
        """Close database connections."""
        await self.engine.dispose()

    def get_session(self) -> AsyncSession:
        """Get database session."""
        return self.session_factory()

    @asynccontextmanager
    async def _session(self, operation: str, **context) -> AsyncIterator[AsyncSession]:
        session = self.get_session()
        try:
            yield session
        except SQLAlchemyError as e:
            self.logger.error(
                "Database operation failed",
                operation=operation,
                error=str(e),
                **context,
            )
            raise StoreUnavailable(
                f"Failed to {operation}", {"error": str(e), **context}
            ) from e
        finally:
            await session.close()

    # User operations
    async def create_user(
        self,
        email: str,
        prompt: str,
        user_id: Optional[str] = None,
    ) -> User:
        """Create a subscriber together with its initial feedback entry."""
        async with self._session("create user", email=email) as session:
            row = UserRow(id=user_id or _new_id(), email=email, prompt=prompt, active=True)
            session.add(row)
            session.add(FeedbackRow(
                user=row,
                body=prompt,
                source=FeedbackSource.INITIAL.value,
            ))
            await session.commit()
            self.logger.info("User created", user_id=row.id)
            return row.to_model()

    async def get_user_by_id(self, user_id: str) -> Optional[User]:
        """Get user by ID, or None when absent."""
        async with self._session("get user", user_id=user_id) as session:
            result = await session.execute(select(UserRow).where(UserRow.id == user_id))
            row = result.scalar_one_or_none()
            return row.to_model() if row else None

    async def get_active_users(self) -> List[User]:
        """Get all active users, oldest subscription first."""
        async with self._session("fetch active users") as session:
            result = await session.execute(
                select(UserRow)
                .where(UserRow.active.is_(True))
                .order_by(UserRow.created_at.asc(), UserRow.id.asc())
            )
            return [row.to_model() for row in result.scalars().all()]

    async def list_users(self) -> List[User]:
        """List all users including inactive ones."""
        async with self._session("list users") as session:
            result = await session.execute(select(UserRow).order_by(UserRow.created_at.asc()))
            return [row.to_model() for row in result.scalars().all()]

    async def set_user_active(self, user_id: str, active: bool) -> bool:
        """Flip the active flag. Returns False when the user does not exist."""
        async with self._session("update user", user_id=user_id) as session:
            result = await session.execute(
                update(UserRow).where(UserRow.id == user_id).values(active=active)
            )
            await session.commit()
            return result.rowcount > 0

    # Feedback operations
    async def get_feedback_history(self, user_id: str, limit: int) -> List[FeedbackEntry]:
        """Get the initial entry plus the ``limit`` most recent replies.

        Only the bounded window is read from the database. Entries come back
        in chronological order with the initial entry first.
        """
        async with self._session("fetch feedback history", user_id=user_id) as session:
            initial = await session.execute(
                select(FeedbackRow)
                .where(
                    FeedbackRow.user_id == user_id,
                    FeedbackRow.source == FeedbackSource.INITIAL.value,
                )
                .order_by(FeedbackRow.created_at.asc(), FeedbackRow.id.asc())
                .limit(1)
            )
            replies = await session.execute(
                select(FeedbackRow)
                .where(
                    FeedbackRow.user_id == user_id,
                    FeedbackRow.source == FeedbackSource.REPLY.value,
                )
                .order_by(FeedbackRow.created_at.desc(), FeedbackRow.id.desc())
                .limit(limit)
            )
            history = [row.to_model() for row in initial.scalars().all()]
            history.extend(reversed([row.to_model() for row in replies.scalars().all()]))
            return history

    async def append_feedback(
        self,
        user_id: str,
        body: str,
        source: FeedbackSource = FeedbackSource.REPLY,
    ) -> FeedbackEntry:
        """Append one feedback entry for a user."""
        async with self._session("append feedback", user_id=user_id) as session:
            row = FeedbackRow(user_id=user_id, body=body, source=source.value)
            session.add(row)
            await session.commit()
            self.logger.info(
                "Feedback stored",
                user_id=user_id,
                feedback_id=row.id,
                source=source.value,
                content_length=len(body),
            )
            return row.to_model()

    # Newsletter records
    async def create_newsletter_record(self, user_id: str, run_id: str) -> str:
        """Create a pending record for a user in a run and return its id."""
        async with self._session("create newsletter record", user_id=user_id, run_id=run_id) as session:
            row = NewsletterRow(
                user_id=user_id,
                run_id=run_id,
                status=NewsletterStatus.PENDING.value,
                generation_started_at=_utcnow(),
            )
            session.add(row)
            await session.commit()
            return row.id

    async def update_newsletter_record(
        self,
        record_id: str,
        status: NewsletterStatus,
        body: Optional[str] = None,
        detail: Optional[str] = None,
        delivery_id: Optional[str] = None,
        delivered_at: Optional[datetime] = None,
    ) -> bool:
        """Move a pending record to a terminal status.

        Records that are already sent or failed are left untouched and
        False is returned. ``delivered_at`` defaults to now for sent records.
        """
        if not status.is_terminal:
            raise ValueError(f"Newsletter records can only move to a terminal status, got {status.value}")

        values = {"status": status.value, "error_detail": detail}
        if body is not None:
            values["body"] = body
        if status == NewsletterStatus.SENT:
            values["delivered_at"] = delivered_at or _utcnow()
            values["delivery_id"] = delivery_id

        async with self._session("update newsletter record", record_id=record_id) as session:
            result = await session.execute(
                update(NewsletterRow)
                .where(
                    NewsletterRow.id == record_id,
                    NewsletterRow.status == NewsletterStatus.PENDING.value,
                )
                .values(**values)
            )
            await session.commit()

        if result.rowcount == 0:
            self.logger.warning(
                "Newsletter record not pending, update skipped",
                record_id=record_id,
                status=status.value,
            )
            return False
        return True

    async def get_newsletter_records(self, user_id: str) -> List[NewsletterRecord]:
        """Get all newsletter records of a user, oldest first."""
        async with self._session("fetch newsletter records", user_id=user_id) as session:
            result = await session.execute(
                select(NewsletterRow)
                .where(NewsletterRow.user_id == user_id)
                .order_by(NewsletterRow.created_at.asc())
            )
            return [row.to_model() for row in result.scalars().all()]


async def init_database(config: ApplicationConfig) -> FeedbackStore:
    """Initialize the feedback store with configuration."""
    store = FeedbackStore(config.async_database_url)
    await store.init_tables()
    return store

"""Ledger database: ORM tables, engine and session factory.

Store methods run in their own short transaction unless a caller passes a
session to join. Correctness-relevant transitions are conditional statements,
so several processes sharing the same database agree on one winner.
"""

from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import (
    BigInteger,
    Boolean,
    Index,
    Integer,
    String,
    Text,
    create_engine,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from vip_gate.logging_config import get_logger

logger = get_logger(__name__)

SETTINGS_ROW_ID = 1


class TransientStoreError(Exception):
    """Raised when the ledger database is temporarily unreachable or busy."""

    pass


class Base(DeclarativeBase):
    pass


class IdentityRow(Base):
    __tablename__ = "identities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    subject_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    access_state: Mapped[str] = mapped_column(String(16), default="inactive", index=True)
    plan_kind: Mapped[str] = mapped_column(String(16), default="unset")
    expires_at_millis: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True, index=True)
    admit_pending: Mapped[bool] = mapped_column(Boolean, default=False)


class PaymentIntentRow(Base):
    __tablename__ = "payment_intents"

    intent_id: Mapped[str] = mapped_column(String(40), primary_key=True)
    subject_id: Mapped[str] = mapped_column(String(64), index=True)
    plan_kind: Mapped[str] = mapped_column(String(16))
    amount_cents: Mapped[int] = mapped_column(BigInteger)
    provider_reference: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    status: Mapped[str] = mapped_column(String(16), default="pending", index=True)
    created_at_millis: Mapped[int] = mapped_column(BigInteger)
    expires_at_millis: Mapped[int] = mapped_column(BigInteger, index=True)
    approved_at_millis: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    __table_args__ = (Index("ix_payment_intents_subject_status", "subject_id", "status"),)


class SettingsRow(Base):
    __tablename__ = "settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    group_id: Mapped[str] = mapped_column(String(64))
    recurring_price_cents: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    perpetual_price_cents: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    recurring_duration_days: Mapped[int] = mapped_column(Integer, default=30)
    currency: Mapped[str] = mapped_column(String(8), default="BRL")
    templates_json: Mapped[str] = mapped_column(Text, default="{}")
    revenue_cents: Mapped[int] = mapped_column(BigInteger, default=0)


class ReviewCaseRow(Base):
    __tablename__ = "review_cases"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # one case per payment, however often it is re-checked
    provider_reference: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    subject_id: Mapped[str] = mapped_column(String(64))
    expected_cents: Mapped[int] = mapped_column(BigInteger)
    # exact provider figure, which may carry sub-cent digits
    reported_amount: Mapped[str] = mapped_column(String(32))
    created_at_millis: Mapped[int] = mapped_column(BigInteger)


def build_engine(url: str, echo: bool = False) -> Engine:
    """Create a SQLAlchemy engine, with thread-safe settings for SQLite."""
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": 15}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # one shared connection so every session sees the same memory database
            return create_engine(
                url,
                echo=echo,
                connect_args=connect_args,
                poolclass=StaticPool,
            )
        return create_engine(url, echo=echo, connect_args=connect_args)
    return create_engine(url, echo=echo, pool_pre_ping=True)


class Database:
    """Engine plus session factory for the ledger."""

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.engine = build_engine(url, echo=echo)
        self.session_factory = sessionmaker(
            bind=self.engine,
            autoflush=False,
            expire_on_commit=False,
        )

    def create_schema(self) -> None:
        """Create all ledger tables if they do not exist."""
        Base.metadata.create_all(self.engine)
        logger.info("ledger_schema_ready", url=self.engine.url.render_as_string(hide_password=True))

    def dispose(self) -> None:
        self.engine.dispose()


@contextmanager
def transaction(
    session_factory: sessionmaker, session: Optional[Session] = None
) -> Iterator[Session]:
    """Run a block in one transaction, translating connectivity faults.

    If ``session`` is given the block joins that caller-owned transaction instead.

    Raises:
        TransientStoreError: If the database is unreachable, locked or busy
    """
    if session is not None:
        yield session
        return
    try:
        with session_factory() as session, session.begin():
            yield session
    except OperationalError as e:
        logger.warning("ledger_operational_error", error=str(e.orig))
        raise TransientStoreError(str(e.orig)) from e
    except DBAPIError as e:
        if e.connection_invalidated:
            raise TransientStoreError(str(e.orig)) from e
        raise


# Global database instance
_database_instance: Optional[Database] = None


def get_database() -> Database:
    """Get global database instance (singleton), configured from get_config()."""
    global _database_instance
    if _database_instance is None:
        from vip_gate.config import get_config

        db_config = get_config().database
        _database_instance = Database(db_config.url, echo=db_config.echo)
    return _database_instance


def set_database(database: Optional[Database]) -> None:
    """Replace the global database instance (tests, alternate bootstrap)."""
    global _database_instance
    _database_instance = database

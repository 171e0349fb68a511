"""
Declarative base and portable column types shared by every ORM model.

Every table gets a uuid4 primary key stored as 36-character text, exact
decimals for stock and money (never float), and timezone-aware UTC
timestamps, on PostgreSQL and SQLite alike.  Rows that record who changed
them derive from :class:`TrackedBase`.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, Date, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

# Writer identity for customer self-service orders and background jobs.
SYSTEM_ACTOR_ID = UUID(int=0)


class UUIDString(TypeDecorator):
    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(str(value))


class PortableDecimal(TypeDecorator):
    """
    ``Numeric(38, 9)`` on PostgreSQL; canonical decimal text on SQLite,
    whose numeric affinity would otherwise pass values through float.
    Reads always yield ``Decimal``.
    """

    impl = Numeric(38, 9)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(64))
        return dialect.type_descriptor(Numeric(38, 9, asdecimal=True))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        exact = value if isinstance(value, Decimal) else Decimal(str(value))
        return format(exact, "f") if dialect.name == "sqlite" else exact

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, Decimal):
            return value
        return Decimal(str(value))


def _as_utc(value: datetime) -> datetime:
    # Naive values (SQLite drops offsets) are taken to be UTC already.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Stores UTC and always hands back an aware datetime."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else _as_utc(value)

    def process_result_value(self, value, dialect):
        return None if value is None else _as_utc(value)


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        Decimal: PortableDecimal(),
        datetime: UTCDateTime(),
        date: Date(),
        UUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """Adds server-set created/updated timestamps and the acting user's id."""

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), onupdate=func.now(), nullable=False,
    )
    created_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, default=SYSTEM_ACTOR_ID)
    updated_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

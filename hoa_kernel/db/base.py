"""
Module: hoa_kernel.db.base
Responsibility: Declarative base for the ledger's ORM models.
Architecture position: Kernel > DB.  Imported by every model module; imports
    nothing from models/, domain/ or outer layers.

Column conventions:
    - Primary keys are uuid4 values stored as 36-character strings, so the
      same schema runs on SQLite (tests) and PostgreSQL.
    - ``int`` annotations map to BigInteger.  Money columns hold integer
      minor units; floats are never stored.
    - Constraint and index names follow ``NAMING_CONVENTION`` so that
      migrations diff cleanly across databases.
"""

from datetime import date, datetime
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, Date, DateTime, MetaData, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

NAMING_CONVENTION = {
    "ix": "ix_%(table_name)s_%(column_0_name)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class UUIDString(TypeDecorator):
    """UUID stored as String(36); read back as ``uuid.UUID``."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else PyUUID(value)


class Base(DeclarativeBase):
    """Root of every ledger table; supplies the uuid4 ``id`` primary key."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)

    type_annotation_map: ClassVar[dict] = {
        datetime: DateTime(timezone=True),
        date: Date,
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """Adds database-stamped ``created_at`` / ``updated_at`` columns."""

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        onupdate=func.now(),
    )


UUID = PyUUID

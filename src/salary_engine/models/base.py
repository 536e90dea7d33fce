"""Declarative base for salary engine tables."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Date, DateTime, MetaData, Numeric, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Stable constraint names across SQLite and Postgres
NAMING_CONVENTION = {
    "pk": "%(table_name)s_pkey",
    "ix": "ix_%(table_name)s_%(column_0_name)s",
    "ck": "%(table_name)s_%(constraint_name)s_check",
}


class Base(DeclarativeBase):
    """Base class for all ORM models.

    Amounts map to NUMERIC(18, 6) so lookup values keep their decimal scale.
    """

    metadata = MetaData(naming_convention=NAMING_CONVENTION)

    type_annotation_map = {
        datetime: DateTime(timezone=True),
        date: Date(),
        Decimal: Numeric(18, 6),
    }


class TimestampMixin:
    """Mixin for rows recording when they were loaded."""

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)

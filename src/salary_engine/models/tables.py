"""Date-versioned lookup table rows."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, Index, String, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from salary_engine.models.base import Base, TimestampMixin


class LookupTableRow(Base, TimestampMixin):
    """One keyed value of a tenant's lookup table, valid for a date range.

    Rows are scoped to the component that reads them. ``keys_json`` holds
    the normalized key tuple (see ``table_service.normalize_keys``).
    """

    __tablename__ = "lookup_table_row"

    lookup_table_row_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    tenant_id: Mapped[str] = mapped_column(String(64))
    component_target: Mapped[str] = mapped_column(String(128))
    table_name: Mapped[str] = mapped_column(String(128))
    keys_json: Mapped[list[Any]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), default=list
    )
    effective_start: Mapped[date]
    effective_end: Mapped[date | None]
    value: Mapped[Decimal]

    __table_args__ = (
        CheckConstraint(
            "effective_end IS NULL OR effective_end >= effective_start",
            name="dates",
        ),
        Index("ix_lookup_table_row_scope", "tenant_id", "component_target", "table_name"),
    )

    def is_active_on(self, as_of_date: date) -> bool:
        """Check if row is active on a given date (both bounds inclusive)."""
        if self.effective_start > as_of_date:
            return False
        if self.effective_end is not None and self.effective_end < as_of_date:
            return False
        return True

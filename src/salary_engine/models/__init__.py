"""SQLAlchemy ORM models."""

from salary_engine.models.base import Base, TimestampMixin
from salary_engine.models.tables import LookupTableRow

__all__ = ["Base", "LookupTableRow", "TimestampMixin"]

"""Date-versioned table lookups used by TBL(...) expressions."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Protocol, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from salary_engine.calculators.types import as_decimal, format_decimal
from salary_engine.models import LookupTableRow


class TableLookupError(Exception):
    """Raised when a lookup matches no row, or more than one."""

    def __init__(
        self,
        tenant_id: str,
        component_target: str,
        table_name: str,
        keys: Sequence[Any],
        on_date: date,
        reason: str = "no matching row",
    ):
        self.tenant_id = tenant_id
        self.component_target = component_target
        self.table_name = table_name
        self.keys = list(keys)
        self.on_date = on_date
        self.reason = reason
        super().__init__(
            f"Table '{table_name}' for component '{component_target}' "
            f"(tenant '{tenant_id}'): {reason} for keys {self.keys} on {on_date}"
        )


class TableService(Protocol):
    """Read-only lookup capability consumed by the rule engine.

    Implementations must be safe for concurrent reads.
    """

    async def lookup(
        self,
        tenant_id: str,
        component_target: str,
        table_name: str,
        keys: Sequence[Any],
        on_date: date,
    ) -> Decimal:
        """Return the value keyed by ``keys`` valid on ``on_date``.

        Raises:
            TableLookupError: If no row (or more than one row) matches
        """
        ...


def normalize_key(key: Any) -> str:
    """Canonical text form of one lookup key.

    Numbers compare by value (``10`` matches ``10.00``), booleans are
    ``true``/``false`` and dates use ISO format.
    """
    if isinstance(key, bool):
        return "true" if key else "false"
    if isinstance(key, (int, float, Decimal)):
        number = as_decimal(key)
        if number == number.to_integral_value():
            return format_decimal(number.quantize(Decimal(1)))
        return format_decimal(number.normalize())
    if isinstance(key, date):
        return key.isoformat()
    return str(key)


def normalize_keys(keys: Sequence[Any]) -> list[str]:
    return [normalize_key(k) for k in keys]


@dataclass(frozen=True)
class TableRow:
    """In-memory lookup row."""

    keys: tuple[str, ...]
    value: Decimal
    effective_start: date
    effective_end: date | None = None

    def is_active_on(self, as_of_date: date) -> bool:
        if self.effective_start > as_of_date:
            return False
        if self.effective_end is not None and self.effective_end < as_of_date:
            return False
        return True


class InMemoryTableService:
    """Table service backed by a dict: tenant -> component -> table -> rows."""

    def __init__(self) -> None:
        self._rows: dict[tuple[str, str, str], list[TableRow]] = defaultdict(list)

    def add_row(
        self,
        tenant_id: str,
        component_target: str,
        table_name: str,
        keys: Sequence[Any],
        value: Any,
        effective_start: date,
        effective_end: date | None = None,
    ) -> None:
        self._rows[(tenant_id, component_target, table_name)].append(
            TableRow(
                keys=tuple(normalize_keys(keys)),
                value=as_decimal(value),
                effective_start=effective_start,
                effective_end=effective_end,
            )
        )

    async def lookup(
        self,
        tenant_id: str,
        component_target: str,
        table_name: str,
        keys: Sequence[Any],
        on_date: date,
    ) -> Decimal:
        wanted = tuple(normalize_keys(keys))
        matches = [
            row
            for row in self._rows.get((tenant_id, component_target, table_name), [])
            if row.keys == wanted and row.is_active_on(on_date)
        ]
        return _single_value(matches, tenant_id, component_target, table_name, keys, on_date)


class SqlTableService:
    """Table service reading ``lookup_table_row`` through SQLAlchemy.

    Each lookup opens its own session, so one instance can serve
    concurrent evaluations.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def lookup(
        self,
        tenant_id: str,
        component_target: str,
        table_name: str,
        keys: Sequence[Any],
        on_date: date,
    ) -> Decimal:
        wanted = normalize_keys(keys)
        async with self.session_factory() as session:
            candidates = await self._get_candidate_rows(
                session, tenant_id, component_target, table_name, on_date
            )
        matches = [row for row in candidates if list(row.keys_json) == wanted]
        return _single_value(matches, tenant_id, component_target, table_name, keys, on_date)

    async def _get_candidate_rows(
        self,
        session: AsyncSession,
        tenant_id: str,
        component_target: str,
        table_name: str,
        on_date: date,
    ) -> list[LookupTableRow]:
        """Get all rows of a table effective on a date."""
        result = await session.execute(
            select(LookupTableRow).where(
                LookupTableRow.tenant_id == tenant_id,
                LookupTableRow.component_target == component_target,
                LookupTableRow.table_name == table_name,
                LookupTableRow.effective_start <= on_date,
                (
                    LookupTableRow.effective_end.is_(None)
                    | (LookupTableRow.effective_end >= on_date)
                ),
            )
        )
        return list(result.scalars().all())


def _single_value(
    matches: Sequence[TableRow | LookupTableRow],
    tenant_id: str,
    component_target: str,
    table_name: str,
    keys: Sequence[Any],
    on_date: date,
) -> Decimal:
    if not matches:
        raise TableLookupError(tenant_id, component_target, table_name, keys, on_date)
    if len(matches) > 1:
        raise TableLookupError(
            tenant_id,
            component_target,
            table_name,
            keys,
            on_date,
            reason=f"{len(matches)} rows match",
        )
    return as_decimal(matches[0].value)

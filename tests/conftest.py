"""Pytest fixtures for salary engine tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import date
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from salary_engine.calculators.engine import RuleEngine
from salary_engine.calculators.expressions import inp, lit, ref, tbl
from salary_engine.calculators.table_service import InMemoryTableService
from salary_engine.calculators.types import EvalContext, Rule, RuleSet
from salary_engine.database import create_session_factory
from salary_engine.models import Base

# In-memory SQLite shared by every connection of one engine
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

ENGINE_VERSION = "1.0.0-test"
TENANT = "acme"
RULES_START = date(2024, 1, 1)
EVAL_DATE = date(2025, 1, 31)


@pytest.fixture
def fixed_rule_set() -> RuleSet:
    """Base fixed at 3000, Bonus 10% of Base."""
    return RuleSet(
        id="fixed",
        tenant_id=TENANT,
        rules=(
            Rule("Base", lit(3000), effective_from=RULES_START),
            Rule(
                "Bonus",
                ref("Base") * lit("0.10"),
                depends_on=("Base",),
                effective_from=RULES_START,
            ),
        ),
    )


@pytest.fixture
def salary_rule_set() -> RuleSet:
    """Base read from inputs, Bonus 10% of Base, pension and tax contributions."""
    return RuleSet(
        id="salary",
        tenant_id=TENANT,
        rules=(
            Rule(
                "Base",
                inp("Base"),
                effective_from=RULES_START,
                meta={"taxable": "true"},
            ),
            Rule(
                "Bonus",
                ref("Base") * lit("0.10"),
                depends_on=("Base",),
                effective_from=RULES_START,
                meta={"taxable": "true"},
            ),
            Rule(
                "Pension",
                (ref("Base") + ref("Bonus")) * lit("0.05"),
                depends_on=("Base", "Bonus"),
                effective_from=RULES_START,
                meta={"contribution_group": "pension"},
            ),
            Rule(
                "IncomeTax",
                (ref("Base") + ref("Bonus")) * lit("0.20"),
                depends_on=("Base", "Bonus"),
                effective_from=RULES_START,
                meta={"contribution_group": "tax"},
            ),
        ),
    )


@pytest.fixture
def grade_rule_set() -> RuleSet:
    """Allowance looked up by grade from a table."""
    return RuleSet(
        id="grades",
        tenant_id=TENANT,
        rules=(
            Rule("Base", inp("Base"), effective_from=RULES_START),
            Rule(
                "Allowance",
                tbl("grade_allowance", inp("GRADE")),
                effective_from=RULES_START,
            ),
        ),
    )


@pytest.fixture
def table_service() -> InMemoryTableService:
    service = InMemoryTableService()
    service.add_row(TENANT, "Allowance", "grade_allowance", [1], "150", date(2024, 1, 1))
    service.add_row(
        TENANT, "Allowance", "grade_allowance", [2], "250", date(2024, 1, 1), date(2024, 12, 31)
    )
    service.add_row(TENANT, "Allowance", "grade_allowance", [2], "275", date(2025, 1, 1))
    return service


@pytest.fixture
def rule_engine(table_service: InMemoryTableService) -> RuleEngine:
    return RuleEngine(table_service, engine_version=ENGINE_VERSION)


@pytest.fixture
def context() -> EvalContext:
    return EvalContext({"Base": Decimal("3000")}, EVAL_DATE, TENANT)


@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create test database engine with the schema in place."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(db_engine)

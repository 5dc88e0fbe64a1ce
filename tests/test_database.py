"""
Tests for the transaction helper.
"""

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import InternalError, NotFoundError
from app.database import run_in_transaction
from app.models import Business


async def count_businesses(db) -> int:
    return (await db.execute(select(func.count(Business.id)))).scalar()


class TestRunInTransaction:

    @pytest.mark.asyncio
    async def test_commits_on_success(self, db):
        async def operation(session):
            session.add(Business(name="Burger Barn"))
            return "done"

        assert await run_in_transaction(db, operation) == "done"
        assert await count_businesses(db) == 1

    @pytest.mark.asyncio
    async def test_rolls_back_ledger_errors(self, db):
        async def operation(session):
            session.add(Business(name="Burger Barn"))
            await session.flush()
            raise NotFoundError("nope")

        with pytest.raises(NotFoundError):
            await run_in_transaction(db, operation)
        assert await count_businesses(db) == 0

    @pytest.mark.asyncio
    async def test_storage_errors_become_internal(self, db):
        async def operation(session):
            session.add(Business(name="Burger Barn"))
            await session.flush()
            raise SQLAlchemyError("disk on fire")

        with pytest.raises(InternalError) as exc_info:
            await run_in_transaction(db, operation)

        assert exc_info.value.status_code == 500
        assert await count_businesses(db) == 0

    @pytest.mark.asyncio
    async def test_rolls_back_anything_else(self, db):
        async def operation(session):
            session.add(Business(name="Burger Barn"))
            await session.flush()
            raise RuntimeError("unexpected")

        with pytest.raises(RuntimeError):
            await run_in_transaction(db, operation)
        assert await count_businesses(db) == 0

"""
TISS Numbering Service
Atomic, gap-tolerant counters for guide and batch numbers
"""

import logging

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.tiss import TISSSequence

logger = logging.getLogger(__name__)


def guide_scope(clinic_id: int, year: int) -> str:
    return f"guide:{clinic_id}:{year}"


def batch_scope(clinic_id: int, year: int, month: int) -> str:
    return f"batch:{clinic_id}:{year}{month:02d}"


def format_guide_number(year: int, sequence: int) -> str:
    """YYYY + 6-digit sequence"""
    return f"{year}{sequence:06d}"


def format_batch_number(year: int, month: int, sequence: int) -> str:
    """YYYY + MM + 3-digit sequence"""
    return f"{year}{month:02d}{sequence:03d}"


def format_batch_guide_number(batch_number: str, index: int) -> str:
    """Guides generated inside a batch: batch number + 4-digit position"""
    return f"{batch_number}{index:04d}"


class NumberingService:
    """
    Allocates the next value of a scoped counter.

    The counter row is created with INSERT ... ON CONFLICT DO NOTHING and then
    incremented with a single UPDATE ... RETURNING, so concurrent transactions
    serialize on the row lock instead of reading a count and racing.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def next_value(self, scope: str) -> int:
        await self._ensure_row(scope)

        stmt = (
            update(TISSSequence)
            .where(TISSSequence.scope == scope)
            .values(last_value=TISSSequence.last_value + 1)
            .returning(TISSSequence.last_value)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        value = result.scalar_one()
        logger.debug(f"Sequence {scope} -> {value}")
        return value

    async def _ensure_row(self, scope: str) -> None:
        dialect = self.db.get_bind().dialect.name

        if dialect == "postgresql":
            stmt = postgresql.insert(TISSSequence).values(scope=scope, last_value=0)
            await self.db.execute(stmt.on_conflict_do_nothing(index_elements=["scope"]))
            return
        if dialect == "sqlite":
            stmt = sqlite.insert(TISSSequence).values(scope=scope, last_value=0)
            await self.db.execute(stmt.on_conflict_do_nothing(index_elements=["scope"]))
            return

        # Other backends: insert inside a savepoint and accept losing the race
        exists = await self.db.execute(select(TISSSequence.scope).where(TISSSequence.scope == scope))
        if exists.scalar_one_or_none() is not None:
            return
        try:
            async with self.db.begin_nested():
                self.db.add(TISSSequence(scope=scope, last_value=0))
        except IntegrityError:
            logger.info(f"Sequence {scope} created concurrently")

    async def next_guide_number(self, clinic_id: int, year: int) -> str:
        sequence = await self.next_value(guide_scope(clinic_id, year))
        return format_guide_number(year, sequence)

    async def next_batch_number(self, clinic_id: int, year: int, month: int) -> str:
        sequence = await self.next_value(batch_scope(clinic_id, year, month))
        return format_batch_number(year, month, sequence)

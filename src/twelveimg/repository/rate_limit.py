from datetime import datetime

from sqlalchemy import delete
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from twelveimg.models.rate_limit import RateLimitCounter


class RateLimitRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def increment(self, key: str, window_start: datetime) -> int:
        """Atomically bump the counter for (key, window) and return the new value."""
        stmt = (
            pg_insert(RateLimitCounter)
            .values(key=key, window_start=window_start, count=1)
            .on_conflict_do_update(
                index_elements=[RateLimitCounter.key, RateLimitCounter.window_start],
                set_={"count": RateLimitCounter.count + 1},
            )
            .returning(RateLimitCounter.count)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one()

    async def purge_before(self, cutoff: datetime) -> int:
        result = await self.db.execute(delete(RateLimitCounter).where(RateLimitCounter.window_start < cutoff))
        return result.rowcount

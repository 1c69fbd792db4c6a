from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession

from twelveimg.db.database import AsyncSessionLocal
from twelveimg.repository.archive import ArchiveRepository
from twelveimg.repository.gallery import GalleryRepository
from twelveimg.repository.image import ImageRepository
from twelveimg.repository.rate_limit import RateLimitRepository
from twelveimg.repository.user import UserRepository


class UnitOfWork:
    """
    Unit of Work pattern to manage repositories and database transactions.
    """
    def __init__(self, db: AsyncSession):
        self.db = db
        self.users = UserRepository(db)
        self.galleries = GalleryRepository(db)
        self.images = ImageRepository(db)
        self.archives = ArchiveRepository(db)
        self.rate_limits = RateLimitRepository(db)

    async def __aenter__(self) -> "UnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is not None:
            await self.rollback()
        else:
            await self.commit()

    async def commit(self):
        await self.db.commit()

    async def rollback(self):
        await self.db.rollback()

    async def flush(self):
        await self.db.flush()

    async def refresh(self, instance):
        await self.db.refresh(instance)


@asynccontextmanager
async def new_uow() -> AsyncIterator[UnitOfWork]:
    """A unit of work on its own session, for work outside a request (workers, parallel inserts)."""
    async with AsyncSessionLocal() as session:
        yield UnitOfWork(session)

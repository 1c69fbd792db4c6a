import uuid
from typing import Optional

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from twelveimg.models.user import User


class UserRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_auth_subject(self, auth_subject: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.auth_subject == auth_subject))
        return result.scalar_one_or_none()

    async def get_or_create(self, auth_subject: str, email: Optional[str] = None) -> User:
        """First request from a new identity-provider subject creates its user row."""
        stmt = (
            pg_insert(User)
            .values(id=uuid.uuid4(), auth_subject=auth_subject, email=email, plan="free")
            .on_conflict_do_nothing(index_elements=[User.auth_subject])
        )
        await self.db.execute(stmt)
        return await self.get_by_auth_subject(auth_subject)

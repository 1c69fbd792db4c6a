import uuid
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from twelveimg.models.gallery import Gallery
from twelveimg.models.image import Image


@dataclass
class StorageUsage:
    total_bytes: int
    image_count: int


class ImageRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_gallery_id(self, gallery_id) -> Sequence[Image]:
        result = await self.db.execute(
            select(Image).where(Image.gallery_id == gallery_id).order_by(Image.position.asc())
        )
        return result.scalars().all()

    async def get_ids_by_gallery_id(self, gallery_id) -> List[uuid.UUID]:
        result = await self.db.execute(
            select(Image.id).where(Image.gallery_id == gallery_id).order_by(Image.id.asc())
        )
        return list(result.scalars().all())

    async def count_by_gallery_id(self, gallery_id) -> int:
        result = await self.db.execute(select(func.count(Image.id)).where(Image.gallery_id == gallery_id))
        return result.scalar_one()

    async def get_filenames_by_gallery_id(self, gallery_id) -> List[str]:
        result = await self.db.execute(select(Image.original_filename).where(Image.gallery_id == gallery_id))
        return list(result.scalars().all())

    async def get_usage_for_user(self, user_id) -> StorageUsage:
        result = await self.db.execute(
            select(func.coalesce(func.sum(Image.file_size_bytes), 0), func.count(Image.id))
            .select_from(Image)
            .join(Gallery, Gallery.id == Image.gallery_id)
            .where(Gallery.user_id == user_id)
        )
        total_bytes, image_count = result.one()
        return StorageUsage(total_bytes=int(total_bytes), image_count=int(image_count))

    async def insert_image_at_position(
        self,
        gallery_id,
        storage_path: str,
        original_filename: str,
        file_size_bytes: int,
        mime_type: str,
        width: Optional[int] = None,
        height: Optional[int] = None,
    ) -> Tuple[uuid.UUID, bool]:
        """
        Append an image after the gallery's current max position.

        The gallery row lock serializes appends per gallery, so concurrent
        confirmations get distinct, increasing positions. A storage path that
        was already confirmed is not inserted again.

        Returns (image_id, created).
        """
        await self.db.execute(select(Gallery.id).where(Gallery.id == gallery_id).with_for_update())

        next_position = (
            select(func.coalesce(func.max(Image.position) + 1, 0))
            .where(Image.gallery_id == gallery_id)
            .scalar_subquery()
        )
        stmt = (
            pg_insert(Image)
            .values(
                id=uuid.uuid4(),
                gallery_id=gallery_id,
                storage_path=storage_path,
                original_filename=original_filename,
                file_size_bytes=file_size_bytes,
                mime_type=mime_type,
                width=width,
                height=height,
                position=next_position,
            )
            .on_conflict_do_nothing(index_elements=[Image.storage_path])
            .returning(Image.id)
        )
        result = await self.db.execute(stmt)
        image_id = result.scalar_one_or_none()
        if image_id is not None:
            return image_id, True

        existing = await self.db.execute(select(Image.id).where(Image.storage_path == storage_path))
        return existing.scalar_one(), False

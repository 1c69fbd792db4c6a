from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from twelveimg.models.gallery import Gallery


class GalleryRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, gallery_id) -> Optional[Gallery]:
        result = await self.db.execute(select(Gallery).where(Gallery.id == gallery_id))
        return result.scalars().first()

    async def set_cover_if_missing(self, gallery_id, image_id) -> bool:
        """Set the cover only while none is set, so concurrent batches cannot overwrite each other."""
        result = await self.db.execute(
            update(Gallery)
            .where(Gallery.id == gallery_id, Gallery.cover_image_id.is_(None))
            .values(cover_image_id=image_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

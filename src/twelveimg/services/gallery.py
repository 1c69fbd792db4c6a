import logging

from twelveimg.common.uow import UnitOfWork
from twelveimg.core.exceptions import ForbiddenError, NotFoundError
from twelveimg.models.gallery import Gallery
from twelveimg.models.user import User

logger = logging.getLogger(__name__)


async def get_owned_gallery(uow: UnitOfWork, gallery_id, user: User) -> Gallery:
    """Load a gallery the user owns; 404 if it does not exist, 403 if it belongs to someone else."""
    gallery = await uow.galleries.get_by_id(gallery_id)
    if not gallery:
        logger.warning(f"Gallery {gallery_id} not found for user {user.id}")
        raise NotFoundError("Gallery not found")
    if gallery.user_id != user.id:
        logger.warning(f"User {user.id} attempted to access gallery {gallery_id}")
        raise ForbiddenError("Access denied")
    return gallery

from twelveimg.models.archive import GalleryArchive
from twelveimg.models.gallery import Gallery
from twelveimg.models.image import Image
from twelveimg.models.rate_limit import RateLimitCounter
from twelveimg.models.user import User

__all__ = ["GalleryArchive", "Gallery", "Image", "RateLimitCounter", "User"]

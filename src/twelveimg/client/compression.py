import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from PIL import Image, ImageOps, UnidentifiedImageError

logger = logging.getLogger(__name__)

COMPRESSION_MAX_DIMENSION = 4096
COMPRESSION_QUALITY = 85

# re-encoded in their own format so the MIME type on the grant stays valid
SAVE_FORMATS = {
    "image/jpeg": "JPEG",
    "image/webp": "WEBP",
}


@dataclass
class PreparedImage:
    content: bytes
    width: Optional[int]
    height: Optional[int]
    compressed: bool


def read_image(path: Path, mime_type: str, compress: bool = True,
               max_dimension: int = COMPRESSION_MAX_DIMENSION,
               quality: int = COMPRESSION_QUALITY) -> PreparedImage:
    """
    Load an image for upload, downscaling it when its long edge exceeds
    ``max_dimension`` and ``compress`` is set.

    Files Pillow cannot decode are uploaded unchanged without dimensions.
    """
    raw = Path(path).read_bytes()
    try:
        with Image.open(io.BytesIO(raw)) as im:
            im = ImageOps.exif_transpose(im)
            width, height = im.size

            save_format = SAVE_FORMATS.get(mime_type)
            if not compress or save_format is None or max(width, height) <= max_dimension:
                return PreparedImage(raw, width, height, compressed=False)

            scale = max_dimension / float(max(width, height))
            new_size = (max(1, int(width * scale)), max(1, int(height * scale)))
            if save_format == "JPEG" and im.mode not in ("RGB", "L"):
                im = im.convert("RGB")
            im = im.resize(new_size, Image.Resampling.LANCZOS)

            out = io.BytesIO()
            im.save(out, format=save_format, quality=quality, optimize=True)
    except (UnidentifiedImageError, OSError) as e:
        logger.debug(f"Could not decode {path}, uploading as-is: {e}")
        return PreparedImage(raw, None, None, compressed=False)

    content = out.getvalue()
    if len(content) >= len(raw):
        return PreparedImage(raw, width, height, compressed=False)

    logger.debug(f"Compressed {path}: {len(raw)} -> {len(content)} bytes ({width}x{height} -> {new_size[0]}x{new_size[1]})")
    return PreparedImage(content, new_size[0], new_size[1], compressed=True)

"""Image encoding helpers for vision model calls."""

from __future__ import annotations

import base64
import io
import logging

from PIL import Image, UnidentifiedImageError

from core.models import DocumentImage

logger = logging.getLogger(__name__)

# Long enough side for small print on A4 scans, small enough for model context limits
VISION_IMAGE_MAX_PX = 1600
VISION_JPEG_QUALITY = 85


def _resize_to_max_px(img: Image.Image, max_px: int = VISION_IMAGE_MAX_PX) -> Image.Image:
    """Resize image so longest side is at most max_px."""
    w, h = img.size
    if max(w, h) <= max_px:
        return img
    ratio = max_px / max(w, h)
    return img.resize((int(w * ratio), int(h * ratio)), Image.Resampling.LANCZOS)


def prepare_for_vision(
    image: DocumentImage,
    max_px: int = VISION_IMAGE_MAX_PX,
    quality: int = VISION_JPEG_QUALITY,
) -> DocumentImage:
    """
    Downscale and re-encode a page as JPEG.
    Bytes Pillow cannot decode are passed through unchanged; the model endpoint decides.
    """
    try:
        with Image.open(io.BytesIO(image.data)) as img:
            img.load()
            resized = _resize_to_max_px(img.convert("RGB"), max_px)
            buf = io.BytesIO()
            resized.save(buf, format="JPEG", quality=quality)
    except (UnidentifiedImageError, OSError) as e:
        logger.debug("Image page %s not re-encoded: %s", image.page_number, e)
        return image
    return DocumentImage(data=buf.getvalue(), media_type="image/jpeg", page_number=image.page_number)


def image_to_data_url(image_bytes: bytes, media_type: str = "image/jpeg") -> str:
    """Encode image bytes as data URL for vision API."""
    b64 = base64.b64encode(image_bytes).decode("ascii")
    return f"data:{media_type};base64,{b64}"

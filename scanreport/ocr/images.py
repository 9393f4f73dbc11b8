"""Loading image references into bytes, arrays, or model-ready URLs.

An image reference is an http(s) URL, a ``data:`` URL, a filesystem
path, or raw bytes. Hosted URLs are handed to vision models unchanged;
everything else is inlined as a base64 data URL.
"""

import asyncio
import base64
import binascii
import io
from pathlib import Path

import httpx
import numpy as np
from PIL import Image, UnidentifiedImageError

from scanreport.utils.logger import get_logger

from .types import ImageRef

logger = get_logger(__name__)

_MIME_BY_FORMAT = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "TIFF": "image/tiff",
    "WEBP": "image/webp",
    "GIF": "image/gif",
    "BMP": "image/bmp",
}


class ImageLoadError(Exception):
    """Raised when an image reference cannot be resolved to image data."""


def is_remote_url(image: ImageRef) -> bool:
    return isinstance(image, str) and image.startswith(("http://", "https://"))


def decode_data_url(data_url: str) -> bytes:
    """Decode the payload of a base64 ``data:`` URL."""
    header, _, payload = data_url.partition(",")
    if not payload or ";base64" not in header:
        raise ImageLoadError("Only base64 data URLs are supported")
    try:
        return base64.b64decode(payload, validate=True)
    except binascii.Error as exc:
        raise ImageLoadError(f"Invalid base64 image data: {exc}") from exc


def guess_mime_type(data: bytes) -> str:
    """Detect the image MIME type from its content, defaulting to JPEG."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            return _MIME_BY_FORMAT.get(img.format or "", "image/jpeg")
    except (UnidentifiedImageError, OSError):
        return "image/jpeg"


async def read_image_bytes(
    image: ImageRef, client: httpx.AsyncClient | None = None
) -> bytes:
    """Resolve any image reference to its raw bytes.

    Raises:
        ImageLoadError: If the reference is empty, missing, or unreachable.
    """
    if isinstance(image, bytes):
        if not image:
            raise ImageLoadError("Empty image data")
        return image
    if not image:
        raise ImageLoadError("Image reference is required")
    if image.startswith("data:"):
        return decode_data_url(image)
    if is_remote_url(image):
        return await _fetch(image, client)

    path = Path(image)
    if not path.is_file():
        raise ImageLoadError(f"Image file not found: {path}")
    return await asyncio.to_thread(path.read_bytes)


async def _fetch(url: str, client: httpx.AsyncClient | None) -> bytes:
    try:
        if client is not None:
            response = await client.get(url)
        else:
            async with httpx.AsyncClient(timeout=30.0) as session:
                response = await session.get(url)
        response.raise_for_status()
    except httpx.HTTPError as exc:
        raise ImageLoadError(f"Failed to download image: {exc}") from exc
    return response.content


async def to_image_url(image: ImageRef) -> str:
    """Return a URL a vision model can consume: hosted URL or data URL."""
    if isinstance(image, str) and (is_remote_url(image) or image.startswith("data:")):
        return image
    data = await read_image_bytes(image)
    encoded = base64.b64encode(data).decode()
    return f"data:{guess_mime_type(data)};base64,{encoded}"


def decode_image(data: bytes) -> np.ndarray:
    """Decode image bytes into an RGB (or grayscale) numpy array."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            if img.mode not in ("RGB", "L"):
                img = img.convert("RGB")
            array = np.array(img)
    except (UnidentifiedImageError, OSError) as exc:
        raise ImageLoadError(f"Unreadable image data: {exc}") from exc
    logger.debug("Decoded image with shape %s", array.shape)
    return array

"""
Image decoding and fixed-resolution sampling for layout verification.

Every comparison works on N×N nearest-sampled grids (N=64 by default), so the
cost of verification does not depend on the photo's resolution.
"""
import asyncio
import base64
import binascii
import io
import logging
from dataclasses import dataclass
from typing import Optional

import aiohttp
import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

logger = logging.getLogger(__name__)

# Rec. 709 luma weights
LUMA_WEIGHTS = np.array([0.2126, 0.7152, 0.0722], dtype=np.float64)


class DecodeError(ValueError):
    """Bytes are not a supported raster image."""


class ImageFetchError(RuntimeError):
    """A referenced image could not be downloaded."""


@dataclass(frozen=True)
class PixelImage:
    """Decoded RGB pixels, shape (height, width, 3), read-only."""

    pixels: np.ndarray

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])


def split_data_url(image_data: str) -> tuple:
    """Return (mime_type, base64_payload) for a data URL or raw base64 string."""
    if image_data.startswith("data:"):
        header, _, payload = image_data.partition(",")
        mime_type = header[5:].split(";")[0] or "image/jpeg"
        return mime_type, payload
    return "image/jpeg", image_data


def decode_base64_image(image_data: str) -> bytes:
    _, payload = split_data_url(image_data.strip())
    try:
        return base64.b64decode(payload, validate=False)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Invalid base64 image data: {e}") from e


def decode_image(image_bytes: bytes) -> PixelImage:
    """Decode raster bytes into an immutable PixelImage (EXIF orientation applied)."""
    if not image_bytes:
        raise DecodeError("Empty image data")

    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            img = ImageOps.exif_transpose(img)
            if img.mode != "RGB":
                img = img.convert("RGB")
            pixels = np.asarray(img, dtype=np.uint8).copy()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError) as e:
        raise DecodeError(f"Unsupported or corrupt image: {e}") from e

    if pixels.ndim != 3 or pixels.shape[0] == 0 or pixels.shape[1] == 0:
        raise DecodeError(f"Decoded image has invalid shape {pixels.shape}")

    pixels.setflags(write=False)
    return PixelImage(pixels=pixels)


def _sample_indices(resolution: int, dimension: int) -> np.ndarray:
    # floor(out / N * dim) for every output coordinate
    return (np.arange(resolution, dtype=np.int64) * dimension) // resolution


def sample_rgb(image: PixelImage, resolution: int) -> np.ndarray:
    """Nearest-sample an image to a (resolution, resolution, 3) float grid."""
    if resolution <= 0:
        raise ValueError(f"Sample resolution must be positive, got {resolution}")

    ys = _sample_indices(resolution, image.height)
    xs = _sample_indices(resolution, image.width)
    grid = image.pixels[np.ix_(ys, xs)].astype(np.float64)
    grid.setflags(write=False)
    return grid


def sample_luma(image: PixelImage, resolution: int) -> np.ndarray:
    """Nearest-sample an image to a (resolution, resolution) luminance grid."""
    luma = sample_rgb(image, resolution) @ LUMA_WEIGHTS
    luma.setflags(write=False)
    return luma


async def fetch_image_bytes(image_url: str, timeout_seconds: float, session: Optional[aiohttp.ClientSession] = None) -> bytes:
    """Download an image referenced by URL with a bounded total timeout."""
    timeout = aiohttp.ClientTimeout(total=timeout_seconds)
    owns_session = session is None
    if owns_session:
        session = aiohttp.ClientSession(timeout=timeout)

    try:
        async with session.get(image_url, timeout=timeout) as response:
            if response.status != 200:
                raise ImageFetchError(f"HTTP {response.status} fetching {image_url[:120]}")
            image_bytes = await response.read()
            logger.debug(f"Fetched {len(image_bytes)} bytes from {image_url[:120]}")
            return image_bytes
    except asyncio.TimeoutError as e:
        raise ImageFetchError(f"Timed out after {timeout_seconds}s fetching {image_url[:120]}") from e
    except aiohttp.ClientError as e:
        raise ImageFetchError(f"Network error fetching {image_url[:120]}: {e}") from e
    finally:
        if owns_session:
            await session.close()


async def load_image_reference(image_ref: str, timeout_seconds: float) -> PixelImage:
    """Decode a data URL / raw base64 string, or fetch and decode an http(s) URL."""
    if image_ref.startswith(("http://", "https://")):
        image_bytes = await fetch_image_bytes(image_ref, timeout_seconds)
    else:
        image_bytes = decode_base64_image(image_ref)
    return decode_image(image_bytes)

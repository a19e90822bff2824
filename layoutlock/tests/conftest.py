"""
Pytest configuration and fixtures for the Layout Lock API tests.
"""
import base64
import io
from typing import AsyncGenerator, Callable

import numpy as np
import pytest
from PIL import Image, ImageDraw
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from layoutlock.core.config import GenerationPolicy
from layoutlock.database.models import Base
from layoutlock.services.image_sampling import PixelImage

WALL = 200
LINE = 40


def draw_room(size: int = 64, wall: int = WALL, line: int = LINE, stretch: int = 0) -> np.ndarray:
    """
    Synthetic grayscale room photo as an RGB uint8 array.

    Coordinates are laid out on a 64-cell grid and scaled to ``size``. The room
    outline widens by ``stretch`` cells on each side; the door and window stay put.
    Everything outside the drawn features is plain wall colour, so the border is
    uniform.
    """
    scale = size / 64.0

    def box(x0, y0, x1, y1):
        return [int(x0 * scale), int(y0 * scale), int(x1 * scale), int(y1 * scale)]

    img = Image.new("L", (size, size), color=wall)
    draw = ImageDraw.Draw(img)
    width = max(1, int(scale))
    draw.rectangle(box(20 - stretch, 14, 44 + stretch, 50), outline=line, width=width)  # room outline
    draw.rectangle(box(24, 30, 30, 50), outline=line, width=width)  # door
    draw.rectangle(box(34, 20, 40, 26), outline=line, width=width)  # window
    draw.line(box(36, 40, 42, 40), fill=line, width=width)  # vanity top

    gray = np.asarray(img, dtype=np.uint8)
    return np.stack([gray, gray, gray], axis=-1)


def to_pixel_image(pixels: np.ndarray) -> PixelImage:
    pixels = np.ascontiguousarray(pixels, dtype=np.uint8)
    pixels.setflags(write=False)
    return PixelImage(pixels=pixels)


def to_data_url(pixels: np.ndarray) -> str:
    buffer = io.BytesIO()
    Image.fromarray(np.ascontiguousarray(pixels, dtype=np.uint8)).save(buffer, format="PNG")
    return f"data:image/png;base64,{base64.b64encode(buffer.getvalue()).decode()}"


def brighten(pixels: np.ndarray, amount: int) -> np.ndarray:
    return np.clip(pixels.astype(np.int16) + amount, 0, 255).astype(np.uint8)


@pytest.fixture
def policy() -> GenerationPolicy:
    """Default verification policy (64x64 sampling, two attempts)."""
    return GenerationPolicy()


@pytest.fixture
def room_pixels() -> np.ndarray:
    return draw_room()


@pytest.fixture
def room_image(room_pixels) -> PixelImage:
    return to_pixel_image(room_pixels)


@pytest.fixture
def room_data_url(room_pixels) -> str:
    return to_data_url(room_pixels)


@pytest.fixture
def renovated_data_url(room_pixels) -> str:
    """Same structure, every surface darker: layout intact and a clearly visible change."""
    return to_data_url(brighten(room_pixels, -40))


@pytest.fixture
def flat_data_url() -> str:
    """An image with no structure at all: the layout was lost."""
    return to_data_url(np.full((64, 64, 3), 128, dtype=np.uint8))


@pytest.fixture
def make_data_url() -> Callable[[np.ndarray], str]:
    return to_data_url


@pytest.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker, None]:
    """In-memory SQLite quota store shared across sessions of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()

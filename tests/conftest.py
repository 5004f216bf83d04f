"""
Shared fixtures: a manual clock and small PNG helpers.
"""

import asyncio
import io

import pytest
from PIL import Image

from craftus.core.clock import Clock
from craftus.services.models import ImageAsset


class ManualClock(Clock):
    """Clock whose sleep() advances time instantly and records the duration."""

    def __init__(self, start: float = 1000.0):
        self.current = start
        self.sleeps = []

    def now(self) -> float:
        return self.current

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(float(seconds))
        self.current += max(0.0, float(seconds))
        # Yield so other tasks can run, as a real sleep would
        await asyncio.sleep(0)


@pytest.fixture
def clock():
    return ManualClock()


def _png(width=8, height=8, color=(200, 30, 30, 255)) -> ImageAsset:
    buffer = io.BytesIO()
    Image.new("RGBA", (width, height), color).save(buffer, format="PNG")
    return ImageAsset(data=buffer.getvalue(), mime_type="image/png")


@pytest.fixture
def make_png():
    """Factory for small solid-colour PNG ImageAssets."""
    return _png

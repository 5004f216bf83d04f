"""
Tests for RegionExtractor - bounding box, padding, clamping, crop modes.
"""

import random

import numpy as np
import pytest
from PIL import Image

from craftus.services.models import ImageAsset
from craftus.services.region_extractor import (
    BoundingRegion,
    ContextMode,
    InvalidSelection,
    SegmentationMask,
    bounding_box,
    extract_region,
    mask_from_alpha,
    pad_and_clamp,
)


def _image(width=100, height=80, color=(10, 120, 200, 255)):
    return Image.new("RGBA", (width, height), color)


def _mask(width, height, box):
    """Mask with the (left, top, right, bottom) rectangle occupied."""
    occupancy = np.zeros((height, width), dtype=bool)
    left, top, right, bottom = box
    occupancy[top:bottom, left:right] = True
    return SegmentationMask.from_array(occupancy)


class TestBoundingBox:

    def test_tight_box(self):
        mask = _mask(100, 80, (20, 10, 40, 30))
        assert bounding_box(mask) == BoundingRegion(x=20, y=10, width=20, height=20)

    def test_single_pixel(self):
        mask = _mask(10, 10, (3, 4, 4, 5))
        assert bounding_box(mask) == BoundingRegion(x=3, y=4, width=1, height=1)

    def test_scattered_pixels(self):
        occupancy = np.zeros((50, 50), dtype=bool)
        occupancy[5, 40] = True
        occupancy[30, 2] = True
        box = bounding_box(SegmentationMask.from_array(occupancy))
        assert box == BoundingRegion(x=2, y=5, width=39, height=26)

    def test_empty_mask_fails(self):
        with pytest.raises(InvalidSelection):
            bounding_box(SegmentationMask.from_array(np.zeros((5, 5), dtype=bool)))


class TestPaddingAndClamping:

    def test_symmetric_padding(self):
        region = pad_and_clamp(BoundingRegion(40, 30, 20, 10), 0.2, 200, 200)
        assert region == BoundingRegion(x=36, y=28, width=28, height=14)

    def test_clamped_per_edge_without_recentering(self):
        # Box touching the left edge: left clamps to 0, right keeps its padding
        region = pad_and_clamp(BoundingRegion(0, 10, 50, 50), 0.2, 100, 100)
        assert region.x == 0
        assert region.x + region.width == 60
        assert region.y == 0
        assert region.y + region.height == 70

    def test_zero_padding_is_tight(self):
        box = BoundingRegion(5, 5, 10, 10)
        assert pad_and_clamp(box, 0.0, 50, 50) == box

    def test_clamp_invariant_random_masks(self):
        rng = random.Random(7)
        for _ in range(200):
            width, height = rng.randint(1, 60), rng.randint(1, 60)
            left, top = rng.randrange(width), rng.randrange(height)
            right, bottom = rng.randint(left + 1, width), rng.randint(top + 1, height)
            padding = rng.choice([0.0, 0.1, 0.2, 0.5, 2.0, 10.0])

            region = pad_and_clamp(
                bounding_box(_mask(width, height, (left, top, right, bottom))),
                padding, width, height,
            )

            assert region.x >= 0 and region.y >= 0
            assert region.x + region.width <= width
            assert region.y + region.height <= height
            # The selected content is always inside the region
            assert region.x <= left and region.x + region.width >= right
            assert region.y <= top and region.y + region.height >= bottom


class TestExtractRegion:

    def test_crop_matches_region_size(self):
        result = extract_region(_image(), _mask(100, 80, (20, 10, 40, 30)), padding_fraction=0.2)

        cropped = result.cropped_image.to_pil()
        assert cropped.size == (result.region.width, result.region.height)
        assert result.region == BoundingRegion(x=16, y=6, width=28, height=28)

    def test_full_region_keeps_context_pixels(self):
        result = extract_region(
            _image(), _mask(100, 80, (20, 10, 40, 30)),
            context_mode=ContextMode.FULL_REGION,
        )
        cropped = result.cropped_image.to_pil()
        # Corner of the padded region is outside the mask but kept opaque
        assert cropped.getpixel((0, 0))[3] == 255

    def test_mask_only_clears_unselected_pixels(self):
        result = extract_region(
            _image(), _mask(100, 80, (20, 10, 40, 30)),
            context_mode=ContextMode.MASK_ONLY,
        )
        cropped = result.cropped_image.to_pil()
        assert cropped.getpixel((0, 0))[3] == 0
        # Pixel inside the selection keeps its alpha
        assert cropped.getpixel((10, 10))[3] == 255

    def test_accepts_image_asset(self, make_png):
        asset = make_png(20, 20)
        result = extract_region(asset, _mask(20, 20, (5, 5, 15, 15)))
        assert isinstance(result.cropped_image, ImageAsset)

    def test_empty_mask_raises(self):
        with pytest.raises(InvalidSelection):
            extract_region(_image(), SegmentationMask.from_array(np.zeros((80, 100), dtype=bool)))

    def test_size_mismatch_raises(self):
        with pytest.raises(InvalidSelection):
            extract_region(_image(100, 80), _mask(50, 50, (1, 1, 5, 5)))

    def test_negative_padding_raises(self):
        with pytest.raises(InvalidSelection):
            extract_region(_image(), _mask(100, 80, (1, 1, 5, 5)), padding_fraction=-0.1)


class TestSuspectSelections:
    """Very small or very large selections are flagged but still extracted."""

    def test_small_selection_flagged(self):
        result = extract_region(_image(100, 100), _mask(100, 100, (10, 10, 12, 12)))
        assert result.suspect
        assert "only" in result.suspect_reason

    def test_large_selection_flagged(self):
        result = extract_region(_image(100, 100), _mask(100, 100, (0, 0, 100, 96)))
        assert result.suspect
        assert result.occupied_fraction == pytest.approx(0.96)

    def test_normal_selection_not_flagged(self):
        result = extract_region(_image(100, 100), _mask(100, 100, (20, 20, 70, 70)))
        assert not result.suspect
        assert result.suspect_reason is None


class TestMaskFromAlpha:

    def test_transparent_background(self):
        cutout = Image.new("RGBA", (10, 10), (0, 0, 0, 0))
        for x in range(3, 6):
            cutout.putpixel((x, 4), (255, 0, 0, 255))

        mask = mask_from_alpha(cutout)

        assert (mask.width, mask.height) == (10, 10)
        assert mask.occupied_count == 3
        assert bounding_box(mask) == BoundingRegion(x=3, y=4, width=3, height=1)

    def test_opaque_image_fully_occupied(self):
        mask = mask_from_alpha(Image.new("RGB", (4, 3), (1, 2, 3)))
        assert mask.occupied_count == 12

    def test_mask_shape_validation(self):
        with pytest.raises(InvalidSelection):
            SegmentationMask(width=3, height=3, occupancy=np.zeros((2, 3), dtype=bool))

"""
RegionExtractor - turn a user selection mask into a padded crop of the master image.

The crop is what the dissection call sees when the user selected a single
object, so it is padded to keep some surrounding context and clamped to the
image bounds.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

import numpy as np
from PIL import Image

from .models import ImageAsset

logger = logging.getLogger(__name__)

DEFAULT_PADDING_FRACTION = 0.20
MIN_OCCUPIED_FRACTION = 0.05
MAX_OCCUPIED_FRACTION = 0.90


class InvalidSelection(ValueError):
    """Raised when a selection mask cannot produce a region (e.g. nothing selected)."""


class ContextMode(str, Enum):
    """What the crop keeps from pixels outside the selection."""
    FULL_REGION = "full_region"
    MASK_ONLY = "mask_only"


@dataclass(frozen=True)
class SegmentationMask:
    """Binary occupancy bitmap; occupancy has shape (height, width)."""
    width: int
    height: int
    occupancy: np.ndarray

    def __post_init__(self):
        if self.occupancy.shape != (self.height, self.width):
            raise InvalidSelection(
                f"Mask occupancy shape {self.occupancy.shape} does not match "
                f"{self.width}x{self.height}"
            )

    @classmethod
    def from_array(cls, occupancy) -> "SegmentationMask":
        array = np.asarray(occupancy).astype(bool)
        if array.ndim != 2:
            raise InvalidSelection(f"Mask must be 2-dimensional, got {array.ndim} dimensions")
        height, width = array.shape
        return cls(width=width, height=height, occupancy=array)

    @property
    def occupied_count(self) -> int:
        return int(np.count_nonzero(self.occupancy))


@dataclass(frozen=True)
class BoundingRegion:
    """Rectangle in source image pixels."""
    x: int
    y: int
    width: int
    height: int

    @property
    def box(self):
        """PIL-style (left, upper, right, lower) box."""
        return (self.x, self.y, self.x + self.width, self.y + self.height)


@dataclass(frozen=True)
class RegionExtraction:
    """Result of extract_region()."""
    region: BoundingRegion
    cropped_image: ImageAsset
    occupied_fraction: float
    suspect: bool = False
    suspect_reason: Optional[str] = None


def mask_from_alpha(cutout: Union[Image.Image, ImageAsset], threshold: int = 0) -> SegmentationMask:
    """
    Build a mask from a transparent-background cut-out.

    A pixel is occupied when its alpha is above threshold. Images without an
    alpha channel count as fully occupied.
    """
    if isinstance(cutout, ImageAsset):
        cutout = cutout.to_pil()
    alpha = np.asarray(cutout.convert("RGBA").getchannel("A"))
    return SegmentationMask.from_array(alpha > threshold)


def bounding_box(mask: SegmentationMask) -> BoundingRegion:
    """
    Tight box around every occupied pixel.

    Raises:
        InvalidSelection: If no pixel is occupied
    """
    ys, xs = np.nonzero(mask.occupancy)
    if xs.size == 0:
        raise InvalidSelection("Selection is empty: no pixels are selected")

    min_x, max_x = int(xs.min()), int(xs.max())
    min_y, max_y = int(ys.min()), int(ys.max())
    return BoundingRegion(x=min_x, y=min_y, width=max_x - min_x + 1, height=max_y - min_y + 1)


def pad_and_clamp(
    box: BoundingRegion,
    padding_fraction: float,
    image_width: int,
    image_height: int,
) -> BoundingRegion:
    """Grow box by padding_fraction of its size on each side, then clamp each edge."""
    pad_x = int(round(box.width * padding_fraction))
    pad_y = int(round(box.height * padding_fraction))

    # Clamp edges independently; content at the border wins over centering
    left = max(0, box.x - pad_x)
    top = max(0, box.y - pad_y)
    right = min(image_width, box.x + box.width + pad_x)
    bottom = min(image_height, box.y + box.height + pad_y)

    return BoundingRegion(x=left, y=top, width=right - left, height=bottom - top)


def extract_region(
    image: Union[Image.Image, ImageAsset],
    mask: SegmentationMask,
    padding_fraction: float = DEFAULT_PADDING_FRACTION,
    context_mode: ContextMode = ContextMode.FULL_REGION,
) -> RegionExtraction:
    """
    Compute the padded, clamped region of a selection and crop it.

    Args:
        image: Source image (the master asset)
        mask: Selection mask, same size as image
        padding_fraction: Padding per side as a fraction of the tight box size
        context_mode: FULL_REGION keeps every pixel in the region so the model
            sees surrounding context; MASK_ONLY makes unselected pixels transparent

    Returns:
        RegionExtraction with the region, the crop (PNG) and an advisory
        suspect flag for very small or very large selections

    Raises:
        InvalidSelection: Empty mask, mask/image size mismatch, negative padding
    """
    if padding_fraction < 0:
        raise InvalidSelection(f"padding_fraction must be >= 0, got {padding_fraction}")

    if isinstance(image, ImageAsset):
        image = image.to_pil()

    if image.size != (mask.width, mask.height):
        raise InvalidSelection(
            f"Mask size {mask.width}x{mask.height} does not match image size "
            f"{image.width}x{image.height}"
        )

    tight = bounding_box(mask)
    region = pad_and_clamp(tight, padding_fraction, image.width, image.height)

    cropped = image.convert("RGBA").crop(region.box)
    if context_mode is ContextMode.MASK_ONLY:
        left, top, right, bottom = region.box
        inside = mask.occupancy[top:bottom, left:right]
        alpha = np.asarray(cropped.getchannel("A")).copy()
        alpha[~inside] = 0
        cropped.putalpha(Image.fromarray(alpha))

    occupied_fraction = mask.occupied_count / float(mask.width * mask.height)
    suspect_reason = None
    if occupied_fraction < MIN_OCCUPIED_FRACTION:
        suspect_reason = f"selection covers only {occupied_fraction:.1%} of the image"
    elif occupied_fraction > MAX_OCCUPIED_FRACTION:
        suspect_reason = f"selection covers {occupied_fraction:.1%} of the image"

    if suspect_reason:
        logger.warning(f"Suspect selection: {suspect_reason}")

    logger.debug(
        f"Extracted region x={region.x} y={region.y} {region.width}x{region.height} "
        f"from {image.width}x{image.height} ({context_mode.value})"
    )

    return RegionExtraction(
        region=region,
        cropped_image=ImageAsset.from_pil(cropped),
        occupied_fraction=occupied_fraction,
        suspect=suspect_reason is not None,
        suspect_reason=suspect_reason,
    )

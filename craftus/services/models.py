"""
Pydantic models for Craftus services.

These models provide validated data structures for:
- Craft categories (CraftCategory)
- Image payloads passed to and returned from Gemini (ImageAsset)
- Individual external calls (GenerationRequest)
- Dissection output: materials and ordered steps (DissectionResult)

All models use Pydantic v2 for validation and serialization.
"""

import base64
import io
from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional, Tuple
from uuid import uuid4

from PIL import Image
from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


# ============================================================================
# Categories
# ============================================================================

class CraftCategory(str, Enum):
    """Craft categories offered to the user; each has its own visual rules."""
    PAPERCRAFT = "Papercraft"
    CLAY = "Clay"
    FABRIC_SEWING = "Fabric/Sewing"
    COSTUME_PROPS = "Costume & Props"
    WOODCRAFT = "Woodcraft"
    JEWELRY = "Jewelry"
    KIDS_CRAFTS = "Kids Crafts"
    TABLETOP_FIGURES = "Tabletop Figures"


# ============================================================================
# Images
# ============================================================================

class ImageAsset(BaseModel):
    """
    Encoded image bytes plus MIME type.

    Gemini returns inline image data as raw bytes; the canvas and snapshots
    carry it as base64, so both conversions live here.
    """
    model_config = ConfigDict(frozen=True)

    data: bytes = Field(..., description="Encoded image bytes (PNG, JPEG, ...)")
    mime_type: str = Field(default="image/png", description="MIME type of data")

    @field_serializer("data")
    def _serialize_data(self, data: bytes) -> str:
        return base64.b64encode(data).decode("utf-8")

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("utf-8")

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.to_base64()}"

    @classmethod
    def from_base64(cls, value: str, mime_type: str = "image/png") -> "ImageAsset":
        """Decode base64 or a data URL (``data:image/png;base64,...``)."""
        if value.startswith("data:") and "," in value:
            header, value = value.split(",", 1)
            mime_type = header[5:].split(";", 1)[0] or mime_type

        # Remove whitespace and add padding if needed
        clean = "".join(value.split())
        missing_padding = len(clean) % 4
        if missing_padding:
            clean += "=" * (4 - missing_padding)
        return cls(data=base64.b64decode(clean), mime_type=mime_type)

    def to_pil(self) -> Image.Image:
        image = Image.open(io.BytesIO(self.data))
        image.load()
        return image

    @classmethod
    def from_pil(cls, image: Image.Image, format: str = "PNG") -> "ImageAsset":
        buffer = io.BytesIO()
        image.save(buffer, format=format)
        return cls(data=buffer.getvalue(), mime_type=f"image/{format.lower()}")


# ============================================================================
# External calls
# ============================================================================

class RequestKind(str, Enum):
    """Which stage of the pipeline an external call belongs to."""
    MASTER_ASSET = "master_asset"
    IDENTIFY = "identify"
    ANALYSIS = "analysis"
    STEP_IMAGE = "step_image"


class GenerationRequest(BaseModel):
    """
    One external call, created by the orchestrator and discarded once it resolves.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    kind: RequestKind
    prompt_text: str
    reference_images: Tuple[ImageAsset, ...] = ()
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def label(self) -> str:
        return f"{self.kind.value}:{self.id[:8]}"


# ============================================================================
# Dissection
# ============================================================================

class AnalysisStep(BaseModel):
    """
    One logical build step returned by the dissection call.

    Field aliases follow the JSON schema sent to Gemini.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    step_number: int = Field(..., alias="stepNumber", ge=0)
    title: str
    description: str
    safety_warning: Optional[str] = Field(default=None, alias="safetyWarning")

    @field_validator("safety_warning")
    @classmethod
    def _blank_warning_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value


class DissectionResult(BaseModel):
    """Materials list and ordered steps for one master image."""
    model_config = ConfigDict(populate_by_name=True)

    complexity: Literal["Simple", "Moderate", "Complex"] = "Moderate"
    complexity_score: int = Field(default=5, alias="complexityScore", ge=1, le=10)
    materials: List[str] = Field(default_factory=list)
    steps: List[AnalysisStep] = Field(default_factory=list)

    @field_validator("complexity_score", mode="before")
    @classmethod
    def _clamp_score(cls, value):
        # Gemini returns NUMBER for the score, which may come back as a float
        score = int(round(float(value)))
        return min(10, max(1, score))

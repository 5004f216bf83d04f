"""
GeminiService - image generation, dissection and object identification via Google Gemini.

Each method performs exactly one API call and raises on failure. Rate
limiting and retries live in RetryingApiClient, which the orchestrator wraps
around these calls.
"""

import json
import logging
import re
from typing import Any, Dict, Optional, Sequence

from google import genai
from google.genai import types

from .models import DissectionResult, ImageAsset

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_MODEL = "gemini-3-pro-image-preview"
DEFAULT_ANALYSIS_MODEL = "gemini-2.5-flash"

MASTER_ASPECT_RATIO = "1:1"
STEP_ASPECT_RATIO = "16:9"

FALLBACK_OBJECT_LABEL = "Selected Object"

DISSECTION_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "complexity": {"type": "STRING", "enum": ["Simple", "Moderate", "Complex"]},
        "complexityScore": {"type": "NUMBER"},
        "materials": {"type": "ARRAY", "items": {"type": "STRING"}},
        "steps": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "stepNumber": {"type": "NUMBER"},
                    "title": {"type": "STRING"},
                    "description": {"type": "STRING"},
                    "safetyWarning": {"type": "STRING", "nullable": True},
                },
                "required": ["stepNumber", "title", "description"],
            },
        },
    },
    "required": ["complexity", "complexityScore", "materials", "steps"],
}


class GenerationError(Exception):
    """Raised when Gemini answers but the response holds no usable result."""


class GeminiService:
    """
    Async wrapper around google-genai for the three calls the pipeline needs.

    Features:
    - Image generation with optional reference images (master and step images)
    - Structured dissection with a JSON response schema
    - Short label for a selected object
    """

    def __init__(
        self,
        api_key: str,
        image_model: str = DEFAULT_IMAGE_MODEL,
        analysis_model: str = DEFAULT_ANALYSIS_MODEL,
        client: Optional[genai.Client] = None,
    ):
        """
        Initialize Gemini service.

        Args:
            api_key: Gemini API key
            image_model: Model used for master and step images
            analysis_model: Model used for dissection and identification
            client: Pre-built client (tests inject a mock here)

        Raises:
            ValueError: If no API key and no client are given
        """
        if client is None and not api_key:
            raise ValueError("GEMINI_API_KEY not found in environment")

        self.client = client or genai.Client(api_key=api_key)
        self.image_model = image_model
        self.analysis_model = analysis_model

        logger.info(f"GeminiService initialized: image={image_model}, analysis={analysis_model}")

    @staticmethod
    def _image_part(image: ImageAsset) -> types.Part:
        return types.Part.from_bytes(data=image.data, mime_type=image.mime_type)

    async def generate_image(
        self,
        prompt: str,
        reference_images: Sequence[ImageAsset] = (),
        aspect_ratio: str = MASTER_ASPECT_RATIO,
        image_size: Optional[str] = None,
    ) -> ImageAsset:
        """
        Generate one image.

        Args:
            prompt: Full prompt text
            reference_images: Images sent ahead of the prompt, in order
            aspect_ratio: "1:1" for masters, "16:9" for steps
            image_size: Optional size hint ("1K", "2K")

        Returns:
            The first inline image in the response

        Raises:
            GenerationError: If the response contains no image
        """
        contents = [self._image_part(image) for image in reference_images]
        contents.append(prompt)

        config = types.GenerateContentConfig(
            response_modalities=["IMAGE", "TEXT"],
            image_config=types.ImageConfig(aspect_ratio=aspect_ratio, image_size=image_size),
        )

        logger.debug(f"Generating image ({aspect_ratio}) with {len(reference_images)} reference image(s)")
        response = await self.client.aio.models.generate_content(
            model=self.image_model,
            contents=contents,
            config=config,
        )

        for candidate in response.candidates or []:
            if not candidate.content:
                continue
            for part in candidate.content.parts or []:
                if getattr(part, "inline_data", None) and part.inline_data.data:
                    return ImageAsset(
                        data=part.inline_data.data,
                        mime_type=part.inline_data.mime_type or "image/png",
                    )

        raise GenerationError("Failed to generate image: response contained no image data")

    async def dissect_image(
        self,
        images: Sequence[ImageAsset],
        prompt: str,
    ) -> DissectionResult:
        """
        Break a craft image down into materials and ordered steps.

        Args:
            images: Primary image first (selection crop or master), then context
            prompt: Dissection prompt

        Returns:
            Parsed DissectionResult

        Raises:
            GenerationError: If the response is empty or not valid JSON for the schema
        """
        contents = [self._image_part(image) for image in images]
        contents.append(prompt)

        response = await self.client.aio.models.generate_content(
            model=self.analysis_model,
            contents=contents,
            config=types.GenerateContentConfig(
                response_mime_type="application/json",
                response_schema=DISSECTION_SCHEMA,
            ),
        )

        text = response.text
        if not text:
            raise GenerationError("No text returned from dissection model")

        parsed = self._parse_json_response(text)
        if parsed is None:
            raise GenerationError(f"Dissection response is not valid JSON: {text[:200]}")

        result = DissectionResult.model_validate(parsed)
        logger.info(
            f"Dissection returned {len(result.steps)} steps, {len(result.materials)} materials "
            f"({result.complexity}, {result.complexity_score}/10)"
        )
        return result

    async def identify_object(
        self,
        selected: ImageAsset,
        full_image: ImageAsset,
        prompt: str,
    ) -> str:
        """
        Name the object shown in a selection crop.

        Returns:
            A short label, or FALLBACK_OBJECT_LABEL when the model returns nothing
        """
        response = await self.client.aio.models.generate_content(
            model=self.analysis_model,
            contents=[self._image_part(selected), self._image_part(full_image), prompt],
        )

        label = (response.text or "").strip().strip('"').strip()
        if not label:
            return FALLBACK_OBJECT_LABEL

        logger.info(f"Identified selected object: {label}")
        return label

    @staticmethod
    def _parse_json_response(text: str) -> Optional[Dict[str, Any]]:
        """Parse JSON, tolerating markdown code fences around it."""
        cleaned = text.strip()
        fenced = re.match(r"^```(?:json)?\s*(.*?)\s*```$", cleaned, re.DOTALL)
        if fenced:
            cleaned = fenced.group(1)

        try:
            parsed = json.loads(cleaned)
        except json.JSONDecodeError:
            logger.warning(f"Failed to parse JSON response: {cleaned[:100]}")
            return None

        return parsed if isinstance(parsed, dict) else None

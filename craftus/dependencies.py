"""
Craft Dependencies - explicitly constructed services for the generation pipeline.

Nothing in craftus looks services up globally; the CLI (or any other caller)
builds one CraftDependencies and hands it to the orchestrator. The RateLimiter
inside is the one piece meant to be shared across pipelines.
"""

import logging
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .core.clock import Clock, SystemClock
from .core.config import Config
from .services.api_client import RetryingApiClient
from .services.gemini_service import GeminiService
from .services.node_state import NodeStateModel
from .services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


class CraftDependencies(BaseModel):
    """
    Typed dependency container passed to every pipeline node.

    Attributes:
        gemini: Gemini capability (image generation, dissection, identification)
        api_client: Rate-limited retrying wrapper around every Gemini call
        node_state: Node records shown on the canvas
        clock: Time source shared with the limiter and retry waits
        max_step_images: Ceiling on step image calls per dissection
        padding_fraction: Default padding around a selected region
        image_size: Size hint for master images
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    gemini: GeminiService
    api_client: RetryingApiClient
    node_state: NodeStateModel = Field(default_factory=NodeStateModel)
    clock: Clock = Field(default_factory=SystemClock)
    max_step_images: int = Field(default=6, ge=1)
    padding_fraction: float = Field(default=0.20, ge=0)
    image_size: Optional[str] = "1K"

    @property
    def rate_limiter(self) -> RateLimiter:
        return self.api_client.rate_limiter

    @classmethod
    def create(
        cls,
        gemini_api_key: Optional[str] = None,
        rate_limiter: Optional[RateLimiter] = None,
        node_state: Optional[NodeStateModel] = None,
        clock: Optional[Clock] = None,
        max_step_images: Optional[int] = None,
    ) -> "CraftDependencies":
        """
        Build dependencies from Config.

        Args:
            gemini_api_key: Overrides Config.GEMINI_API_KEY
            rate_limiter: Existing limiter to share (a new one is built from Config otherwise)
            node_state: Existing node model (a new one otherwise)
            clock: Time source (SystemClock otherwise)
            max_step_images: Overrides Config.MAX_STEP_IMAGES

        Returns:
            CraftDependencies ready for CraftOrchestrator
        """
        clock = clock or SystemClock()

        gemini = GeminiService(
            api_key=gemini_api_key or Config.GEMINI_API_KEY,
            image_model=Config.GEMINI_IMAGE_MODEL,
            analysis_model=Config.GEMINI_ANALYSIS_MODEL,
        )

        if rate_limiter is None:
            rate_limiter = RateLimiter(
                max_calls_per_window=Config.RATE_LIMIT_MAX_CALLS,
                window_duration=Config.RATE_LIMIT_WINDOW_SECONDS,
            )
            logger.info(
                f"RateLimiter initialized: {Config.RATE_LIMIT_MAX_CALLS} calls / "
                f"{Config.RATE_LIMIT_WINDOW_SECONDS:.0f}s"
            )

        api_client = RetryingApiClient(
            rate_limiter=rate_limiter,
            clock=clock,
            max_attempts=Config.RETRY_MAX_ATTEMPTS,
            base_delay=Config.RETRY_BASE_DELAY_SECONDS,
            max_slot_wait=Config.RATE_LIMIT_MAX_WAIT_SECONDS,
        )

        return cls(
            gemini=gemini,
            api_client=api_client,
            node_state=node_state if node_state is not None else NodeStateModel(),
            clock=clock,
            max_step_images=max_step_images or Config.MAX_STEP_IMAGES,
            padding_fraction=Config.REGION_PADDING_FRACTION,
        )

    def __str__(self) -> str:
        return (
            f"CraftDependencies(max_step_images={self.max_step_images}, nodes={len(self.node_state)})"
        )

"""
Services layer for Craftus.

Leaf components of the generation engine: rate limiting, retrying API calls,
step grouping, region extraction, node state, prompts and the Gemini client.
"""

from .models import (
    CraftCategory,
    ImageAsset,
    RequestKind,
    GenerationRequest,
    AnalysisStep,
    DissectionResult,
)
from .rate_limiter import RateLimiter
from .api_client import (
    ApiError,
    ErrorClass,
    ErrorKind,
    RetryingApiClient,
    classify_error,
)
from .step_grouper import StepGroup, group_steps
from .region_extractor import (
    BoundingRegion,
    ContextMode,
    InvalidSelection,
    RegionExtraction,
    SegmentationMask,
    extract_region,
    mask_from_alpha,
)
from .node_state import (
    DissectionStatus,
    IllegalTransition,
    MasterPayload,
    MaterialsPayload,
    NodeKind,
    NodeRecord,
    NodeStateModel,
    NodeStatus,
    NodeTransition,
    StepPayload,
    TransitionType,
)
from .gemini_service import GeminiService, GenerationError

__all__ = [
    "CraftCategory",
    "ImageAsset",
    "RequestKind",
    "GenerationRequest",
    "AnalysisStep",
    "DissectionResult",
    "RateLimiter",
    "ApiError",
    "ErrorClass",
    "ErrorKind",
    "RetryingApiClient",
    "classify_error",
    "StepGroup",
    "group_steps",
    "BoundingRegion",
    "ContextMode",
    "InvalidSelection",
    "RegionExtraction",
    "SegmentationMask",
    "extract_region",
    "mask_from_alpha",
    "DissectionStatus",
    "IllegalTransition",
    "MasterPayload",
    "MaterialsPayload",
    "NodeKind",
    "NodeRecord",
    "NodeStateModel",
    "NodeStatus",
    "NodeTransition",
    "StepPayload",
    "TransitionType",
    "GeminiService",
    "GenerationError",
]

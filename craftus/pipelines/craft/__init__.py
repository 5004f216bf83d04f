"""
Craft pipeline: master image, dissection, and grouped step images.
"""

from .state import CraftPipelineState
from .orchestrator import CraftOrchestrator, run_craft_pipeline
from .nodes import (
    GenerateMasterNode,
    PrepareReferenceNode,
    AnalyzeNode,
    CreatePlaceholdersNode,
    GenerateStepImagesNode,
)

__all__ = [
    "CraftPipelineState",
    "CraftOrchestrator",
    "run_craft_pipeline",
    "GenerateMasterNode",
    "PrepareReferenceNode",
    "AnalyzeNode",
    "CreatePlaceholdersNode",
    "GenerateStepImagesNode",
]

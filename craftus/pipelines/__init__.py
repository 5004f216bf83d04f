"""
Pydantic Graph pipelines for Craftus.

- craft: master image generation, dissection into materials and steps,
  and grouped step image generation
"""

from .metadata import NodeMetadata, get_node_metadata
from .craft import CraftOrchestrator, CraftPipelineState, run_craft_pipeline

__all__ = [
    "NodeMetadata",
    "get_node_metadata",
    "CraftOrchestrator",
    "CraftPipelineState",
    "run_craft_pipeline",
]

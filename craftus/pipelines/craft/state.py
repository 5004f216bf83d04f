"""
Craft Pipeline State - dataclass passed through all craft pipeline nodes.

One state object exists per master node. It survives between the master run
and a later dissection run (the user triggers dissection explicitly), and
between those and manual retries.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ...services.models import CraftCategory, DissectionResult, ImageAsset
from ...services.region_extractor import RegionExtraction, SegmentationMask
from ...services.step_grouper import StepGroup


@dataclass
class CraftPipelineState:
    """
    State passed through all craft pipeline nodes.

    Lifecycle:
        1. Orchestrator creates it with the prompt and category
        2. GenerateMasterNode fills master_image
        3. On dissect(), the reference, analysis and step nodes fill the rest
        4. Retry commands re-enter individual nodes with the same state
    """

    # === REQUIRED INPUT ===
    master_id: str
    prompt: str
    category: CraftCategory

    # === CONFIGURATION ===
    max_groups: int = 6
    padding_fraction: float = 0.20
    image_size: Optional[str] = "1K"

    # === DISSECTION INPUT (set by dissect()) ===
    selection_mask: Optional[SegmentationMask] = None

    # === POPULATED BY NODES ===

    # GenerateMasterNode
    master_image: Optional[ImageAsset] = None

    # PrepareReferenceNode
    region: Optional[RegionExtraction] = None
    object_label: Optional[str] = None

    # AnalyzeNode
    dissection: Optional[DissectionResult] = None

    # CreatePlaceholdersNode
    groups: List[StepGroup] = field(default_factory=list)

    # GenerateStepImagesNode
    groups_succeeded: int = 0
    groups_failed: int = 0
    groups_skipped: int = 0

    # === CONTROL ===
    cancel_requested: bool = False
    running: bool = False

    # === TRACKING ===
    current_step: str = "pending"
    steps_completed: List[str] = field(default_factory=list)
    error: Optional[str] = None
    error_step: Optional[str] = None

    @property
    def reference_image(self) -> Optional[ImageAsset]:
        """Image step images are drawn from: the selection crop if any, else the master."""
        if self.region is not None:
            return self.region.cropped_image
        return self.master_image

    def group_index_for_step(self, step_number: int) -> Optional[int]:
        for index, group in enumerate(self.groups):
            if group.contains(step_number):
                return index
        return None

    def mark_step_complete(self, step_name: str) -> None:
        """Mark a step as complete and update current_step."""
        self.steps_completed.append(step_name)
        self.current_step = f"{step_name}_complete"

    def summary(self) -> Dict[str, Any]:
        """Result returned by a pipeline run (End data)."""
        return {
            "master_id": self.master_id,
            "current_step": self.current_step,
            "groups": len(self.groups),
            "groups_succeeded": self.groups_succeeded,
            "groups_failed": self.groups_failed,
            "groups_skipped": self.groups_skipped,
            "cancelled": self.cancel_requested,
            "error": self.error,
            "error_step": self.error_step,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert state to dictionary for serialization (images excluded)."""
        return {
            "master_id": self.master_id,
            "prompt": self.prompt,
            "category": self.category.value,
            "max_groups": self.max_groups,
            "padding_fraction": self.padding_fraction,
            "has_master_image": self.master_image is not None,
            "region": (
                {
                    "x": self.region.region.x,
                    "y": self.region.region.y,
                    "width": self.region.region.width,
                    "height": self.region.region.height,
                    "suspect": self.region.suspect,
                }
                if self.region is not None else None
            ),
            "object_label": self.object_label,
            "dissection": self.dissection.model_dump() if self.dissection else None,
            "groups": [
                {
                    "member_step_numbers": list(g.member_step_numbers),
                    "combined_title": g.combined_title,
                    "warnings": list(g.warnings),
                }
                for g in self.groups
            ],
            "cancel_requested": self.cancel_requested,
            "current_step": self.current_step,
            "steps_completed": self.steps_completed,
            "error": self.error,
            "error_step": self.error_step,
        }

"""
Craft pipeline nodes.

Master run:      GenerateMasterNode -> End
Dissection run:  PrepareReferenceNode -> AnalyzeNode -> CreatePlaceholdersNode
                 -> GenerateStepImagesNode -> End
"""

from .generate_master import GenerateMasterNode
from .prepare_reference import PrepareReferenceNode
from .analyze import AnalyzeNode
from .create_placeholders import CreatePlaceholdersNode
from .generate_step_images import GenerateStepImagesNode

__all__ = [
    "GenerateMasterNode",
    "PrepareReferenceNode",
    "AnalyzeNode",
    "CreatePlaceholdersNode",
    "GenerateStepImagesNode",
]

"""
CreatePlaceholdersNode - create the materials node and one Pending node per step.
"""

import logging
from dataclasses import dataclass
from typing import ClassVar

from pydantic_graph import BaseNode, GraphRunContext

from ..state import CraftPipelineState
from ....dependencies import CraftDependencies
from ....services.node_state import (
    DissectionStatus,
    MaterialsPayload,
    NodeKind,
    NodeRecord,
    materials_node_id,
    step_node_id,
)
from ....services.step_grouper import group_steps
from ...metadata import NodeMetadata

logger = logging.getLogger(__name__)


@dataclass
class CreatePlaceholdersNode(BaseNode[CraftPipelineState]):
    """
    Step 4: Materials node plus step placeholders, then grouping.

    Every step gets its node right away so the canvas can show all of them
    while images stream in. The materials node succeeds immediately since the
    dissection already holds its content.

    Reads: dissection, max_groups
    Writes: dissection (renumbered if step numbers repeat), groups
    Services: NodeStateModel, group_steps()
    """

    metadata: ClassVar[NodeMetadata] = NodeMetadata(
        inputs=["dissection", "max_groups"],
        outputs=["groups"],
        services=["node_state.create", "step_grouper.group_steps"],
    )

    async def run(
        self,
        ctx: GraphRunContext[CraftPipelineState, CraftDependencies]
    ) -> "GenerateStepImagesNode":
        from .generate_step_images import GenerateStepImagesNode

        state = ctx.state
        nodes = ctx.deps.node_state
        dissection = state.dissection

        logger.info(f"Step 4: Creating {len(dissection.steps)} step nodes for {state.master_id}")
        state.current_step = "create_placeholders"

        numbers = [step.step_number for step in dissection.steps]
        if len(set(numbers)) != len(numbers):
            logger.warning(f"Dissection returned repeated step numbers {numbers}; renumbering")
            dissection.steps = [
                step.model_copy(update={"step_number": i})
                for i, step in enumerate(dissection.steps, start=1)
            ]

        materials_id = materials_node_id(state.master_id)
        nodes.create(NodeRecord(
            id=materials_id,
            kind=NodeKind.MATERIALS,
            parent_id=state.master_id,
            label="Materials",
        ))
        nodes.dispatch(materials_id)
        nodes.succeed(materials_id, MaterialsPayload(
            materials=list(dissection.materials),
            complexity=dissection.complexity,
            complexity_score=dissection.complexity_score,
        ))

        for step in dissection.steps:
            nodes.create(NodeRecord(
                id=step_node_id(state.master_id, step.step_number),
                kind=NodeKind.STEP,
                parent_id=state.master_id,
                label=f"Step {step.step_number}: {step.title}",
                step_number=step.step_number,
            ))

        nodes.set_dissection(state.master_id, DissectionStatus.DONE)

        state.groups = group_steps(dissection.steps, state.max_groups)
        state.mark_step_complete("create_placeholders")
        return GenerateStepImagesNode()

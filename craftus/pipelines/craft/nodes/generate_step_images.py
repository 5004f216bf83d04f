"""
GenerateStepImagesNode - one image call per step group, strictly in order.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, List, Optional

from pydantic_graph import BaseNode, End, GraphRunContext

from ..state import CraftPipelineState
from ....dependencies import CraftDependencies
from ....services.api_client import ApiError, ErrorKind
from ....services.gemini_service import STEP_ASPECT_RATIO
from ....services.models import GenerationRequest, RequestKind
from ....services.node_state import NodeStatus, StepPayload, step_node_id
from ....services.prompts import build_step_prompt
from ....services.step_grouper import StepGroup
from ...metadata import NodeMetadata

logger = logging.getLogger(__name__)


@dataclass
class GenerateStepImagesNode(BaseNode[CraftPipelineState]):
    """
    Step 5: Generate step images group by group (resilient).

    Groups run sequentially, never concurrently. A group's image is attached
    to every member step. If one group fails, its members are marked Failed
    and the next group still runs. Once cancellation is requested no further
    group is dispatched; those members stay Pending. A group still waiting
    for a rate-limit slot or a retry backoff is abandoned unsent and its
    members fail CANCELLED.

    group_indices limits the run to specific groups (manual retry).

    Reads: groups, dissection, master_image, region, object_label, category
    Writes: groups_succeeded, groups_failed, groups_skipped
    Services: GeminiService.generate_image() through RetryingApiClient
    """

    group_indices: Optional[List[int]] = None

    metadata: ClassVar[NodeMetadata] = NodeMetadata(
        inputs=["groups", "dissection", "master_image", "region", "object_label", "category"],
        outputs=["groups_succeeded", "groups_failed", "groups_skipped"],
        services=["api_client.call", "gemini.generate_image"],
        llm="Gemini 3 Pro Image",
        llm_purpose="Illustrate each group of build steps",
        api_calls=1,
        per_group=True,
    )

    async def run(
        self,
        ctx: GraphRunContext[CraftPipelineState, CraftDependencies]
    ) -> End[Dict[str, Any]]:
        state = ctx.state
        indices = self.group_indices if self.group_indices is not None else range(len(state.groups))
        indices = list(indices)

        logger.info(f"Step 5: Generating {len(indices)} step image(s) for {state.master_id}")
        state.current_step = "generate_step_images"
        state.groups_succeeded = 0
        state.groups_failed = 0
        state.groups_skipped = 0

        for position, index in enumerate(indices, start=1):
            if state.cancel_requested:
                remaining = len(indices) - position + 1
                state.groups_skipped += remaining
                logger.info(
                    f"Cancelled: not dispatching the remaining {remaining} group(s) "
                    f"for {state.master_id}"
                )
                break

            group = state.groups[index]
            logger.info(
                f"  Generating image {position}/{len(indices)} "
                f"(steps {', '.join(str(n) for n in group.member_step_numbers)})..."
            )
            await self._generate_group(ctx, group)

        state.mark_step_complete("generate_step_images")
        logger.info(
            f"Step images done for {state.master_id}: {state.groups_succeeded} succeeded, "
            f"{state.groups_failed} failed, {state.groups_skipped} skipped"
        )
        return End(state.summary())

    async def _generate_group(
        self,
        ctx: GraphRunContext[CraftPipelineState, CraftDependencies],
        group: StepGroup,
    ) -> None:
        state = ctx.state
        nodes = ctx.deps.node_state

        member_ids = [
            step_node_id(state.master_id, n)
            for n in group.member_step_numbers
            if nodes.get(step_node_id(state.master_id, n)).status is NodeStatus.PENDING
        ]
        if not member_ids:
            logger.debug(f"Group {group.member_step_numbers} has no pending steps, skipping")
            return

        for node_id in member_ids:
            nodes.dispatch(node_id)

        request = GenerationRequest(
            kind=RequestKind.STEP_IMAGE,
            prompt_text=build_step_prompt(
                state.category,
                f"{group.combined_title}: {group.combined_text}",
                state.object_label,
            ),
            reference_images=(state.reference_image,),
        )

        try:
            image = await ctx.deps.api_client.call(
                lambda: ctx.deps.gemini.generate_image(
                    request.prompt_text,
                    reference_images=list(request.reference_images),
                    aspect_ratio=STEP_ASPECT_RATIO,
                ),
                label=f"{request.label} (steps {list(group.member_step_numbers)} of {state.master_id})",
                should_abort=lambda: state.cancel_requested,
            )
        except ApiError as e:
            if e.kind is ErrorKind.CANCELLED:
                # Never sent; retry_step re-arms these
                for node_id in member_ids:
                    nodes.fail(node_id, ErrorKind.CANCELLED, str(e))
                state.groups_skipped += 1
                logger.info(f"Step group {list(group.member_step_numbers)} cancelled before dispatch")
                return
            for node_id in member_ids:
                nodes.fail(node_id, e.kind, str(e))
            state.groups_failed += 1
            logger.warning(f"Step group {list(group.member_step_numbers)} failed: {e}")
            return
        except asyncio.CancelledError:
            for node_id in member_ids:
                nodes.fail(node_id, ErrorKind.CANCELLED, "Task cancelled")
            raise

        steps_by_number = {step.step_number: step for step in state.dissection.steps}
        for node_id in member_ids:
            step = steps_by_number[nodes.get(node_id).step_number]
            nodes.succeed(node_id, StepPayload(
                step_number=step.step_number,
                title=step.title,
                description=step.description,
                safety_warning=step.safety_warning,
                image=image,
                group_step_numbers=list(group.member_step_numbers),
            ))
        state.groups_succeeded += 1

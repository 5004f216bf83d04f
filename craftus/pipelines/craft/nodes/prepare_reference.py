"""
PrepareReferenceNode - crop the user's selection and name the selected object.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import ClassVar

from pydantic_graph import BaseNode, GraphRunContext

from ..state import CraftPipelineState
from ....dependencies import CraftDependencies
from ....services.api_client import ApiError
from ....services.gemini_service import FALLBACK_OBJECT_LABEL
from ....services.models import GenerationRequest, RequestKind
from ....services.node_state import DissectionStatus
from ....services.prompts import build_identify_prompt
from ....services.region_extractor import ContextMode, extract_region
from ...metadata import NodeMetadata

logger = logging.getLogger(__name__)


@dataclass
class PrepareReferenceNode(BaseNode[CraftPipelineState]):
    """
    Step 2: Build the image the dissection call will analyze.

    Without a selection mask the master image is used as is. With one, the
    padded region is cropped (full context, not mask-only) and a short label
    for the selected object is requested. A bad selection fails here, before
    any network call; a failed identification falls back to a generic label.

    Reads: master_image, selection_mask, padding_fraction
    Writes: region, object_label
    Services: extract_region(), GeminiService.identify_object()
    """

    metadata: ClassVar[NodeMetadata] = NodeMetadata(
        inputs=["master_image", "selection_mask", "padding_fraction"],
        outputs=["region", "object_label"],
        services=["region_extractor.extract_region", "gemini.identify_object"],
        llm="Gemini 2.5 Flash",
        llm_purpose="Name the selected object",
        api_calls=1,
    )

    async def run(
        self,
        ctx: GraphRunContext[CraftPipelineState, CraftDependencies]
    ) -> "AnalyzeNode":
        from .analyze import AnalyzeNode

        state = ctx.state
        logger.info(f"Step 2: Preparing dissection reference for {state.master_id}")
        state.current_step = "prepare_reference"

        if state.master_image is None:
            raise ValueError(f"Master {state.master_id} has no image to dissect")

        if state.selection_mask is not None:
            try:
                state.region = extract_region(
                    state.master_image,
                    state.selection_mask,
                    padding_fraction=state.padding_fraction,
                    context_mode=ContextMode.FULL_REGION,
                )
            except Exception as e:
                state.error = str(e)
                state.error_step = "prepare_reference"
                logger.error(f"Selection rejected for {state.master_id}: {e}")
                raise

        ctx.deps.node_state.set_dissection(state.master_id, DissectionStatus.IN_PROGRESS)

        if state.region is not None:
            try:
                state.object_label = await self._identify(ctx)
            except asyncio.CancelledError:
                ctx.deps.node_state.set_dissection(
                    state.master_id, DissectionStatus.FAILED, "Task cancelled"
                )
                raise

        state.mark_step_complete("prepare_reference")
        return AnalyzeNode()

    async def _identify(self, ctx: GraphRunContext[CraftPipelineState, CraftDependencies]) -> str:
        state = ctx.state
        request = GenerationRequest(
            kind=RequestKind.IDENTIFY,
            prompt_text=build_identify_prompt(),
            reference_images=(state.region.cropped_image, state.master_image),
        )
        selected, full_image = request.reference_images
        try:
            return await ctx.deps.api_client.call(
                lambda: ctx.deps.gemini.identify_object(selected, full_image, request.prompt_text),
                label=f"{request.label} ({state.master_id})",
                should_abort=lambda: state.cancel_requested,
            )
        except ApiError as e:
            logger.warning(f"Object identification failed, using fallback label: {e}")
            return FALLBACK_OBJECT_LABEL

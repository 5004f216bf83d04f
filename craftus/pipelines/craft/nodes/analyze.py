"""
AnalyzeNode - dissect the master (or selection) into materials and steps.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Union

from pydantic_graph import BaseNode, End, GraphRunContext

from ..state import CraftPipelineState
from ....dependencies import CraftDependencies
from ....services.api_client import ApiError
from ....services.models import GenerationRequest, RequestKind
from ....services.node_state import DissectionStatus
from ....services.prompts import build_dissection_prompt
from ...metadata import NodeMetadata

logger = logging.getLogger(__name__)


@dataclass
class AnalyzeNode(BaseNode[CraftPipelineState]):
    """
    Step 3: Dissection call.

    Sends the selection crop (when present) followed by the full master image,
    or just the master image. A failure is recorded on the master's dissection
    state; the master keeps its image and status, and the run stops.

    Reads: master_image, region, object_label, prompt, category
    Writes: dissection
    Services: GeminiService.dissect_image() through RetryingApiClient
    """

    metadata: ClassVar[NodeMetadata] = NodeMetadata(
        inputs=["master_image", "region", "object_label", "prompt", "category"],
        outputs=["dissection"],
        services=["api_client.call", "gemini.dissect_image"],
        llm="Gemini 2.5 Flash",
        llm_purpose="List materials and ordered build steps",
        api_calls=1,
    )

    async def run(
        self,
        ctx: GraphRunContext[CraftPipelineState, CraftDependencies]
    ) -> Union["CreatePlaceholdersNode", End[Dict[str, Any]]]:
        from .create_placeholders import CreatePlaceholdersNode

        state = ctx.state
        nodes = ctx.deps.node_state

        logger.info(f"Step 3: Dissecting {state.master_id}" + (
            f" (selected object: {state.object_label})" if state.object_label else ""
        ))
        state.current_step = "analyze"

        if state.region is not None:
            images = [state.region.cropped_image, state.master_image]
        else:
            images = [state.master_image]

        request = GenerationRequest(
            kind=RequestKind.ANALYSIS,
            prompt_text=build_dissection_prompt(state.category, state.prompt, state.object_label),
            reference_images=tuple(images),
        )

        try:
            state.dissection = await ctx.deps.api_client.call(
                lambda: ctx.deps.gemini.dissect_image(list(request.reference_images), request.prompt_text),
                label=f"{request.label} ({state.master_id})",
                should_abort=lambda: state.cancel_requested,
            )
        except ApiError as e:
            nodes.set_dissection(state.master_id, DissectionStatus.FAILED, str(e))
            state.error = str(e)
            state.error_step = "analyze"
            logger.error(f"Dissection failed for {state.master_id}: {e}")
            return End(state.summary())
        except asyncio.CancelledError:
            nodes.set_dissection(state.master_id, DissectionStatus.FAILED, "Task cancelled")
            raise

        state.mark_step_complete("analyze")
        return CreatePlaceholdersNode()

"""
GenerateMasterNode - generate the master image for a craft prompt.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, ClassVar, Dict

from pydantic_graph import BaseNode, End, GraphRunContext

from ..state import CraftPipelineState
from ....dependencies import CraftDependencies
from ....services.api_client import ApiError, ErrorKind
from ....services.gemini_service import MASTER_ASPECT_RATIO
from ....services.models import GenerationRequest, RequestKind
from ....services.node_state import MasterPayload
from ....services.prompts import build_master_prompt
from ...metadata import NodeMetadata

logger = logging.getLogger(__name__)


@dataclass
class GenerateMasterNode(BaseNode[CraftPipelineState]):
    """
    Step 1: Generate the master image.

    The master record must already exist in Pending. Failure here is terminal
    for the request: nothing downstream runs. If the run was cancelled while
    the call was in flight, the result is discarded and the master is failed
    with ErrorKind.CANCELLED.

    Reads: master_id, prompt, category, image_size, cancel_requested
    Writes: master_image
    Services: GeminiService.generate_image() through RetryingApiClient
    """

    metadata: ClassVar[NodeMetadata] = NodeMetadata(
        inputs=["master_id", "prompt", "category", "image_size", "cancel_requested"],
        outputs=["master_image"],
        services=["api_client.call", "gemini.generate_image"],
        llm="Gemini 3 Pro Image",
        llm_purpose="Generate the finished craft photo",
        api_calls=1,
    )

    async def run(
        self,
        ctx: GraphRunContext[CraftPipelineState, CraftDependencies]
    ) -> End[Dict[str, Any]]:
        state = ctx.state
        nodes = ctx.deps.node_state

        logger.info(f"Step 1: Generating master image for {state.master_id}: {state.prompt[:60]}")
        state.current_step = "generate_master"

        nodes.dispatch(state.master_id)
        request = GenerationRequest(
            kind=RequestKind.MASTER_ASSET,
            prompt_text=build_master_prompt(state.category, state.prompt),
        )

        try:
            image = await ctx.deps.api_client.call(
                lambda: ctx.deps.gemini.generate_image(
                    request.prompt_text,
                    aspect_ratio=MASTER_ASPECT_RATIO,
                    image_size=state.image_size,
                ),
                label=f"{request.label} ({state.master_id})",
                should_abort=lambda: state.cancel_requested,
            )
        except ApiError as e:
            kind = ErrorKind.CANCELLED if state.cancel_requested else e.kind
            nodes.fail(state.master_id, kind, str(e))
            state.error = str(e)
            state.error_step = "generate_master"
            logger.error(f"Master generation failed for {state.master_id}: {e}")
            return End(state.summary())
        except asyncio.CancelledError:
            nodes.fail(state.master_id, ErrorKind.CANCELLED, "Task cancelled")
            raise

        if state.cancel_requested:
            # Do not resurrect a cancelled request
            nodes.fail(state.master_id, ErrorKind.CANCELLED, "Cancelled before the master image resolved")
            state.error = "cancelled"
            state.error_step = "generate_master"
            logger.info(f"Discarding master image for cancelled request {state.master_id}")
            return End(state.summary())

        state.master_image = image
        nodes.succeed(
            state.master_id,
            MasterPayload(image=image, prompt=state.prompt, category=state.category),
        )

        state.mark_step_complete("generate_master")
        logger.info(f"Master image ready for {state.master_id}")
        return End(state.summary())

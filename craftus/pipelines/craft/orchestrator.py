"""
Craft Pipeline Orchestrator - drives the craft nodes and exposes user commands.

Commands:
- generate_master(): create the master node and generate its image
- dissect(): analyze a master (optionally a selected region) and illustrate its steps
- retry_master() / retry_step(): re-arm Failed nodes and re-run their stage
- cancel(): stop dispatching further calls for a master
- forget(): drop the pipeline state of a master that is no longer needed
- run() / run_stream(): master then (optionally) dissection, as one request

The nodes are pydantic-graph BaseNodes; _drive() steps through them one at a
time so cancellation can be checked between stages.
"""

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, Optional, Tuple, Union
from uuid import uuid4

import logfire
from pydantic_graph import BaseNode, End, GraphRunContext

from .state import CraftPipelineState
from .nodes import (
    GenerateMasterNode,
    PrepareReferenceNode,
    AnalyzeNode,
    CreatePlaceholdersNode,
    GenerateStepImagesNode,
)
from ...core.validation import validate_prompt
from ...dependencies import CraftDependencies
from ...services.models import CraftCategory
from ...services.node_state import (
    DissectionStatus,
    IllegalTransition,
    NodeKind,
    NodeRecord,
    NodeStatus,
    NodeTransition,
    master_node_id,
    step_node_id,
)
from ...services.region_extractor import SegmentationMask

logger = logging.getLogger(__name__)

MASTER_NODES = (GenerateMasterNode,)
DISSECTION_NODES = (
    PrepareReferenceNode,
    AnalyzeNode,
    CreatePlaceholdersNode,
    GenerateStepImagesNode,
)


class CraftOrchestrator:
    """
    Runs craft pipelines against one CraftDependencies.

    Several masters may be in progress at once (each has its own state); they
    share only the rate limiter. Within one master, the orchestrator is the
    only writer of its node records.
    """

    def __init__(self, deps: CraftDependencies):
        self.deps = deps
        self.node_state = deps.node_state
        self._states: Dict[str, CraftPipelineState] = {}

    def get_state(self, master_id: str) -> CraftPipelineState:
        try:
            return self._states[master_id]
        except KeyError:
            raise KeyError(f"Unknown master: {master_id}") from None

    # ------------------------------------------------------------------
    # Driving
    # ------------------------------------------------------------------

    async def _drive(self, start: BaseNode, state: CraftPipelineState) -> Dict[str, Any]:
        """Run nodes from start until one returns End."""
        ctx = GraphRunContext(state=state, deps=self.deps)
        node: Union[BaseNode, End] = start

        state.running = True
        try:
            with logfire.span(
                "craft pipeline {stage}",
                stage=type(start).__name__,
                master_id=state.master_id,
            ):
                while not isinstance(node, End):
                    node = await node.run(ctx)
        finally:
            state.running = False

        return node.data

    def _ensure_idle(self, state: CraftPipelineState) -> None:
        if state.running:
            raise IllegalTransition(f"Pipeline for {state.master_id} is still running")

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def generate_master(
        self,
        prompt: str,
        category: CraftCategory,
        master_id: Optional[str] = None,
    ) -> NodeRecord:
        """
        Create a master node and generate its image.

        Args:
            prompt: User description of the craft
            category: Craft category
            master_id: Node id to use (generated when omitted)

        Returns:
            The master record after the call settled (Succeeded or Failed)

        Raises:
            PromptValidationError: If the prompt is rejected before any call
        """
        prompt = validate_prompt(prompt)
        category = CraftCategory(category)
        master_id = master_id or master_node_id(uuid4().hex[:12])

        state = CraftPipelineState(
            master_id=master_id,
            prompt=prompt,
            category=category,
            max_groups=self.deps.max_step_images,
            padding_fraction=self.deps.padding_fraction,
            image_size=self.deps.image_size,
        )
        self._states[master_id] = state

        self.node_state.create(NodeRecord(
            id=master_id,
            kind=NodeKind.MASTER,
            label=prompt,
        ))

        logger.info(f"=== STARTING CRAFT PIPELINE {master_id} ({category.value}) ===")
        await self._drive(GenerateMasterNode(), state)
        return self.node_state.get(master_id)

    async def dissect(
        self,
        master_id: str,
        selection: Optional[SegmentationMask] = None,
    ) -> Dict[str, Any]:
        """
        Analyze a succeeded master and generate its step images.

        Args:
            master_id: Master to dissect
            selection: Optional mask of a single object in the master image

        Returns:
            Run summary (groups succeeded / failed / skipped, error)

        Raises:
            IllegalTransition: Master not Succeeded, already dissected or busy
            InvalidSelection: Empty or mismatched selection mask
        """
        state = self.get_state(master_id)
        self._ensure_idle(state)

        record = self.node_state.get(master_id)
        if record.status is not NodeStatus.SUCCEEDED:
            raise IllegalTransition(f"Master {master_id} is {record.status.value}, cannot dissect")
        if record.dissection in (DissectionStatus.IN_PROGRESS, DissectionStatus.DONE):
            raise IllegalTransition(f"Master {master_id} is already {record.dissection.value}")

        state.selection_mask = selection
        state.region = None
        state.object_label = None
        state.dissection = None
        state.groups = []
        state.error = None
        state.error_step = None
        state.cancel_requested = False

        return await self._drive(PrepareReferenceNode(), state)

    async def run(
        self,
        prompt: str,
        category: CraftCategory,
        selection: Optional[SegmentationMask] = None,
        dissect: bool = False,
        master_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        One user request: master image, then dissection when asked for.

        Returns:
            The dissection summary, or the master run summary when the master
            failed or dissection was not requested
        """
        record = await self.generate_master(prompt, category, master_id=master_id)
        state = self.get_state(record.id)

        if record.status is not NodeStatus.SUCCEEDED or not dissect:
            return state.summary()

        return await self.dissect(record.id, selection)

    async def run_stream(
        self,
        prompt: str,
        category: CraftCategory,
        selection: Optional[SegmentationMask] = None,
        dissect: bool = False,
    ) -> AsyncIterator[Tuple[NodeTransition, NodeRecord]]:
        """
        Like run(), yielding every node transition of this request as it happens.
        """
        master_id = master_node_id(uuid4().hex[:12])
        queue: asyncio.Queue = asyncio.Queue()

        def _listener(transition: NodeTransition, record: NodeRecord) -> None:
            if record.id == master_id or record.parent_id == master_id:
                queue.put_nowait((transition, record))

        unsubscribe = self.node_state.subscribe(_listener)
        task = asyncio.create_task(
            self.run(prompt, category, selection=selection, dissect=dissect, master_id=master_id)
        )
        try:
            while True:
                getter = asyncio.ensure_future(queue.get())
                done, _ = await asyncio.wait({getter, task}, return_when=asyncio.FIRST_COMPLETED)
                if getter in done:
                    yield getter.result()
                    continue
                getter.cancel()
                break

            while not queue.empty():
                yield queue.get_nowait()

            task.result()
        finally:
            unsubscribe()
            if not task.done():
                task.cancel()

    async def retry_master(self, master_id: str) -> NodeRecord:
        """
        Re-arm a Failed master and generate its image again.

        Raises:
            IllegalTransition: If the master is not Failed or is still running
        """
        state = self.get_state(master_id)
        self._ensure_idle(state)

        self.node_state.rearm(master_id)
        state.cancel_requested = False
        state.error = None
        state.error_step = None

        logger.info(f"Retrying master {master_id}")
        await self._drive(GenerateMasterNode(), state)
        return self.node_state.get(master_id)

    async def retry_step(self, master_id: str, step_number: int) -> Dict[str, Any]:
        """
        Re-run the image call for the group containing step_number.

        Failed members are re-armed; Pending members (never dispatched, e.g.
        after a cancel) are dispatched; Succeeded members keep their image.

        Raises:
            KeyError: Unknown master or step
            IllegalTransition: Pipeline still running or nothing to retry
        """
        state = self.get_state(master_id)
        self._ensure_idle(state)

        index = state.group_index_for_step(step_number)
        if index is None:
            raise KeyError(f"Step {step_number} not found for {master_id}")

        group = state.groups[index]
        retryable = False
        for n in group.member_step_numbers:
            node_id = step_node_id(master_id, n)
            record = self.node_state.get(node_id)
            if record.status is NodeStatus.FAILED:
                self.node_state.rearm(node_id)
                retryable = True
            elif record.status is NodeStatus.PENDING:
                retryable = True

        if not retryable:
            raise IllegalTransition(
                f"Steps {list(group.member_step_numbers)} of {master_id} have nothing to retry"
            )

        state.cancel_requested = False
        logger.info(f"Retrying step group {list(group.member_step_numbers)} of {master_id}")
        return await self._drive(GenerateStepImagesNode(group_indices=[index]), state)

    def cancel(self, master_id: str) -> None:
        """
        Stop issuing calls for a master.

        Calls already in flight complete and update their nodes, except the
        master call, whose result is discarded.
        """
        state = self.get_state(master_id)
        state.cancel_requested = True
        logger.info(f"Cancellation requested for {master_id}")

    def forget(self, master_id: str) -> None:
        """
        Drop the pipeline state kept for a master.

        Its node records stay in the NodeStateModel; only further commands
        (dissect, retries, cancel) for this master become unavailable.

        Raises:
            KeyError: Unknown master
            IllegalTransition: Pipeline still running
        """
        state = self.get_state(master_id)
        self._ensure_idle(state)
        del self._states[master_id]
        logger.debug(f"Forgot pipeline state for {master_id}")


async def run_craft_pipeline(
    prompt: str,
    category: Union[CraftCategory, str],
    *,
    selection: Optional[SegmentationMask] = None,
    dissect: bool = True,
    deps: Optional[CraftDependencies] = None,
) -> Dict[str, Any]:
    """
    Convenience entry point: build dependencies if needed and run one request.

    Returns:
        Dict with the run summary and a snapshot of all nodes
    """
    if deps is None:
        deps = CraftDependencies.create()

    orchestrator = CraftOrchestrator(deps)
    summary = await orchestrator.run(prompt, CraftCategory(category), selection=selection, dissect=dissect)
    return {"summary": summary, "snapshot": deps.node_state.snapshot()}

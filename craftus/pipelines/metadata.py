"""
Node metadata for the craft pipeline.

Each node declares the state fields it reads and writes, the Gemini model it
calls and how many rate-limited calls it can issue. `craftus craft describe`
uses this to show, without running anything, which models a run touches and
how much of the shared rate-limit window one run can take.

Usage:
    from craftus.pipelines.metadata import NodeMetadata

    @dataclass
    class MyNode(BaseNode[CraftPipelineState]):
        '''Node description.'''

        metadata: ClassVar[NodeMetadata] = NodeMetadata(
            inputs=["master_image"],
            outputs=["dissection"],
            services=["gemini.dissect_image"],
            llm="Gemini 2.5 Flash",
            llm_purpose="Break the craft into steps",
            api_calls=1,
        )

        async def run(self, ctx): ...
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence


@dataclass
class NodeMetadata:
    """
    Metadata for a craft pipeline node.

    Attributes:
        inputs: State fields read by this node
        outputs: State fields written by this node
        services: Service methods called (e.g., "gemini.generate_image")
        llm: Model used, if any
        llm_purpose: What the model does in this node
        api_calls: Most rate-limited calls one run of the node issues
            (first attempts only; retries come on top)
        per_group: api_calls is counted once per step group
    """

    inputs: List[str] = field(default_factory=list)
    outputs: List[str] = field(default_factory=list)
    services: List[str] = field(default_factory=list)
    llm: Optional[str] = None
    llm_purpose: Optional[str] = None
    api_calls: int = 0
    per_group: bool = False

    @property
    def uses_llm(self) -> bool:
        return self.llm is not None

    def max_api_calls(self, max_groups: int) -> int:
        """Upper bound on calls for a run capped at max_groups step images."""
        return self.api_calls * max_groups if self.per_group else self.api_calls

    def to_dict(self) -> dict:
        return {
            "inputs": self.inputs,
            "outputs": self.outputs,
            "services": self.services,
            "llm": self.llm,
            "llm_purpose": self.llm_purpose,
            "api_calls": self.api_calls,
            "per_group": self.per_group,
            "uses_llm": self.uses_llm,
        }


def get_node_metadata(node_class) -> Optional[NodeMetadata]:
    """Metadata defined on a node class, or None."""
    return getattr(node_class, "metadata", None)


def summarize_run(node_classes: Sequence[type], max_groups: int) -> Dict[str, Any]:
    """
    Models and worst-case call count for one run through node_classes.

    Args:
        node_classes: Nodes of the run, in order
        max_groups: Step image cap (MAX_STEP_IMAGES)

    Returns:
        Dict with max_api_calls and models (model name -> node names)
    """
    models: Dict[str, List[str]] = {}
    calls = 0

    for node_class in node_classes:
        metadata = get_node_metadata(node_class)
        if metadata is None:
            continue
        calls += metadata.max_api_calls(max_groups)
        if metadata.uses_llm:
            models.setdefault(metadata.llm, []).append(node_class.__name__)

    return {"max_api_calls": calls, "models": models}

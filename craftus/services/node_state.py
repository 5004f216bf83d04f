"""
NodeStateModel - the records behind every canvas node, and their state machine.

Records are immutable; every change is a NodeTransition event applied by a
single reducer (NodeStateModel.apply), which enforces:

    Pending -> InFlight -> Succeeded | Failed
    Failed  -> Pending            (manual retry only)

A payload is present if and only if the record is Succeeded, and a Failed
record always carries an error kind. Subscribers are notified after every
applied transition; the view layer re-renders from those notifications and
the persistence layer writes snapshot().
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .api_client import ErrorKind
from .models import CraftCategory, ImageAsset

logger = logging.getLogger(__name__)


class IllegalTransition(Exception):
    """Raised when a transition violates the node state machine."""


class NodeKind(str, Enum):
    MASTER = "master"
    MATERIALS = "materials"
    STEP = "step"


class NodeStatus(str, Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class DissectionStatus(str, Enum):
    """Analysis progress tracked on a master node, separate from its own status."""
    IDLE = "idle"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    FAILED = "failed"


class TransitionType(str, Enum):
    CREATED = "created"
    DISPATCHED = "dispatched"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REARMED = "rearmed"
    DISSECTION = "dissection"


# ============================================================================
# Payloads
# ============================================================================

class MasterPayload(BaseModel):
    """Generated master image."""
    model_config = ConfigDict(frozen=True)

    image: ImageAsset
    prompt: str
    category: CraftCategory


class MaterialsPayload(BaseModel):
    """Materials list from the dissection call."""
    model_config = ConfigDict(frozen=True)

    materials: List[str] = Field(default_factory=list)
    complexity: str = "Moderate"
    complexity_score: int = 5


class StepPayload(BaseModel):
    """Step text plus the image shared by every step in its group."""
    model_config = ConfigDict(frozen=True)

    step_number: int
    title: str
    description: str
    safety_warning: Optional[str] = None
    image: ImageAsset
    group_step_numbers: List[int] = Field(default_factory=list)


NodePayload = Union[MasterPayload, MaterialsPayload, StepPayload]

PAYLOAD_TYPES = {
    NodeKind.MASTER: MasterPayload,
    NodeKind.MATERIALS: MaterialsPayload,
    NodeKind.STEP: StepPayload,
}


# ============================================================================
# Records and transitions
# ============================================================================

@dataclass(frozen=True)
class NodeRecord:
    """One canvas node. parent_id is a back-reference only; nothing cascades."""
    id: str
    kind: NodeKind
    parent_id: Optional[str] = None
    status: NodeStatus = NodeStatus.PENDING
    payload: Optional[NodePayload] = None
    retry_count: int = 0
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    label: str = ""
    step_number: Optional[int] = None
    dissection: DissectionStatus = DissectionStatus.IDLE
    dissection_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "parent_id": self.parent_id,
            "status": self.status.value,
            "payload": self.payload.model_dump(mode="json") if self.payload is not None else None,
            "retry_count": self.retry_count,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error_message": self.error_message,
            "label": self.label,
            "step_number": self.step_number,
            "dissection": self.dissection.value,
            "dissection_error": self.dissection_error,
        }


@dataclass(frozen=True)
class NodeTransition:
    """A single change request for one record."""
    type: TransitionType
    node_id: str
    record: Optional[NodeRecord] = None
    payload: Optional[NodePayload] = None
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    dissection: Optional[DissectionStatus] = None
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Listener = Callable[[NodeTransition, NodeRecord], None]


def master_node_id(token: str) -> str:
    return f"master-{token}"


def materials_node_id(master_id: str) -> str:
    return f"{master_id}-mat"


def step_node_id(master_id: str, step_number: int) -> str:
    return f"{master_id}-step-{step_number}"


class NodeStateModel:
    """
    Store of NodeRecords mutated only through apply().

    The orchestrator is the single writer; everyone else reads records or
    subscribes to transitions.
    """

    def __init__(self):
        self._records: Dict[str, NodeRecord] = {}
        self._listeners: List[Listener] = []
        self.history: List[NodeTransition] = []

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, node_id: str) -> NodeRecord:
        try:
            return self._records[node_id]
        except KeyError:
            raise KeyError(f"Unknown node: {node_id}") from None

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    def records(self) -> List[NodeRecord]:
        """All records in creation order."""
        return list(self._records.values())

    def children(self, parent_id: str, kind: Optional[NodeKind] = None) -> List[NodeRecord]:
        return [
            r for r in self._records.values()
            if r.parent_id == parent_id and (kind is None or r.kind == kind)
        ]

    def snapshot(self) -> Dict[str, Any]:
        """JSON-serialisable view of every record plus master -> child edges."""
        edges = [
            {"id": f"e-{r.parent_id}-{r.id}", "source": r.parent_id, "target": r.id}
            for r in self._records.values()
            if r.parent_id is not None
        ]
        return {
            "nodes": [r.to_dict() for r in self._records.values()],
            "edges": edges,
        }

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # Reducer
    # ------------------------------------------------------------------

    def apply(self, transition: NodeTransition) -> NodeRecord:
        """
        Validate and apply one transition.

        Returns:
            The new record

        Raises:
            IllegalTransition: If the transition is not allowed from the current state
        """
        new_record = self._reduce(transition)
        self._records[new_record.id] = new_record
        self.history.append(transition)

        logger.debug(f"Node {new_record.id}: {transition.type.value} -> {new_record.status.value}")

        for listener in list(self._listeners):
            try:
                listener(transition, new_record)
            except Exception:
                logger.exception(f"Node listener failed on {transition.type.value} for {new_record.id}")

        return new_record

    def _reduce(self, t: NodeTransition) -> NodeRecord:
        if t.type is TransitionType.CREATED:
            if t.record is None:
                raise IllegalTransition("CREATED requires a record")
            if t.record.id != t.node_id:
                raise IllegalTransition(f"Record id {t.record.id} does not match {t.node_id}")
            if t.node_id in self._records:
                raise IllegalTransition(f"Node {t.node_id} already exists")
            if t.record.status is not NodeStatus.PENDING or t.record.payload is not None:
                raise IllegalTransition(f"Node {t.node_id} must be created Pending without payload")
            return t.record

        current = self._records.get(t.node_id)
        if current is None:
            raise IllegalTransition(f"Unknown node: {t.node_id}")

        if t.type is TransitionType.DISPATCHED:
            self._require(current, t, NodeStatus.PENDING)
            return replace(current, status=NodeStatus.IN_FLIGHT)

        if t.type is TransitionType.SUCCEEDED:
            self._require(current, t, NodeStatus.IN_FLIGHT)
            expected = PAYLOAD_TYPES[current.kind]
            if t.payload is None:
                raise IllegalTransition(f"Node {t.node_id} cannot succeed without a payload")
            if not isinstance(t.payload, expected):
                raise IllegalTransition(
                    f"Node {t.node_id} ({current.kind.value}) needs {expected.__name__}, "
                    f"got {type(t.payload).__name__}"
                )
            return replace(
                current,
                status=NodeStatus.SUCCEEDED,
                payload=t.payload,
                error_kind=None,
                error_message=None,
            )

        if t.type is TransitionType.FAILED:
            self._require(current, t, NodeStatus.IN_FLIGHT)
            if t.error_kind is None:
                raise IllegalTransition(f"Node {t.node_id} cannot fail without an error kind")
            if t.payload is not None:
                raise IllegalTransition(f"Node {t.node_id} cannot fail with a payload")
            return replace(
                current,
                status=NodeStatus.FAILED,
                payload=None,
                error_kind=t.error_kind,
                error_message=t.error_message,
            )

        if t.type is TransitionType.REARMED:
            self._require(current, t, NodeStatus.FAILED)
            return replace(
                current,
                status=NodeStatus.PENDING,
                payload=None,
                error_kind=None,
                error_message=None,
                retry_count=current.retry_count + 1,
            )

        if t.type is TransitionType.DISSECTION:
            if current.kind is not NodeKind.MASTER:
                raise IllegalTransition(f"Node {t.node_id} is not a master node")
            self._require(current, t, NodeStatus.SUCCEEDED)
            if t.dissection is None:
                raise IllegalTransition("DISSECTION requires a dissection status")
            error = t.error_message if t.dissection is DissectionStatus.FAILED else None
            return replace(current, dissection=t.dissection, dissection_error=error)

        raise IllegalTransition(f"Unsupported transition type: {t.type}")

    @staticmethod
    def _require(current: NodeRecord, t: NodeTransition, status: NodeStatus) -> None:
        if current.status is not status:
            raise IllegalTransition(
                f"Node {current.id}: {t.type.value} not allowed from {current.status.value}"
            )

    # ------------------------------------------------------------------
    # Convenience writers used by the orchestrator
    # ------------------------------------------------------------------

    def create(self, record: NodeRecord) -> NodeRecord:
        return self.apply(NodeTransition(TransitionType.CREATED, record.id, record=record))

    def dispatch(self, node_id: str) -> NodeRecord:
        return self.apply(NodeTransition(TransitionType.DISPATCHED, node_id))

    def succeed(self, node_id: str, payload: NodePayload) -> NodeRecord:
        return self.apply(NodeTransition(TransitionType.SUCCEEDED, node_id, payload=payload))

    def fail(self, node_id: str, error_kind: ErrorKind, message: Optional[str] = None) -> NodeRecord:
        return self.apply(
            NodeTransition(TransitionType.FAILED, node_id, error_kind=error_kind, error_message=message)
        )

    def rearm(self, node_id: str) -> NodeRecord:
        return self.apply(NodeTransition(TransitionType.REARMED, node_id))

    def set_dissection(
        self,
        node_id: str,
        status: DissectionStatus,
        error: Optional[str] = None,
    ) -> NodeRecord:
        return self.apply(
            NodeTransition(TransitionType.DISSECTION, node_id, dissection=status, error_message=error)
        )

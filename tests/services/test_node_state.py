"""
Tests for NodeStateModel - legal transitions, payload rules, listeners, snapshot.
"""

import pytest

from craftus.services.api_client import ErrorKind
from craftus.services.models import CraftCategory
from craftus.services.node_state import (
    DissectionStatus,
    IllegalTransition,
    MasterPayload,
    MaterialsPayload,
    NodeKind,
    NodeRecord,
    NodeStateModel,
    NodeStatus,
    NodeTransition,
    StepPayload,
    TransitionType,
    master_node_id,
    materials_node_id,
    step_node_id,
)


MASTER_ID = master_node_id("abc")


def _master_payload(make_png):
    return MasterPayload(image=make_png(), prompt="paper crane", category=CraftCategory.PAPERCRAFT)


def _model_with_master(status=NodeStatus.PENDING, make_png=None):
    """Model holding one master node driven to the requested status."""
    model = NodeStateModel()
    model.create(NodeRecord(id=MASTER_ID, kind=NodeKind.MASTER, label="paper crane"))
    if status is NodeStatus.PENDING:
        return model
    model.dispatch(MASTER_ID)
    if status is NodeStatus.SUCCEEDED:
        model.succeed(MASTER_ID, _master_payload(make_png))
    elif status is NodeStatus.FAILED:
        model.fail(MASTER_ID, ErrorKind.SERVICE_UNAVAILABLE, "overloaded")
    return model


class TestNodeIds:

    def test_id_scheme(self):
        assert MASTER_ID == "master-abc"
        assert materials_node_id(MASTER_ID) == "master-abc-mat"
        assert step_node_id(MASTER_ID, 3) == "master-abc-step-3"


class TestCreate:

    def test_create_pending(self):
        model = _model_with_master()
        record = model.get(MASTER_ID)
        assert record.status is NodeStatus.PENDING
        assert record.payload is None
        assert record.retry_count == 0
        assert MASTER_ID in model
        assert len(model) == 1

    def test_duplicate_id_rejected(self):
        model = _model_with_master()
        with pytest.raises(IllegalTransition):
            model.create(NodeRecord(id=MASTER_ID, kind=NodeKind.MASTER))

    def test_must_start_pending(self):
        model = NodeStateModel()
        with pytest.raises(IllegalTransition):
            model.create(NodeRecord(id="x", kind=NodeKind.STEP, status=NodeStatus.SUCCEEDED))

    def test_mismatched_id_rejected(self):
        model = NodeStateModel()
        record = NodeRecord(id="a", kind=NodeKind.STEP)
        with pytest.raises(IllegalTransition):
            model.apply(NodeTransition(TransitionType.CREATED, "b", record=record))

    def test_unknown_node(self):
        model = NodeStateModel()
        with pytest.raises(KeyError):
            model.get("missing")
        with pytest.raises(IllegalTransition):
            model.dispatch("missing")


class TestLifecycle:
    """Pending -> InFlight -> Succeeded | Failed, Failed -> Pending on rearm."""

    def test_success_path(self, make_png):
        model = _model_with_master()
        assert model.dispatch(MASTER_ID).status is NodeStatus.IN_FLIGHT

        record = model.succeed(MASTER_ID, _master_payload(make_png))

        assert record.status is NodeStatus.SUCCEEDED
        assert isinstance(record.payload, MasterPayload)
        assert record.error_kind is None

    def test_failure_path(self):
        model = _model_with_master()
        model.dispatch(MASTER_ID)

        record = model.fail(MASTER_ID, ErrorKind.REJECTED, "blocked")

        assert record.status is NodeStatus.FAILED
        assert record.payload is None
        assert record.error_kind is ErrorKind.REJECTED
        assert record.error_message == "blocked"

    def test_rearm_clears_error_and_counts_retry(self):
        model = _model_with_master(NodeStatus.FAILED)

        record = model.rearm(MASTER_ID)

        assert record.status is NodeStatus.PENDING
        assert record.error_kind is None
        assert record.error_message is None
        assert record.retry_count == 1

    def test_retry_count_accumulates(self):
        model = _model_with_master(NodeStatus.FAILED)
        model.rearm(MASTER_ID)
        model.dispatch(MASTER_ID)
        model.fail(MASTER_ID, ErrorKind.SERVICE_UNAVAILABLE)

        assert model.rearm(MASTER_ID).retry_count == 2

    def test_records_are_immutable(self):
        model = _model_with_master()
        before = model.get(MASTER_ID)
        model.dispatch(MASTER_ID)

        assert before.status is NodeStatus.PENDING
        with pytest.raises(AttributeError):
            before.status = NodeStatus.FAILED


class TestIllegalTransitions:

    def test_cannot_succeed_from_pending(self, make_png):
        model = _model_with_master()
        with pytest.raises(IllegalTransition):
            model.succeed(MASTER_ID, _master_payload(make_png))

    def test_cannot_dispatch_twice(self):
        model = _model_with_master()
        model.dispatch(MASTER_ID)
        with pytest.raises(IllegalTransition):
            model.dispatch(MASTER_ID)

    def test_cannot_rearm_succeeded(self, make_png):
        model = _model_with_master(NodeStatus.SUCCEEDED, make_png)
        with pytest.raises(IllegalTransition):
            model.rearm(MASTER_ID)

    def test_cannot_rearm_pending(self):
        model = _model_with_master()
        with pytest.raises(IllegalTransition):
            model.rearm(MASTER_ID)

    def test_succeeded_is_terminal(self, make_png):
        model = _model_with_master(NodeStatus.SUCCEEDED, make_png)
        with pytest.raises(IllegalTransition):
            model.fail(MASTER_ID, ErrorKind.REJECTED)
        with pytest.raises(IllegalTransition):
            model.dispatch(MASTER_ID)

    def test_succeed_requires_payload(self):
        model = _model_with_master()
        model.dispatch(MASTER_ID)
        with pytest.raises(IllegalTransition):
            model.apply(NodeTransition(TransitionType.SUCCEEDED, MASTER_ID))

    def test_payload_must_match_kind(self):
        model = _model_with_master()
        model.dispatch(MASTER_ID)
        with pytest.raises(IllegalTransition):
            model.succeed(MASTER_ID, MaterialsPayload(materials=["paper"]))

    def test_fail_requires_error_kind(self):
        model = _model_with_master()
        model.dispatch(MASTER_ID)
        with pytest.raises(IllegalTransition):
            model.apply(NodeTransition(TransitionType.FAILED, MASTER_ID))

    def test_fail_rejects_payload(self, make_png):
        model = _model_with_master()
        model.dispatch(MASTER_ID)
        with pytest.raises(IllegalTransition):
            model.apply(NodeTransition(
                TransitionType.FAILED, MASTER_ID,
                payload=_master_payload(make_png),
                error_kind=ErrorKind.REJECTED,
            ))

    def test_rejected_transition_leaves_record_unchanged(self):
        model = _model_with_master()
        with pytest.raises(IllegalTransition):
            model.rearm(MASTER_ID)
        assert model.get(MASTER_ID).status is NodeStatus.PENDING
        assert len(model.history) == 1


class TestDissection:
    """Dissection progress lives on the master and needs a Succeeded master."""

    def test_progress_and_done(self, make_png):
        model = _model_with_master(NodeStatus.SUCCEEDED, make_png)

        model.set_dissection(MASTER_ID, DissectionStatus.IN_PROGRESS)
        record = model.set_dissection(MASTER_ID, DissectionStatus.DONE)

        assert record.dissection is DissectionStatus.DONE
        assert record.status is NodeStatus.SUCCEEDED
        assert record.dissection_error is None

    def test_failure_keeps_message(self, make_png):
        model = _model_with_master(NodeStatus.SUCCEEDED, make_png)
        record = model.set_dissection(MASTER_ID, DissectionStatus.FAILED, "analysis failed")
        assert record.dissection_error == "analysis failed"

    def test_requires_succeeded_master(self):
        model = _model_with_master(NodeStatus.FAILED)
        with pytest.raises(IllegalTransition):
            model.set_dissection(MASTER_ID, DissectionStatus.IN_PROGRESS)

    def test_only_on_master_nodes(self):
        model = NodeStateModel()
        model.create(NodeRecord(id="s", kind=NodeKind.STEP))
        with pytest.raises(IllegalTransition):
            model.set_dissection("s", DissectionStatus.IN_PROGRESS)


class TestSubscriptions:

    def test_listener_sees_every_transition(self):
        model = NodeStateModel()
        seen = []
        model.subscribe(lambda t, r: seen.append((t.type, r.status)))

        model.create(NodeRecord(id="n", kind=NodeKind.STEP))
        model.dispatch("n")

        assert seen == [
            (TransitionType.CREATED, NodeStatus.PENDING),
            (TransitionType.DISPATCHED, NodeStatus.IN_FLIGHT),
        ]

    def test_unsubscribe(self):
        model = NodeStateModel()
        seen = []
        unsubscribe = model.subscribe(lambda t, r: seen.append(t.type))

        model.create(NodeRecord(id="n", kind=NodeKind.STEP))
        unsubscribe()
        model.dispatch("n")

        assert seen == [TransitionType.CREATED]

    def test_failing_listener_does_not_block_others(self):
        model = NodeStateModel()
        seen = []

        def broken(t, r):
            raise RuntimeError("view crashed")

        model.subscribe(broken)
        model.subscribe(lambda t, r: seen.append(r.id))

        model.create(NodeRecord(id="n", kind=NodeKind.STEP))

        assert seen == ["n"]
        assert model.get("n").status is NodeStatus.PENDING


class TestSnapshot:

    def test_nodes_and_edges(self, make_png):
        model = _model_with_master(NodeStatus.SUCCEEDED, make_png)
        mat_id = materials_node_id(MASTER_ID)
        step_id = step_node_id(MASTER_ID, 1)
        model.create(NodeRecord(id=mat_id, kind=NodeKind.MATERIALS, parent_id=MASTER_ID))
        model.create(NodeRecord(id=step_id, kind=NodeKind.STEP, parent_id=MASTER_ID, step_number=1))

        snapshot = model.snapshot()

        assert [n["id"] for n in snapshot["nodes"]] == [MASTER_ID, mat_id, step_id]
        assert snapshot["nodes"][0]["payload"]["image"]["mime_type"] == "image/png"
        assert snapshot["edges"] == [
            {"id": f"e-{MASTER_ID}-{mat_id}", "source": MASTER_ID, "target": mat_id},
            {"id": f"e-{MASTER_ID}-{step_id}", "source": MASTER_ID, "target": step_id},
        ]

    def test_children_by_kind(self):
        model = _model_with_master()
        model.create(NodeRecord(id="m", kind=NodeKind.MATERIALS, parent_id=MASTER_ID))
        model.create(NodeRecord(id="s1", kind=NodeKind.STEP, parent_id=MASTER_ID))

        assert [r.id for r in model.children(MASTER_ID)] == ["m", "s1"]
        assert [r.id for r in model.children(MASTER_ID, NodeKind.STEP)] == ["s1"]

    def test_step_payload_serialises(self, make_png):
        payload = StepPayload(
            step_number=2, title="Fold", description="Fold in half",
            image=make_png(), group_step_numbers=[1, 2],
        )
        data = payload.model_dump(mode="json")
        assert data["group_step_numbers"] == [1, 2]
        assert isinstance(data["image"]["data"], str)

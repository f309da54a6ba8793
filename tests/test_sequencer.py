import copy
import importlib

import pytest


def _stage(stage_id, node_stage, next_stage_id=None, role_id=1):
    return {
        "id": stage_id,
        "name": f"stage {stage_id}",
        "node_stage": node_stage,
        "stage_type": "Review",
        "status": "Created",
        "role_id": role_id,
        "workflow_id": 1,
        "action_by_id": None,
        "next_stage_id": next_stage_id,
    }


@pytest.fixture
def sequencer():
    return importlib.import_module("sequencer")


@pytest.fixture
def errors():
    return importlib.import_module("errors")


def test_orders_stages_along_next_pointers(sequencer):
    stages = [
        _stage(30, "End"),
        _stage(10, "Start", 20),
        _stage(20, "Intermediate", 30),
    ]
    result = sequencer.sequence_stages(stages)
    assert [s["id"] for s in result] == [10, 20, 30]
    assert [s["sequence"] for s in result] == [1, 2, 3]
    assert result[-1]["node_stage"] == "End"


def test_single_stage_path(sequencer, errors):
    # a lone Start node is not an End node
    with pytest.raises(errors.MalformedWorkflowError):
        sequencer.sequence_stages([_stage(1, "Start")])


def test_missing_start(sequencer, errors):
    stages = [_stage(1, "Intermediate", 2), _stage(2, "End")]
    with pytest.raises(errors.NoStartStageError) as exc:
        sequencer.sequence_stages(stages, workflow_id=7)
    assert exc.value.details["workflow_id"] == 7
    assert exc.value.message == "No starting stage found in the workflow"


def test_two_start_nodes(sequencer, errors):
    stages = [_stage(1, "Start", 3), _stage(2, "Start", 3), _stage(3, "End")]
    with pytest.raises(errors.MalformedWorkflowError):
        sequencer.sequence_stages(stages)


def test_cycle_is_detected(sequencer, errors):
    stages = [
        _stage(1, "Start", 2),
        _stage(2, "Intermediate", 3),
        _stage(3, "Intermediate", 2),
        _stage(4, "End"),
    ]
    with pytest.raises(errors.CycleDetectedError) as exc:
        sequencer.sequence_stages(stages)
    assert exc.value.details["stage_id"] == 2


def test_dangling_chain_must_end_at_end_node(sequencer, errors):
    stages = [_stage(1, "Start", 2), _stage(2, "Intermediate", 99), _stage(3, "End")]
    with pytest.raises(errors.MalformedWorkflowError) as exc:
        sequencer.sequence_stages(stages)
    assert "End" in exc.value.message


def test_unreachable_stages_are_dropped(sequencer):
    stages = [
        _stage(1, "Start", 2),
        _stage(2, "End"),
        _stage(3, "Intermediate", 2),
    ]
    result = sequencer.sequence_stages(stages)
    assert [s["id"] for s in result] == [1, 2]


def test_input_is_not_mutated(sequencer):
    stages = [_stage(1, "Start", 2), _stage(2, "End")]
    before = copy.deepcopy(stages)
    result = sequencer.sequence_stages(stages)
    assert stages == before
    result[0]["name"] = "changed"
    assert stages[0]["name"] == "stage 1"


def test_accepts_orm_stages(sequencer, scenario):
    models = importlib.import_module("models")
    db = models.SessionLocal()
    try:
        stages = db.query(models.Stage).filter_by(workflow_id=scenario.workflow_id).all()
        result = sequencer.sequence_stages(stages, workflow_id=scenario.workflow_id)
    finally:
        db.close()
    assert [s["id"] for s in result] == scenario.stages
    assert [s["role_id"] for s in result] == scenario.roles


def test_successor_map(sequencer):
    stages = [_stage(1, "Start", 2), _stage(2, "End")]
    assert sequencer.build_successor_map(stages) == {1: 2, 2: None}

import importlib

import pytest

transitions = importlib.import_module("transitions")
errors = importlib.import_module("errors")

DocumentState = transitions.DocumentState


def _stage(sequence):
    return {"id": sequence * 10, "sequence": sequence, "action_by_id": 1}


SNAPSHOT = [_stage(1), _stage(2), _stage(3)]


def test_submit_moves_to_first_stage():
    plan = transitions.plan_submit(DocumentState(None, 0, 0), field_count=1)
    assert plan.as_update() == {
        "status": "InTransition",
        "current_stage": 1,
        "current_version": 1,
    }
    assert plan.ledger_version == 1


def test_submit_without_fields():
    with pytest.raises(errors.NoFieldsBoundError):
        transitions.plan_submit(DocumentState(None, 0, 0), field_count=0)


def test_submit_twice():
    with pytest.raises(errors.InvalidOperationError):
        transitions.plan_submit(DocumentState("InTransition", 1, 1), field_count=1)


@pytest.mark.parametrize("status", ["Completed", "Rejected"])
def test_terminal_states_refuse_everything(status):
    state = DocumentState(status, 2, 3)
    assert state.finalized
    with pytest.raises(errors.DocumentFinalizedError):
        transitions.current_stage_for(state, SNAPSHOT)
    with pytest.raises(errors.DocumentFinalizedError):
        transitions.plan_submit(state, field_count=1)


def test_unsubmitted_document_is_not_bound():
    with pytest.raises(errors.NotYetBoundError):
        transitions.current_stage_for(DocumentState(None, 0, 0), SNAPSHOT)


def test_past_last_stage():
    with pytest.raises(errors.NoFurtherStageError):
        transitions.current_stage_for(DocumentState("InTransition", 4, 4), SNAPSHOT)


@pytest.mark.parametrize("action", ["Accepted", "Reviewed"])
def test_forward_actions(action):
    state = DocumentState("InTransition", 2, 2)
    plan = transitions.plan_version(state, action, _stage(2))
    assert plan.status == "InTransition"
    assert (plan.current_stage, plan.current_version) == (3, 3)
    assert plan.ledger_version == 2
    assert not plan.embed_signature


def test_accepted_records_signature_only():
    plan = transitions.plan_version(DocumentState("InTransition", 1, 1), "Accepted", _stage(1))
    assert plan.record_signature
    assert not plan.embed_signature
    reviewed = transitions.plan_version(DocumentState("InTransition", 1, 1), "Reviewed", _stage(1))
    assert not reviewed.record_signature


def test_completed_finalizes_and_embeds():
    plan = transitions.plan_version(DocumentState("InTransition", 2, 2), "Completed", _stage(2))
    assert plan.status == "Completed"
    assert (plan.current_stage, plan.current_version) == (3, 3)
    assert plan.record_signature and plan.embed_signature


def test_rejected_keeps_counters():
    plan = transitions.plan_version(DocumentState("InTransition", 2, 2), "Rejected", _stage(2))
    assert plan.status == "Rejected"
    assert (plan.current_stage, plan.current_version) == (2, 2)
    assert plan.ledger_version == 2


def test_rejected_needs_a_real_transition():
    with pytest.raises(errors.InvalidOperationError):
        transitions.plan_version(DocumentState("InTransition", 1, 1), "Rejected", _stage(1))


def test_review_sends_back():
    plan = transitions.plan_version(DocumentState("InTransition", 3, 3), "Review", _stage(3))
    assert plan.status == "Review"
    assert (plan.current_stage, plan.current_version) == (2, 4)
    assert plan.ledger_version == 3


def test_review_needs_previous_stage_and_version():
    with pytest.raises(errors.InvalidOperationError):
        transitions.plan_version(DocumentState("InTransition", 1, 1), "Review", _stage(1))
    with pytest.raises(errors.InvalidOperationError):
        transitions.plan_version(DocumentState("InTransition", 1, 2), "Review", _stage(1))


def test_unknown_action():
    with pytest.raises(errors.ValidationError):
        transitions.plan_version(DocumentState("InTransition", 1, 1), "Approved", _stage(1))


def test_state_of_document_like_object():
    class Doc:
        status = None
        current_stage = None
        current_version = 0

    state = DocumentState.of(Doc())
    assert state == DocumentState(None, 0, 0)
    assert not state.finalized

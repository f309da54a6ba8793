import importlib

errors = importlib.import_module("errors")


def test_to_dict_includes_details():
    error = errors.NotFoundError("Workflow", 4)
    assert error.to_dict() == {
        "status": 404,
        "code": "NOT_FOUND",
        "message": "Workflow not found",
        "details": {"entity": "Workflow", "id": 4},
    }


def test_docstring_is_default_message():
    assert errors.NoFieldsBoundError().message == "No document fields found"
    assert errors.NoFurtherStageError().to_dict() == {
        "status": 400,
        "code": "NO_FURTHER_STAGE",
        "message": "No further activity can be done.",
    }


def test_hierarchy():
    assert issubclass(errors.UnauthorizedActorError, errors.UnauthorizedError)
    assert issubclass(errors.ConcurrentModificationError, errors.ConflictError)
    assert issubclass(errors.SignatureServiceError, errors.DependencyError)
    assert errors.CycleDetectedError(3).status_code == 400
    assert errors.DuplicateNodeStageError("End").message == "Workflow already has an End node"

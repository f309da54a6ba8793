"""Typed errors raised by the workflow services.

Every error carries a machine-readable ``code`` and the HTTP ``status_code``
the Flask boundary responds with.  Services only raise these; mapping them to
responses happens in :mod:`app`.

    DocflowError
    +-- ValidationError
    |   +-- NoStartStageError
    |   +-- MalformedWorkflowError
    |   +-- CycleDetectedError
    +-- NotFoundError
    +-- ConflictError
    |   +-- DuplicateNodeStageError
    |   +-- DuplicateNameError
    |   +-- ConcurrentModificationError
    +-- AuthenticationError
    +-- UnauthorizedError
    |   +-- UnauthorizedActorError
    +-- StateError
    |   +-- NoFieldsBoundError
    |   +-- DocumentFinalizedError
    |   +-- NotYetBoundError
    |   +-- NoFurtherStageError
    |   +-- InvalidOperationError
    +-- DependencyError
    |   +-- StorageError
    |   +-- SignatureServiceError
    +-- InternalError
"""

from __future__ import annotations


class DocflowError(Exception):
    """Base class for all service errors."""

    code: str = "DOCFLOW_ERROR"
    status_code: int = 500

    def __init__(self, message: str | None = None, **details) -> None:
        self.message = message or self.__class__.__doc__ or self.code
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> dict:
        data = {"status": self.status_code, "code": self.code, "message": self.message}
        if self.details:
            data["details"] = self.details
        return data


# Validation ---------------------------------------------------------------


class ValidationError(DocflowError):
    """Malformed input."""

    code = "VALIDATION_ERROR"
    status_code = 400


class NoStartStageError(ValidationError):
    """No starting stage found in the workflow."""

    code = "NO_START_STAGE"

    def __init__(self, workflow_id=None) -> None:
        super().__init__(
            "No starting stage found in the workflow", workflow_id=workflow_id
        )


class MalformedWorkflowError(ValidationError):
    code = "MALFORMED_WORKFLOW"


class CycleDetectedError(ValidationError):
    code = "CYCLE_DETECTED"

    def __init__(self, stage_id) -> None:
        super().__init__(
            f"Invalid workflow: stage {stage_id} is reached twice from the Start node",
            stage_id=stage_id,
        )


class PayloadTooLargeError(ValidationError):
    """Request body exceeds the upload limit."""

    code = "PAYLOAD_TOO_LARGE"
    status_code = 413


# Lookup -------------------------------------------------------------------


class NotFoundError(DocflowError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity: str, entity_id=None) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found", entity=entity, id=entity_id)


# Conflicts ----------------------------------------------------------------


class ConflictError(DocflowError):
    code = "CONFLICT"
    status_code = 409


class DuplicateNodeStageError(ConflictError):
    code = "DUPLICATE_NODE_STAGE"

    def __init__(self, node_stage: str) -> None:
        article = "an" if node_stage[:1] in "AEIOU" else "a"
        super().__init__(
            f"Workflow already has {article} {node_stage} node", node_stage=node_stage
        )


class DuplicateNameError(ConflictError):
    code = "DUPLICATE_NAME"

    def __init__(self, entity: str, name: str) -> None:
        super().__init__(f"{entity} already exists", entity=entity, name=name)


class ConcurrentModificationError(ConflictError):
    code = "CONCURRENT_MODIFICATION"

    def __init__(self, document_id) -> None:
        super().__init__(
            f"Document {document_id} was modified by another request",
            document_id=document_id,
        )


# Authorization ------------------------------------------------------------


class AuthenticationError(DocflowError):
    code = "UNAUTHENTICATED"
    status_code = 401


class UnauthorizedError(DocflowError):
    code = "FORBIDDEN"
    status_code = 403


class UnauthorizedActorError(UnauthorizedError):
    code = "UNAUTHORIZED_ACTOR"

    def __init__(self, user_id, stage_sequence) -> None:
        super().__init__(
            "Unauthorized: user is not assigned to the current stage",
            user_id=user_id,
            stage=stage_sequence,
        )


# State machine ------------------------------------------------------------


class StateError(DocflowError):
    code = "INVALID_STATE"
    status_code = 400


class NoFieldsBoundError(StateError):
    """No document fields found"""

    code = "NO_FIELDS_BOUND"


class DocumentFinalizedError(StateError):
    """Document is already completed or rejected."""

    code = "DOCUMENT_FINALIZED"


class NotYetBoundError(StateError):
    """Please set and bind document fields."""

    code = "NOT_YET_BOUND"


class NoFurtherStageError(StateError):
    """No further activity can be done."""

    code = "NO_FURTHER_STAGE"


class InvalidOperationError(StateError):
    """Invalid Operation"""

    code = "INVALID_OPERATION"


# Collaborators ------------------------------------------------------------


class DependencyError(DocflowError):
    code = "DEPENDENCY_FAILURE"
    status_code = 502


class StorageError(DependencyError):
    code = "STORAGE_FAILURE"


class SignatureServiceError(DependencyError):
    code = "SIGNATURE_SERVICE_FAILURE"


class InternalError(DocflowError):
    """Internal Server Error"""

    code = "INTERNAL_ERROR"
    status_code = 500


__all__ = [
    "DocflowError",
    "ValidationError",
    "NoStartStageError",
    "MalformedWorkflowError",
    "CycleDetectedError",
    "NotFoundError",
    "ConflictError",
    "DuplicateNodeStageError",
    "DuplicateNameError",
    "ConcurrentModificationError",
    "AuthenticationError",
    "UnauthorizedError",
    "UnauthorizedActorError",
    "StateError",
    "NoFieldsBoundError",
    "DocumentFinalizedError",
    "NotYetBoundError",
    "NoFurtherStageError",
    "InvalidOperationError",
    "DependencyError",
    "StorageError",
    "SignatureServiceError",
    "InternalError",
]

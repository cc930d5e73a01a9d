"""
Typed failures raised by the Program Registry and the Allocation Engine.

Every failure carries a stable ``code``, a human readable message and a
``context`` dict with the identifiers of the entities involved, so callers
can decide whether to retry, pick another program or escalate.
"""
from typing import Any, Dict, Optional


class AssistanceError(Exception):
    """Base class for all domain failures"""

    code = "assistance_error"
    status_code = 400

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "context": self.context
        }


class NotFound(AssistanceError):
    """Referenced program or enrollment does not exist"""

    code = "not_found"
    status_code = 404

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} not found: {entity_id}", entity=entity, entity_id=entity_id)
        self.entity = entity
        self.entity_id = entity_id


class ProgramNotOpen(AssistanceError):
    """Program is not active or outside its validity window"""

    code = "program_not_open"
    status_code = 409

    def __init__(self, program_id: str, status: Optional[str] = None):
        super().__init__(
            f"Program {program_id} is not open for enrollment (status: {status})",
            program_id=program_id,
            status=status
        )


class QuotaExceeded(AssistanceError):
    """Program has no remaining capacity"""

    code = "quota_exceeded"
    status_code = 409

    def __init__(self, program_id: str, capacity: Optional[int] = None, individual_id: Optional[str] = None):
        super().__init__(
            f"Program {program_id} has no remaining capacity (capacity: {capacity})",
            program_id=program_id,
            capacity=capacity,
            individual_id=individual_id
        )


class DuplicateEnrollment(AssistanceError):
    """Individual already holds an active enrollment in the program"""

    code = "duplicate_enrollment"
    status_code = 409

    def __init__(self, program_id: str, individual_id: str, enrollment_id: Optional[str] = None):
        super().__init__(
            f"Individual {individual_id} is already enrolled in program {program_id}",
            program_id=program_id,
            individual_id=individual_id,
            enrollment_id=enrollment_id
        )


class InvalidTransition(AssistanceError):
    """Enrollment state machine precondition violated"""

    code = "invalid_transition"
    status_code = 409

    def __init__(self, enrollment_id: str, current_state: str, action: str):
        super().__init__(
            f"Cannot {action} enrollment {enrollment_id} in state '{current_state}'",
            enrollment_id=enrollment_id,
            current_state=current_state,
            action=action
        )


class ValidationError(AssistanceError):
    """Malformed input"""

    code = "validation_error"
    status_code = 422

    def __init__(self, message: str, field: Optional[str] = None, **context: Any):
        super().__init__(message, field=field, **context)


class ConcurrencyConflict(AssistanceError):
    """Serialization conflicts persisted after all retry attempts"""

    code = "concurrency_conflict"
    status_code = 503

    def __init__(self, program_id: str, attempts: int):
        super().__init__(
            f"Program {program_id} is under contention, gave up after {attempts} attempts",
            program_id=program_id,
            attempts=attempts
        )

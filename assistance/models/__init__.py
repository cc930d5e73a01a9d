"""
Models package for the Social Assistance Allocation Service
"""

from .program import (
    Program,
    ProgramStatus,
    ProgramCreate,
    ProgramUpdate,
    CapacityInfo,
    Pagination,
    ProgramPage
)

from .recipient import (
    Enrollment,
    EnrollmentState,
    ACTIVE_STATES,
    EnrollmentCreate,
    VerifyRequest,
    RejectRequest,
    DistributeRequest,
    VerifyAllRequest,
    IndividualRef,
    EnrollmentWithProgram,
    EnrollmentWithIndividual,
    VerifyAllResult,
    ReconcileResult
)

__all__ = [
    # Program models
    "Program",
    "ProgramStatus",
    "ProgramCreate",
    "ProgramUpdate",
    "CapacityInfo",
    "Pagination",
    "ProgramPage",

    # Recipient models
    "Enrollment",
    "EnrollmentState",
    "ACTIVE_STATES",
    "EnrollmentCreate",
    "VerifyRequest",
    "RejectRequest",
    "DistributeRequest",
    "VerifyAllRequest",
    "IndividualRef",
    "EnrollmentWithProgram",
    "EnrollmentWithIndividual",
    "VerifyAllResult",
    "ReconcileResult"
]

"""
Utility functions for the Social Assistance Allocation Service
"""

from .validators import (
    get_current_utc_time,
    as_utc,
    as_query_time,
    generate_id,
    normalize_program_name,
    validate_validity_window,
    validate_amount,
    validate_capacity,
    validate_proof_reference,
    validate_actor_id,
    build_pagination
)
from .sequences import RestartableQuery

__all__ = [
    "get_current_utc_time",
    "as_utc",
    "as_query_time",
    "generate_id",
    "normalize_program_name",
    "validate_validity_window",
    "validate_amount",
    "validate_capacity",
    "validate_proof_reference",
    "validate_actor_id",
    "build_pagination",
    "RestartableQuery"
]

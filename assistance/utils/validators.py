"""
Utility functions for validation and time handling
"""
import re
import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bson import ObjectId

from ..errors import ValidationError


def get_current_utc_time() -> datetime:
    """Get current UTC time for default values"""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to timezone-aware UTC

    MongoDB hands back naive datetimes unless the client is tz aware;
    naive values are taken to be UTC already.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def generate_id() -> str:
    """Generate a new opaque entity identifier"""
    return str(ObjectId())


def normalize_program_name(name: Optional[str]) -> str:
    """
    Trim and validate a program name

    Args:
        name: Raw program name

    Returns:
        The trimmed name

    Raises:
        ValidationError: if the name is empty or longer than 100 characters
    """
    if name is None or not name.strip():
        raise ValidationError("Program name is required", field="name")

    name = re.sub(r'\s+', ' ', name.strip())
    if len(name) > 100:
        raise ValidationError("Program name must be at most 100 characters", field="name")
    return name


def validate_validity_window(start: Optional[datetime], end: Optional[datetime]) -> None:
    """
    Ensure a validity window is complete and ordered

    Raises:
        ValidationError: if either bound is missing or start is after end
    """
    if start is None or end is None:
        raise ValidationError("Validity window requires both start and end", field="validity_start")

    if as_utc(start) > as_utc(end):
        raise ValidationError(
            "Validity start must not be later than validity end",
            field="validity_start",
            validity_start=as_utc(start).isoformat(),
            validity_end=as_utc(end).isoformat()
        )


def validate_amount(amount: Optional[float], field: str = "amount") -> Optional[float]:
    """Reject negative or non-finite monetary amounts"""
    if amount is None:
        return None

    try:
        value = float(amount)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number", field=field)

    if math.isnan(value) or math.isinf(value) or value < 0:
        raise ValidationError(f"{field} must be a non-negative amount", field=field)
    return value


def validate_capacity(capacity: Optional[int]) -> Optional[int]:
    """Capacity is either unbounded (None) or a non-negative integer"""
    if capacity is None:
        return None
    if isinstance(capacity, bool) or not isinstance(capacity, int) or capacity < 0:
        raise ValidationError("Capacity must be a non-negative integer", field="capacity")
    return capacity


def validate_proof_reference(reference: Optional[str]) -> Optional[str]:
    """Proof of distribution is an optional, non-empty reference of at most 255 characters"""
    if reference is None:
        return None

    reference = reference.strip()
    if not reference:
        raise ValidationError("Proof reference cannot be empty if provided", field="proof_reference")
    if len(reference) > 255:
        raise ValidationError("Proof reference must be at most 255 characters", field="proof_reference")
    return reference


def validate_actor_id(actor_id: Optional[str]) -> str:
    """Actor identifiers are opaque but must be present"""
    if actor_id is None or not str(actor_id).strip():
        raise ValidationError("Actor identifier is required", field="actor_id")
    return str(actor_id).strip()


def build_pagination(total: int, page: int, limit: int) -> Dict[str, Any]:
    """
    Build pagination info for a listing

    Args:
        total: Total number of matching items
        page: 1-based page number
        limit: Page size

    Returns:
        Dict with total, total_pages, current_page, limit and navigation flags
    """
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "total": total,
        "total_pages": total_pages,
        "current_page": page,
        "limit": limit,
        "has_next_page": page < total_pages,
        "has_prev_page": page > 1
    }


def as_query_time(value: datetime) -> datetime:
    """
    Naive UTC datetime for MongoDB filters

    Stored datetimes are UTC; the driver reads naive query values as UTC.
    """
    return as_utc(value).replace(tzinfo=None)

"""
Pydantic models for assistance programs
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field, field_validator, ConfigDict

from ..utils.validators import as_utc, get_current_utc_time


class ProgramStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    COMPLETED = "completed"


class Program(BaseModel):
    """Assistance program stored in MongoDB"""
    id: Optional[str] = Field(default=None, alias="_id", pattern=r"^[0-9a-fA-F]{24}$")
    name: str = Field(..., max_length=100, description="Program name")
    category: str = Field(..., max_length=50, description="Benefit category tag")
    description: Optional[str] = Field(None, description="Program description")
    benefit_type: Literal["cash", "in_kind"] = Field(default="cash")
    validity_start: datetime = Field(..., description="Start of the enrollment window")
    validity_end: datetime = Field(..., description="End of the enrollment window")
    status: ProgramStatus = Field(default=ProgramStatus.ACTIVE.value)
    capacity: Optional[int] = Field(None, ge=0, description="Participant quota, unbounded if not set")
    benefit_value: float = Field(..., ge=0, description="Per-recipient benefit value")
    eligibility_criteria: List[Any] = Field(default_factory=list)
    required_documents: List[Any] = Field(default_factory=list)
    allocated: int = Field(default=0, ge=0, description="Slots held by qualified or distributed recipients")
    revision: int = Field(default=0, ge=0, description="Optimistic concurrency token")
    pending: List[Dict[str, Any]] = Field(default_factory=list, description="Reservations whose enrollment record is not written yet")
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: datetime = Field(default_factory=get_current_utc_time)
    updated_at: datetime = Field(default_factory=get_current_utc_time)

    @field_validator('validity_start', 'validity_end', 'created_at', 'updated_at')
    @classmethod
    def normalize_datetime(cls, v):
        return as_utc(v)

    def is_expired(self, now: datetime) -> bool:
        """Validity window has passed"""
        return self.validity_end < as_utc(now)

    def is_within_window(self, now: datetime) -> bool:
        now = as_utc(now)
        return self.validity_start <= now <= self.validity_end

    def is_unbounded(self) -> bool:
        return self.capacity is None

    model_config = ConfigDict(
        populate_by_name=True,
        use_enum_values=True,
        json_schema_extra={
            "example": {
                "_id": "665f1f77bcf86cd799439011",
                "name": "Bantuan Langsung Tunai 2026",
                "category": "BLT",
                "description": "Monthly direct cash assistance for low income households",
                "benefit_type": "cash",
                "validity_start": "2026-01-01T00:00:00Z",
                "validity_end": "2026-12-31T23:59:59Z",
                "status": "active",
                "capacity": 150,
                "benefit_value": 300000,
                "allocated": 12,
                "revision": 14
            }
        }
    )


class ProgramCreate(BaseModel):
    """Request to create a program"""
    name: str = Field(..., min_length=1, max_length=100)
    category: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = None
    benefit_type: Literal["cash", "in_kind"] = "cash"
    validity_start: datetime
    validity_end: datetime
    status: ProgramStatus = ProgramStatus.ACTIVE.value
    capacity: Optional[int] = Field(None, ge=0)
    benefit_value: float = Field(..., ge=0)
    eligibility_criteria: List[Any] = Field(default_factory=list)
    required_documents: List[Any] = Field(default_factory=list)

    @field_validator('name', 'category')
    @classmethod
    def strip_text(cls, v):
        v = v.strip()
        if not v:
            raise ValueError('Value cannot be blank')
        return v

    @field_validator('validity_start', 'validity_end')
    @classmethod
    def normalize_datetime(cls, v):
        return as_utc(v)

    model_config = ConfigDict(
        use_enum_values=True,
        json_schema_extra={
            "example": {
                "name": "Bantuan Langsung Tunai 2026",
                "category": "BLT",
                "description": "Monthly direct cash assistance for low income households",
                "validity_start": "2026-01-01T00:00:00Z",
                "validity_end": "2026-12-31T23:59:59Z",
                "capacity": 150,
                "benefit_value": 300000,
                "eligibility_criteria": [{"attribute": "income", "op": "<", "value": 1500000}],
                "required_documents": ["ktp", "kartu_keluarga"]
            }
        }
    )


class ProgramUpdate(BaseModel):
    """Partial update of a program; unset fields are left untouched"""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    category: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = None
    benefit_type: Optional[Literal["cash", "in_kind"]] = None
    validity_start: Optional[datetime] = None
    validity_end: Optional[datetime] = None
    status: Optional[ProgramStatus] = None
    capacity: Optional[int] = Field(None, ge=0)
    benefit_value: Optional[float] = Field(None, ge=0)
    eligibility_criteria: Optional[List[Any]] = None
    required_documents: Optional[List[Any]] = None

    @field_validator('validity_start', 'validity_end')
    @classmethod
    def normalize_datetime(cls, v):
        return as_utc(v)

    model_config = ConfigDict(use_enum_values=True)

    def changes(self) -> Dict[str, Any]:
        """Fields explicitly provided by the caller, including an explicit null capacity"""
        return self.model_dump(exclude_unset=True)


class CapacityInfo(BaseModel):
    """Capacity snapshot of a program"""
    program_id: str
    capacity: Optional[int] = None
    allocated: int = 0
    remaining: Optional[int] = Field(None, description="Remaining slots, null when unbounded")
    unbounded: bool = False
    is_open: bool = False


class Pagination(BaseModel):
    total: int
    total_pages: int
    current_page: int
    limit: int
    has_next_page: bool
    has_prev_page: bool


class ProgramPage(BaseModel):
    """One page of a program listing"""
    programs: List[Program] = Field(default_factory=list)
    pagination: Pagination

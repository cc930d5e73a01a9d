"""
Pydantic models for recipient enrollments and their lifecycle requests
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field, field_validator, ConfigDict

from ..utils.validators import as_utc, get_current_utc_time
from .program import Program


class EnrollmentState(str, Enum):
    QUALIFIED = "qualified"
    DISTRIBUTED = "distributed"
    REJECTED = "rejected"


# States that hold one unit of program capacity
ACTIVE_STATES = (EnrollmentState.QUALIFIED.value, EnrollmentState.DISTRIBUTED.value)


class Enrollment(BaseModel):
    """Recipient enrollment stored in MongoDB"""
    id: Optional[str] = Field(default=None, alias="_id", pattern=r"^[0-9a-fA-F]{24}$")
    program_id: str = Field(..., description="Program the individual is enrolled in")
    individual_id: str = Field(..., description="External individual identifier")
    enrolled_at: datetime = Field(default_factory=get_current_utc_time)
    state: EnrollmentState = Field(default=EnrollmentState.QUALIFIED.value)
    granted_amount: Optional[float] = Field(None, ge=0)
    remark: Optional[str] = None
    supporting_documents: List[Any] = Field(default_factory=list)
    verified_by: Optional[str] = None
    verified_at: Optional[datetime] = None
    distributed_by: Optional[str] = None
    distributed_at: Optional[datetime] = None
    proof_reference: Optional[str] = Field(None, max_length=255)
    created_at: datetime = Field(default_factory=get_current_utc_time)
    updated_at: datetime = Field(default_factory=get_current_utc_time)

    @field_validator('enrolled_at', 'verified_at', 'distributed_at', 'created_at', 'updated_at')
    @classmethod
    def normalize_datetime(cls, v):
        return as_utc(v)

    def active_key(self) -> str:
        """Uniqueness key held while the enrollment consumes capacity"""
        return f"{self.program_id}:{self.individual_id}"

    def holds_capacity(self) -> bool:
        return self.state in ACTIVE_STATES

    model_config = ConfigDict(
        populate_by_name=True,
        use_enum_values=True,
        json_schema_extra={
            "example": {
                "_id": "665f2a11bcf86cd799439099",
                "program_id": "665f1f77bcf86cd799439011",
                "individual_id": "3201010101900001",
                "state": "qualified",
                "granted_amount": None,
                "remark": "Registered at village office",
                "supporting_documents": ["ktp.pdf"]
            }
        }
    )


class EnrollmentCreate(BaseModel):
    """Request to enroll an individual into a program"""
    individual_id: str = Field(..., min_length=1, description="External individual identifier")
    granted_amount: Optional[float] = Field(None, ge=0, description="Overrides the program benefit value")
    remark: Optional[str] = None
    supporting_documents: List[Any] = Field(default_factory=list)

    @field_validator('individual_id')
    @classmethod
    def strip_individual_id(cls, v):
        v = v.strip()
        if not v:
            raise ValueError('individual_id cannot be blank')
        return v


class VerifyRequest(BaseModel):
    """Verification outcome for a qualified enrollment"""
    outcome: Literal["confirm", "reject"] = Field(..., description="Confirm keeps the enrollment qualified")
    remark: Optional[str] = None


class RejectRequest(BaseModel):
    remark: Optional[str] = None


class DistributeRequest(BaseModel):
    proof_reference: Optional[str] = Field(None, max_length=255)
    amount: Optional[float] = Field(None, ge=0, description="Overrides the granted amount")


class VerifyAllRequest(BaseModel):
    remark: Optional[str] = None


class IndividualRef(BaseModel):
    """Display reference of an individual resolved by the directory"""
    individual_id: str
    name: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class EnrollmentWithProgram(BaseModel):
    enrollment: Enrollment
    program: Optional[Program] = None


class EnrollmentWithIndividual(BaseModel):
    enrollment: Enrollment
    individual: IndividualRef


class VerifyAllResult(BaseModel):
    program_id: str
    verified: int


class ReconcileResult(BaseModel):
    program_id: str
    previous_allocated: int
    allocated: int
    remaining: Optional[int] = None

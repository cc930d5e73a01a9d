"""
API routes for the recipient lifecycle
"""
import logging
from typing import List
from fastapi import APIRouter, Depends, HTTPException

from ..errors import AssistanceError
from ..models.recipient import (
    Enrollment,
    EnrollmentWithProgram,
    VerifyRequest,
    RejectRequest,
    DistributeRequest
)
from ..services.allocation_engine import allocation_engine
from .deps import get_actor_id, to_http_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/recipients", tags=["recipients"])


@router.get("/by-individual/{individual_id}", response_model=List[EnrollmentWithProgram])
async def list_individual_enrollments(individual_id: str):
    """
    Get every enrollment of an individual with its program
    """
    try:
        return await allocation_engine.find_by_individual(individual_id).to_list()

    except Exception as e:
        logger.error(f"Failed to list enrollments of {individual_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to retrieve enrollments: {str(e)}")


@router.get("/{enrollment_id}", response_model=Enrollment)
async def get_enrollment(enrollment_id: str):
    """
    Get a specific enrollment by ID
    """
    try:
        return await allocation_engine.get_enrollment(enrollment_id)

    except AssistanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to get enrollment {enrollment_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to retrieve enrollment: {str(e)}")


@router.post("/{enrollment_id}/verify", response_model=Enrollment)
async def verify_enrollment(enrollment_id: str, request: VerifyRequest, actor_id: str = Depends(get_actor_id)):
    """
    Confirm or reject a qualified enrollment
    """
    try:
        return await allocation_engine.verify(enrollment_id, actor_id, request.outcome, request.remark)

    except AssistanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to verify enrollment {enrollment_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to verify enrollment: {str(e)}")


@router.post("/{enrollment_id}/distribute", response_model=Enrollment)
async def distribute_enrollment(enrollment_id: str, request: DistributeRequest, actor_id: str = Depends(get_actor_id)):
    """
    Record the distribution of the benefit to a qualified recipient
    """
    try:
        return await allocation_engine.distribute(
            enrollment_id,
            actor_id,
            proof_reference=request.proof_reference,
            amount=request.amount
        )

    except AssistanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to distribute enrollment {enrollment_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to distribute benefit: {str(e)}")


@router.post("/{enrollment_id}/reject", response_model=Enrollment)
async def reject_enrollment(enrollment_id: str, request: RejectRequest, actor_id: str = Depends(get_actor_id)):
    """
    Reject a qualified enrollment and release its slot
    """
    try:
        return await allocation_engine.reject(enrollment_id, actor_id, request.remark)

    except AssistanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to reject enrollment {enrollment_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to reject enrollment: {str(e)}")

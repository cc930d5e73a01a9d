"""
API routes for program management and enrollment
"""
import logging
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query

from ..errors import AssistanceError
from ..models.program import Program, ProgramCreate, ProgramUpdate, ProgramPage, CapacityInfo
from ..models.recipient import (
    Enrollment,
    EnrollmentCreate,
    EnrollmentWithIndividual,
    VerifyAllRequest,
    VerifyAllResult,
    ReconcileResult
)
from ..services.program_registry import program_registry
from ..services.allocation_engine import allocation_engine
from .deps import get_actor_id, to_http_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/programs", tags=["programs"])


@router.get("/", response_model=ProgramPage)
async def list_programs(
    status: Optional[str] = Query(None, description="Filter by status"),
    category: Optional[str] = Query(None, description="Filter by benefit category"),
    search: Optional[str] = Query(None, description="Search in name and description"),
    page: int = Query(1, ge=1, description="Page number"),
    limit: Optional[int] = Query(None, ge=1, description="Programs per page"),
    sort_by: str = Query("created_at", description="Sort field"),
    sort_order: str = Query("desc", description="asc or desc")
):
    """
    Get programs with optional filtering and pagination
    """
    try:
        return await program_registry.list_programs(
            status=status,
            category=category,
            search=search,
            page=page,
            limit=limit,
            sort_by=sort_by,
            sort_order=sort_order
        )

    except AssistanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to list programs: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to retrieve programs: {str(e)}")


@router.post("/", response_model=Program, status_code=201)
async def create_program(request: ProgramCreate, actor_id: str = Depends(get_actor_id)):
    """
    Create a new program
    """
    try:
        return await program_registry.create_program(request, actor_id)

    except AssistanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to create program: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to create program: {str(e)}")


@router.get("/active", response_model=List[Program])
async def list_active_programs():
    """
    Get programs currently open for enrollment
    """
    try:
        return await program_registry.list_active_programs().to_list()

    except Exception as e:
        logger.error(f"Failed to list active programs: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to retrieve active programs: {str(e)}")


@router.get("/stats/overview")
async def get_programs_overview() -> Dict[str, Any]:
    """
    Get overview statistics for programs and recipients
    """
    try:
        return await program_registry.get_statistics()

    except Exception as e:
        logger.error(f"Failed to compute statistics: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to retrieve statistics: {str(e)}")


@router.post("/complete-expired")
async def complete_expired_programs(actor_id: str = Depends(get_actor_id)):
    """
    Move every program whose validity has ended to completed
    """
    try:
        completed = await program_registry.complete_expired_programs()
        logger.info(f"Expired program sweep requested by {actor_id}")
        return {"completed": completed}

    except Exception as e:
        logger.error(f"Failed to complete expired programs: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to complete expired programs: {str(e)}")


@router.get("/{program_id}", response_model=Program)
async def get_program(program_id: str):
    """
    Get a specific program by ID
    """
    try:
        return await program_registry.get_program(program_id)

    except AssistanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to get program {program_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to retrieve program: {str(e)}")


@router.put("/{program_id}", response_model=Program)
async def update_program(program_id: str, request: ProgramUpdate, actor_id: str = Depends(get_actor_id)):
    """
    Update a program
    """
    try:
        return await program_registry.update_program(program_id, request, actor_id)

    except AssistanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to update program {program_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to update program: {str(e)}")


@router.get("/{program_id}/capacity", response_model=CapacityInfo)
async def get_program_capacity(program_id: str):
    """
    Get capacity and enrollment availability of a program
    """
    try:
        return await program_registry.capacity_info(program_id)

    except AssistanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to get capacity of {program_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to retrieve capacity: {str(e)}")


@router.get("/{program_id}/recipients", response_model=List[EnrollmentWithIndividual])
async def list_program_recipients(
    program_id: str,
    state: Optional[str] = Query(None, description="Filter by enrollment state")
):
    """
    Get the recipients of a program
    """
    try:
        recipients = await allocation_engine.find_by_program(program_id, state=state)
        return await recipients.to_list()

    except AssistanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to list recipients of {program_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to retrieve recipients: {str(e)}")


@router.post("/{program_id}/recipients", response_model=Enrollment, status_code=201)
async def enroll_recipient(program_id: str, request: EnrollmentCreate, actor_id: str = Depends(get_actor_id)):
    """
    Enroll an individual into a program
    """
    try:
        enrollment = await allocation_engine.enroll(program_id, request.individual_id, request)
        logger.info(f"Enrollment {enrollment.id} requested by {actor_id}")
        return enrollment

    except AssistanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to enroll into {program_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to enroll recipient: {str(e)}")


@router.post("/{program_id}/verify-all", response_model=VerifyAllResult)
async def verify_all_recipients(
    program_id: str,
    request: Optional[VerifyAllRequest] = None,
    actor_id: str = Depends(get_actor_id)
):
    """
    Confirm every qualified recipient of a program not verified yet
    """
    try:
        remark = request.remark if request else None
        verified = await allocation_engine.verify_all(program_id, actor_id, remark)
        return VerifyAllResult(program_id=program_id, verified=verified)

    except AssistanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to verify recipients of {program_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to verify recipients: {str(e)}")


@router.post("/{program_id}/reconcile", response_model=ReconcileResult)
async def reconcile_program_allocation(program_id: str, actor_id: str = Depends(get_actor_id)):
    """
    Recompute the allocated slot count of a program from its recipients
    """
    try:
        result = await allocation_engine.reconcile_allocation(program_id)
        logger.info(f"Allocation of {program_id} reconciled by {actor_id}")
        return result

    except AssistanceError as e:
        raise to_http_exception(e)
    except Exception as e:
        logger.error(f"Failed to reconcile {program_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to reconcile allocation: {str(e)}")

"""
Program registry: owns program records and answers eligibility and capacity queries
"""
import asyncio
import re
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Union

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import ValidationError as PydanticValidationError
from pymongo import ASCENDING, DESCENDING

from ..config import settings
from ..errors import NotFound, ValidationError, ConcurrencyConflict
from ..models.program import Program, ProgramCreate, ProgramUpdate, ProgramStatus, CapacityInfo, ProgramPage, Pagination
from ..models.recipient import EnrollmentState
from ..utils.sequences import RestartableQuery
from ..utils.validators import (
    as_utc,
    build_pagination,
    generate_id,
    get_current_utc_time,
    normalize_program_name,
    validate_actor_id,
    validate_amount,
    validate_capacity,
    validate_validity_window
)
from .mongo_service import mongo_service

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = ("created_at", "updated_at", "name", "validity_start", "validity_end", "benefit_value")


class ProgramRegistry:
    """Service owning program records"""

    def __init__(self, db: Optional[AsyncIOMotorDatabase] = None):
        self._db = db

    @property
    def db(self) -> AsyncIOMotorDatabase:
        return self._db if self._db is not None else mongo_service.db

    @property
    def programs(self):
        return self.db.programs

    @property
    def recipients(self):
        return self.db.recipients

    # Eligibility and capacity queries
    @staticmethod
    def is_open(program: Program, now: datetime) -> bool:
        """Pure eligibility check, no lazy completion"""
        return program.status == ProgramStatus.ACTIVE.value and program.is_within_window(now)

    @staticmethod
    def compute_remaining(program: Program) -> Optional[int]:
        """Remaining slots of a loaded program, None when unbounded"""
        if program.capacity is None:
            return None
        return max(program.capacity - program.allocated, 0)

    async def is_open_for_enrollment(self, program: Union[Program, str], now: Optional[datetime] = None) -> bool:
        """
        Check whether a program accepts enrollments at ``now``

        Lazy completion is applied (and persisted) before the check, so an
        expired program is reported as completed from then on.
        """
        now = as_utc(now) or get_current_utc_time()
        if isinstance(program, str):
            program = await self.get_program(program, now)
        else:
            program = await self._apply_lazy_completion(program, now)
        return self.is_open(program, now)

    async def remaining_capacity(self, program: Union[Program, str]) -> Optional[int]:
        """Remaining slots read from the persisted program, None when unbounded"""
        program_id = program if isinstance(program, str) else program.id
        current = await self.get_program(program_id)
        return self.compute_remaining(current)

    async def capacity_info(self, program_id: str, now: Optional[datetime] = None) -> CapacityInfo:
        now = as_utc(now) or get_current_utc_time()
        program = await self.get_program(program_id, now)
        return CapacityInfo(
            program_id=program.id,
            capacity=program.capacity,
            allocated=program.allocated,
            remaining=self.compute_remaining(program),
            unbounded=program.capacity is None,
            is_open=self.is_open(program, now)
        )

    def list_active_programs(self, now: Optional[datetime] = None) -> RestartableQuery[Program]:
        """
        Programs open for enrollment, as a restartable async sequence

        Each pass re-queries MongoDB. Expired programs met along the way are
        lazily completed and skipped.
        """
        async def iterate():
            at = as_utc(now) or get_current_utc_time()
            cursor = self.programs.find({"status": ProgramStatus.ACTIVE.value}, sort=[("validity_end", ASCENDING)])
            async for doc in cursor:
                program = await self._apply_lazy_completion(Program(**doc), at)
                if self.is_open(program, at):
                    yield program

        return RestartableQuery(iterate)

    # Program reads
    async def get_program(self, program_id: str, now: Optional[datetime] = None) -> Program:
        """Get a program by ID, applying lazy completion"""
        program = await self.find_program(program_id, now)
        if program is None:
            raise NotFound("Program", program_id)
        return program

    async def find_program(self, program_id: str, now: Optional[datetime] = None) -> Optional[Program]:
        """Like get_program but returns None for a missing program"""
        doc = await self.programs.find_one({"_id": program_id})
        if doc is None:
            return None
        return await self._apply_lazy_completion(Program(**doc), now)

    async def _apply_lazy_completion(self, program: Program, now: Optional[datetime] = None) -> Program:
        now = as_utc(now) or get_current_utc_time()
        if program.status == ProgramStatus.COMPLETED.value or not program.is_expired(now):
            return program

        await self._mark_completed(program.id, now)
        doc = await self.programs.find_one({"_id": program.id})
        if doc is None:
            raise NotFound("Program", program.id)
        return Program(**doc)

    async def _mark_completed(self, program_id: str, now: datetime) -> bool:
        """Conditionally move a program to completed; False when another writer got there first"""
        result = await self.programs.update_one(
            {"_id": program_id, "status": {"$ne": ProgramStatus.COMPLETED.value}},
            {
                "$set": {"status": ProgramStatus.COMPLETED.value, "updated_at": now},
                "$inc": {"revision": 1}
            }
        )
        if result.modified_count:
            logger.info(f"Program {program_id} validity ended, status set to completed")
            return True
        return False

    async def complete_expired_programs(self, now: Optional[datetime] = None) -> int:
        """Sweep every program whose validity has ended into the completed status"""
        now = as_utc(now) or get_current_utc_time()
        completed = 0

        cursor = self.programs.find({"status": {"$ne": ProgramStatus.COMPLETED.value}})
        async for doc in cursor:
            program = Program(**doc)
            if program.is_expired(now) and await self._mark_completed(program.id, now):
                completed += 1

        if completed:
            logger.info(f"Completed {completed} expired programs")
        return completed

    async def list_programs(
        self,
        status: Optional[str] = None,
        category: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        now: Optional[datetime] = None
    ) -> ProgramPage:
        """
        Get programs with filtering and pagination

        Args:
            status: Filter by program status
            category: Filter by benefit category tag
            search: Case-insensitive search on name and description
            page: 1-based page number
            limit: Page size (defaults to settings)
            sort_by: Field to sort on
            sort_order: "asc" or "desc"

        Returns:
            ProgramPage with the programs and pagination info
        """
        limit = limit or settings.default_page_limit
        if page < 1:
            raise ValidationError("Page must be at least 1", field="page")
        if limit < 1 or limit > settings.max_page_limit:
            raise ValidationError(f"Limit must be between 1 and {settings.max_page_limit}", field="limit")
        if sort_by not in SORTABLE_FIELDS:
            raise ValidationError(f"Sort field must be one of: {', '.join(SORTABLE_FIELDS)}", field="sort_by")
        if sort_order.lower() not in ("asc", "desc"):
            raise ValidationError("Sort order must be 'asc' or 'desc'", field="sort_order")

        query: Dict[str, Any] = {}
        if status:
            if status not in [s.value for s in ProgramStatus]:
                raise ValidationError(f"Unknown program status: {status}", field="status")
            query["status"] = status
        if category:
            query["category"] = category
        if search:
            pattern = re.escape(search.strip())
            query["$or"] = [
                {"name": {"$regex": pattern, "$options": "i"}},
                {"description": {"$regex": pattern, "$options": "i"}}
            ]

        total = await self.programs.count_documents(query)
        direction = ASCENDING if sort_order.lower() == "asc" else DESCENDING
        cursor = self.programs.find(query, sort=[(sort_by, direction)], skip=(page - 1) * limit, limit=limit)

        programs = []
        async for doc in cursor:
            programs.append(await self._apply_lazy_completion(Program(**doc), now))

        return ProgramPage(
            programs=programs,
            pagination=Pagination(**build_pagination(total, page, limit))
        )

    # Administrative writes
    async def create_program(self, data: ProgramCreate, actor_id: str) -> Program:
        """Create a new program"""
        actor_id = validate_actor_id(actor_id)
        name = normalize_program_name(data.name)
        validate_validity_window(data.validity_start, data.validity_end)
        validate_capacity(data.capacity)
        validate_amount(data.benefit_value, "benefit_value")

        now = get_current_utc_time()
        fields = data.model_dump(exclude={"name"})
        program = Program(
            id=generate_id(),
            name=name,
            created_by=actor_id,
            updated_by=actor_id,
            created_at=now,
            updated_at=now,
            **fields
        )
        # Lazy completion applies on write too
        if program.is_expired(now):
            program.status = ProgramStatus.COMPLETED.value

        await self.programs.insert_one(program.model_dump(by_alias=True))
        logger.info(f"Program created: {program.id} ({program.name}) by {actor_id}")
        return program

    async def update_program(
        self,
        program_id: str,
        changes: Union[ProgramUpdate, Dict[str, Any]],
        actor_id: str,
        now: Optional[datetime] = None
    ) -> Program:
        """
        Apply a partial update to a program

        The update is guarded by the program revision so it cannot
        interleave with a capacity reservation; conflicts are retried.
        """
        actor_id = validate_actor_id(actor_id)
        if not isinstance(changes, ProgramUpdate):
            try:
                changes = ProgramUpdate(**changes)
            except PydanticValidationError as e:
                error = e.errors()[0]
                field = ".".join(str(part) for part in error["loc"]) or None
                raise ValidationError(f"Invalid program update: {error['msg']}", field=field, program_id=program_id) from e
        updates = changes.changes()

        if "name" in updates:
            updates["name"] = normalize_program_name(updates["name"])
        if "category" in updates and not (updates["category"] or "").strip():
            raise ValidationError("Category cannot be blank", field="category")
        if "capacity" in updates:
            validate_capacity(updates["capacity"])
        if "benefit_value" in updates:
            if updates["benefit_value"] is None:
                raise ValidationError("Benefit value cannot be removed", field="benefit_value")
            validate_amount(updates["benefit_value"], "benefit_value")
        for field in ("validity_start", "validity_end", "status"):
            if field in updates and updates[field] is None:
                raise ValidationError(f"{field} cannot be removed", field=field)

        attempts = settings.allocation_max_retries
        for attempt in range(1, attempts + 1):
            at = as_utc(now) or get_current_utc_time()
            current = await self.get_program(program_id, at)

            start = updates.get("validity_start", current.validity_start)
            end = updates.get("validity_end", current.validity_end)
            validate_validity_window(start, end)

            capacity = updates.get("capacity", current.capacity)
            if capacity is not None and capacity < current.allocated:
                raise ValidationError(
                    f"Capacity {capacity} is below the {current.allocated} slots already allocated",
                    field="capacity",
                    program_id=program_id
                )

            set_doc = dict(updates)
            if end < at:
                set_doc["status"] = ProgramStatus.COMPLETED.value
            set_doc["updated_by"] = actor_id
            set_doc["updated_at"] = at

            result = await self.programs.update_one(
                {"_id": program_id, "revision": current.revision},
                {"$set": set_doc, "$inc": {"revision": 1}}
            )
            if result.matched_count:
                logger.info(f"Program updated: {program_id} by {actor_id} ({', '.join(sorted(updates)) or 'no fields'})")
                return await self.get_program(program_id, at)

            logger.warning(f"Update conflict on program {program_id} (attempt {attempt}/{attempts})")
            await asyncio.sleep(settings.allocation_retry_backoff * attempt)

        raise ConcurrencyConflict(program_id, attempts)

    # Statistics
    async def get_statistics(self) -> Dict[str, Any]:
        """Program and recipient statistics"""
        programs_by_status = {
            status.value: await self.programs.count_documents({"status": status.value})
            for status in ProgramStatus
        }
        recipients_by_state = {
            state.value: await self.recipients.count_documents({"state": state.value})
            for state in EnrollmentState
        }

        total_distributed = 0.0
        cursor = self.recipients.find(
            {"state": EnrollmentState.DISTRIBUTED.value},
            projection={"granted_amount": 1}
        )
        async for doc in cursor:
            total_distributed += float(doc.get("granted_amount") or 0)

        return {
            "programs": {
                "total": sum(programs_by_status.values()),
                "status_distribution": programs_by_status
            },
            "recipients": {
                "total": sum(recipients_by_state.values()),
                "state_distribution": recipients_by_state
            },
            "distributed_amount": total_distributed
        }


# Global program registry instance
program_registry = ProgramRegistry()

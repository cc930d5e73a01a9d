"""
Allocation engine: admits recipients against program capacity and drives
the enrollment state machine.

    qualified --verify(reject)--> rejected      (terminal)
    qualified --distribute-----> distributed   (terminal)

The program document is the serialization point for capacity. A
reservation is a single conditional update that bumps ``allocated`` only
while the program is active, inside its window and below capacity, and
records a pending entry for the enrollment about to be written. Writes are
ordered so that, at every instant,

    count(qualified + distributed) <= allocated <= capacity

enroll reserves before inserting, reject transitions before releasing.
Every capacity write also bumps ``revision``, the token administrative
updates and reconciliation compare against.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Union

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING
from pymongo.errors import DuplicateKeyError

from ..config import settings
from ..errors import (
    ConcurrencyConflict,
    DuplicateEnrollment,
    InvalidTransition,
    NotFound,
    ProgramNotOpen,
    QuotaExceeded,
    ValidationError
)
from ..models.program import Program, ProgramStatus
from ..models.recipient import (
    ACTIVE_STATES,
    Enrollment,
    EnrollmentCreate,
    EnrollmentState,
    EnrollmentWithIndividual,
    EnrollmentWithProgram,
    ReconcileResult
)
from ..utils.sequences import RestartableQuery
from ..utils.validators import (
    as_query_time,
    as_utc,
    generate_id,
    get_current_utc_time,
    validate_actor_id,
    validate_amount,
    validate_proof_reference
)
from .individual_directory import IndividualDirectory
from .notification_service import NotificationService, notification_service
from .program_registry import ProgramRegistry, program_registry

logger = logging.getLogger(__name__)

VERIFY_OUTCOMES = ("confirm", "reject")


class AllocationEngine:
    """Service owning recipient enrollments"""

    def __init__(
        self,
        registry: ProgramRegistry,
        notifier: Optional[NotificationService] = None,
        directory: Optional[IndividualDirectory] = None,
        max_retries: Optional[int] = None,
        retry_backoff: Optional[float] = None
    ):
        self.registry = registry
        self.notifier = notifier
        self._directory = directory
        self.max_retries = settings.allocation_max_retries if max_retries is None else max_retries
        self.retry_backoff = settings.allocation_retry_backoff if retry_backoff is None else retry_backoff
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {self.max_retries}")

    @property
    def db(self) -> AsyncIOMotorDatabase:
        return self.registry.db

    @property
    def directory(self) -> IndividualDirectory:
        if self._directory is not None:
            return self._directory
        return IndividualDirectory(self.db)

    @property
    def programs(self):
        return self.db.programs

    @property
    def recipients(self):
        return self.db.recipients

    # Enrollment
    async def enroll(
        self,
        program_id: str,
        individual_id: str,
        data: Union[EnrollmentCreate, Dict[str, Any], None] = None,
        now: Optional[datetime] = None
    ) -> Enrollment:
        """
        Enroll an individual into a program

        Args:
            program_id: Program to enroll into
            individual_id: External individual identifier
            data: Optional granted_amount, remark and supporting_documents
            now: Evaluation time, defaults to the current UTC time

        Returns:
            The new enrollment in state qualified

        Raises:
            NotFound, ProgramNotOpen, DuplicateEnrollment, QuotaExceeded,
            ValidationError, ConcurrencyConflict
        """
        if individual_id is None or not str(individual_id).strip():
            raise ValidationError("Individual identifier is required", field="individual_id")
        individual_id = str(individual_id).strip()

        if isinstance(data, EnrollmentCreate):
            extras = data.model_dump(exclude={"individual_id"})
        else:
            extras = dict(data or {})
        granted_amount = validate_amount(extras.get("granted_amount"), "granted_amount")

        now = as_utc(now) or get_current_utc_time()
        enrollment = Enrollment(
            id=generate_id(),
            program_id=program_id,
            individual_id=individual_id,
            enrolled_at=now,
            state=EnrollmentState.QUALIFIED.value,
            granted_amount=granted_amount,
            remark=extras.get("remark"),
            supporting_documents=list(extras.get("supporting_documents") or []),
            created_at=now,
            updated_at=now
        )

        await self._reserve_slot(enrollment, now)

        try:
            await self._insert_enrollment(enrollment)
        except DuplicateKeyError:
            await asyncio.shield(self._resolve_reservation(program_id, enrollment.id, now))
            existing = await self._find_active(program_id, individual_id)
            logger.warning(f"Duplicate enrollment of {individual_id} in program {program_id}")
            raise DuplicateEnrollment(program_id, individual_id, existing.id if existing else None)
        except BaseException:
            # Failed or cancelled; the insert may still have committed
            await asyncio.shield(self._resolve_reservation(program_id, enrollment.id, now))
            raise

        await self._settle_reservation(program_id, enrollment.id)
        logger.info(f"Enrolled {individual_id} in program {program_id} as {enrollment.id}")
        return enrollment

    async def _reserve_slot(self, enrollment: Enrollment, now: datetime) -> Program:
        """
        Take one capacity unit for ``enrollment``

        Eligibility, duplicate and quota checks run on a fresh read; the
        conditional update re-asserts them atomically. A miss is retried
        only when the re-read shows the program still open with room, which
        happens when a slot was released or capacity edited in between.
        """
        program_id = enrollment.program_id
        individual_id = enrollment.individual_id

        for attempt in range(1, self.max_retries + 1):
            program = await self.registry.get_program(program_id, now)

            if not self.registry.is_open(program, now):
                logger.warning(f"Enrollment refused, program {program_id} not open (status {program.status})")
                raise ProgramNotOpen(program_id, program.status)

            existing = await self._find_active(program_id, individual_id)
            if existing is not None:
                logger.warning(f"Enrollment refused, {individual_id} already enrolled in program {program_id}")
                raise DuplicateEnrollment(program_id, individual_id, existing.id)

            remaining = self.registry.compute_remaining(program)
            if remaining is not None and remaining <= 0:
                logger.warning(f"Enrollment refused, program {program_id} quota of {program.capacity} is full")
                raise QuotaExceeded(program_id, program.capacity, individual_id)

            if await self._conditional_reserve(program, enrollment.id, now):
                return program

            logger.warning(f"Reservation missed on program {program_id} (attempt {attempt}/{self.max_retries})")
            if attempt < self.max_retries:
                await asyncio.sleep(self.retry_backoff * attempt)

        raise ConcurrencyConflict(program_id, self.max_retries)

    async def _conditional_reserve(self, program: Program, enrollment_id: str, now: datetime) -> bool:
        at = as_query_time(now)
        query: Dict[str, Any] = {
            "_id": program.id,
            "status": ProgramStatus.ACTIVE.value,
            "validity_start": {"$lte": at},
            "validity_end": {"$gte": at},
            "capacity": program.capacity
        }
        if program.capacity is not None:
            query["allocated"] = {"$lt": program.capacity}

        result = await self.programs.update_one(
            query,
            {
                "$inc": {"allocated": 1, "revision": 1},
                "$push": {"pending": {"enrollment_id": enrollment_id, "reserved_at": now}},
                "$set": {"updated_at": now}
            }
        )
        return result.matched_count == 1

    async def _insert_enrollment(self, enrollment: Enrollment):
        doc = enrollment.model_dump(by_alias=True)
        doc["active_key"] = enrollment.active_key()
        await self.recipients.insert_one(doc)

    async def _settle_reservation(self, program_id: str, enrollment_id: str):
        """Drop the pending entry once the enrollment record exists"""
        await self.programs.update_one(
            {"_id": program_id},
            {"$pull": {"pending": {"enrollment_id": enrollment_id}}}
        )

    async def _resolve_reservation(self, program_id: str, enrollment_id: str, now: datetime):
        """Keep the reservation if its enrollment was written, release it otherwise"""
        if await self.recipients.find_one({"_id": enrollment_id}, projection={"_id": 1}) is not None:
            logger.warning(f"Enrollment {enrollment_id} committed despite an interrupted insert, keeping its slot")
            await self._settle_reservation(program_id, enrollment_id)
        else:
            await self._release_slot(program_id, enrollment_id, now)

    async def _release_slot(self, program_id: str, enrollment_id: Optional[str], now: datetime):
        """Give one capacity unit back to the program"""
        update: Dict[str, Any] = {
            "$inc": {"allocated": -1, "revision": 1},
            "$set": {"updated_at": now}
        }
        if enrollment_id:
            update["$pull"] = {"pending": {"enrollment_id": enrollment_id}}

        result = await self.programs.update_one({"_id": program_id, "allocated": {"$gt": 0}}, update)
        if not result.modified_count:
            logger.warning(f"Release on program {program_id} found no allocated slot")
        else:
            logger.info(f"Released one slot on program {program_id}")

    async def _find_active(self, program_id: str, individual_id: str) -> Optional[Enrollment]:
        doc = await self.recipients.find_one({
            "program_id": program_id,
            "individual_id": individual_id,
            "state": {"$in": list(ACTIVE_STATES)}
        })
        return Enrollment(**doc) if doc else None

    # State machine
    async def get_enrollment(self, enrollment_id: str) -> Enrollment:
        """Get an enrollment by ID"""
        doc = await self.recipients.find_one({"_id": enrollment_id})
        if doc is None:
            raise NotFound("Enrollment", enrollment_id)
        return Enrollment(**doc)

    async def _raise_transition_failure(self, enrollment_id: str, action: str):
        current = await self.get_enrollment(enrollment_id)
        logger.warning(f"Refused to {action} enrollment {enrollment_id} in state {current.state}")
        raise InvalidTransition(enrollment_id, current.state, action)

    async def verify(
        self,
        enrollment_id: str,
        actor_id: str,
        outcome: str,
        remark: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Enrollment:
        """
        Record a verification outcome on a qualified enrollment

        "confirm" keeps the enrollment qualified and stamps the verifier;
        "reject" moves it to rejected and releases its capacity unit.
        """
        actor_id = validate_actor_id(actor_id)
        if outcome not in VERIFY_OUTCOMES:
            raise ValidationError(f"Outcome must be one of: {', '.join(VERIFY_OUTCOMES)}", field="outcome")
        now = as_utc(now) or get_current_utc_time()

        enrollment = await self.get_enrollment(enrollment_id)
        action = "verify" if outcome == "confirm" else "reject"
        if enrollment.state != EnrollmentState.QUALIFIED.value:
            logger.warning(f"Refused to {action} enrollment {enrollment_id} in state {enrollment.state}")
            raise InvalidTransition(enrollment_id, enrollment.state, action)

        fields: Dict[str, Any] = {"verified_by": actor_id, "verified_at": now, "updated_at": now}
        if remark is not None:
            fields["remark"] = remark

        if outcome == "confirm":
            result = await self.recipients.update_one(
                {"_id": enrollment_id, "state": EnrollmentState.QUALIFIED.value},
                {"$set": fields}
            )
            if not result.matched_count:
                await self._raise_transition_failure(enrollment_id, action)
            logger.info(f"Enrollment {enrollment_id} verified by {actor_id}")
            return await self.get_enrollment(enrollment_id)

        fields["state"] = EnrollmentState.REJECTED.value
        await asyncio.shield(self._reject_and_release(enrollment, fields, now))
        rejected = await self.get_enrollment(enrollment_id)
        logger.info(f"Enrollment {enrollment_id} rejected by {actor_id}")
        self._notify("rejected", rejected)
        return rejected

    async def _reject_and_release(self, enrollment: Enrollment, fields: Dict[str, Any], now: datetime):
        """State flip and slot release run as one unit a cancelled caller cannot split"""
        result = await self.recipients.update_one(
            {"_id": enrollment.id, "state": EnrollmentState.QUALIFIED.value},
            {"$set": fields, "$unset": {"active_key": ""}}
        )
        if not result.matched_count:
            await self._raise_transition_failure(enrollment.id, "reject")

        await self._release_slot(enrollment.program_id, None, now)

    async def reject(
        self,
        enrollment_id: str,
        actor_id: str,
        remark: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Enrollment:
        """Reject a qualified enrollment"""
        return await self.verify(enrollment_id, actor_id, "reject", remark, now)

    async def distribute(
        self,
        enrollment_id: str,
        actor_id: str,
        proof_reference: Optional[str] = None,
        amount: Optional[float] = None,
        now: Optional[datetime] = None
    ) -> Enrollment:
        """
        Mark a qualified enrollment as having received the benefit

        The granted amount is the explicit ``amount``, else the amount set at
        enrollment, else the program benefit value.
        """
        actor_id = validate_actor_id(actor_id)
        proof_reference = validate_proof_reference(proof_reference)
        amount = validate_amount(amount, "amount")
        now = as_utc(now) or get_current_utc_time()

        enrollment = await self.get_enrollment(enrollment_id)
        if enrollment.state != EnrollmentState.QUALIFIED.value:
            logger.warning(f"Refused to distribute enrollment {enrollment_id} in state {enrollment.state}")
            raise InvalidTransition(enrollment_id, enrollment.state, "distribute")

        granted = amount if amount is not None else enrollment.granted_amount
        if granted is None:
            program = await self.registry.get_program(enrollment.program_id, now)
            granted = program.benefit_value

        fields: Dict[str, Any] = {
            "state": EnrollmentState.DISTRIBUTED.value,
            "distributed_by": actor_id,
            "distributed_at": now,
            "granted_amount": granted,
            "updated_at": now
        }
        if proof_reference is not None:
            fields["proof_reference"] = proof_reference

        result = await self.recipients.update_one(
            {"_id": enrollment_id, "state": EnrollmentState.QUALIFIED.value},
            {"$set": fields}
        )
        if not result.matched_count:
            await self._raise_transition_failure(enrollment_id, "distribute")

        distributed = await self.get_enrollment(enrollment_id)
        logger.info(f"Enrollment {enrollment_id} distributed by {actor_id} ({granted})")
        self._notify("distributed", distributed)
        return distributed

    async def verify_all(
        self,
        program_id: str,
        actor_id: str,
        remark: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> int:
        """Confirm every qualified enrollment of a program that has not been verified yet"""
        actor_id = validate_actor_id(actor_id)
        now = as_utc(now) or get_current_utc_time()
        await self.registry.get_program(program_id, now)

        fields: Dict[str, Any] = {"verified_by": actor_id, "verified_at": now, "updated_at": now}
        if remark is not None:
            fields["remark"] = remark

        result = await self.recipients.update_many(
            {"program_id": program_id, "state": EnrollmentState.QUALIFIED.value, "verified_at": None},
            {"$set": fields}
        )
        logger.info(f"Bulk verified {result.modified_count} enrollments of program {program_id} by {actor_id}")
        return result.modified_count

    def _notify(self, event: str, enrollment: Enrollment):
        if self.notifier is None:
            return
        try:
            self.notifier.notify(event, enrollment)
        except Exception as e:
            logger.error(f"Failed to schedule {event} notification for {enrollment.id}: {e}")

    # Allocation repair
    async def reconcile_allocation(self, program_id: str, now: Optional[datetime] = None) -> ReconcileResult:
        """
        Recompute a program's allocated count from its enrollment set

        Pending reservations younger than the stale threshold still count as
        in flight; older ones belong to writers that died between reserving
        and inserting, and are dropped.
        """
        now = as_utc(now) or get_current_utc_time()
        stale_before = now - timedelta(seconds=settings.reservation_stale_after_seconds)

        for attempt in range(1, self.max_retries + 1):
            program = await self.registry.get_program(program_id, now)
            active = await self.recipients.count_documents({
                "program_id": program_id,
                "state": {"$in": list(ACTIVE_STATES)}
            })

            live_pending = []
            for entry in program.pending:
                if await self.recipients.find_one({"_id": entry.get("enrollment_id")}) is not None:
                    continue
                reserved_at = as_utc(entry.get("reserved_at"))
                if reserved_at is not None and reserved_at >= stale_before:
                    live_pending.append(entry)

            allocated = active + len(live_pending)
            result = await self.programs.update_one(
                {"_id": program_id, "revision": program.revision},
                {
                    "$set": {"allocated": allocated, "pending": live_pending, "updated_at": now},
                    "$inc": {"revision": 1}
                }
            )
            if result.matched_count:
                if allocated != program.allocated:
                    logger.warning(f"Program {program_id} allocation corrected from {program.allocated} to {allocated}")
                remaining = None if program.capacity is None else max(program.capacity - allocated, 0)
                return ReconcileResult(
                    program_id=program_id,
                    previous_allocated=program.allocated,
                    allocated=allocated,
                    remaining=remaining
                )

            logger.warning(f"Reconcile conflict on program {program_id} (attempt {attempt}/{self.max_retries})")
            await asyncio.sleep(self.retry_backoff * attempt)

        raise ConcurrencyConflict(program_id, self.max_retries)

    # Queries
    def find_by_individual(self, individual_id: str) -> RestartableQuery[EnrollmentWithProgram]:
        """Enrollments of an individual, each paired with its program"""
        async def iterate():
            cursor = self.recipients.find({"individual_id": individual_id}, sort=[("enrolled_at", ASCENDING)])
            async for doc in cursor:
                enrollment = Enrollment(**doc)
                program = await self.registry.find_program(enrollment.program_id)
                yield EnrollmentWithProgram(enrollment=enrollment, program=program)

        return RestartableQuery(iterate)

    async def find_by_program(
        self,
        program_id: str,
        state: Optional[str] = None
    ) -> RestartableQuery[EnrollmentWithIndividual]:
        """Enrollments of a program, each paired with its individual reference"""
        await self.registry.get_program(program_id)
        if state is not None and state not in [s.value for s in EnrollmentState]:
            raise ValidationError(f"Unknown enrollment state: {state}", field="state")

        query: Dict[str, Any] = {"program_id": program_id}
        if state is not None:
            query["state"] = state

        async def iterate():
            cursor = self.recipients.find(query, sort=[("enrolled_at", ASCENDING)])
            async for doc in cursor:
                enrollment = Enrollment(**doc)
                individual = await self.directory.resolve(enrollment.individual_id)
                yield EnrollmentWithIndividual(enrollment=enrollment, individual=individual)

        return RestartableQuery(iterate)


# Global allocation engine instance
allocation_engine = AllocationEngine(program_registry, notifier=notification_service)

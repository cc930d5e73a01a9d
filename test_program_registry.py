"""
Tests for the program registry: eligibility, lazy completion, capacity and
administrative program operations.
"""
from datetime import timedelta

import pytest

from assistance.errors import NotFound, ValidationError
from assistance.models import ProgramCreate, ProgramStatus, ProgramUpdate
from conftest import ADMIN


class TestProgramCreation:
    """Program creation and input validation."""

    @pytest.mark.asyncio
    async def test_create_program_trims_name_and_stamps_actor(self, registry, now):
        program = await registry.create_program(
            ProgramCreate(
                name="   Program   Keluarga  Harapan ",
                category="PKH",
                validity_start=now,
                validity_end=now + timedelta(days=90),
                capacity=10,
                benefit_value=750000
            ),
            ADMIN
        )

        assert program.name == "Program Keluarga Harapan"
        assert program.created_by == ADMIN
        assert program.updated_by == ADMIN
        assert program.status == ProgramStatus.ACTIVE.value
        assert program.allocated == 0

        stored = await registry.get_program(program.id)
        assert stored.name == "Program Keluarga Harapan"
        assert stored.capacity == 10

    @pytest.mark.asyncio
    async def test_start_after_end_is_rejected(self, registry, now):
        with pytest.raises(ValidationError) as exc_info:
            await registry.create_program(
                ProgramCreate(
                    name="Backwards",
                    category="BLT",
                    validity_start=now + timedelta(days=5),
                    validity_end=now,
                    benefit_value=100
                ),
                ADMIN
            )

        assert exc_info.value.context["field"] == "validity_start"
        assert await registry.programs.count_documents({}) == 0

    @pytest.mark.asyncio
    async def test_missing_actor_is_rejected(self, registry, now):
        with pytest.raises(ValidationError):
            await registry.create_program(
                ProgramCreate(
                    name="No actor",
                    category="BLT",
                    validity_start=now,
                    validity_end=now + timedelta(days=1),
                    benefit_value=100
                ),
                "  "
            )

    @pytest.mark.asyncio
    async def test_program_created_after_its_window_is_completed(self, make_program):
        program = await make_program(start_offset=timedelta(days=-10), end_offset=timedelta(days=-1))
        assert program.status == ProgramStatus.COMPLETED.value

    @pytest.mark.asyncio
    async def test_get_unknown_program_raises_not_found(self, registry):
        with pytest.raises(NotFound) as exc_info:
            await registry.get_program("000000000000000000000000")

        assert exc_info.value.context == {"entity": "Program", "entity_id": "000000000000000000000000"}


class TestEligibility:
    """is_open_for_enrollment and the lazy completion rule."""

    @pytest.mark.asyncio
    async def test_open_program_within_window(self, registry, make_program, now):
        program = await make_program(capacity=5)
        assert await registry.is_open_for_enrollment(program, now) is True
        assert await registry.is_open_for_enrollment(program.id, now) is True

    @pytest.mark.asyncio
    async def test_program_not_started_is_closed(self, registry, make_program, now):
        program = await make_program(start_offset=timedelta(days=2), end_offset=timedelta(days=10))
        assert await registry.is_open_for_enrollment(program, now) is False

        stored = await registry.get_program(program.id, now)
        assert stored.status == ProgramStatus.ACTIVE.value

    @pytest.mark.asyncio
    async def test_inactive_program_is_closed(self, registry, make_program, now):
        program = await make_program(status="inactive")
        assert await registry.is_open_for_enrollment(program, now) is False

    @pytest.mark.asyncio
    async def test_expired_active_program_is_lazily_completed(self, registry, make_program, now):
        program = await make_program(capacity=3)
        await registry.programs.update_one(
            {"_id": program.id},
            {"$set": {"validity_start": now - timedelta(days=10), "validity_end": now - timedelta(days=1)}}
        )
        stale = program.model_copy(update={"validity_end": now - timedelta(days=1)})

        assert await registry.is_open_for_enrollment(stale, now) is False

        stored = await registry.get_program(program.id, now)
        assert stored.status == ProgramStatus.COMPLETED.value
        assert stored.revision > program.revision

    @pytest.mark.asyncio
    async def test_lazy_completion_is_idempotent(self, registry, make_program, now):
        program = await make_program()
        await registry.programs.update_one(
            {"_id": program.id},
            {"$set": {"validity_start": now - timedelta(days=10), "validity_end": now - timedelta(days=1)}}
        )

        first = await registry.get_program(program.id, now)
        second = await registry.get_program(program.id, now)

        assert first.status == second.status == ProgramStatus.COMPLETED.value
        assert first.revision == second.revision


class TestCapacity:
    """remaining_capacity and capacity_info."""

    @pytest.mark.asyncio
    async def test_unbounded_program_reports_none(self, registry, make_program):
        program = await make_program(capacity=None)
        assert await registry.remaining_capacity(program) is None

        info = await registry.capacity_info(program.id)
        assert info.unbounded is True
        assert info.remaining is None

    @pytest.mark.asyncio
    async def test_bounded_program_reports_persisted_remaining(self, registry, make_program):
        program = await make_program(capacity=4)
        await registry.programs.update_one({"_id": program.id}, {"$set": {"allocated": 3}})

        # the in-memory copy is stale, the query re-reads MongoDB
        assert await registry.remaining_capacity(program) == 1
        assert await registry.remaining_capacity(program.id) == 1

    @pytest.mark.asyncio
    async def test_zero_capacity_program_has_no_slots(self, registry, make_program):
        program = await make_program(capacity=0)
        info = await registry.capacity_info(program.id)
        assert info.remaining == 0
        assert info.is_open is True


class TestActivePrograms:
    """list_active_programs as a restartable sequence."""

    @pytest.mark.asyncio
    async def test_only_open_programs_are_listed(self, registry, make_program, now):
        open_program = await make_program(name="Open")
        await make_program(name="Future", start_offset=timedelta(days=3), end_offset=timedelta(days=9))
        await make_program(name="Inactive", status="inactive")
        await make_program(name="Ended", start_offset=timedelta(days=-9), end_offset=timedelta(days=-2))

        active = await registry.list_active_programs(now).to_list()

        assert [p.id for p in active] == [open_program.id]

    @pytest.mark.asyncio
    async def test_sequence_restarts_against_current_state(self, registry, make_program, now):
        await make_program(name="First")
        programs = registry.list_active_programs(now)

        first_pass = [p.name async for p in programs]
        await make_program(name="Second")
        second_pass = [p.name async for p in programs]

        assert first_pass == ["First"]
        assert sorted(second_pass) == ["First", "Second"]

    @pytest.mark.asyncio
    async def test_expired_programs_met_while_listing_are_completed(self, registry, make_program, now):
        program = await make_program()
        await registry.programs.update_one(
            {"_id": program.id},
            {"$set": {"validity_start": now - timedelta(days=4), "validity_end": now - timedelta(hours=1)}}
        )

        assert await registry.list_active_programs(now).to_list() == []
        stored = await registry.programs.find_one({"_id": program.id})
        assert stored["status"] == ProgramStatus.COMPLETED.value


class TestProgramAdministration:
    """update, listing, sweep and statistics."""

    @pytest.mark.asyncio
    async def test_update_program_applies_partial_changes(self, registry, make_program):
        program = await make_program(capacity=5)

        updated = await registry.update_program(
            program.id,
            ProgramUpdate(description="Updated description", capacity=8),
            "admin-2"
        )

        assert updated.description == "Updated description"
        assert updated.capacity == 8
        assert updated.name == program.name
        assert updated.updated_by == "admin-2"
        assert updated.revision == program.revision + 1

    @pytest.mark.asyncio
    async def test_update_program_rejects_inverted_window(self, registry, make_program, now):
        program = await make_program()

        with pytest.raises(ValidationError):
            await registry.update_program(program.id, {"validity_end": now - timedelta(days=5)}, ADMIN)

        stored = await registry.get_program(program.id)
        assert stored.revision == program.revision

    @pytest.mark.asyncio
    async def test_update_program_can_remove_capacity(self, registry, make_program):
        program = await make_program(capacity=2)
        updated = await registry.update_program(program.id, {"capacity": None}, ADMIN)
        assert updated.capacity is None

    @pytest.mark.asyncio
    async def test_update_program_with_ended_window_completes_it(self, registry, make_program, now):
        program = await make_program(start_offset=timedelta(days=-10))
        updated = await registry.update_program(program.id, {"validity_end": now - timedelta(days=1)}, ADMIN, now)
        assert updated.status == ProgramStatus.COMPLETED.value

    @pytest.mark.asyncio
    async def test_update_unknown_program_raises_not_found(self, registry):
        with pytest.raises(NotFound):
            await registry.update_program("000000000000000000000000", {"description": "x"}, ADMIN)

    @pytest.mark.asyncio
    async def test_list_programs_filters_and_paginates(self, registry, make_program):
        for i in range(5):
            await make_program(name=f"Rice Aid {i}", category="BPNT")
        await make_program(name="Scholarship", category="PIP", description="school fees")

        page = await registry.list_programs(category="BPNT", page=2, limit=2, sort_by="name", sort_order="asc")

        assert [p.name for p in page.programs] == ["Rice Aid 2", "Rice Aid 3"]
        assert page.pagination.total == 5
        assert page.pagination.total_pages == 3
        assert page.pagination.has_next_page is True
        assert page.pagination.has_prev_page is True

        found = await registry.list_programs(search="SCHOOL")
        assert [p.name for p in found.programs] == ["Scholarship"]

    @pytest.mark.asyncio
    async def test_list_programs_rejects_unknown_sort_field(self, registry):
        with pytest.raises(ValidationError):
            await registry.list_programs(sort_by="allocated; drop")

    @pytest.mark.asyncio
    async def test_complete_expired_programs_sweep(self, registry, make_program, now):
        ended = await make_program(name="Ended")
        await make_program(name="Running")
        await registry.programs.update_one(
            {"_id": ended.id},
            {"$set": {"validity_start": now - timedelta(days=4), "validity_end": now - timedelta(days=1)}}
        )

        assert await registry.complete_expired_programs(now) == 1
        assert await registry.complete_expired_programs(now) == 0

    @pytest.mark.asyncio
    async def test_statistics_count_programs_and_recipients(self, registry, make_program):
        await make_program(name="A")
        await make_program(name="B", status="inactive")
        await registry.recipients.insert_many([
            {"_id": "r1", "program_id": "p", "individual_id": "i1", "state": "distributed", "granted_amount": 100.0},
            {"_id": "r2", "program_id": "p", "individual_id": "i2", "state": "distributed", "granted_amount": 50.5},
            {"_id": "r3", "program_id": "p", "individual_id": "i3", "state": "qualified"}
        ])

        stats = await registry.get_statistics()

        assert stats["programs"]["total"] == 2
        assert stats["programs"]["status_distribution"]["inactive"] == 1
        assert stats["recipients"]["state_distribution"] == {"qualified": 1, "distributed": 2, "rejected": 0}
        assert stats["distributed_amount"] == pytest.approx(150.5)

    @pytest.mark.asyncio
    async def test_malformed_update_raises_domain_validation_error(self, registry, make_program):
        program = await make_program(capacity=2)

        with pytest.raises(ValidationError) as exc_info:
            await registry.update_program(program.id, {"benefit_type": "voucher"}, ADMIN)

        assert exc_info.value.context["field"] == "benefit_type"
        assert (await registry.get_program(program.id)).revision == program.revision

    @pytest.mark.asyncio
    async def test_sweep_does_not_count_programs_completed_by_another_writer(
        self, registry, make_program, now, monkeypatch
    ):
        program = await make_program()
        await registry.programs.update_one(
            {"_id": program.id},
            {"$set": {"validity_start": now - timedelta(days=4), "validity_end": now - timedelta(days=1)}}
        )
        real_mark_completed = registry._mark_completed

        async def mark_completed_after_rival(program_id, at):
            # a concurrent reader completes the program first
            await real_mark_completed(program_id, at)
            return await real_mark_completed(program_id, at)

        monkeypatch.setattr(registry, "_mark_completed", mark_completed_after_rival)

        assert await registry.complete_expired_programs(now) == 0
        stored = await registry.programs.find_one({"_id": program.id})
        assert stored["status"] == ProgramStatus.COMPLETED.value

"""
HTTP tests for the program and recipient routes
"""
from datetime import timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from assistance.main import app
from assistance.services import mongo_service, notification_service
from conftest import ADMIN

API = "/api/v1"
ADMIN_HEADERS = {"X-Actor-Id": ADMIN}
OFFICER_HEADERS = {"X-Actor-Id": "officer-7"}


@pytest_asyncio.fixture
async def client(db):
    previous_db, previous_client = mongo_service.db, mongo_service.client
    mongo_service.use_database(db)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http

    await notification_service.drain()
    mongo_service.use_database(previous_db, previous_client)


@pytest.fixture
def program_payload(now):
    return {
        "name": "Bantuan Pangan Non Tunai",
        "category": "BPNT",
        "description": "Monthly food assistance",
        "benefit_type": "in_kind",
        "validity_start": (now - timedelta(days=1)).isoformat(),
        "validity_end": (now + timedelta(days=30)).isoformat(),
        "capacity": 1,
        "benefit_value": 200000
    }


async def create_program(client, payload):
    response = await client.post(f"{API}/programs/", json=payload, headers=ADMIN_HEADERS)
    assert response.status_code == 201, response.text
    return response.json()


class TestProgramRoutes:

    @pytest.mark.asyncio
    async def test_create_and_get_program(self, client, program_payload):
        created = await create_program(client, program_payload)

        assert created["_id"]
        assert created["status"] == "active"
        assert created["created_by"] == ADMIN

        response = await client.get(f"{API}/programs/{created['_id']}")
        assert response.status_code == 200
        assert response.json()["name"] == "Bantuan Pangan Non Tunai"

    @pytest.mark.asyncio
    async def test_create_requires_actor_header(self, client, program_payload):
        response = await client.post(f"{API}/programs/", json=program_payload)
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_inverted_window_is_unprocessable(self, client, program_payload, now):
        program_payload["validity_start"] = (now + timedelta(days=60)).isoformat()

        response = await client.post(f"{API}/programs/", json=program_payload, headers=ADMIN_HEADERS)

        assert response.status_code == 422
        assert response.json()["detail"]["error"] == "validation_error"

    @pytest.mark.asyncio
    async def test_unknown_program_is_not_found(self, client):
        response = await client.get(f"{API}/programs/000000000000000000000000")

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "not_found"

    @pytest.mark.asyncio
    async def test_update_program(self, client, program_payload):
        created = await create_program(client, program_payload)

        response = await client.put(
            f"{API}/programs/{created['_id']}",
            json={"capacity": 5, "description": "Extended"},
            headers=ADMIN_HEADERS
        )

        assert response.status_code == 200
        assert response.json()["capacity"] == 5
        assert response.json()["description"] == "Extended"

    @pytest.mark.asyncio
    async def test_list_active_and_paginated_programs(self, client, program_payload, now):
        await create_program(client, program_payload)
        future = dict(program_payload, name="Next Year Aid")
        future["validity_start"] = (now + timedelta(days=300)).isoformat()
        future["validity_end"] = (now + timedelta(days=400)).isoformat()
        await create_program(client, future)

        active = await client.get(f"{API}/programs/active")
        assert [p["name"] for p in active.json()] == ["Bantuan Pangan Non Tunai"]

        page = await client.get(f"{API}/programs/", params={"limit": 1, "sort_by": "name", "sort_order": "asc"})
        body = page.json()
        assert body["pagination"]["total"] == 2
        assert body["pagination"]["has_next_page"] is True
        assert [p["name"] for p in body["programs"]] == ["Bantuan Pangan Non Tunai"]


class TestEnrollmentRoutes:

    @pytest.mark.asyncio
    async def test_enroll_until_quota_is_exhausted(self, client, program_payload):
        program = await create_program(client, program_payload)
        url = f"{API}/programs/{program['_id']}/recipients"

        first = await client.post(url, json={"individual_id": "A"}, headers=OFFICER_HEADERS)
        assert first.status_code == 201
        assert first.json()["state"] == "qualified"

        duplicate = await client.post(url, json={"individual_id": "A"}, headers=OFFICER_HEADERS)
        assert duplicate.status_code == 409
        assert duplicate.json()["detail"]["error"] == "duplicate_enrollment"

        full = await client.post(url, json={"individual_id": "B"}, headers=OFFICER_HEADERS)
        assert full.status_code == 409
        assert full.json()["detail"]["error"] == "quota_exceeded"
        assert full.json()["detail"]["context"]["program_id"] == program["_id"]

        capacity = await client.get(f"{API}/programs/{program['_id']}/capacity")
        assert capacity.json()["remaining"] == 0
        assert capacity.json()["allocated"] == 1

    @pytest.mark.asyncio
    async def test_reject_frees_the_slot(self, client, program_payload):
        program = await create_program(client, program_payload)
        url = f"{API}/programs/{program['_id']}/recipients"
        enrollment = (await client.post(url, json={"individual_id": "A"}, headers=OFFICER_HEADERS)).json()

        rejected = await client.post(
            f"{API}/recipients/{enrollment['_id']}/reject",
            json={"remark": "Not a resident"},
            headers=OFFICER_HEADERS
        )
        assert rejected.status_code == 200
        assert rejected.json()["state"] == "rejected"

        second = await client.post(url, json={"individual_id": "B"}, headers=OFFICER_HEADERS)
        assert second.status_code == 201

    @pytest.mark.asyncio
    async def test_distribute_once(self, client, program_payload):
        program = await create_program(client, program_payload)
        enrollment = (await client.post(
            f"{API}/programs/{program['_id']}/recipients",
            json={"individual_id": "A"},
            headers=OFFICER_HEADERS
        )).json()
        url = f"{API}/recipients/{enrollment['_id']}/distribute"

        first = await client.post(url, json={"proof_reference": "TRX-1"}, headers=OFFICER_HEADERS)
        assert first.status_code == 200
        assert first.json()["state"] == "distributed"
        assert first.json()["granted_amount"] == 200000

        again = await client.post(url, json={"proof_reference": "TRX-2"}, headers=OFFICER_HEADERS)
        assert again.status_code == 409
        assert again.json()["detail"]["error"] == "invalid_transition"

        stored = await client.get(f"{API}/recipients/{enrollment['_id']}")
        assert stored.json()["proof_reference"] == "TRX-1"

    @pytest.mark.asyncio
    async def test_verify_and_listings(self, client, program_payload):
        program_payload["capacity"] = None
        program = await create_program(client, program_payload)
        url = f"{API}/programs/{program['_id']}/recipients"
        a = (await client.post(url, json={"individual_id": "A"}, headers=OFFICER_HEADERS)).json()
        await client.post(url, json={"individual_id": "B"}, headers=OFFICER_HEADERS)

        verified = await client.post(
            f"{API}/recipients/{a['_id']}/verify",
            json={"outcome": "confirm"},
            headers=OFFICER_HEADERS
        )
        assert verified.status_code == 200
        assert verified.json()["verified_by"] == "officer-7"

        bulk = await client.post(f"{API}/programs/{program['_id']}/verify-all", headers=ADMIN_HEADERS)
        assert bulk.json() == {"program_id": program["_id"], "verified": 1}

        recipients = await client.get(url, params={"state": "qualified"})
        assert sorted(r["individual"]["individual_id"] for r in recipients.json()) == ["A", "B"]

        by_individual = await client.get(f"{API}/recipients/by-individual/A")
        assert by_individual.json()[0]["program"]["_id"] == program["_id"]

        stats = await client.get(f"{API}/programs/stats/overview")
        assert stats.json()["recipients"]["state_distribution"]["qualified"] == 2

    @pytest.mark.asyncio
    async def test_transition_on_unknown_enrollment(self, client):
        response = await client.post(
            f"{API}/recipients/000000000000000000000000/reject",
            json={},
            headers=OFFICER_HEADERS
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_reconcile_endpoint(self, client, program_payload):
        program = await create_program(client, program_payload)

        response = await client.post(f"{API}/programs/{program['_id']}/reconcile", headers=ADMIN_HEADERS)

        assert response.status_code == 200
        assert response.json()["allocated"] == 0
        assert response.json()["remaining"] == 1


class TestServiceRoutes:

    @pytest.mark.asyncio
    async def test_root_and_health(self, client):
        root = await client.get("/")
        assert root.status_code == 200

        health = await client.get("/health")
        assert health.json()["service"] == "assistance-allocation"
        assert health.json()["mongodb"] is False

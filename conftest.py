"""
Pytest configuration and shared fixtures for the allocation service tests.

Every test gets a fresh in-memory MongoDB (mongomock-motor) with the
service indexes in place.
"""
from datetime import timedelta

import pytest
import pytest_asyncio
from mongomock_motor import AsyncMongoMockClient

from assistance.models import ProgramCreate
from assistance.services import (
    AllocationEngine,
    IndividualDirectory,
    NotificationService,
    ProgramRegistry,
    mongo_service
)
from assistance.utils import get_current_utc_time

ADMIN = "admin-1"


@pytest.fixture
def now():
    return get_current_utc_time()


@pytest_asyncio.fixture
async def db():
    client = AsyncMongoMockClient()
    database = client["assistance_test"]
    await mongo_service.ensure_indexes(database)
    return database


@pytest.fixture
def registry(db):
    return ProgramRegistry(db)


@pytest.fixture
def notifier():
    return NotificationService(webhook_url="")


@pytest.fixture
def engine(registry, notifier, db):
    return AllocationEngine(
        registry,
        notifier=notifier,
        directory=IndividualDirectory(db),
        retry_backoff=0
    )


@pytest.fixture
def make_program(registry, now):
    """Factory creating a program open around ``now``"""
    async def _make(capacity=None, start_offset=timedelta(days=-1), end_offset=timedelta(days=30), **overrides):
        fields = {
            "name": "Bantuan Langsung Tunai",
            "category": "BLT",
            "description": "Direct cash assistance",
            "validity_start": now + start_offset,
            "validity_end": now + end_offset,
            "capacity": capacity,
            "benefit_value": 300000.0
        }
        fields.update(overrides)
        return await registry.create_program(ProgramCreate(**fields), ADMIN)

    return _make

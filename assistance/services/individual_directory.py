"""
Individual directory: resolves individual references for display
"""
import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from ..models.recipient import IndividualRef
from .mongo_service import mongo_service

logger = logging.getLogger(__name__)

# Fields copied into the reference when the record carries them
DISPLAY_FIELDS = ("nik", "address", "village", "gender", "date_of_birth")


class IndividualDirectory:
    """Read-only view over the individuals collection maintained elsewhere"""

    def __init__(self, db: Optional[AsyncIOMotorDatabase] = None):
        self._db = db

    @property
    def db(self) -> AsyncIOMotorDatabase:
        return self._db if self._db is not None else mongo_service.db

    async def resolve(self, individual_id: str) -> IndividualRef:
        """Resolve an individual, falling back to a bare reference"""
        doc = await self.db.individuals.find_one({"individual_id": individual_id})
        if doc is None:
            return IndividualRef(individual_id=individual_id)

        details = {field: doc[field] for field in DISPLAY_FIELDS if doc.get(field) is not None}
        return IndividualRef(
            individual_id=individual_id,
            name=doc.get("name"),
            details=details
        )

"""
Services package for the Social Assistance Allocation Service
"""

from .mongo_service import MongoService, mongo_service
from .program_registry import ProgramRegistry, program_registry
from .allocation_engine import AllocationEngine, allocation_engine
from .notification_service import NotificationService, notification_service
from .individual_directory import IndividualDirectory

__all__ = [
    "MongoService",
    "mongo_service",
    "ProgramRegistry",
    "program_registry",
    "AllocationEngine",
    "allocation_engine",
    "NotificationService",
    "notification_service",
    "IndividualDirectory"
]

"""
API routes for the Social Assistance Allocation Service
"""

from .programs import router as programs_router
from .recipients import router as recipients_router

__all__ = [
    "programs_router",
    "recipients_router"
]

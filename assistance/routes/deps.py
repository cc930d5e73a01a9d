"""
Shared helpers for the API routes
"""
from typing import Optional
from fastapi import Header, HTTPException

from ..errors import AssistanceError


async def get_actor_id(x_actor_id: Optional[str] = Header(None, description="Authenticated actor identifier")) -> str:
    """Actor identifier supplied by the authentication layer in front of the service"""
    if not x_actor_id or not x_actor_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-Actor-Id header")
    return x_actor_id.strip()


def to_http_exception(error: AssistanceError) -> HTTPException:
    """Translate a domain failure into an HTTP error carrying its code and context"""
    return HTTPException(status_code=error.status_code, detail=error.to_dict())

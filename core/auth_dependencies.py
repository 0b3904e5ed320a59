"""
FastAPI Authentication Dependencies for Microservices

Session context dependencies. Authentication itself happens at the gateway,
which forwards the resolved tenant, role and user as headers.
"""

from fastapi import Header, HTTPException, status, Request
from pydantic import BaseModel
from typing import Optional
import logging

logger = logging.getLogger(__name__)


class SessionContext(BaseModel):
    """Tenant, role and user identity supplied by the session collaborator"""
    tenant_id: str
    role: str
    user_id: str


async def require_session_context(
    request: Request,
    x_tenant_id: Optional[str] = Header(None, alias="X-Tenant-Id"),
    x_user_role: Optional[str] = Header(None, alias="X-User-Role"),
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> SessionContext:
    """
    Resolve the session context for a request.

    Raises:
        HTTPException 401: user identity missing
        HTTPException 400: tenant missing

    Usage:
        @app.get("/api/resource")
        async def get_resource(
            session: SessionContext = Depends(require_session_context)
        ):
            ...
    """
    if not x_user_id:
        logger.warning(f"Unauthenticated request to {request.url.path}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User authentication required"
        )

    if not x_tenant_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Tenant context required"
        )

    return SessionContext(
        tenant_id=x_tenant_id,
        role=(x_user_role or "user").lower(),
        user_id=x_user_id,
    )


__all__ = [
    "SessionContext",
    "require_session_context",
]

"""
Internal Service Authentication

Shared-secret authentication for calls between microservices, used on
routes that are never called by end users (collaborator callbacks).

Usage:
1. Guard the route with Depends(require_internal_service)
2. Calling services add InternalServiceAuth.get_internal_service_headers()
"""

from fastapi import Request, HTTPException, status
import hmac
import os
import logging

logger = logging.getLogger(__name__)

# Must be set in production; every service in the deployment shares it
INTERNAL_SERVICE_SECRET = os.getenv("INTERNAL_SERVICE_SECRET", "dev-internal-secret-change-in-production")
INTERNAL_SERVICE_HEADER = "X-Internal-Service"
INTERNAL_SERVICE_SECRET_HEADER = "X-Internal-Service-Secret"


class InternalServiceAuth:
    """Internal service authentication helpers"""

    @staticmethod
    def get_internal_service_headers() -> dict:
        """
        Headers identifying an outgoing request as an internal service call.

        Returns:
            Header dict with the internal service marker and shared secret
        """
        return {
            INTERNAL_SERVICE_HEADER: "true",
            INTERNAL_SERVICE_SECRET_HEADER: INTERNAL_SERVICE_SECRET
        }

    @staticmethod
    def is_internal_service_request(request: Request) -> bool:
        """
        Check whether a request comes from another internal service.

        Both must hold:
        1. X-Internal-Service: true
        2. X-Internal-Service-Secret matches the shared secret

        Args:
            request: FastAPI Request object

        Returns:
            True for a valid internal service request
        """
        internal_service = request.headers.get(INTERNAL_SERVICE_HEADER)
        secret = request.headers.get(INTERNAL_SERVICE_SECRET_HEADER) or ""

        if internal_service == "true" and hmac.compare_digest(secret.encode(), INTERNAL_SERVICE_SECRET.encode()):
            logger.debug("Valid internal service request detected")
            return True

        return False

    @staticmethod
    def get_service_user_id() -> str:
        return "internal-service"


async def require_internal_service(request: Request) -> str:
    """
    Dependency admitting internal service calls only.

    Returns:
        The internal service user id

    Raises:
        HTTPException: 401 when the internal service headers are missing or wrong

    Usage:
        @app.post("/api/v1/resource/callback")
        async def callback(caller: str = Depends(require_internal_service)):
            ...
    """
    if InternalServiceAuth.is_internal_service_request(request):
        return InternalServiceAuth.get_service_user_id()

    logger.warning(f"Rejected non-internal request to {request.url.path}")
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Internal service authentication required"
    )


__all__ = [
    "InternalServiceAuth",
    "require_internal_service",
    "INTERNAL_SERVICE_HEADER",
    "INTERNAL_SERVICE_SECRET_HEADER"
]

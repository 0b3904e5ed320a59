"""
E-Signature Service Client for Sales Order Service
"""

import httpx
import logging
from typing import Optional, Dict, Any

from core.internal_service_auth import InternalServiceAuth

logger = logging.getLogger(__name__)


class SignatureClient:
    """Client for the e-signature dispatch service"""

    def __init__(self, base_url: Optional[str] = None, timeout: float = 30.0):
        if base_url:
            self.base_url = base_url.rstrip('/')
        else:
            from core.config import get_settings
            self.base_url = get_settings().signature_service_url.rstrip('/')

        self.client = httpx.AsyncClient(timeout=timeout)
        logger.info(f"SignatureClient initialized with base_url: {self.base_url}")

    async def close(self):
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def send_for_signature(
        self, order_id: str, signer_email: str, signer_name: str
    ) -> Optional[Dict[str, Any]]:
        """
        Send an order confirmation for customer signature.

        Returns the signature request (signature_request_id, status) or None
        when dispatch failed.
        """
        try:
            payload = {
                "so_id": order_id,
                "signer_email": signer_email,
                "signer_name": signer_name,
            }
            response = await self.client.post(
                f"{self.base_url}/api/v1/signatures/order-confirmations",
                json=payload,
                headers=InternalServiceAuth.get_internal_service_headers(),
            )
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Failed to send order {order_id} for signature: {e.response.status_code}")
            return None
        except Exception as e:
            logger.error(f"Error sending order {order_id} for signature: {e}")
            return None

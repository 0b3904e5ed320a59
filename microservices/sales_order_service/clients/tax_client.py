"""
External Tax Calculator Client for Sales Order Service

Used for every jurisdiction without a domestic rule table (US and others).
"""

import httpx
import logging
from typing import Optional, Dict, Any

from core.internal_service_auth import InternalServiceAuth

logger = logging.getLogger(__name__)


class TaxCalculatorClient:
    """Client for the external tax calculator"""

    def __init__(self, base_url: Optional[str] = None, timeout: float = 30.0):
        if base_url:
            self.base_url = base_url.rstrip('/')
        else:
            from core.config import get_settings
            self.base_url = get_settings().tax_service_url.rstrip('/')

        self.client = httpx.AsyncClient(timeout=timeout)
        logger.info(f"TaxCalculatorClient initialized with base_url: {self.base_url}")

    async def close(self):
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def calculate(self, order_data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Calculate tax for an order.

        Returns the calculator response, which carries `fallback` and
        `taxCalculation.message` when the jurisdiction is not covered, or
        None when the calculator could not be reached.
        """
        try:
            response = await self.client.post(
                f"{self.base_url}/api/v1/tax/calculate",
                json={"orderData": order_data},
                headers=InternalServiceAuth.get_internal_service_headers(),
            )
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Failed to calculate tax: {e.response.status_code}")
            return None
        except Exception as e:
            logger.error(f"Error calculating tax: {e}")
            return None

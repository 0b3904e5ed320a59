#!/usr/bin/env python3
"""
Core Module for the Sales Order Service

Shared infrastructure used by the sales order microservice.

COMPONENTS:
    - config/: Environment-driven configuration (dotenv + dataclass configs)
    - logger.py: Service logger setup
    - nats_client.py: NATS JetStream event bus
    - auth_dependencies.py: FastAPI session/tenant header dependencies

USAGE:
    from core.config import get_settings
    from core.logger import setup_service_logger

    settings = get_settings()
    logger = setup_service_logger("sales_order_service")
"""

__version__ = "1.0.0"

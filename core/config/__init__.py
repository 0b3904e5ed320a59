#!/usr/bin/env python3
"""Modular configuration system for the sales order service

Configuration hierarchy:
- logging_config: Logging configuration
- sales_order_config: Sales order service settings (database, collaborators,
  company origin address, approval roles)
"""
import os
from dotenv import load_dotenv
from .logging_config import LoggingConfig
from .sales_order_config import SalesOrderServiceConfig, OriginAddressConfig

# Load environment file based on ENV
env = os.getenv("ENV") or os.getenv("ENVIRONMENT", "development")
env_files = {
    "development": "deployment/environments/dev.env",
    "dev": "deployment/environments/dev.env",
    "testing": "deployment/environments/test.env",
    "test": "deployment/environments/test.env",
    "staging": "deployment/environments/staging.env",
    "production": "deployment/environments/production.env",
}
env_file = env_files.get(env, "deployment/environments/dev.env")
load_dotenv(env_file, override=False)

# Create global settings instance
settings = SalesOrderServiceConfig.from_env()

def get_settings() -> SalesOrderServiceConfig:
    """Get global settings instance"""
    return settings

def reload_settings() -> SalesOrderServiceConfig:
    """Reload settings from environment"""
    global settings
    settings = SalesOrderServiceConfig.from_env()
    return settings

__all__ = [
    'SalesOrderServiceConfig',
    'OriginAddressConfig',
    'LoggingConfig',
    'get_settings',
    'reload_settings',
    'settings',
]

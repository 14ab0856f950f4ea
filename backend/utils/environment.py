"""
Environment Configuration Utility

Provides environment detection for feature gating.

ENVIRONMENT values:
- production: Diagnostics disabled, db_init requires explicit confirmation
- development: Diagnostics available when enabled
- test: Same as development, used by automated tests
"""
import os
import logging

# Valid environment values
VALID_ENVIRONMENTS = {"production", "development", "test"}


def get_environment() -> str:
    """Current environment, read at call time (default to development)."""
    environment = os.environ.get("ENVIRONMENT", "development").lower()
    if environment not in VALID_ENVIRONMENTS:
        logging.warning(f"Invalid ENVIRONMENT '{environment}', defaulting to 'development'")
        return "development"
    return environment


ENVIRONMENT = get_environment()


def is_production() -> bool:
    """Check if running in production environment."""
    return get_environment() == "production"
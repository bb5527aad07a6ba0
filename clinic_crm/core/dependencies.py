"""
FastAPI dependency injection module for the Clinic CRM backend.

Key Dependencies Provided:
- get_settings_dependency: Returns the cached Settings singleton
- verify_cron_secret: Guards scheduled endpoints with the shared cron secret
- CronAuthDep: Annotated alias for scheduled endpoints

Usage Examples:
    @router.post("/churn/predict")
    async def predict(_: CronAuthDep):
        ...

Tests swap the settings through app.dependency_overrides[get_settings_dependency].
"""

import hmac
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException

from clinic_crm.core.config import Settings, get_settings


# =============================================================================
# Settings Dependency
# =============================================================================

def get_settings_dependency() -> Settings:
    """Return the Settings singleton instance."""
    return get_settings()


# =============================================================================
# Scheduled Call Authentication
# =============================================================================

async def verify_cron_secret(
    settings: Annotated[Settings, Depends(get_settings_dependency)],
    x_cron_secret: Annotated[Optional[str], Header()] = None,
) -> None:
    """
    Reject scheduled calls that do not carry the configured cron secret.

    When CRON_SECRET is not configured every caller is accepted, which keeps
    local development and manual triggering simple.

    Raises:
        HTTPException: 401 if a secret is configured and the header does not match.
    """
    if not settings.cron_secret:
        return

    if x_cron_secret is None or not hmac.compare_digest(x_cron_secret, settings.cron_secret):
        raise HTTPException(status_code=401, detail="Unauthorized")


# =============================================================================
# Type Aliases for Dependency Injection
# =============================================================================

CronAuthDep = Annotated[None, Depends(verify_cron_secret)]

"""
Core infrastructure for the Clinic CRM backend.

Exposes configuration, the asyncpg pool lifecycle and FastAPI dependencies:

    from clinic_crm.core import get_settings, get_db_pool, CronAuthDep
"""

# =============================================================================
# Re-exports from clinic_crm.core.config
# =============================================================================

from clinic_crm.core.config import Settings, get_settings

# =============================================================================
# Re-exports from clinic_crm.core.database
# =============================================================================

from clinic_crm.core.database import init_db, close_db, get_db_pool

# =============================================================================
# Re-exports from clinic_crm.core.dependencies
# =============================================================================

from clinic_crm.core.dependencies import (
    get_settings_dependency,
    verify_cron_secret,
    CronAuthDep,
)

__all__ = [
    # Configuration management (from config.py)
    'Settings',
    'get_settings',
    # Database pool lifecycle (from database.py)
    'init_db',
    'close_db',
    'get_db_pool',
    # FastAPI dependency injection (from dependencies.py)
    'get_settings_dependency',
    'verify_cron_secret',
    'CronAuthDep',
]

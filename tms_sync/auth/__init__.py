from tms_sync.auth.context import SuperAdminContext
from tms_sync.auth.dependencies import (
    get_current_super_admin,
    get_engine_context,
    require_scheduler_token,
)
from tms_sync.auth.jwt import create_super_admin_token

__all__ = [
    "SuperAdminContext",
    "get_current_super_admin",
    "get_engine_context",
    "require_scheduler_token",
    "create_super_admin_token",
]

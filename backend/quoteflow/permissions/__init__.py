# Overview: Permission system package.
# Re-exports all public APIs.

from .categories import PermissionCategory
from .definitions import (
    PERMISSION_DEFINITIONS,
    QUOTATION_PERMISSIONS,
    ORDER_PERMISSIONS,
    PAYMENT_PERMISSIONS,
    SYSTEM_PERMISSIONS,
    DEFAULT_ROLES,
    DEFAULT_ROLE_PERMISSIONS,
)
from .helpers import (
    get_all_permission_codes,
    validate_permission_code,
)

__all__ = [
    "PermissionCategory",
    "PERMISSION_DEFINITIONS",
    "QUOTATION_PERMISSIONS",
    "ORDER_PERMISSIONS",
    "PAYMENT_PERMISSIONS",
    "SYSTEM_PERMISSIONS",
    "DEFAULT_ROLES",
    "DEFAULT_ROLE_PERMISSIONS",
    "get_all_permission_codes",
    "validate_permission_code",
]

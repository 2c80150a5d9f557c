# Overview: Permission category constants for grouping related permissions.


class PermissionCategory:
    """Permission categories for organization and UI display."""
    QUOTATIONS = "QUOTATIONS"
    ORDERS = "ORDERS"
    PAYMENTS = "PAYMENTS"
    SYSTEM = "SYSTEM"

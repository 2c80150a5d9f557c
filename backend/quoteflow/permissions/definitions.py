# Overview: All permission definitions organized by category, plus the role grants.
# Each permission is defined as: (code, name, description, category)

from .categories import PermissionCategory


# -- QUOTATIONS --

QUOTATION_PERMISSIONS = [
    (
        "REQUEST_QUOTATION",
        "Request Quotation",
        "Create, edit and submit own quotation requests",
        PermissionCategory.QUOTATIONS,
    ),
    (
        "DECIDE_QUOTATION",
        "Decide Quotation",
        "Approve, reject or request revision of own issued quotations",
        PermissionCategory.QUOTATIONS,
    ),
    (
        "VIEW_ALL_QUOTATIONS",
        "View All Quotations",
        "View quotations of every buyer",
        PermissionCategory.QUOTATIONS,
    ),
    (
        "ISSUE_QUOTATION",
        "Issue Quotation",
        "Price and issue submitted quotations, or flag needed adjustments",
        PermissionCategory.QUOTATIONS,
    ),
]


# -- ORDERS --

ORDER_PERMISSIONS = [
    (
        "VIEW_ALL_ORDERS",
        "View All Orders",
        "View sales orders of every buyer",
        PermissionCategory.ORDERS,
    ),
]


# -- PAYMENTS --

PAYMENT_PERMISSIONS = [
    (
        "SUBMIT_PAYMENT_PROOF",
        "Submit Payment Proof",
        "Attach payment proofs to own sales orders",
        PermissionCategory.PAYMENTS,
    ),
    (
        "VERIFY_PAYMENT",
        "Verify Payment",
        "Verify or reject submitted payment proofs",
        PermissionCategory.PAYMENTS,
    ),
]


# -- SYSTEM --

SYSTEM_PERMISSIONS = [
    (
        "SYSTEM_ADMIN",
        "System Administration",
        "Full system access",
        PermissionCategory.SYSTEM,
    ),
]


PERMISSION_DEFINITIONS = (
    QUOTATION_PERMISSIONS
    + ORDER_PERMISSIONS
    + PAYMENT_PERMISSIONS
    + SYSTEM_PERMISSIONS
)


DEFAULT_ROLES = [
    ("buyer", "Business account requesting quotations"),
    ("staff", "Reviews, prices and issues quotations; verifies payments"),
    ("admin", "Full system access"),
]


DEFAULT_ROLE_PERMISSIONS = {
    "buyer": [
        "REQUEST_QUOTATION",
        "DECIDE_QUOTATION",
        "SUBMIT_PAYMENT_PROOF",
    ],
    "staff": [
        "VIEW_ALL_QUOTATIONS",
        "ISSUE_QUOTATION",
        "VIEW_ALL_ORDERS",
        "VERIFY_PAYMENT",
    ],
    "admin": [perm[0] for perm in PERMISSION_DEFINITIONS],
}

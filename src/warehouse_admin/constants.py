"""Enumerations shared across the warehouse admin modules.

The data access layer, the business rules, and the CLI all read their
identifiers from here so a status or sheet name is spelled in one place.
"""

from __future__ import annotations

from enum import Enum


# Workbook layout version expected by all layers.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Prefix of every workflow number, followed by MMYY and a sequence.
WORKFLOW_PREFIX = "WF"

# Vendor number granting visibility over every vendor.
ALL_VENDORS = "ALL"

# Shortest password accepted for any account, the seeded admin included.
MIN_PASSWORD_LENGTH = 8


class TransactionType(str, Enum):
    """Direction of a stock movement."""

    INBOUND = "inbound"
    OUTBOUND = "outbound"


class TransactionStatus(str, Enum):
    """Lifecycle states of a workflow."""

    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class BillingStatus(str, Enum):
    """Lifecycle states of a vendor invoice."""

    DRAFT = "draft"
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class UserRole(str, Enum):
    """Roles used to gate access to features."""

    ADMIN = "admin"
    STAFF = "staff"
    VENDOR = "vendor"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    PRODUCTS = "Products"
    TRANSACTIONS = "Transactions"
    BILLINGS = "Billings"
    USERS = "Users"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "WORKFLOW_PREFIX",
    "ALL_VENDORS",
    "TransactionType",
    "TransactionStatus",
    "BillingStatus",
    "UserRole",
    "SheetName",
]

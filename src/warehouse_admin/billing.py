"""Vendor billing records.

Billings are independent of the catalog and the workflow log; they point at a
vendor only through the ``vendor_number`` string.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Iterable, List, Optional, Union

from . import core_logic, data_manager, log
from .constants import ALL_VENDORS, BillingStatus


@dataclass(frozen=True)
class BillingCommand:
    """User intent for creating or editing a billing."""

    invoice_number: str
    vendor_number: str
    amount: Union[Decimal, str, int, float]
    due_date: date
    notes: Optional[str] = None
    status: Optional[Union[BillingStatus, str]] = None
    timestamp: Optional[datetime] = None


def coerce_amount(value: Union[Decimal, str, int, float]) -> Decimal:
    """Return ``value`` as a non-negative :class:`~decimal.Decimal`.

    Raises:
        core_logic.ValidationError: If the value is not numeric or negative.
    """
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise core_logic.ValidationError([f"Amount must be a number, got '{value}'"]) from exc
    if not amount.is_finite() or amount < Decimal("0"):
        log.error("Billing amount validation failed: %s", value)
        raise core_logic.ValidationError(["Amount must be zero or positive"])
    return amount


def _coerce_status(value: Union[BillingStatus, str]) -> BillingStatus:
    try:
        return BillingStatus(value.lower() if isinstance(value, str) else value)
    except ValueError as exc:
        raise core_logic.ValidationError([f"Unknown billing status: {value}"]) from exc


def _validate(command: BillingCommand) -> tuple[Decimal, Optional[BillingStatus]]:
    errors: List[str] = []
    amount = Decimal("0")
    status = None
    if not command.invoice_number or not command.invoice_number.strip():
        errors.append("Invoice number is required")
    if not command.vendor_number or not command.vendor_number.strip():
        errors.append("Vendor number is required")
    try:
        amount = coerce_amount(command.amount)
    except core_logic.ValidationError as exc:
        errors.extend(exc.errors)
    if command.status is not None:
        try:
            status = _coerce_status(command.status)
        except core_logic.ValidationError as exc:
            errors.extend(exc.errors)
    if errors:
        log.warning("Billing validation failed: %s", "; ".join(errors))
        raise core_logic.ValidationError(errors)
    return amount, status


def list_billings(context: core_logic.RuntimeContext) -> List[data_manager.BillingRow]:
    return list(data_manager.iter_billings(context.workbook))


def get_billing(context: core_logic.RuntimeContext, billing_id: str) -> data_manager.BillingRow:
    """Resolve a billing by identifier.

    Raises:
        core_logic.MissingReferenceError: If ``billing_id`` is unknown.
    """
    for billing in list_billings(context):
        if billing.billing_id == billing_id:
            return billing
    log.warning("Billing lookup failed for id '%s'", billing_id)
    raise core_logic.MissingReferenceError(f"Unknown billing id: {billing_id}")


def filter_billings(
    context: core_logic.RuntimeContext,
    *,
    vendor_numbers: Iterable[str] = (ALL_VENDORS,),
    status: Optional[Union[BillingStatus, str]] = None,
    search: Optional[str] = None,
) -> List[data_manager.BillingRow]:
    """Return visible billings, newest first.

    ``vendor_numbers`` comes from :func:`accounts.allowed_vendor_numbers`;
    ``"ALL"`` lifts the vendor restriction. ``search`` matches the invoice and
    vendor numbers case-insensitively.
    """
    allowed = set(vendor_numbers)
    wanted_status = _coerce_status(status).value if status is not None else None
    needle = search.lower() if search else ""
    results = []
    for billing in list_billings(context):
        if ALL_VENDORS not in allowed and billing.vendor_number not in allowed:
            continue
        if wanted_status is not None and billing.status != wanted_status:
            continue
        if needle and needle not in f"{billing.invoice_number} {billing.vendor_number}".lower():
            continue
        results.append(billing)
    results.sort(key=lambda billing: billing.created_at, reverse=True)
    return results


def add_billing(context: core_logic.RuntimeContext, command: BillingCommand) -> data_manager.BillingRow:
    """Record a new billing. New billings start ``pending`` unless told otherwise.

    Raises:
        core_logic.ValidationError: If a field is missing or the amount is
            invalid.
    """
    amount, status = _validate(command)
    timestamp = core_logic.resolve_timestamp(command.timestamp)
    billing = data_manager.BillingRow(
        billing_id=core_logic.generate_record_id(),
        invoice_number=command.invoice_number.strip(),
        vendor_number=command.vendor_number.strip(),
        amount=amount,
        status=(status or BillingStatus.PENDING).value,
        due_date=command.due_date,
        paid_at=None,
        notes=command.notes or None,
        created_at=timestamp,
        updated_at=timestamp,
    )
    data_manager.append_billing(context.workbook, billing)
    log.info("Added billing '%s' for vendor '%s' (amount=%s)", billing.invoice_number, billing.vendor_number, amount)
    return billing


def update_billing(
    context: core_logic.RuntimeContext, billing_id: str, command: BillingCommand
) -> data_manager.BillingRow:
    """Overwrite a billing's fields, keeping its status when none is given.

    Raises:
        core_logic.MissingReferenceError: If the billing is unknown.
        core_logic.ValidationError: If the new values are invalid.
    """
    current = get_billing(context, billing_id)
    amount, status = _validate(command)
    updated = replace(
        current,
        invoice_number=command.invoice_number.strip(),
        vendor_number=command.vendor_number.strip(),
        amount=amount,
        status=status.value if status is not None else current.status,
        due_date=command.due_date,
        notes=command.notes or None,
        updated_at=core_logic.resolve_timestamp(command.timestamp),
    )
    data_manager.replace_billing(context.workbook, updated)
    log.info("Updated billing '%s'", updated.invoice_number)
    return updated


def mark_billing_paid(
    context: core_logic.RuntimeContext, billing_id: str, *, timestamp: Optional[datetime] = None
) -> data_manager.BillingRow:
    """Set a billing to ``paid`` and stamp ``paid_at``."""
    moment = core_logic.resolve_timestamp(timestamp)
    paid = replace(
        get_billing(context, billing_id),
        status=BillingStatus.PAID.value,
        paid_at=moment,
        updated_at=moment,
    )
    data_manager.replace_billing(context.workbook, paid)
    log.info("Marked billing '%s' as paid", paid.invoice_number)
    return paid


def delete_billing(context: core_logic.RuntimeContext, billing_id: str) -> None:
    billing = get_billing(context, billing_id)
    data_manager.delete_row(context.workbook, data_manager.BILLINGS_SHEET, "BillingID", billing_id)
    log.info("Deleted billing '%s'", billing.invoice_number)

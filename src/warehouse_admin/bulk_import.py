"""Bulk workflow import from delimited text.

The accepted layout is a header row followed by one workflow per line::

    SKU,Quantity,ReferenceNumber,HandlerName,Notes
    SKU123,100,PO-2211,Dana,First pallet

Header names are matched case-insensitively (``reference number`` and
``handler name`` are accepted too) and the workflow type is chosen for the
whole file by the caller. Every line is validated before anything is written;
a single bad line rejects the batch.
"""

from __future__ import annotations

import csv
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Union

from . import core_logic, data_manager, log
from .constants import TransactionType

TEMPLATE_HEADERS = ["SKU", "Quantity", "ReferenceNumber", "HandlerName", "Notes"]

_HEADER_ALIASES: Mapping[str, str] = {
    "sku": "sku",
    "quantity": "quantity",
    "referencenumber": "reference_number",
    "reference number": "reference_number",
    "handlername": "handler_name",
    "handler name": "handler_name",
    "notes": "notes",
}


@dataclass(frozen=True)
class ImportRow:
    """One parsed data line, before validation."""

    line_number: int
    sku: str
    quantity_text: str
    reference_number: str
    handler_name: str
    notes: str


@dataclass(frozen=True)
class ResolvedRow:
    """A validated line bound to its catalog product."""

    line_number: int
    product: data_manager.ProductRow
    quantity: int
    reference_number: str
    handler_name: str
    notes: str


def read_import_file(path: Path) -> str:
    """Return the text of ``path``, tolerating a UTF-8 byte order mark."""

    return Path(path).expanduser().read_text(encoding="utf-8-sig")


def parse_transaction_csv(text: str) -> List[ImportRow]:
    """Split ``text`` into :class:`ImportRow` records.

    Values map to headers by position; unrecognized columns are ignored and
    missing trailing values read as empty strings. Blank lines are skipped
    but still count towards the reported line numbers.

    Raises:
        core_logic.ValidationError: If the text has no header row.
    """

    lines = text.splitlines()
    if not lines or not lines[0].strip():
        raise core_logic.ValidationError(["The file is empty or has no header row"])

    header_cells = next(csv.reader([lines[0]]))
    fields: List[Optional[str]] = [_HEADER_ALIASES.get(cell.strip().lower()) for cell in header_cells]

    rows: List[ImportRow] = []
    for line_number, line in enumerate(lines[1:], start=2):
        if not line.strip():
            continue
        values = [value.strip() for value in next(csv.reader([line]))]
        record: Dict[str, str] = {}
        for index, name in enumerate(fields):
            if name is None:
                continue
            record[name] = values[index] if index < len(values) else ""
        rows.append(
            ImportRow(
                line_number=line_number,
                sku=record.get("sku", ""),
                quantity_text=record.get("quantity", ""),
                reference_number=record.get("reference_number", ""),
                handler_name=record.get("handler_name", ""),
                notes=record.get("notes", ""),
            )
        )
    return rows


def _parse_quantity(text: str) -> Optional[int]:
    try:
        value = Decimal(text)
    except (InvalidOperation, ValueError):
        return None
    if not value.is_finite() or value <= 0 or value != value.to_integral_value():
        return None
    return int(value)


def validate_import_rows(
    rows: Sequence[ImportRow],
    transaction_type: TransactionType,
    products_by_sku: Mapping[str, data_manager.ProductRow],
) -> tuple[List[ResolvedRow], List[str]]:
    """Check every row and collect all problems instead of stopping early.

    Args:
        rows (Sequence[ImportRow]): Parsed lines.
        transaction_type (TransactionType): Type applied to the whole batch.
        products_by_sku (Mapping[str, ProductRow]): Catalog keyed by
            lower-cased SKU.

    Returns:
        tuple[list[ResolvedRow], list[str]]: Rows that passed, and one message
            per failed check prefixed with its line number.
    """

    resolved: List[ResolvedRow] = []
    errors: List[str] = []
    for row in rows:
        prefix = f"Line {row.line_number}"
        row_errors: List[str] = []

        product = None
        if not row.sku:
            row_errors.append(f"{prefix}: SKU is required")
        else:
            product = products_by_sku.get(row.sku.lower())
            if product is None:
                row_errors.append(f"{prefix}: Product with SKU \"{row.sku}\" not found")

        quantity = _parse_quantity(row.quantity_text)
        if quantity is None:
            row_errors.append(f"{prefix}: Quantity must be a positive whole number")
        if not row.reference_number:
            row_errors.append(f"{prefix}: Reference Number is required")
        if not row.handler_name:
            row_errors.append(f"{prefix}: Handler Name is required")

        if (
            transaction_type is TransactionType.OUTBOUND
            and product is not None
            and quantity is not None
            and product.quantity < quantity
        ):
            row_errors.append(
                f"{prefix}: Insufficient quantity for SKU {product.sku} (available: {product.quantity})"
            )

        if row_errors:
            errors.extend(row_errors)
            continue
        resolved.append(
            ResolvedRow(
                line_number=row.line_number,
                product=product,
                quantity=quantity,
                reference_number=row.reference_number,
                handler_name=row.handler_name,
                notes=row.notes,
            )
        )
    return resolved, errors


def import_transactions(
    context: core_logic.RuntimeContext,
    text: str,
    transaction_type: Union[TransactionType, str],
    *,
    timestamp: Optional[datetime] = None,
) -> List[data_manager.TransactionRow]:
    """Create one ``pending`` workflow per line of ``text``, all or nothing.

    Workflow numbers are allocated in file order, each one seeing the numbers
    handed out to the lines before it.

    Raises:
        core_logic.ValidationError: If the file is empty, has no data lines, or
            any line fails validation. Nothing is written in that case.
    """

    batch_type = core_logic.coerce_transaction_type(transaction_type)
    rows = parse_transaction_csv(text)
    if not rows:
        raise core_logic.ValidationError(["The file contains no data lines"])

    products_by_sku = {product.sku.lower(): product for product in core_logic.list_products(context)}
    resolved, errors = validate_import_rows(rows, batch_type, products_by_sku)
    if errors:
        log.warning("Bulk %s import rejected with %d error(s)", batch_type.value, len(errors))
        raise core_logic.ValidationError(errors)

    moment = core_logic.resolve_timestamp(timestamp)
    known = core_logic.list_transactions(context)
    created: List[data_manager.TransactionRow] = []
    for row in resolved:
        workflow_number = core_logic.next_workflow_number([*known, *created], moment)
        created.append(
            core_logic.build_pending_transaction(
                transaction_type=batch_type,
                product_id=row.product.product_id,
                quantity=row.quantity,
                workflow_number=workflow_number,
                timestamp=moment,
                reference_number=row.reference_number,
                handler_name=row.handler_name,
                notes=row.notes,
            )
        )

    for transaction in created:
        data_manager.append_transaction(context.workbook, transaction)
    core_logic.invalidate_cache(context, "transactions")
    log.info("Imported %d %s workflow(s)", len(created), batch_type.value)
    return created


def build_import_template(products: Sequence[data_manager.ProductRow]) -> str:
    """Return a sample CSV using the first catalog SKU when there is one."""

    sku = products[0].sku if products else "SKU123"
    lines = [
        ",".join(TEMPLATE_HEADERS),
        f"{sku},100,REF-001,Handler Name,Sample request",
    ]
    return "\n".join(lines)

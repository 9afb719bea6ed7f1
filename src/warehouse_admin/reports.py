"""CSV exports of the catalog, the workflow log and user accounts.

Rows are joined with plain commas and no quoting, which keeps the files
readable by simple spreadsheet imports. A value that itself contains a comma
would shift every column after it, so it is rejected instead.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, time
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from . import data_manager, log

STORAGE_HEADERS = ["Date", "SKU", "Name", "Quantity", "CBM"]
INVENTORY_HEADERS = [
    "SKU",
    "Name",
    "Quantity",
    "Min Stock Level",
    "Location",
    "Vendor Number",
    "CBM",
    "Status",
]
TRANSACTION_HEADERS = [
    "Date",
    "Type",
    "SKU",
    "Product Name",
    "Quantity",
    "Reference Number",
    "Handler",
    "Status",
]
USER_HEADERS = ["Name", "Email", "Role", "Vendor Number", "Status", "Last Login"]

LOW_STOCK = "Low Stock"
NORMAL_STOCK = "Normal"
UNKNOWN_SKU = "N/A"
UNKNOWN_PRODUCT = "Unknown Product"


def _join_row(values: Iterable[object]) -> str:
    cells: List[str] = []
    for value in values:
        text = "" if value is None else str(value)
        if "," in text:
            log.error("Report value contains a comma: %r", text)
            raise ValueError(f"Report value may not contain a comma: {text!r}")
        cells.append(text)
    return ",".join(cells)


def _render(headers: Sequence[str], rows: Iterable[Sequence[object]]) -> str:
    return "\n".join([_join_row(headers), *(_join_row(row) for row in rows)])


def generate_storage_report(products: Sequence[data_manager.ProductRow], *, as_of: Optional[date] = None) -> str:
    """Snapshot of every product's quantity and volume, stamped with ``as_of``."""
    stamp = (as_of or datetime.now(UTC).date()).isoformat()
    return _render(
        STORAGE_HEADERS,
        ([stamp, product.sku, product.name, product.quantity, product.cbm] for product in products),
    )


def generate_inventory_report(products: Sequence[data_manager.ProductRow]) -> str:
    return _render(
        INVENTORY_HEADERS,
        (
            [
                product.sku,
                product.name,
                product.quantity,
                product.min_stock_level,
                product.location,
                product.vendor_number,
                product.cbm,
                LOW_STOCK if product.is_low_stock else NORMAL_STOCK,
            ]
            for product in products
        ),
    )


def generate_transaction_report(
    transactions: Sequence[data_manager.TransactionRow],
    products: Sequence[data_manager.ProductRow],
    start: date,
    end: date,
) -> str:
    """Workflows created between ``start`` and the end of ``end`` (inclusive).

    Workflows whose product has been deleted are still listed, with
    ``N/A`` as SKU and ``Unknown Product`` as name.
    """
    start_at = datetime.combine(start, time.min, tzinfo=UTC)
    end_at = datetime.combine(end, time.max, tzinfo=UTC)
    by_id = {product.product_id: product for product in products}

    rows = []
    for transaction in transactions:
        if not start_at <= transaction.created_at <= end_at:
            continue
        product = by_id.get(transaction.product_id)
        rows.append(
            [
                transaction.created_at.date().isoformat(),
                transaction.transaction_type,
                product.sku if product else UNKNOWN_SKU,
                product.name if product else UNKNOWN_PRODUCT,
                transaction.quantity,
                transaction.reference_number,
                transaction.handler_name,
                transaction.status,
            ]
        )
    log.debug("Transaction report %s..%s selected %d row(s)", start, end, len(rows))
    return _render(TRANSACTION_HEADERS, rows)


def generate_user_report(users: Sequence[data_manager.UserRow]) -> str:
    return _render(
        USER_HEADERS,
        (
            [
                user.name,
                user.email,
                user.role,
                user.vendor_number or "",
                "Suspended" if user.is_suspended else "Active",
                user.last_login.isoformat() if user.last_login else "Never",
            ]
            for user in users
        ),
    )


def write_report(destination: Path, content: str) -> Path:
    """Write ``content`` to ``destination``, creating parent folders."""
    target = Path(destination).expanduser()
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content + "\n", encoding="utf-8")
    log.info("Wrote report to %s", target)
    return target

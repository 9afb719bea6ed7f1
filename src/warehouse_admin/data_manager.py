"""Data access layer for the warehouse admin workbook.

This module provides low-level helpers that read from and write to the
master workbook. Business rules belong in :mod:`warehouse_admin.core_logic`
and its sibling modules.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: loading structured records and appending, replacing or
   deleting individual rows.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Sequence, TypeVar

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import SheetName


CONFIG_FILE_NAME = "config.ini"
PRODUCTS_SHEET = SheetName.PRODUCTS.value
TRANSACTIONS_SHEET = SheetName.TRANSACTIONS.value
BILLINGS_SHEET = SheetName.BILLINGS.value
USERS_SHEET = SheetName.USERS.value

DEFAULT_LOOKBACK_DAYS = 30
DEFAULT_TREND_WINDOW_DAYS = 15

RowT = TypeVar("RowT")


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    warehouse_name: str
    schema_version: str
    admin_email: str
    lookback_days: int = DEFAULT_LOOKBACK_DAYS
    trend_window_days: int = DEFAULT_TREND_WINDOW_DAYS


def compute_cbm(quantity: int, unit_cbm: Decimal) -> Decimal:
    """Return the total volume held by ``quantity`` units of ``unit_cbm`` each."""

    return Decimal(quantity) * unit_cbm


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    product_id: str
    sku: str
    name: str
    quantity: int
    min_stock_level: int
    unit_cbm: Decimal
    location: str
    vendor_number: str
    created_at: datetime
    updated_at: datetime

    @property
    def cbm(self) -> Decimal:
        return compute_cbm(self.quantity, self.unit_cbm)

    @property
    def is_low_stock(self) -> bool:
        return self.quantity <= self.min_stock_level


@dataclass(frozen=True)
class TransactionRow:
    """In-memory view of a row from the ``Transactions`` sheet."""

    transaction_id: str
    workflow_number: str
    transaction_type: str
    product_id: str
    quantity: int
    status: str
    reference_number: Optional[str]
    handler_name: Optional[str]
    notes: Optional[str]
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class BillingRow:
    """In-memory view of a row from the ``Billings`` sheet."""

    billing_id: str
    invoice_number: str
    vendor_number: str
    amount: Decimal
    status: str
    due_date: date
    paid_at: Optional[datetime]
    notes: Optional[str]
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class UserRow:
    """In-memory view of a row from the ``Users`` sheet."""

    user_id: str
    email: str
    name: str
    role: str
    vendor_number: Optional[str]
    password_hash: Optional[str]
    is_suspended: bool
    created_at: datetime
    last_login: Optional[datetime]


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute.

    Returns:
        configparser.ConfigParser: Parser containing the raw configuration.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` and ``[Defaults]`` entries are mandatory. The ``[Dashboard]``
    section is optional and falls back to a 30 day lookback split into 15 day
    halves. Relative ``DataFile`` paths are anchored to ``base_path`` (or the
    current working directory) and resolved.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to anchor relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If the dashboard windows are not positive or the trend
            window exceeds the lookback.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        warehouse_name = parser.get("System", "WarehouseName")
        schema_version = parser.get("System", "SchemaVersion")
        admin_email = parser.get("Defaults", "AdminEmail")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    lookback_days = parser.getint("Dashboard", "LookbackDays", fallback=DEFAULT_LOOKBACK_DAYS)
    trend_window_days = parser.getint("Dashboard", "TrendWindowDays", fallback=DEFAULT_TREND_WINDOW_DAYS)
    if lookback_days <= 0 or trend_window_days <= 0 or trend_window_days > lookback_days:
        raise ValueError(
            f"Invalid dashboard windows: lookback={lookback_days}, trend window={trend_window_days}"
        )

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        warehouse_name=warehouse_name,
        schema_version=schema_version,
        admin_email=admin_email,
        lookback_days=lookback_days,
        trend_window_days=trend_window_days,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the master Excel workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    wb = openpyxl.load_workbook(data_file)
    return wb


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to ``destination``, creating parent folders."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def _iter_sheet(workbook: Workbook, sheet_name: str, deserializer: Callable[[Sequence[object]], RowT]) -> Iterable[RowT]:
    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield deserializer(raw)


def iter_products(workbook: Workbook) -> Iterable[ProductRow]:
    """Iterate over product records stored on the ``Products`` worksheet.

    The header row and fully empty rows are skipped; every other row is
    converted through :func:`deserialize_product`.
    """

    return _iter_sheet(workbook, PRODUCTS_SHEET, deserialize_product)


def iter_transactions(workbook: Workbook) -> Iterable[TransactionRow]:
    """Stream workflow records from the ``Transactions`` worksheet in sheet order."""

    return _iter_sheet(workbook, TRANSACTIONS_SHEET, deserialize_transaction)


def iter_billings(workbook: Workbook) -> Iterable[BillingRow]:
    """Stream billing records, re-hydrating due dates and amounts."""

    return _iter_sheet(workbook, BILLINGS_SHEET, deserialize_billing)


def iter_users(workbook: Workbook) -> Iterable[UserRow]:
    return _iter_sheet(workbook, USERS_SHEET, deserialize_user)


def append_product(workbook: Workbook, record: ProductRow) -> None:
    """Append a product record to the ``Products`` worksheet."""

    workbook[PRODUCTS_SHEET].append(serialize_product(record))


def append_transaction(workbook: Workbook, record: TransactionRow) -> None:
    """Append a workflow record to the ``Transactions`` worksheet."""

    workbook[TRANSACTIONS_SHEET].append(serialize_transaction(record))


def append_billing(workbook: Workbook, record: BillingRow) -> None:
    """Append a billing record to the ``Billings`` worksheet."""

    workbook[BILLINGS_SHEET].append(serialize_billing(record))


def append_user(workbook: Workbook, record: UserRow) -> None:
    workbook[USERS_SHEET].append(serialize_user(record))


def replace_product(workbook: Workbook, record: ProductRow) -> None:
    """Overwrite the ``Products`` row whose ``ProductID`` matches ``record``.

    Raises:
        KeyError: If no row carries ``record.product_id``.
    """

    _replace_row(workbook, PRODUCTS_SHEET, "ProductID", record.product_id, serialize_product(record))


def replace_transaction(workbook: Workbook, record: TransactionRow) -> None:
    """Overwrite the ``Transactions`` row whose ``TransactionID`` matches ``record``.

    Raises:
        KeyError: If no row carries ``record.transaction_id``.
    """

    _replace_row(
        workbook,
        TRANSACTIONS_SHEET,
        "TransactionID",
        record.transaction_id,
        serialize_transaction(record),
    )


def replace_billing(workbook: Workbook, record: BillingRow) -> None:
    _replace_row(workbook, BILLINGS_SHEET, "BillingID", record.billing_id, serialize_billing(record))


def replace_user(workbook: Workbook, record: UserRow) -> None:
    _replace_row(workbook, USERS_SHEET, "UserID", record.user_id, serialize_user(record))


def delete_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> None:
    """Remove the first row of ``sheet_name`` whose ``key_column`` equals ``key_value``.

    Raises:
        KeyError: If the column or the row cannot be found.
    """

    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"Row not found in {sheet_name}: {key_value}")
    workbook[sheet_name].delete_rows(row_index)


def _replace_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str, values: Sequence[object]) -> None:
    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"Row not found in {sheet_name}: {key_value}")

    sheet = workbook[sheet_name]
    for col, value in enumerate(values, start=1):
        sheet.cell(row=row_index, column=col, value=value)


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title identifying the column that stores the
            lookup key.
        key_value (str): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    sheet = workbook[sheet_name]
    header_cells = list(sheet[1])
    header_map = {cell.value: idx + 1 for idx, cell in enumerate(header_cells)}
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]

    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        cell_value = row[key_col_index - 1]
        if cell_value is not None and str(cell_value) == key_value:
            return row_idx

    return None


def serialize_product(record: ProductRow) -> list[object]:
    """Convert a product dataclass into the worksheet column ordering.

    The ``Cbm`` column is written from :func:`compute_cbm` for people reading
    the sheet; :func:`deserialize_product` never reads it back.
    """

    return [
        record.product_id,
        record.sku,
        record.name,
        record.quantity,
        record.min_stock_level,
        record.unit_cbm,
        record.cbm,
        record.location,
        record.vendor_number,
        _datetime_to_text(record.created_at),
        _datetime_to_text(record.updated_at),
    ]


def serialize_transaction(record: TransactionRow) -> list[object]:
    return [
        record.transaction_id,
        record.workflow_number,
        record.transaction_type,
        record.product_id,
        record.quantity,
        record.status,
        record.reference_number,
        record.handler_name,
        record.notes,
        _datetime_to_text(record.created_at),
        _datetime_to_text(record.updated_at),
    ]


def serialize_billing(record: BillingRow) -> list[object]:
    """Convert a billing dataclass into worksheet order.

    The amount is coerced to :class:`~decimal.Decimal` on every write so text
    or float input never lands in the sheet.
    """

    return [
        record.billing_id,
        record.invoice_number,
        record.vendor_number,
        _to_decimal(record.amount, Decimal("0.00")),
        record.status,
        record.due_date.isoformat(),
        _datetime_to_text(record.paid_at),
        record.notes,
        _datetime_to_text(record.created_at),
        _datetime_to_text(record.updated_at),
    ]


def serialize_user(record: UserRow) -> list[object]:
    return [
        record.user_id,
        record.email,
        record.name,
        record.role,
        record.vendor_number,
        record.password_hash,
        record.is_suspended,
        _datetime_to_text(record.created_at),
        _datetime_to_text(record.last_login),
    ]


def deserialize_product(raw_row: Sequence[object]) -> ProductRow:
    """Convert a raw worksheet row into a strongly typed product record.

    Identifiers are coerced to ``str`` because Excel happily turns a numeric
    SKU into a number, and quantities become ``int`` for the same reason.
    """

    (
        product_id,
        sku,
        name,
        quantity_raw,
        min_stock_raw,
        unit_cbm_raw,
        _cbm,
        location,
        vendor_number,
        created_raw,
        updated_raw,
    ) = raw_row[:11]

    return ProductRow(
        product_id=str(product_id),
        sku=_to_text(sku),
        name=_to_text(name),
        quantity=_to_int(quantity_raw),
        min_stock_level=_to_int(min_stock_raw),
        unit_cbm=_to_decimal(unit_cbm_raw, Decimal("0")),
        location=_to_text(location),
        vendor_number=_to_text(vendor_number),
        created_at=_parse_datetime(created_raw),
        updated_at=_parse_datetime(updated_raw),
    )


def deserialize_transaction(raw_row: Sequence[object]) -> TransactionRow:
    (
        transaction_id,
        workflow_number,
        transaction_type,
        product_id,
        quantity_raw,
        status,
        reference_number,
        handler_name,
        notes,
        created_raw,
        updated_raw,
    ) = raw_row[:11]

    return TransactionRow(
        transaction_id=str(transaction_id),
        workflow_number=_to_text(workflow_number),
        transaction_type=_to_text(transaction_type),
        product_id=_to_text(product_id),
        quantity=_to_int(quantity_raw),
        status=_to_text(status),
        reference_number=_to_optional_text(reference_number),
        handler_name=_to_optional_text(handler_name),
        notes=_to_optional_text(notes),
        created_at=_parse_datetime(created_raw),
        updated_at=_parse_datetime(updated_raw),
    )


def deserialize_billing(raw_row: Sequence[object]) -> BillingRow:
    """Convert a raw worksheet row into a billing record.

    Dates are stored as ISO text but a user editing the sheet in Excel may
    leave real date cells behind; both are re-hydrated into ``date`` and
    ``datetime`` values here.
    """

    (
        billing_id,
        invoice_number,
        vendor_number,
        amount_raw,
        status,
        due_raw,
        paid_raw,
        notes,
        created_raw,
        updated_raw,
    ) = raw_row[:10]

    return BillingRow(
        billing_id=str(billing_id),
        invoice_number=_to_text(invoice_number),
        vendor_number=_to_text(vendor_number),
        amount=_to_decimal(amount_raw, Decimal("0.00")),
        status=_to_text(status),
        due_date=_parse_date(due_raw),
        paid_at=_parse_optional_datetime(paid_raw),
        notes=_to_optional_text(notes),
        created_at=_parse_datetime(created_raw),
        updated_at=_parse_datetime(updated_raw),
    )


def deserialize_user(raw_row: Sequence[object]) -> UserRow:
    (
        user_id,
        email,
        name,
        role,
        vendor_number,
        password_hash,
        is_suspended,
        created_raw,
        last_login_raw,
    ) = raw_row[:9]

    return UserRow(
        user_id=str(user_id),
        email=_to_text(email),
        name=_to_text(name),
        role=_to_text(role),
        vendor_number=_to_optional_text(vendor_number),
        password_hash=_to_optional_text(password_hash),
        is_suspended=bool(is_suspended),
        created_at=_parse_datetime(created_raw),
        last_login=_parse_optional_datetime(last_login_raw),
    )


def _to_text(value: object) -> str:
    return str(value) if value is not None else ""


def _to_optional_text(value: object) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _to_int(value: object) -> int:
    if value is None or value == "":
        return 0
    return int(Decimal(str(value)))


def _to_decimal(value: Any, default: Decimal) -> Decimal:
    if value is None or value == "":
        return default
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Not a decimal value: {value!r}") from exc


def _datetime_to_text(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_datetime(value: object) -> datetime:
    if value is None or value == "":
        log.warning("Missing timestamp in workbook row; using datetime.min")
        return datetime.min.replace(tzinfo=UTC)
    parsed = value if isinstance(value, datetime) else datetime.fromisoformat(str(value))
    # Naive cells come from manual edits in Excel; treat them as UTC.
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _parse_optional_datetime(value: object) -> Optional[datetime]:
    if value is None or value == "":
        return None
    return _parse_datetime(value)


def _parse_date(value: object) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])

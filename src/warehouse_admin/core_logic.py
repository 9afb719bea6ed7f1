"""Business logic layer for the warehouse admin back office.

This module owns the catalog and the workflow (stock movement) lifecycle. It
consumes the Data Access Layer (DAL) for all I/O while ensuring every
mutation passes through the domain rules:

* workflow numbers are derived from the existing log, never stored as a
  counter;
* workflows are created ``pending`` and move to exactly one terminal state;
* stock only changes when a workflow is completed, and ``cbm`` always follows
  ``quantity`` through :func:`data_manager.compute_cbm`.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import (
    EXPECTED_SCHEMA_VERSION,
    WORKFLOW_PREFIX,
    TransactionStatus,
    TransactionType,
)


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced product, workflow, billing or user is unknown."""


class ValidationError(BusinessRuleViolation):
    """Raised when one or more input fields are invalid.

    Every problem found is kept in :attr:`errors` so callers can show the full
    list instead of the first failure only.
    """

    def __init__(self, errors: Sequence[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class InsufficientStockError(BusinessRuleViolation):
    """Raised when an outbound workflow asks for more than is on hand."""


class InvalidTransitionError(BusinessRuleViolation):
    """Raised when a workflow is edited or moved out of a terminal state."""


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and workbook references used by the BLL."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class ProductCommand:
    """User intent for creating or overwriting a catalog product."""

    sku: str
    name: str
    quantity: int
    min_stock_level: int
    unit_cbm: Union[Decimal, str]
    location: str = ""
    vendor_number: str = ""
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class TransactionCommand:
    """User intent for opening an inbound or outbound workflow."""

    transaction_type: Union[TransactionType, str]
    product_id: str
    quantity: int
    reference_number: Optional[str] = None
    handler_name: Optional[str] = None
    notes: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class TransactionEdit:
    """Changes to a pending workflow. ``None`` keeps the current value."""

    product_id: Optional[str] = None
    quantity: Optional[int] = None
    reference_number: Optional[str] = None
    handler_name: Optional[str] = None
    notes: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class CompletionResult:
    """Workflow and product rows as written by :func:`complete_transaction`."""

    transaction: data_manager.TransactionRow
    product: data_manager.ProductRow


_SUFFIX_DIGITS = re.compile(r"\d+")


def resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current UTC time when it is ``None``.

    Naive values are read as UTC, matching how the workbook loader treats
    naive cells, so they compare cleanly with stored timestamps.
    """

    if candidate is None:
        return datetime.now(UTC)
    if candidate.tzinfo is None:
        return candidate.replace(tzinfo=UTC)
    return candidate


def generate_record_id() -> str:
    """Return a fresh opaque identifier for a new row."""

    return uuid.uuid4().hex


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return a mutable cache bucket dedicated to the supplied name.

    Buckets hold precomputed query results per sheet so repeated lookups do
    not re-scan the workbook.
    """

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict one or more cache buckets after mutating workbook state."""

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))

    for name in names:
        context._cache.pop(name, None)


def _ensure_products_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the product cache bucket on demand.

    Returns:
        dict[str, Any]: Bucket containing ``all`` products in sheet order, a
            ``by_id`` lookup and a ``by_sku`` lookup keyed by lower-cased SKU.
    """

    bucket = _get_cache_bucket(context, "products")
    if "all" not in bucket:
        all_products = list(data_manager.iter_products(context.workbook))
        bucket["all"] = all_products
        bucket["by_id"] = {product.product_id: product for product in all_products}
        bucket["by_sku"] = {product.sku.lower(): product for product in all_products}
        log.debug("Populated products cache with %d entries", len(all_products))
    return bucket


def _ensure_transactions_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "transactions")
    if "all" not in bucket:
        all_transactions = list(data_manager.iter_transactions(context.workbook))
        bucket["all"] = all_transactions
        bucket["by_id"] = {transaction.transaction_id: transaction for transaction in all_transactions}
        log.debug("Populated transactions cache with %d entries", len(all_transactions))
    return bucket


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook for the BLL.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Persist any in-memory workbook changes to the configured data file."""
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    A new :class:`RuntimeContext` is produced, so any cached data from the
    previous context is dropped along with the unsaved edits.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


def list_products(context: RuntimeContext) -> List[data_manager.ProductRow]:
    """Return a copy of the cached catalog in sheet order."""
    return list(_ensure_products_cache(context)["all"])


def list_low_stock_products(context: RuntimeContext) -> List[data_manager.ProductRow]:
    """Return products whose quantity is at or below their minimum stock level."""
    return [product for product in list_products(context) if product.is_low_stock]


def get_product(context: RuntimeContext, product_id: str) -> data_manager.ProductRow:
    """Resolve a product record by its identifier.

    Raises:
        MissingReferenceError: If ``product_id`` is absent from the workbook.
    """
    cache = _ensure_products_cache(context)
    try:
        return cache["by_id"][product_id]
    except KeyError as exc:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise MissingReferenceError(f"Unknown product id: {product_id}") from exc


def find_product_by_sku(context: RuntimeContext, sku: str) -> Optional[data_manager.ProductRow]:
    """Return the product whose SKU matches ``sku`` ignoring case, if any."""
    return _ensure_products_cache(context)["by_sku"].get(sku.strip().lower())


def coerce_unit_cbm(value: Union[Decimal, str, int, float]) -> Decimal:
    """Return ``value`` as a finite, non-negative per-unit volume.

    Raises:
        ValidationError: If the value is not a number, is NaN or infinite, or
            is negative.
    """
    try:
        unit_cbm = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError([f"Unit CBM must be a number, got '{value}'"]) from exc
    if not unit_cbm.is_finite():
        raise ValidationError([f"Unit CBM must be a finite number, got '{value}'"])
    if unit_cbm < Decimal("0"):
        raise ValidationError(["Unit CBM must be zero or positive"])
    return unit_cbm


def _validate_product_command(
    context: RuntimeContext,
    command: ProductCommand,
    *,
    product_id: Optional[str] = None,
) -> None:
    errors: List[str] = []
    if not command.sku or not command.sku.strip():
        errors.append("SKU is required")
    else:
        existing = find_product_by_sku(context, command.sku)
        if existing is not None and existing.product_id != product_id:
            errors.append(f"SKU '{command.sku}' already exists")
    if not command.name or not command.name.strip():
        errors.append("Name is required")
    if command.quantity < 0:
        errors.append("Quantity must be zero or positive")
    if command.min_stock_level < 0:
        errors.append("Minimum stock level must be zero or positive")
    try:
        coerce_unit_cbm(command.unit_cbm)
    except ValidationError as exc:
        errors.extend(exc.errors)
    if errors:
        log.warning("Product validation failed: %s", "; ".join(errors))
        raise ValidationError(errors)


def add_product(context: RuntimeContext, command: ProductCommand) -> data_manager.ProductRow:
    """Validate and append a new product to the catalog.

    Raises:
        ValidationError: If a field is missing or negative, or the SKU is
            already taken (case-insensitive).
    """
    _validate_product_command(context, command)
    timestamp = resolve_timestamp(command.timestamp)
    product = data_manager.ProductRow(
        product_id=generate_record_id(),
        sku=command.sku.strip(),
        name=command.name.strip(),
        quantity=int(command.quantity),
        min_stock_level=int(command.min_stock_level),
        unit_cbm=coerce_unit_cbm(command.unit_cbm),
        location=command.location,
        vendor_number=command.vendor_number,
        created_at=timestamp,
        updated_at=timestamp,
    )
    data_manager.append_product(context.workbook, product)
    invalidate_cache(context, "products")
    log.info("Added product '%s' (%s) with quantity %d", product.sku, product.product_id, product.quantity)
    return product


def update_product(context: RuntimeContext, product_id: str, command: ProductCommand) -> data_manager.ProductRow:
    """Overwrite a product with the values of a form edit.

    The quantity is replaced directly, not applied as a delta; ``cbm`` is
    derived from the new quantity exactly as for a completed workflow.

    Raises:
        MissingReferenceError: If ``product_id`` is unknown.
        ValidationError: If the new values are invalid.
    """
    current = get_product(context, product_id)
    _validate_product_command(context, command, product_id=product_id)
    updated = replace(
        current,
        sku=command.sku.strip(),
        name=command.name.strip(),
        quantity=int(command.quantity),
        min_stock_level=int(command.min_stock_level),
        unit_cbm=coerce_unit_cbm(command.unit_cbm),
        location=command.location,
        vendor_number=command.vendor_number,
        updated_at=resolve_timestamp(command.timestamp),
    )
    data_manager.replace_product(context.workbook, updated)
    invalidate_cache(context, "products")
    log.info("Updated product '%s' (quantity=%d, cbm=%s)", updated.sku, updated.quantity, updated.cbm)
    return updated


def delete_product(context: RuntimeContext, product_id: str) -> None:
    """Remove a product. Workflows referencing it are left untouched."""
    product = get_product(context, product_id)
    data_manager.delete_row(context.workbook, data_manager.PRODUCTS_SHEET, "ProductID", product_id)
    invalidate_cache(context, "products")
    log.info("Deleted product '%s' (%s)", product.sku, product_id)


# ---------------------------------------------------------------------------
# Workflow numbering
# ---------------------------------------------------------------------------


def workflow_prefix(now: datetime) -> str:
    """Return the ``WF{MM}{YY}-`` prefix for the month containing ``now``."""
    return f"{WORKFLOW_PREFIX}{now:%m%y}-"


def _workflow_sequence(workflow_number: Optional[str], prefix: str) -> Optional[int]:
    if not workflow_number or not workflow_number.startswith(prefix):
        return None
    match = _SUFFIX_DIGITS.match(workflow_number[len(prefix):])
    return int(match.group()) if match else 0


def next_workflow_number(existing: Iterable[data_manager.TransactionRow], now: datetime) -> str:
    """Derive the next workflow number for the month of ``now``.

    Only numbers carrying the current ``WF{MM}{YY}-`` prefix take part; a
    suffix that does not start with digits counts as 0. The result is the
    highest sequence plus one, zero-padded to three digits. Nothing is stored
    between calls, so the answer depends solely on ``existing``.

    >>> next_workflow_number([], datetime(2024, 4, 2))
    'WF0424-001'
    """
    prefix = workflow_prefix(now)
    sequences = [
        sequence
        for sequence in (_workflow_sequence(row.workflow_number, prefix) for row in existing)
        if sequence is not None
    ]
    highest = max(sequences, default=0)
    return f"{prefix}{highest + 1:03d}"


# ---------------------------------------------------------------------------
# Workflow lifecycle
# ---------------------------------------------------------------------------


def list_transactions(context: RuntimeContext) -> List[data_manager.TransactionRow]:
    """Return a copy of the cached workflow log in sheet order."""
    return list(_ensure_transactions_cache(context)["all"])


def get_transaction(context: RuntimeContext, transaction_id: str) -> data_manager.TransactionRow:
    """Retrieve a workflow row by its primary identifier.

    Raises:
        MissingReferenceError: If the log lacks the supplied identifier.
    """
    cache = _ensure_transactions_cache(context)
    try:
        return cache["by_id"][transaction_id]
    except KeyError as exc:
        log.warning("Transaction lookup failed for id '%s'", transaction_id)
        raise MissingReferenceError(f"Unknown transaction id: {transaction_id}") from exc


def find_transaction_by_workflow_number(
    context: RuntimeContext, workflow_number: str
) -> data_manager.TransactionRow:
    """Resolve a workflow by its human-facing ``WF`` number.

    Raises:
        MissingReferenceError: If no workflow carries the number.
    """
    for transaction in _ensure_transactions_cache(context)["all"]:
        if transaction.workflow_number == workflow_number:
            return transaction
    log.warning("Workflow lookup failed for number '%s'", workflow_number)
    raise MissingReferenceError(f"Unknown workflow number: {workflow_number}")


def filter_transactions(
    context: RuntimeContext,
    *,
    status: Optional[TransactionStatus] = None,
    transaction_type: Optional[TransactionType] = None,
    search: Optional[str] = None,
) -> List[data_manager.TransactionRow]:
    """Return workflows matching every supplied filter, newest first.

    ``search`` is matched case-insensitively against the product SKU, the
    product name, the workflow number and the vendor number.
    """
    products = _ensure_products_cache(context)["by_id"]
    needle = search.lower() if search else ""
    results: List[data_manager.TransactionRow] = []
    for transaction in list_transactions(context):
        if status is not None and transaction.status != TransactionStatus(status).value:
            continue
        if transaction_type is not None and transaction.transaction_type != TransactionType(transaction_type).value:
            continue
        if needle:
            product = products.get(transaction.product_id)
            haystack = " ".join(
                [
                    product.sku if product else "",
                    product.name if product else "",
                    transaction.workflow_number,
                    product.vendor_number if product else "",
                ]
            ).lower()
            if needle not in haystack:
                continue
        results.append(transaction)
    results.sort(key=lambda transaction: transaction.created_at, reverse=True)
    return results


def coerce_transaction_type(value: Union[TransactionType, str]) -> TransactionType:
    try:
        return TransactionType(value.lower() if isinstance(value, str) else value)
    except ValueError as exc:
        log.warning("Unsupported transaction type: %s", value)
        raise ValidationError([f"Type must be either 'inbound' or 'outbound', got '{value}'"]) from exc


def require_positive_quantity(quantity: int) -> None:
    """Validate that a workflow quantity is a whole number greater than zero.

    Raises:
        ValidationError: If ``quantity`` is zero, negative or fractional.
    """
    if quantity <= 0 or int(quantity) != quantity:
        log.error("Quantity validation failed: %s", quantity)
        raise ValidationError(["Quantity must be greater than 0"])


def require_stock_available(product: data_manager.ProductRow, quantity: int) -> None:
    """Ensure ``product`` holds at least ``quantity`` units.

    Raises:
        InsufficientStockError: If the catalog quantity is lower.
    """
    if product.quantity < quantity:
        log.warning(
            "Insufficient stock for SKU '%s': requested %d, available %d",
            product.sku,
            quantity,
            product.quantity,
        )
        raise InsufficientStockError(
            f"Insufficient quantity for SKU {product.sku} (available: {product.quantity})"
        )


def _require_pending(transaction: data_manager.TransactionRow, action: str) -> None:
    if transaction.status != TransactionStatus.PENDING.value:
        log.warning(
            "Cannot %s workflow '%s' in status '%s'",
            action,
            transaction.workflow_number,
            transaction.status,
        )
        raise InvalidTransitionError(
            f"Cannot {action} workflow {transaction.workflow_number}: status is {transaction.status}"
        )


def build_pending_transaction(
    *,
    transaction_type: TransactionType,
    product_id: str,
    quantity: int,
    workflow_number: str,
    timestamp: datetime,
    reference_number: Optional[str] = None,
    handler_name: Optional[str] = None,
    notes: Optional[str] = None,
) -> data_manager.TransactionRow:
    """Assemble a new ``pending`` workflow row without persisting it."""
    return data_manager.TransactionRow(
        transaction_id=generate_record_id(),
        workflow_number=workflow_number,
        transaction_type=transaction_type.value,
        product_id=product_id,
        quantity=int(quantity),
        status=TransactionStatus.PENDING.value,
        reference_number=reference_number or None,
        handler_name=handler_name or None,
        notes=notes or None,
        created_at=timestamp,
        updated_at=timestamp,
    )


def create_transaction(context: RuntimeContext, command: TransactionCommand) -> data_manager.TransactionRow:
    """Validate and append a new ``pending`` workflow.

    Stock is not touched here; inbound and outbound effects are deferred to
    :func:`complete_transaction`. Outbound requests must nevertheless fit in
    the current catalog quantity at creation time.

    Raises:
        ValidationError: If the type or quantity is invalid.
        MissingReferenceError: If the product does not exist.
        InsufficientStockError: If an outbound request exceeds stock.
    """
    transaction_type = coerce_transaction_type(command.transaction_type)
    require_positive_quantity(command.quantity)
    product = get_product(context, command.product_id)
    if transaction_type is TransactionType.OUTBOUND:
        require_stock_available(product, command.quantity)

    timestamp = resolve_timestamp(command.timestamp)
    workflow_number = next_workflow_number(list_transactions(context), timestamp)
    transaction = build_pending_transaction(
        transaction_type=transaction_type,
        product_id=product.product_id,
        quantity=command.quantity,
        workflow_number=workflow_number,
        timestamp=timestamp,
        reference_number=command.reference_number,
        handler_name=command.handler_name,
        notes=command.notes,
    )
    data_manager.append_transaction(context.workbook, transaction)
    invalidate_cache(context, "transactions")
    log.info(
        "Created %s workflow '%s' for SKU '%s' (quantity=%d)",
        transaction.transaction_type,
        transaction.workflow_number,
        product.sku,
        transaction.quantity,
    )
    return transaction


def edit_transaction(
    context: RuntimeContext, transaction_id: str, edit: TransactionEdit
) -> data_manager.TransactionRow:
    """Apply changes to a ``pending`` workflow, keeping its workflow number.

    Outbound stock sufficiency is not re-checked against an edited quantity;
    only creation enforces it.

    Raises:
        MissingReferenceError: If the workflow or the new product is unknown.
        InvalidTransitionError: If the workflow is no longer pending.
        ValidationError: If the new quantity is invalid.
    """
    current = get_transaction(context, transaction_id)
    _require_pending(current, "edit")
    product_id = current.product_id
    if edit.product_id is not None:
        product_id = get_product(context, edit.product_id).product_id
    quantity = current.quantity
    if edit.quantity is not None:
        require_positive_quantity(edit.quantity)
        quantity = int(edit.quantity)

    updated = replace(
        current,
        product_id=product_id,
        quantity=quantity,
        reference_number=edit.reference_number if edit.reference_number is not None else current.reference_number,
        handler_name=edit.handler_name if edit.handler_name is not None else current.handler_name,
        notes=edit.notes if edit.notes is not None else current.notes,
        updated_at=resolve_timestamp(edit.timestamp),
    )
    data_manager.replace_transaction(context.workbook, updated)
    invalidate_cache(context, "transactions")
    log.info("Edited workflow '%s' (quantity=%d)", updated.workflow_number, updated.quantity)
    return updated


def apply_completion(
    product: data_manager.ProductRow,
    transaction: data_manager.TransactionRow,
    *,
    timestamp: Optional[datetime] = None,
) -> data_manager.ProductRow:
    """Return ``product`` with the stock movement of ``transaction`` applied.

    Inbound adds, outbound subtracts. The result is not clamped at zero: stock
    may have been reduced by a direct edit since the outbound workflow was
    created and completion does not re-validate it.
    """
    if transaction.transaction_type == TransactionType.INBOUND.value:
        new_quantity = product.quantity + transaction.quantity
    else:
        new_quantity = product.quantity - transaction.quantity
    if new_quantity < 0:
        log.warning(
            "Completing workflow '%s' leaves SKU '%s' at negative stock %d",
            transaction.workflow_number,
            product.sku,
            new_quantity,
        )
    return replace(product, quantity=new_quantity, updated_at=resolve_timestamp(timestamp))


def complete_transaction(
    context: RuntimeContext, transaction_id: str, *, timestamp: Optional[datetime] = None
) -> CompletionResult:
    """Complete a ``pending`` workflow and apply it to the catalog.

    Raises:
        MissingReferenceError: If the workflow is unknown or its product has
            been deleted; the workflow stays pending in that case.
        InvalidTransitionError: If the workflow is not pending.
    """
    transaction = get_transaction(context, transaction_id)
    _require_pending(transaction, "complete")
    try:
        product = get_product(context, transaction.product_id)
    except MissingReferenceError:
        log.error(
            "Workflow '%s' references deleted product '%s'",
            transaction.workflow_number,
            transaction.product_id,
        )
        raise

    moment = resolve_timestamp(timestamp)
    updated_product = apply_completion(product, transaction, timestamp=moment)
    completed = replace(transaction, status=TransactionStatus.COMPLETED.value, updated_at=moment)
    data_manager.replace_product(context.workbook, updated_product)
    data_manager.replace_transaction(context.workbook, completed)
    invalidate_cache(context, "products", "transactions")
    log.info(
        "Completed %s workflow '%s': SKU '%s' quantity %d -> %d",
        completed.transaction_type,
        completed.workflow_number,
        product.sku,
        product.quantity,
        updated_product.quantity,
    )
    return CompletionResult(transaction=completed, product=updated_product)


def cancel_transaction(
    context: RuntimeContext, transaction_id: str, *, timestamp: Optional[datetime] = None
) -> data_manager.TransactionRow:
    """Cancel a ``pending`` workflow. Product stock is never touched.

    Raises:
        MissingReferenceError: If the workflow is unknown.
        InvalidTransitionError: If the workflow is not pending.
    """
    transaction = get_transaction(context, transaction_id)
    _require_pending(transaction, "cancel")
    cancelled = replace(
        transaction,
        status=TransactionStatus.CANCELLED.value,
        updated_at=resolve_timestamp(timestamp),
    )
    data_manager.replace_transaction(context.workbook, cancelled)
    invalidate_cache(context, "transactions")
    log.info("Cancelled workflow '%s'", cancelled.workflow_number)
    return cancelled

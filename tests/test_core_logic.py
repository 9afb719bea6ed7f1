"""Unit tests verifying the business logic layer.

Most tests patch the data access layer with mocks; a few run against a real
workbook where the interplay with the sheet matters.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import Mock

import pytest

from warehouse_admin import constants, core_logic, data_manager


@pytest.fixture
def patch_rows(monkeypatch):
    """Serve fixed product and workflow rows from the mocked data layer."""

    def _apply(products=(), transactions=()):
        monkeypatch.setattr(data_manager, "iter_products", Mock(return_value=list(products)))
        monkeypatch.setattr(data_manager, "iter_transactions", Mock(return_value=list(transactions)))
        appended = Mock(name="append_transaction")
        replaced_product = Mock(name="replace_product")
        replaced_transaction = Mock(name="replace_transaction")
        monkeypatch.setattr(data_manager, "append_transaction", appended)
        monkeypatch.setattr(data_manager, "replace_product", replaced_product)
        monkeypatch.setattr(data_manager, "replace_transaction", replaced_transaction)
        return appended, replaced_product, replaced_transaction

    return _apply


# ---------------------------------------------------------------------------
# Runtime/context management
# ---------------------------------------------------------------------------


def test_load_runtime_context_returns_context(monkeypatch, tmp_path):
    """load_runtime_context should assemble settings and workbook into a context."""

    config_path = tmp_path / "config.ini"
    parser = Mock(name="parser")
    parsed_settings = data_manager.ConfigSettings(
        data_file=tmp_path / "master.xlsx",
        warehouse_name="Warehouse",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        admin_email="admin@example.com",
    )
    workbook = Mock(name="workbook")

    find_config_file = Mock(return_value=config_path)
    read_config = Mock(return_value=parser)
    parse_settings = Mock(return_value=parsed_settings)
    open_workbook = Mock(return_value=workbook)

    monkeypatch.setattr(data_manager, "find_config_file", find_config_file)
    monkeypatch.setattr(data_manager, "read_config", read_config)
    monkeypatch.setattr(data_manager, "parse_settings", parse_settings)
    monkeypatch.setattr(data_manager, "open_workbook", open_workbook)

    context = core_logic.load_runtime_context(config_path)

    assert context.settings is parsed_settings
    assert context.workbook is workbook
    find_config_file.assert_called_once_with(config_path)
    read_config.assert_called_once_with(config_path.resolve())
    parse_settings.assert_called_once_with(parser, base_path=config_path.resolve().parent)
    open_workbook.assert_called_once_with(parsed_settings.data_file)


def test_ensure_schema_version_rejects_mismatch(context):
    bad_settings = replace(context.settings, schema_version="0.9")
    bad_context = core_logic.RuntimeContext(settings=bad_settings, workbook=context.workbook)
    with pytest.raises(RuntimeError):
        core_logic.ensure_schema_version(bad_context)


def test_refresh_context_discards_unsaved_changes(runtime_context, make_product):
    data_manager.append_product(runtime_context.workbook, make_product())
    assert len(core_logic.list_products(runtime_context)) == 1

    refreshed = core_logic.refresh_context(runtime_context)

    assert core_logic.list_products(refreshed) == []


def test_list_products_reuses_cache_between_calls(patch_rows, context, make_product):
    patch_rows(products=[make_product()])

    core_logic.list_products(context)
    core_logic.list_products(context)

    data_manager.iter_products.assert_called_once_with(context.workbook)


def test_invalidate_cache_forces_reload(patch_rows, context, make_product):
    patch_rows(products=[make_product()])
    core_logic.list_products(context)

    core_logic.invalidate_cache(context, "products")
    core_logic.list_products(context)

    assert data_manager.iter_products.call_count == 2


# ---------------------------------------------------------------------------
# Numbering allocator
# ---------------------------------------------------------------------------


def test_next_workflow_number_increments_within_month(make_transaction):
    existing = [make_transaction(workflow_number="WF0324-001")]

    result = core_logic.next_workflow_number(existing, datetime(2024, 3, 15, tzinfo=UTC))

    assert result == "WF0324-002"


def test_next_workflow_number_starts_new_month_at_one(make_transaction):
    existing = [make_transaction(workflow_number="WF0324-007")]

    result = core_logic.next_workflow_number(existing, datetime(2024, 4, 2, tzinfo=UTC))

    assert result == "WF0424-001"


def test_next_workflow_number_uses_highest_not_count(make_transaction):
    """Gaps left by deletions never cause a number to be handed out twice."""

    existing = [
        make_transaction("T1", "WF0324-003"),
        make_transaction("T2", "WF0324-010"),
        make_transaction("T3", "WF0224-099"),
    ]

    assert core_logic.next_workflow_number(existing, datetime(2024, 3, 1, tzinfo=UTC)) == "WF0324-011"


def test_next_workflow_number_treats_malformed_suffix_as_zero(make_transaction):
    existing = [make_transaction(workflow_number="WF0324-abc")]

    assert core_logic.next_workflow_number(existing, datetime(2024, 3, 1, tzinfo=UTC)) == "WF0324-001"


def test_next_workflow_number_grows_past_three_digits(make_transaction):
    existing = [make_transaction(workflow_number="WF0324-999")]

    assert core_logic.next_workflow_number(existing, datetime(2024, 3, 1, tzinfo=UTC)) == "WF0324-1000"


def test_next_workflow_number_never_collides_when_appended(make_transaction):
    moment = datetime(2024, 3, 1, tzinfo=UTC)
    log_rows = []
    seen = set()
    for index in range(25):
        number = core_logic.next_workflow_number(log_rows, moment)
        assert number not in seen
        seen.add(number)
        log_rows.append(make_transaction(f"T{index}", number))


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


def test_add_product_rejects_duplicate_sku_case_insensitive(runtime_context):
    command = core_logic.ProductCommand(sku="ABC-1", name="Box", quantity=1, min_stock_level=0, unit_cbm=Decimal("1"))
    core_logic.add_product(runtime_context, command)

    with pytest.raises(core_logic.ValidationError) as excinfo:
        core_logic.add_product(runtime_context, replace(command, sku="abc-1"))

    assert "already exists" in excinfo.value.errors[0]


def test_add_product_collects_every_error(runtime_context):
    command = core_logic.ProductCommand(sku="", name="", quantity=-1, min_stock_level=-1, unit_cbm=Decimal("-1"))

    with pytest.raises(core_logic.ValidationError) as excinfo:
        core_logic.add_product(runtime_context, command)

    assert len(excinfo.value.errors) == 5
    assert core_logic.list_products(runtime_context) == []


def test_update_product_overwrites_quantity_and_derives_cbm(runtime_context):
    product = core_logic.add_product(
        runtime_context,
        core_logic.ProductCommand(sku="S1", name="Crate", quantity=10, min_stock_level=1, unit_cbm=Decimal("0.5")),
    )

    updated = core_logic.update_product(
        runtime_context,
        product.product_id,
        core_logic.ProductCommand(sku="S1", name="Crate", quantity=4, min_stock_level=1, unit_cbm=Decimal("0.5")),
    )

    assert updated.quantity == 4
    assert updated.cbm == Decimal("2.0")
    assert core_logic.get_product(runtime_context, product.product_id).quantity == 4


def test_delete_product_keeps_workflows(runtime_context):
    product = core_logic.add_product(
        runtime_context,
        core_logic.ProductCommand(sku="S1", name="Crate", quantity=10, min_stock_level=1, unit_cbm=Decimal("0.5")),
    )
    transaction = core_logic.create_transaction(
        runtime_context, core_logic.TransactionCommand("inbound", product.product_id, 1)
    )

    core_logic.delete_product(runtime_context, product.product_id)

    assert core_logic.find_product_by_sku(runtime_context, "S1") is None
    assert core_logic.get_transaction(runtime_context, transaction.transaction_id).product_id == product.product_id


def test_get_product_unknown_raises(patch_rows, context):
    patch_rows()
    with pytest.raises(core_logic.MissingReferenceError):
        core_logic.get_product(context, "nope")


def test_list_low_stock_products(patch_rows, context, make_product):
    patch_rows(products=[make_product("P1", "A", quantity=2), make_product("P2", "B", quantity=9)])

    assert [product.sku for product in core_logic.list_low_stock_products(context)] == ["A"]


@pytest.mark.parametrize("unit_cbm", [Decimal("NaN"), Decimal("Infinity"), Decimal("-Infinity"), "sNaN", "abc", ""])
def test_add_product_rejects_non_finite_or_non_numeric_unit_cbm(runtime_context, unit_cbm):
    command = core_logic.ProductCommand(sku="S1", name="Crate", quantity=1, min_stock_level=0, unit_cbm=unit_cbm)

    with pytest.raises(core_logic.ValidationError) as excinfo:
        core_logic.add_product(runtime_context, command)

    assert len(excinfo.value.errors) == 1
    assert excinfo.value.errors[0].startswith("Unit CBM must be")
    assert core_logic.list_products(runtime_context) == []


def test_update_product_rejects_infinite_unit_cbm(runtime_context):
    command = core_logic.ProductCommand(sku="S1", name="Crate", quantity=2, min_stock_level=0, unit_cbm=Decimal("0.5"))
    product = core_logic.add_product(runtime_context, command)

    with pytest.raises(core_logic.ValidationError):
        core_logic.update_product(runtime_context, product.product_id, replace(command, unit_cbm=Decimal("Infinity")))

    assert core_logic.get_product(runtime_context, product.product_id).unit_cbm == Decimal("0.5")


def test_coerce_unit_cbm_accepts_text_and_numbers():
    assert core_logic.coerce_unit_cbm(" 0.25 ") == Decimal("0.25")
    assert core_logic.coerce_unit_cbm(2) == Decimal("2")
    assert core_logic.coerce_unit_cbm(Decimal("0")) == Decimal("0")


# ---------------------------------------------------------------------------
# Workflow lifecycle
# ---------------------------------------------------------------------------


def test_create_transaction_appends_pending_workflow(patch_rows, context, make_product, make_transaction, set_fixed_datetime):
    moment = set_fixed_datetime(datetime(2024, 3, 5, tzinfo=UTC))
    appended, replaced_product, _ = patch_rows(
        products=[make_product()], transactions=[make_transaction(workflow_number="WF0324-001")]
    )

    transaction = core_logic.create_transaction(
        context, core_logic.TransactionCommand("Inbound", "P1", 5, reference_number="PO-1", handler_name="Dana")
    )

    assert transaction.workflow_number == "WF0324-002"
    assert transaction.status == constants.TransactionStatus.PENDING.value
    assert transaction.transaction_type == "inbound"
    assert transaction.created_at == moment
    appended.assert_called_once_with(context.workbook, transaction)
    replaced_product.assert_not_called()


def test_create_transaction_rejects_outbound_over_stock(patch_rows, context, make_product):
    appended, _, _ = patch_rows(products=[make_product(quantity=3)])

    with pytest.raises(core_logic.InsufficientStockError, match=r"available: 3"):
        core_logic.create_transaction(context, core_logic.TransactionCommand("outbound", "P1", 5))

    appended.assert_not_called()


@pytest.mark.parametrize("quantity", [0, -4])
def test_create_transaction_rejects_non_positive_quantity(patch_rows, context, make_product, quantity):
    appended, _, _ = patch_rows(products=[make_product()])

    with pytest.raises(core_logic.ValidationError):
        core_logic.create_transaction(context, core_logic.TransactionCommand("inbound", "P1", quantity))

    appended.assert_not_called()


def test_create_transaction_rejects_unknown_type(patch_rows, context, make_product):
    patch_rows(products=[make_product()])

    with pytest.raises(core_logic.ValidationError):
        core_logic.create_transaction(context, core_logic.TransactionCommand("sideways", "P1", 1))


def test_create_transaction_unknown_product(patch_rows, context):
    patch_rows()

    with pytest.raises(core_logic.MissingReferenceError):
        core_logic.create_transaction(context, core_logic.TransactionCommand("inbound", "ghost", 1))


def test_apply_completion_inbound_adds_and_tracks_cbm(make_product, make_transaction):
    """quantity 10 at 0.5 cbm each, inbound 5 -> 15 units, 7.5 cbm."""

    product = make_product(quantity=10, unit_cbm=Decimal("0.5"))

    updated = core_logic.apply_completion(product, make_transaction(quantity=5))

    assert updated.quantity == 15
    assert updated.cbm == Decimal("7.5")


def test_apply_completion_outbound_may_go_negative(make_product, make_transaction):
    product = make_product(quantity=2)

    updated = core_logic.apply_completion(product, make_transaction(transaction_type="outbound", quantity=5))

    assert updated.quantity == -3


def test_complete_transaction_moves_stock(patch_rows, context, make_product, make_transaction):
    _, replaced_product, replaced_transaction = patch_rows(
        products=[make_product(quantity=10)],
        transactions=[make_transaction(transaction_type="outbound", quantity=4)],
    )

    result = core_logic.complete_transaction(context, "T1")

    assert result.product.quantity == 6
    assert result.transaction.status == constants.TransactionStatus.COMPLETED.value
    replaced_product.assert_called_once_with(context.workbook, result.product)
    replaced_transaction.assert_called_once_with(context.workbook, result.transaction)


@pytest.mark.parametrize("status", ["completed", "cancelled"])
def test_terminal_workflows_cannot_move(patch_rows, context, make_product, make_transaction, status):
    _, replaced_product, replaced_transaction = patch_rows(
        products=[make_product()], transactions=[make_transaction(status=status)]
    )

    with pytest.raises(core_logic.InvalidTransitionError):
        core_logic.complete_transaction(context, "T1")
    with pytest.raises(core_logic.InvalidTransitionError):
        core_logic.cancel_transaction(context, "T1")
    with pytest.raises(core_logic.InvalidTransitionError):
        core_logic.edit_transaction(context, "T1", core_logic.TransactionEdit(quantity=1))

    replaced_product.assert_not_called()
    replaced_transaction.assert_not_called()


def test_complete_transaction_missing_product_keeps_pending(patch_rows, context, make_transaction):
    _, replaced_product, replaced_transaction = patch_rows(transactions=[make_transaction(product_id="gone")])

    with pytest.raises(core_logic.MissingReferenceError):
        core_logic.complete_transaction(context, "T1")

    replaced_product.assert_not_called()
    replaced_transaction.assert_not_called()


def test_cancel_transaction_leaves_stock_alone(patch_rows, context, make_product, make_transaction):
    _, replaced_product, replaced_transaction = patch_rows(
        products=[make_product()], transactions=[make_transaction()]
    )

    cancelled = core_logic.cancel_transaction(context, "T1")

    assert cancelled.status == constants.TransactionStatus.CANCELLED.value
    replaced_product.assert_not_called()
    replaced_transaction.assert_called_once_with(context.workbook, cancelled)


def test_edit_transaction_keeps_number_and_skips_stock_check(patch_rows, context, make_product, make_transaction):
    """Edits may raise an outbound quantity past stock; creation alone checks it."""

    patch_rows(
        products=[make_product(quantity=3)],
        transactions=[make_transaction(transaction_type="outbound", quantity=2)],
    )

    edited = core_logic.edit_transaction(
        context, "T1", core_logic.TransactionEdit(quantity=8, handler_name="Lee")
    )

    assert edited.workflow_number == "WF0324-001"
    assert edited.quantity == 8
    assert edited.handler_name == "Lee"
    assert edited.reference_number == "REF-1"


def test_filter_transactions_by_status_type_and_search(patch_rows, context, make_product, make_transaction):
    patch_rows(
        products=[make_product("P1", "BOLT-9", name="Bolt"), make_product("P2", "NUT-1", name="Nut")],
        transactions=[
            make_transaction("T1", "WF0324-001", product_id="P1"),
            make_transaction("T2", "WF0324-002", product_id="P2", status="completed"),
            make_transaction("T3", "WF0324-003", product_id="P2", transaction_type="outbound"),
        ],
    )

    assert [t.transaction_id for t in core_logic.filter_transactions(context, status="pending")] == ["T1", "T3"]
    assert [t.transaction_id for t in core_logic.filter_transactions(context, transaction_type="outbound")] == ["T3"]
    assert [t.transaction_id for t in core_logic.filter_transactions(context, search="bolt")] == ["T1"]
    assert [t.transaction_id for t in core_logic.filter_transactions(context, search="wf0324-002")] == ["T2"]


def test_find_transaction_by_workflow_number(patch_rows, context, make_transaction):
    patch_rows(transactions=[make_transaction()])

    assert core_logic.find_transaction_by_workflow_number(context, "WF0324-001").transaction_id == "T1"
    with pytest.raises(core_logic.MissingReferenceError):
        core_logic.find_transaction_by_workflow_number(context, "WF0324-404")


def test_filter_transactions_lists_newest_first(patch_rows, context, make_product, make_transaction):
    patch_rows(
        products=[make_product()],
        transactions=[
            make_transaction("T1", "WF0324-001", created_at=datetime(2024, 3, 1, tzinfo=UTC)),
            make_transaction("T2", "WF0324-002", created_at=datetime(2024, 3, 9, tzinfo=UTC)),
            make_transaction("T3", "WF0324-003", created_at=datetime(2024, 3, 5, tzinfo=UTC)),
        ],
    )

    assert [t.transaction_id for t in core_logic.filter_transactions(context)] == ["T2", "T3", "T1"]


def test_resolve_timestamp_reads_naive_values_as_utc():
    assert core_logic.resolve_timestamp(datetime(2024, 3, 25, 8, 0)) == datetime(2024, 3, 25, 8, 0, tzinfo=UTC)
    aware = datetime(2024, 3, 25, 8, 0, tzinfo=UTC)
    assert core_logic.resolve_timestamp(aware) is aware

"""Command-line entry points for the warehouse admin toolkit.

All orchestration in this module is limited to argparse wiring, signing the
caller in, and translating command-line arguments into the command objects
consumed by the business layer. Every sub-command names the feature it
belongs to so access is checked in one place before it runs.
"""

from __future__ import annotations

import argparse
import getpass
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Sequence

from . import accounts, billing, bulk_import, core_logic, data_manager, log, metrics, reports
from .constants import BillingStatus, TransactionStatus, TransactionType, UserRole

SubParsers = argparse._SubParsersAction


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured, gated and executed."""

    name: str
    help_text: str
    feature: str
    register: Callable[[SubParsers], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, accounts.AuthSession, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="warehouse-cli",
        description="Command-line tools for the warehouse admin workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (searched upwards from the working directory by default).",
    )
    parser.add_argument("--email", default=None, help="Account to sign in with.")
    parser.add_argument("--password", default=None, help="Password for --email (prompted when omitted).")
    return parser


def configure_subcommands(parser: argparse.ArgumentParser) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(subparsers: SubParsers) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as workflows and billings."""
    specs = {
        "add-product": register_add_product_command(),
        "update-product": register_update_product_command(),
        "delete-product": register_delete_product_command(),
        "inbound": register_workflow_command(TransactionType.INBOUND),
        "outbound": register_workflow_command(TransactionType.OUTBOUND),
        "edit-workflow": register_edit_workflow_command(),
        "complete": register_transition_command("complete", "Complete a pending workflow and apply its stock change."),
        "cancel": register_transition_command("cancel", "Cancel a pending workflow without touching stock."),
        "import": register_import_command(),
        "add-billing": register_billing_command("add-billing", "Record a new vendor billing."),
        "update-billing": register_billing_command("update-billing", "Overwrite an existing billing."),
        "pay-billing": register_billing_id_command("pay-billing", "Mark a billing as paid."),
        "delete-billing": register_billing_id_command("delete-billing", "Delete a billing."),
        "add-user": register_add_user_command(),
        "update-user": register_update_user_command(),
        "suspend-user": register_user_email_command("suspend-user", "Suspend an account."),
        "activate-user": register_user_email_command("activate-user", "Lift an account suspension."),
        "delete-user": register_user_email_command("delete-user", "Delete an account."),
        "reset-password": register_reset_password_command(),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(subparsers: SubParsers) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as listings and reports."""
    specs = {
        "products": register_products_command(),
        "low-stock": register_low_stock_command(),
        "workflows": register_workflows_command(),
        "dashboard": register_dashboard_command(),
        "billings": register_billings_command(),
        "users": register_users_command(),
        "report": register_report_command(),
        "import-template": register_import_template_command(),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


# ---------------------------------------------------------------------------
# Catalog commands
# ---------------------------------------------------------------------------


def register_add_product_command() -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Register a new product in the Products sheet."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--sku", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--quantity", type=int, default=0)
        parser.add_argument("--min-stock-level", type=int, default=0)
        parser.add_argument("--unit-cbm", default="0")
        parser.add_argument("--location", default="")
        parser.add_argument("--vendor-number", default="")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name, help_text, "catalog-admin", registrar, run_add_product)


def register_update_product_command() -> CommandSpec:
    """Register the parser and executor for ``update-product``."""
    name = "update-product"
    help_text = "Overwrite fields of a product; omitted options keep their value."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--sku", required=True, help="SKU of the product to change.")
        parser.add_argument("--new-sku", default=None)
        parser.add_argument("--name", default=None)
        parser.add_argument("--quantity", type=int, default=None)
        parser.add_argument("--min-stock-level", type=int, default=None)
        parser.add_argument("--unit-cbm", default=None)
        parser.add_argument("--location", default=None)
        parser.add_argument("--vendor-number", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name, help_text, "catalog-admin", registrar, run_update_product)


def register_delete_product_command() -> CommandSpec:
    """Register the parser and executor for ``delete-product``."""
    name = "delete-product"
    help_text = "Remove a product from the catalog. Its workflows are kept."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--sku", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name, help_text, "catalog-admin", registrar, run_delete_product)


def register_products_command() -> CommandSpec:
    """Register the parser and executor for ``products``."""
    name = "products"
    help_text = "Display the catalog with quantities and volumes."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name, help_text, "products", registrar, run_products)


def register_low_stock_command() -> CommandSpec:
    """Register the parser and executor for ``low-stock``."""
    name = "low-stock"
    help_text = "Display products at or below their minimum stock level."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name, help_text, "products", registrar, run_low_stock)


# ---------------------------------------------------------------------------
# Workflow commands
# ---------------------------------------------------------------------------


def register_workflow_command(transaction_type: TransactionType) -> CommandSpec:
    """Register the parser and executor for ``inbound`` or ``outbound``."""
    name = transaction_type.value
    help_text = f"Open a pending {name} workflow."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--sku", required=True)
        parser.add_argument("--quantity", type=int, required=True)
        parser.add_argument("--reference", dest="reference_number", default=None)
        parser.add_argument("--handler", dest="handler_name", default=None)
        parser.add_argument("--notes", default=None)
        parser.set_defaults(command=name, transaction_type=name)
        return parser

    return CommandSpec(name, help_text, "transactions", registrar, run_create_workflow)


def register_edit_workflow_command() -> CommandSpec:
    """Register the parser and executor for ``edit-workflow``."""
    name = "edit-workflow"
    help_text = "Change a pending workflow; its number is kept."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--workflow", required=True, help="Workflow number, e.g. WF0424-001.")
        parser.add_argument("--sku", default=None)
        parser.add_argument("--quantity", type=int, default=None)
        parser.add_argument("--reference", dest="reference_number", default=None)
        parser.add_argument("--handler", dest="handler_name", default=None)
        parser.add_argument("--notes", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name, help_text, "transactions", registrar, run_edit_workflow)


def register_transition_command(name: str, help_text: str) -> CommandSpec:
    """Register the parser and executor for ``complete`` or ``cancel``."""

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--workflow", required=True, help="Workflow number, e.g. WF0424-001.")
        parser.set_defaults(command=name)
        return parser

    executor = run_complete if name == "complete" else run_cancel
    return CommandSpec(name, help_text, "transactions", registrar, executor)


def register_import_command() -> CommandSpec:
    """Register the parser and executor for ``import``."""
    name = "import"
    help_text = "Create pending workflows from a CSV file, all or nothing."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--file", type=Path, required=True)
        parser.add_argument(
            "--type",
            dest="transaction_type",
            choices=[member.value for member in TransactionType],
            required=True,
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name, help_text, "transactions", registrar, run_import)


def register_import_template_command() -> CommandSpec:
    """Register the parser and executor for ``import-template``."""
    name = "import-template"
    help_text = "Print or save a sample import file."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--output", type=Path, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name, help_text, "transactions", registrar, run_import_template)


def register_workflows_command() -> CommandSpec:
    """Register the parser and executor for ``workflows``."""
    name = "workflows"
    help_text = "Display the workflow log."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--status", choices=[member.value for member in TransactionStatus], default=None)
        parser.add_argument(
            "--type",
            dest="transaction_type",
            choices=[member.value for member in TransactionType],
            default=None,
        )
        parser.add_argument("--search", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name, help_text, "transactions", registrar, run_workflows)


def register_dashboard_command() -> CommandSpec:
    """Register the parser and executor for ``dashboard``."""
    name = "dashboard"
    help_text = "Display totals and inbound/outbound trends."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name, help_text, "dashboard", registrar, run_dashboard)


# ---------------------------------------------------------------------------
# Billing commands
# ---------------------------------------------------------------------------


def register_billing_command(name: str, help_text: str) -> CommandSpec:
    """Register the parser and executor for ``add-billing`` or ``update-billing``."""

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        if name == "update-billing":
            parser.add_argument("--billing-id", required=True)
        parser.add_argument("--invoice", dest="invoice_number", required=True)
        parser.add_argument("--vendor", dest="vendor_number", required=True)
        parser.add_argument("--amount", required=True)
        parser.add_argument("--due-date", type=date.fromisoformat, required=True, help="YYYY-MM-DD")
        parser.add_argument("--status", choices=[member.value for member in BillingStatus], default=None)
        parser.add_argument("--notes", default=None)
        parser.set_defaults(command=name)
        return parser

    executor = run_add_billing if name == "add-billing" else run_update_billing
    return CommandSpec(name, help_text, "billing-admin", registrar, executor)


def register_billing_id_command(name: str, help_text: str) -> CommandSpec:
    """Register the parser and executor for ``pay-billing`` or ``delete-billing``."""

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--billing-id", required=True)
        parser.set_defaults(command=name)
        return parser

    executor = run_pay_billing if name == "pay-billing" else run_delete_billing
    return CommandSpec(name, help_text, "billing-admin", registrar, executor)


def register_billings_command() -> CommandSpec:
    """Register the parser and executor for ``billings``."""
    name = "billings"
    help_text = "Display billings visible to the signed-in account."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--status", choices=[member.value for member in BillingStatus], default=None)
        parser.add_argument("--search", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name, help_text, "billings", registrar, run_billings)


# ---------------------------------------------------------------------------
# Account commands
# ---------------------------------------------------------------------------


def register_add_user_command() -> CommandSpec:
    """Register the parser and executor for ``add-user``."""
    name = "add-user"
    help_text = "Create an admin, staff or vendor account."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--user-email", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--role", choices=[member.value for member in UserRole], required=True)
        parser.add_argument("--vendor-number", default=None)
        parser.add_argument("--user-password", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name, help_text, "users", registrar, run_add_user)


def register_update_user_command() -> CommandSpec:
    """Register the parser and executor for ``update-user``."""
    name = "update-user"
    help_text = "Change an account's email, name, role or vendor number."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--user-email", required=True, help="Current email of the account.")
        parser.add_argument("--new-email", default=None)
        parser.add_argument("--name", default=None)
        parser.add_argument("--role", choices=[member.value for member in UserRole], default=None)
        parser.add_argument("--vendor-number", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name, help_text, "users", registrar, run_update_user)


def register_user_email_command(name: str, help_text: str) -> CommandSpec:
    """Register a command that acts on one account picked by email."""

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--user-email", required=True)
        parser.set_defaults(command=name)
        return parser

    executors = {
        "suspend-user": run_suspend_user,
        "activate-user": run_activate_user,
        "delete-user": run_delete_user,
    }
    return CommandSpec(name, help_text, "users", registrar, executors[name])


def register_reset_password_command() -> CommandSpec:
    """Register the parser and executor for ``reset-password``."""
    name = "reset-password"
    help_text = "Set a new password for an account."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--user-email", required=True)
        parser.add_argument("--new-password", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name, help_text, "users", registrar, run_reset_password)


def register_users_command() -> CommandSpec:
    """Register the parser and executor for ``users``."""
    name = "users"
    help_text = "Display accounts."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--search", default=None)
        parser.add_argument("--suspended", action="store_true", default=None, help="Only suspended accounts.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name, help_text, "users", registrar, run_users)


def register_report_command() -> CommandSpec:
    """Register the parser and executor for ``report``."""
    name = "report"
    help_text = "Export a CSV report."

    def registrar(action: SubParsers) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("kind", choices=["storage", "inventory", "transactions", "users"])
        parser.add_argument("--start", type=date.fromisoformat, default=None, help="YYYY-MM-DD")
        parser.add_argument("--end", type=date.fromisoformat, default=None, help="YYYY-MM-DD")
        parser.add_argument("--output", type=Path, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name, help_text, "reports", registrar, run_report)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def open_session(context: core_logic.RuntimeContext, args: argparse.Namespace) -> accounts.AuthSession:
    """Sign in with ``--email``/``--password``; anonymous when no email is given."""
    email = getattr(args, "email", None)
    if not email:
        return accounts.ANONYMOUS
    password = args.password if args.password is not None else getpass.getpass(f"Password for {email}: ")
    return accounts.login(context, email, password)


def dispatch_command(
    context: core_logic.RuntimeContext,
    session: accounts.AuthSession,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Check access and dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    accounts.require_access(session, spec.feature)
    return spec.execute(context, session, args)


def build_command_table(specs: Iterable[CommandSpec]) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


# ---------------------------------------------------------------------------
# Translators
# ---------------------------------------------------------------------------


def _product_for_sku(context: core_logic.RuntimeContext, sku: str) -> data_manager.ProductRow:
    product = core_logic.find_product_by_sku(context, sku)
    if product is None:
        log.warning("Product lookup failed for SKU '%s'", sku)
        raise core_logic.MissingReferenceError(f"Product with SKU \"{sku}\" not found")
    return product


def _user_for_email(context: core_logic.RuntimeContext, email: str) -> data_manager.UserRow:
    user = accounts.find_user_by_email(context, email)
    if user is None:
        log.warning("User lookup failed for email '%s'", email)
        raise core_logic.MissingReferenceError(f"Unknown user: {email}")
    return user


def translate_add_product(args: argparse.Namespace) -> core_logic.ProductCommand:
    """Translate CLI args into a product command object."""
    return core_logic.ProductCommand(
        sku=args.sku,
        name=args.name,
        quantity=args.quantity,
        min_stock_level=args.min_stock_level,
        unit_cbm=core_logic.coerce_unit_cbm(args.unit_cbm),
        location=args.location,
        vendor_number=args.vendor_number,
    )


def translate_update_product(
    args: argparse.Namespace, current: data_manager.ProductRow
) -> core_logic.ProductCommand:
    """Merge CLI overrides onto ``current`` to form a full product command."""

    def pick(value, fallback):
        return fallback if value is None else value

    return core_logic.ProductCommand(
        sku=pick(args.new_sku, current.sku),
        name=pick(args.name, current.name),
        quantity=pick(args.quantity, current.quantity),
        min_stock_level=pick(args.min_stock_level, current.min_stock_level),
        unit_cbm=core_logic.coerce_unit_cbm(args.unit_cbm) if args.unit_cbm is not None else current.unit_cbm,
        location=pick(args.location, current.location),
        vendor_number=pick(args.vendor_number, current.vendor_number),
    )


def translate_workflow(
    args: argparse.Namespace, product: data_manager.ProductRow
) -> core_logic.TransactionCommand:
    """Translate CLI args into a workflow command object."""
    return core_logic.TransactionCommand(
        transaction_type=args.transaction_type,
        product_id=product.product_id,
        quantity=args.quantity,
        reference_number=args.reference_number,
        handler_name=args.handler_name,
        notes=args.notes,
    )


def translate_billing(args: argparse.Namespace) -> billing.BillingCommand:
    """Translate CLI args into a billing command object."""
    return billing.BillingCommand(
        invoice_number=args.invoice_number,
        vendor_number=args.vendor_number,
        amount=args.amount,
        due_date=args.due_date,
        notes=args.notes,
        status=args.status,
    )


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def run_add_product(
    context: core_logic.RuntimeContext, session: accounts.AuthSession, args: argparse.Namespace
) -> int:
    product = core_logic.add_product(context, translate_add_product(args))
    print(f"Added {product.sku} ({product.product_id})")
    return 0


def run_update_product(
    context: core_logic.RuntimeContext, session: accounts.AuthSession, args: argparse.Namespace
) -> int:
    current = _product_for_sku(context, args.sku)
    product = core_logic.update_product(context, current.product_id, translate_update_product(args, current))
    print(f"Updated {product.sku}: quantity={product.quantity} cbm={product.cbm}")
    return 0


def run_delete_product(
    context: core_logic.RuntimeContext, session: accounts.AuthSession, args: argparse.Namespace
) -> int:
    core_logic.delete_product(context, _product_for_sku(context, args.sku).product_id)
    print(f"Deleted {args.sku}")
    return 0


def run_create_workflow(
    context: core_logic.RuntimeContext, session: accounts.AuthSession, args: argparse.Namespace
) -> int:
    product = _product_for_sku(context, args.sku)
    transaction = core_logic.create_transaction(context, translate_workflow(args, product))
    print(transaction.workflow_number)
    return 0


def run_edit_workflow(
    context: core_logic.RuntimeContext, session: accounts.AuthSession, args: argparse.Namespace
) -> int:
    transaction = core_logic.find_transaction_by_workflow_number(context, args.workflow)
    edit = core_logic.TransactionEdit(
        product_id=_product_for_sku(context, args.sku).product_id if args.sku else None,
        quantity=args.quantity,
        reference_number=args.reference_number,
        handler_name=args.handler_name,
        notes=args.notes,
    )
    updated = core_logic.edit_transaction(context, transaction.transaction_id, edit)
    print(f"Edited {updated.workflow_number}")
    return 0


def run_complete(
    context: core_logic.RuntimeContext, session: accounts.AuthSession, args: argparse.Namespace
) -> int:
    transaction = core_logic.find_transaction_by_workflow_number(context, args.workflow)
    result = core_logic.complete_transaction(context, transaction.transaction_id)
    print(
        f"Completed {result.transaction.workflow_number}: "
        f"{result.product.sku} quantity={result.product.quantity} cbm={result.product.cbm}"
    )
    return 0


def run_cancel(
    context: core_logic.RuntimeContext, session: accounts.AuthSession, args: argparse.Namespace
) -> int:
    transaction = core_logic.find_transaction_by_workflow_number(context, args.workflow)
    cancelled = core_logic.cancel_transaction(context, transaction.transaction_id)
    print(f"Cancelled {cancelled.workflow_number}")
    return 0


def run_import(
    context: core_logic.RuntimeContext, session: accounts.AuthSession, args: argparse.Namespace
) -> int:
    text = bulk_import.read_import_file(args.file)
    created = bulk_import.import_transactions(context, text, args.transaction_type)
    for transaction in created:
        print(transaction.workflow_number)
    print(f"Imported {len(created)} workflow(s)")
    return 0


def run_import_template(
    context: core_logic.RuntimeContext, session: accounts.AuthSession, args: argparse.Namespace
) -> int:
    content = bulk_import.build_import_template(core_logic.list_products(context))
    if args.output is not None:
        reports.write_report(args.output, content)
    else:
        print(content)
    return 0


def run_products(
    context: core_logic.RuntimeContext, session: accounts.AuthSession, args: argparse.Namespace
) -> int:
    for product in core_logic.list_products(context):
        flag = " LOW" if product.is_low_stock else ""
        print(f"{product.sku}\t{product.name}\tqty={product.quantity}\tcbm={product.cbm}\t{product.location}{flag}")
    return 0


def run_low_stock(
    context: core_logic.RuntimeContext, session: accounts.AuthSession, args: argparse.Namespace
) -> int:
    for product in core_logic.list_low_stock_products(context):
        print(f"{product.sku}\t{product.name}\tqty={product.quantity}\tmin={product.min_stock_level}")
    return 0


def run_workflows(
    context: core_logic.RuntimeContext, session: accounts.AuthSession, args: argparse.Namespace
) -> int:
    transactions = core_logic.filter_transactions(
        context,
        status=args.status,
        transaction_type=args.transaction_type,
        search=args.search,
    )
    for transaction in transactions:
        print(
            f"{transaction.workflow_number}\t{transaction.transaction_type}\t{transaction.status}\t"
            f"qty={transaction.quantity}\t{transaction.reference_number or ''}\t{transaction.handler_name or ''}"
        )
    return 0


def run_dashboard(
    context: core_logic.RuntimeContext, session: accounts.AuthSession, args: argparse.Namespace
) -> int:
    summary = metrics.build_dashboard_summary(context)
    print(f"Total products: {summary.total_products}")
    print(f"Inbound (completed): {summary.inbound_count} [{summary.inbound_trend.direction}] {summary.inbound_trend.label}")
    print(
        f"Outbound (completed): {summary.outbound_count} "
        f"[{summary.outbound_trend.direction}] {summary.outbound_trend.label}"
    )
    print(f"Low stock: {summary.low_stock_count}")
    return 0


def run_add_billing(
    context: core_logic.RuntimeContext, session: accounts.AuthSession, args: argparse.Namespace
) -> int:
    record = billing.add_billing(context, translate_billing(args))
    print(f"Added billing {record.invoice_number} ({record.billing_id})")
    return 0


def run_update_billing(
    context: core_logic.RuntimeContext, session: accounts.AuthSession, args: argparse.Namespace
) -> int:
    record = billing.update_billing(context, args.billing_id, translate_billing(args))
    print(f"Updated billing {record.invoice_number}")
    return 0


def run_pay_billing(
    context: core_logic.RuntimeContext, session: accounts.AuthSession, args: argparse.Namespace
) -> int:
    record = billing.mark_billing_paid(context, args.billing_id)
    print(f"Billing {record.invoice_number} paid")
    return 0


def run_delete_billing(
    context: core_logic.RuntimeContext, session: accounts.AuthSession, args: argparse.Namespace
) -> int:
    billing.delete_billing(context, args.billing_id)
    print(f"Deleted billing {args.billing_id}")
    return 0


def run_billings(
    context: core_logic.RuntimeContext, session: accounts.AuthSession, args: argparse.Namespace
) -> int:
    records = billing.filter_billings(
        context,
        vendor_numbers=accounts.allowed_vendor_numbers(session.user),
        status=args.status,
        search=args.search,
    )
    for record in records:
        print(
            f"{record.billing_id}\t{record.invoice_number}\t{record.vendor_number}\t"
            f"{record.amount}\t{record.status}\tdue={record.due_date.isoformat()}"
        )
    return 0


def run_add_user(
    context: core_logic.RuntimeContext, session: accounts.AuthSession, args: argparse.Namespace
) -> int:
    command = accounts.UserCommand(
        email=args.user_email,
        name=args.name,
        role=args.role,
        vendor_number=args.vendor_number,
        password=args.user_password,
    )
    user = accounts.add_user(context, command)
    print(f"Added {user.role} {user.email}")
    return 0


def run_update_user(
    context: core_logic.RuntimeContext, session: accounts.AuthSession, args: argparse.Namespace
) -> int:
    current = _user_for_email(context, args.user_email)
    command = accounts.UserCommand(
        email=args.new_email or current.email,
        name=args.name or current.name,
        role=args.role or current.role,
        vendor_number=args.vendor_number if args.vendor_number is not None else current.vendor_number,
    )
    user = accounts.update_user(context, current.user_id, command)
    print(f"Updated {user.email}")
    return 0


def run_suspend_user(
    context: core_logic.RuntimeContext, session: accounts.AuthSession, args: argparse.Namespace
) -> int:
    accounts.suspend_user(context, _user_for_email(context, args.user_email).user_id)
    print(f"Suspended {args.user_email}")
    return 0


def run_activate_user(
    context: core_logic.RuntimeContext, session: accounts.AuthSession, args: argparse.Namespace
) -> int:
    accounts.reactivate_user(context, _user_for_email(context, args.user_email).user_id)
    print(f"Reactivated {args.user_email}")
    return 0


def run_delete_user(
    context: core_logic.RuntimeContext, session: accounts.AuthSession, args: argparse.Namespace
) -> int:
    accounts.delete_user(context, _user_for_email(context, args.user_email).user_id)
    print(f"Deleted {args.user_email}")
    return 0


def run_reset_password(
    context: core_logic.RuntimeContext, session: accounts.AuthSession, args: argparse.Namespace
) -> int:
    accounts.reset_user_password(context, _user_for_email(context, args.user_email).user_id, args.new_password)
    print(f"Password reset for {args.user_email}")
    return 0


def run_users(
    context: core_logic.RuntimeContext, session: accounts.AuthSession, args: argparse.Namespace
) -> int:
    for user in accounts.filter_users(context, search=args.search, suspended=args.suspended):
        status = "suspended" if user.is_suspended else "active"
        print(f"{user.email}\t{user.name}\t{user.role}\t{user.vendor_number or ''}\t{status}")
    return 0


def run_report(
    context: core_logic.RuntimeContext, session: accounts.AuthSession, args: argparse.Namespace
) -> int:
    """Render the requested report and print it or write it to ``--output``."""
    products = core_logic.list_products(context)
    if args.kind == "storage":
        content = reports.generate_storage_report(products)
    elif args.kind == "inventory":
        content = reports.generate_inventory_report(products)
    elif args.kind == "transactions":
        if args.start is None or args.end is None:
            raise core_logic.ValidationError(["--start and --end are required for the transactions report"])
        content = reports.generate_transaction_report(
            core_logic.list_transactions(context), products, args.start, args.end
        )
    else:
        accounts.require_access(session, "users")
        content = reports.generate_user_report(accounts.list_users(context))

    if args.output is not None:
        reports.write_report(args.output, content)
    else:
        print(content)
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.ValidationError):
        for message in error.errors:
            log.error("%s", message)
        return 2
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing, sign-in and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = core_logic.load_runtime_context(args.config)
        core_logic.ensure_schema_version(context)
        session = open_session(context, args)
        exit_code = dispatch_command(context, session, args, command_table)
        if exit_code == 0:
            persist_workbook(context)
        accounts.logout(session)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)


if __name__ == "__main__":
    raise SystemExit(main())

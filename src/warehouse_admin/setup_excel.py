"""Utility for initializing the warehouse admin master workbook.

The module doubles as a script (``warehouse-setup``) and as a library used by
tests or other tooling. Shared helpers keep the workbook bootstrap logic
consistent regardless of the execution path.
"""

from __future__ import annotations

import argparse
import configparser
import getpass
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Mapping, Sequence
import sys
import uuid

import openpyxl
from openpyxl.styles import Font
from werkzeug.security import generate_password_hash

from .constants import ALL_VENDORS, MIN_PASSWORD_LENGTH, SheetName, UserRole

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.PRODUCTS.value: [
        "ProductID",
        "SKU",
        "Name",
        "Quantity",
        "MinStockLevel",
        "UnitCbm",
        "Cbm",
        "Location",
        "VendorNumber",
        "CreatedAt",
        "UpdatedAt",
    ],
    SheetName.TRANSACTIONS.value: [
        "TransactionID",
        "WorkflowNumber",
        "Type",
        "ProductID",
        "Quantity",
        "Status",
        "ReferenceNumber",
        "HandlerName",
        "Notes",
        "CreatedAt",
        "UpdatedAt",
    ],
    SheetName.BILLINGS.value: [
        "BillingID",
        "InvoiceNumber",
        "VendorNumber",
        "Amount",
        "Status",
        "DueDate",
        "PaidAt",
        "Notes",
        "CreatedAt",
        "UpdatedAt",
    ],
    SheetName.USERS.value: [
        "UserID",
        "Email",
        "Name",
        "Role",
        "VendorNumber",
        "PasswordHash",
        "IsSuspended",
        "CreatedAt",
        "LastLogin",
    ],
}

CONFIG_FILE = "config.ini"
ADMIN_NAME = "Admin User"


@dataclass(frozen=True)
class SetupSettings:
    """Type-safe representation of configuration values used during setup."""

    data_file: Path
    admin_email: str


def load_settings(config_path: Path) -> SetupSettings:
    """Read ``config.ini`` and produce :class:`SetupSettings`.

    Relative paths inside the config file are resolved against the config
    file's directory.
    """

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)

    try:
        data_file_raw = parser.get("System", "DataFile")
        admin_email = parser.get("Defaults", "AdminEmail")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        data_file_path = (config_path.parent / data_file_path).resolve()

    return SetupSettings(data_file=data_file_path, admin_email=admin_email)


def create_master_workbook(
    destination: Path,
    *,
    admin_email: str,
    admin_password: str,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    overwrite: bool = False,
) -> Path:
    """Create the master workbook at ``destination`` with one admin account.

    The first account always exists so the role-gated CLI can be used right
    away. When ``overwrite`` is ``False`` (the default) this function raises
    ``FileExistsError`` if the target already exists.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing master workbook: {destination}"
        )
    if not admin_password or len(admin_password) < MIN_PASSWORD_LENGTH:
        raise ValueError(
            f"The initial admin password must be at least {MIN_PASSWORD_LENGTH} characters"
        )

    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()

    # Remove the default sheet openpyxl generates so we can create ours.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)

    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font

    workbook[SheetName.USERS.value].append(
        [
            uuid.uuid4().hex,
            admin_email,
            ADMIN_NAME,
            UserRole.ADMIN.value,
            ALL_VENDORS,
            generate_password_hash(admin_password),
            False,
            datetime.now(UTC).isoformat(),
            None,
        ]
    )

    workbook.save(destination)
    return destination


def run_from_config(config_path: Path, *, admin_password: str, overwrite: bool = False) -> Path:
    """Create the workbook named by ``config.ini``."""

    settings = load_settings(config_path)
    return create_master_workbook(
        settings.data_file,
        admin_email=settings.admin_email,
        admin_password=admin_password,
        overwrite=overwrite,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize the warehouse admin data file")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--admin-password",
        default=None,
        help="Password for the initial admin account (prompted when omitted).",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Warehouse Admin Setup ---")
    print(f"Using configuration: {config_path}")

    admin_password = args.admin_password
    if admin_password is None:
        admin_password = getpass.getpass("Initial admin password: ")

    try:
        output_path = run_from_config(config_path, admin_password=admin_password, overwrite=args.force)
    except FileNotFoundError as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except (KeyError, ValueError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except (PermissionError, OSError) as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created master workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())

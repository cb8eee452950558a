"""Utility for initializing an offline ledger snapshot workbook.

The module doubles as a script (``python -m mill_ledger.setup_excel``) and as
a library used by tests or other tooling. The snapshot mirrors the backend's
accounts and transactions so ledgers can be rebuilt without network access.
"""

from __future__ import annotations

import argparse
import configparser
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping, Sequence
import sys

import openpyxl
from openpyxl.styles import Font

from . import data_manager, log

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    data_manager.ACCOUNTS_SHEET: data_manager.ACCOUNT_COLUMNS,
    data_manager.TRANSACTIONS_SHEET: data_manager.TRANSACTION_COLUMNS,
}

CONFIG_FILE = "config.ini"


@dataclass(frozen=True)
class SetupSettings:
    """Configuration values needed to place the snapshot."""

    snapshot_file: Path


def load_settings(config_path: Path) -> SetupSettings:
    """Read ``[Ledger] SnapshotFile`` from ``config.ini``.

    A relative path is resolved against the config file's directory.
    """

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)

    try:
        snapshot_raw = parser.get("Ledger", "SnapshotFile")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    snapshot_path = Path(snapshot_raw)
    if not snapshot_path.is_absolute():
        snapshot_path = (config_path.parent / snapshot_path).resolve()

    return SetupSettings(snapshot_file=snapshot_path)


def create_snapshot_workbook(
    destination: Path,
    *,
    accounts: Iterable[data_manager.AccountRecord] = (),
    transactions: Iterable[data_manager.TransactionRecord] = (),
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    overwrite: bool = False,
) -> Path:
    """Create a snapshot workbook at ``destination`` with bold header rows.

    ``accounts`` and ``transactions`` are appended below the headers in the
    order given. When ``overwrite`` is ``False`` (the default) this function
    raises ``FileExistsError`` if the target already exists.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing snapshot workbook: {destination}")

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

    for account in accounts:
        data_manager.append_account(workbook, account)
    for transaction in transactions:
        data_manager.append_transaction(workbook, transaction)

    workbook.save(destination)
    log.info("Created snapshot workbook '%s'", destination)
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    settings = load_settings(config_path)
    return create_snapshot_workbook(settings.snapshot_file, overwrite=overwrite)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize an offline ledger snapshot")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
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

    print("--- Mill Ledger Snapshot Setup ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force)
    except FileNotFoundError as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except KeyError as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except (PermissionError, OSError) as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created snapshot workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())

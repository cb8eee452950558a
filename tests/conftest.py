"""Shared pytest fixtures and utilities for mill ledger tests."""

from __future__ import annotations

import argparse
import json
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, Optional
from unittest.mock import Mock

import pytest
import requests

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from mill_ledger import cli, constants, core_logic, data_manager  # noqa: E402
from mill_ledger.constants import AccountCategory, AccountStatus, AccountType, TransactionType  # noqa: E402
from mill_ledger.setup_excel import create_snapshot_workbook  # noqa: E402

BASE_URL = "http://mill.test"
_CONFIG_TEMPLATE = (
    "[Backend]\n"
    "BaseUrl = {base_url}\n"
    "Token = {token}\n"
    "TimeoutSeconds = 5\n\n"
    "[Ledger]\n"
    "Currency = PKR\n"
    "SchemaVersion = {schema_version}\n"
    "SnapshotFile = {snapshot_file}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    snapshot_path: Path
    schema_version: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


# ---------------------------------------------------------------------------
# Domain record factories
# ---------------------------------------------------------------------------


def make_account(
    account_id: str,
    account_type: AccountType,
    category: AccountCategory,
    *,
    name: Optional[str] = None,
    opening: str = "0",
    current: str = "0",
    status: AccountStatus = AccountStatus.ACTIVE,
) -> data_manager.AccountRecord:
    return data_manager.AccountRecord(
        account_id=account_id,
        account_name=name or account_id,
        account_number=f"N-{account_id}",
        account_type=account_type,
        category=category,
        opening_balance=Decimal(opening),
        current_balance=Decimal(current),
        status=status,
    )


def make_transaction(
    transaction_id: str,
    debit: str,
    credit: str,
    amount: str,
    *,
    when: Optional[datetime] = None,
    transaction_type: TransactionType = TransactionType.OTHER,
    description: str = "",
) -> data_manager.TransactionRecord:
    return data_manager.TransactionRecord(
        transaction_id=transaction_id,
        transaction_date=when,
        transaction_type=transaction_type,
        debit_account=data_manager.AccountRef(account_id=debit, account_name=f"{debit} name"),
        credit_account=data_manager.AccountRef(account_id=credit, account_name=f"{credit} name"),
        amount=Decimal(amount),
        description=description,
    )


@pytest.fixture
def sample_accounts() -> list[data_manager.AccountRecord]:
    """A small chart of accounts covering every default category."""

    return [
        make_account("CASH-1", AccountType.ASSET, AccountCategory.CASH, name="Cash in Hand", opening="1000", current="1300"),
        make_account("BANK-1", AccountType.ASSET, AccountCategory.BANK, name="Meezan Bank", current="5000"),
        make_account("AR-1", AccountType.ASSET, AccountCategory.ACCOUNTS_RECEIVABLE, name="Receivables", current="700"),
        make_account("AP-1", AccountType.LIABILITY, AccountCategory.ACCOUNTS_PAYABLE, name="Payables", current="400"),
        make_account("SAL-EXP", AccountType.EXPENSE, AccountCategory.SALARY_EXPENSE, name="Salaries", current="200"),
        make_account("PUR-EXP", AccountType.EXPENSE, AccountCategory.PURCHASE_EXPENSE, name="Wheat Purchases"),
        make_account("UTIL-EXP", AccountType.EXPENSE, AccountCategory.OTHER, name="Electricity"),
        make_account("REV-1", AccountType.REVENUE, AccountCategory.SALES_REVENUE, name="Flour Sales", current="900"),
    ]


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    return data_manager.ConfigSettings(
        base_url=BASE_URL,
        token="secret-token",
        timeout_seconds=5.0,
        currency=constants.DEFAULT_CURRENCY,
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        snapshot_file=tmp_path / "snapshot.xlsx",
    )


# ---------------------------------------------------------------------------
# Snapshot and configuration factories
# ---------------------------------------------------------------------------


@pytest.fixture
def snapshot_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates a populated snapshot workbook in a temp folder."""

    def _create_snapshot(
        *,
        accounts: Iterable[data_manager.AccountRecord] = (),
        transactions: Iterable[data_manager.TransactionRecord] = (),
        subdir: Optional[str] = None,
        filename: str = "ledger_snapshot.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        return create_snapshot_workbook(
            base_dir / filename,
            accounts=accounts,
            transactions=transactions,
            overwrite=True,
        )

    return _create_snapshot


@pytest.fixture
def config_factory(tmp_path: Path, snapshot_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/snapshot bundles on demand."""

    def _create_config(
        *,
        accounts: Iterable[data_manager.AccountRecord] = (),
        transactions: Iterable[data_manager.TransactionRecord] = (),
        schema_version: str = constants.EXPECTED_SCHEMA_VERSION,
        token: str = "secret-token",
    ) -> ConfigBundle:
        bundle_dir_name = f"bundle_{uuid.uuid4().hex}"
        snapshot_path = snapshot_factory(accounts=accounts, transactions=transactions, subdir=bundle_dir_name)
        bundle_dir = snapshot_path.parent
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                base_url=BASE_URL,
                token=token,
                schema_version=schema_version,
                snapshot_file=snapshot_path.name,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            snapshot_path=snapshot_path,
            schema_version=schema_version,
        )

    return _create_config


# ---------------------------------------------------------------------------
# HTTP boundary
# ---------------------------------------------------------------------------


def make_response(status_code: int = 200, body: Any = None) -> Mock:
    """Build a ``requests.Response`` stand-in carrying a JSON body."""

    response = Mock(spec=requests.Response)
    response.status_code = status_code
    response.ok = status_code < 400
    response.reason = "OK" if response.ok else "Error"
    if body is None:
        response.content = b""
        response.text = ""
        response.json.side_effect = ValueError("No JSON")
    else:
        response.text = json.dumps(body)
        response.content = response.text.encode("utf-8")
        response.json.return_value = body
    return response


@pytest.fixture
def session() -> Mock:
    return Mock(spec=requests.Session)


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2024, 5, 1, 9, 30, tzinfo=UTC)


@pytest.fixture
def online_context(settings: data_manager.ConfigSettings) -> core_logic.RuntimeContext:
    """Runtime context whose backend client is a mock."""

    client = Mock(name="client")
    return core_logic.RuntimeContext(settings=settings, client=client)


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    return cli.build_parser()


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return a fresh sub-parser action bound to the CLI parser."""

    return cli_parser.add_subparsers(dest="command")

"""Unit tests documenting the expected behavior of the data access layer."""

from __future__ import annotations

import configparser
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path

from openpyxl.workbook import Workbook as OpenpyxlWorkbook
import pytest

from conftest import make_transaction
from mill_ledger import constants, data_manager
from mill_ledger.constants import AccountCategory, AccountStatus, AccountType, PaymentMethod, TransactionType
from mill_ledger.exceptions import ValidationError


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def test_find_config_file_respects_explicit_path(tmp_path: Path):
    """Supplying an explicit path should be treated as the winning answer."""

    explicit = tmp_path / "custom.ini"
    assert data_manager.find_config_file(explicit) == explicit


def test_find_config_file_discovers_in_parent_directories(tmp_path, monkeypatch):
    """Auto-discovery should walk up from the working directory."""

    config_file = tmp_path / "config.ini"
    config_file.write_text("[Backend]\nBaseUrl = http://localhost:7000\n")
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    monkeypatch.chdir(nested)

    assert data_manager.find_config_file() == config_file


def test_find_config_file_raises_when_missing(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    with pytest.raises(FileNotFoundError):
        data_manager.find_config_file()


def test_read_config_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        data_manager.read_config(tmp_path / "not_there.ini")


def test_parse_settings_resolves_relative_snapshot(config_factory):
    """Relative SnapshotFile entries should be anchored to the config location."""

    bundle = config_factory()
    parser = data_manager.read_config(bundle.config_path)

    settings = data_manager.parse_settings(parser, base_path=bundle.config_path.parent)

    assert settings.base_url == "http://mill.test"
    assert settings.token == "secret-token"
    assert settings.timeout_seconds == 5.0
    assert settings.currency == "PKR"
    assert settings.schema_version == constants.EXPECTED_SCHEMA_VERSION
    assert settings.snapshot_file == bundle.snapshot_path


def test_parse_settings_applies_defaults(tmp_path):
    parser = configparser.ConfigParser()
    parser.read_string("[Backend]\nBaseUrl = http://localhost:7000/\n")

    settings = data_manager.parse_settings(parser, base_path=tmp_path)

    assert settings.base_url == "http://localhost:7000"
    assert settings.token is None
    assert settings.timeout_seconds == data_manager.DEFAULT_TIMEOUT_SECONDS
    assert settings.snapshot_file is None


def test_parse_settings_requires_base_url(tmp_path):
    parser = configparser.ConfigParser()
    parser.read_string("[Ledger]\nCurrency = PKR\n")
    with pytest.raises(KeyError):
        data_manager.parse_settings(parser, base_path=tmp_path)


def test_parse_settings_rejects_non_positive_timeout(tmp_path):
    parser = configparser.ConfigParser()
    parser.read_string("[Backend]\nBaseUrl = http://x\nTimeoutSeconds = 0\n")
    with pytest.raises(ValueError):
        data_manager.parse_settings(parser, base_path=tmp_path)


# ---------------------------------------------------------------------------
# Backend payloads
# ---------------------------------------------------------------------------


def test_parse_enum_accepts_members_values_and_defaults():
    assert data_manager.parse_enum(PaymentMethod, "Bank Transfer", "paymentMethod") is PaymentMethod.BANK_TRANSFER
    assert data_manager.parse_enum(PaymentMethod, PaymentMethod.CASH, "paymentMethod") is PaymentMethod.CASH
    assert data_manager.parse_enum(PaymentMethod, "", "paymentMethod", PaymentMethod.OTHER) is PaymentMethod.OTHER


def test_parse_enum_reports_field_on_failure():
    with pytest.raises(ValidationError) as excinfo:
        data_manager.parse_enum(AccountType, "Asset-ish", "accountType")
    assert "accountType" in excinfo.value.field_errors

    with pytest.raises(ValidationError):
        data_manager.parse_enum(AccountType, None, "accountType")


def test_account_from_payload_converts_document():
    account = data_manager.account_from_payload(
        {
            "_id": "65f0c0ffee",
            "accountNumber": "ACC-0001",
            "accountName": "Cash in Hand",
            "accountType": "Asset",
            "category": "Cash",
            "openingBalance": 1000,
            "currentBalance": "1300.50",
            "status": "Inactive",
            "warehouse": {"_id": "W1", "name": "Main"},
        }
    )

    assert account.account_id == "65f0c0ffee"
    assert account.category is AccountCategory.CASH
    assert account.opening_balance == Decimal("1000")
    assert account.current_balance == Decimal("1300.50")
    assert account.status is AccountStatus.INACTIVE
    assert not account.is_active
    assert account.warehouse == "W1"


def test_account_from_payload_defaults_missing_balances_to_zero():
    account = data_manager.account_from_payload({"id": "A", "accountType": "Expense", "category": "Other"})

    assert account.opening_balance == Decimal("0")
    assert account.current_balance == Decimal("0")
    assert account.is_active


def test_account_from_payload_rejects_unknown_category():
    with pytest.raises(ValidationError):
        data_manager.account_from_payload({"_id": "A", "accountType": "Asset", "category": "Crypto"})


def test_transaction_from_payload_accepts_bare_and_populated_references():
    record = data_manager.transaction_from_payload(
        {
            "_id": "T1",
            "transactionNumber": "TXN-000001",
            "transactionDate": "2024-01-05T10:00:00Z",
            "transactionType": "Receipt",
            "debitAccount": {"_id": "CASH-1", "accountName": "Cash in Hand"},
            "creditAccount": "AR-1",
            "amount": "500.25",
            "reference": "",
        }
    )

    assert record.transaction_type is TransactionType.RECEIPT
    assert record.transaction_date == datetime(2024, 1, 5, 10, 0, tzinfo=UTC)
    assert record.debit_account.display_name == "Cash in Hand"
    assert record.credit_account.display_name == "AR-1"
    assert record.amount == Decimal("500.25")
    assert record.reference is None
    assert record.transaction_number == "TXN-000001"
    assert record.payment_status is constants.PaymentStatus.COMPLETED


def test_transaction_from_payload_requires_accounts_and_valid_date():
    with pytest.raises(ValidationError):
        data_manager.transaction_from_payload({"_id": "T1", "creditAccount": "A", "amount": 1})
    with pytest.raises(ValidationError):
        data_manager.transaction_from_payload(
            {"_id": "T1", "debitAccount": "A", "creditAccount": "B", "amount": 1, "transactionDate": "yesterday"}
        )


def test_transaction_from_payload_rejects_non_numeric_amount():
    with pytest.raises(ValidationError):
        data_manager.transaction_from_payload({"_id": "T1", "debitAccount": "A", "creditAccount": "B", "amount": "lots"})


@pytest.mark.parametrize("amount", [None, "", 0, "0.00", -500, "-0.01"])
def test_transaction_from_payload_requires_a_positive_amount(amount):
    payload = {"_id": "T1", "debitAccount": "CASH-1", "creditAccount": "REV-1", "amount": amount}

    with pytest.raises(ValidationError) as excinfo:
        data_manager.transaction_from_payload(payload)
    assert "amount" in excinfo.value.field_errors


def test_transaction_from_payload_without_amount_key_is_rejected():
    with pytest.raises(ValidationError):
        data_manager.transaction_from_payload({"_id": "T1", "debitAccount": "CASH-1", "creditAccount": "REV-1"})


# ---------------------------------------------------------------------------
# Offline snapshot workbook
# ---------------------------------------------------------------------------


def test_open_workbook_returns_openpyxl_instance(snapshot_factory):
    workbook = data_manager.open_workbook(snapshot_factory())
    assert isinstance(workbook, OpenpyxlWorkbook)
    assert set(workbook.sheetnames) == {data_manager.ACCOUNTS_SHEET, data_manager.TRANSACTIONS_SHEET}


def test_open_workbook_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        data_manager.open_workbook(tmp_path / "missing.xlsx")


def test_snapshot_headers_match_column_layout(snapshot_factory):
    workbook = data_manager.open_workbook(snapshot_factory())

    accounts_header = [cell.value for cell in workbook[data_manager.ACCOUNTS_SHEET][1]]
    transactions_header = [cell.value for cell in workbook[data_manager.TRANSACTIONS_SHEET][1]]
    assert accounts_header == list(data_manager.ACCOUNT_COLUMNS)
    assert transactions_header == list(data_manager.TRANSACTION_COLUMNS)


def test_iter_accounts_reads_rows_in_sheet_order(snapshot_factory, sample_accounts):
    workbook = data_manager.open_workbook(snapshot_factory(accounts=sample_accounts))

    accounts = list(data_manager.iter_accounts(workbook))

    assert [account.account_id for account in accounts] == [account.account_id for account in sample_accounts]
    cash = accounts[0]
    assert cash.account_type is AccountType.ASSET
    assert cash.opening_balance == Decimal("1000")
    assert cash.current_balance == Decimal("1300")


def test_iter_transactions_resolves_account_names(snapshot_factory, sample_accounts):
    when = datetime(2024, 1, 5, tzinfo=UTC)
    workbook = data_manager.open_workbook(
        snapshot_factory(
            accounts=sample_accounts,
            transactions=[make_transaction("T1", "CASH-1", "REV-1", "500.75", when=when)],
        )
    )

    (transaction,) = list(data_manager.iter_transactions(workbook))

    assert transaction.transaction_date == when
    assert transaction.amount == Decimal("500.75")
    assert transaction.debit_account.display_name == "Cash in Hand"
    assert transaction.credit_account.display_name == "Flour Sales"


def test_iter_transactions_skips_blank_rows(snapshot_factory, sample_accounts):
    path = snapshot_factory(accounts=sample_accounts, transactions=[make_transaction("T1", "CASH-1", "REV-1", "1")])
    workbook = data_manager.open_workbook(path)
    workbook[data_manager.TRANSACTIONS_SHEET].append([None] * len(data_manager.TRANSACTION_COLUMNS))

    assert len(list(data_manager.iter_transactions(workbook))) == 1


def test_appended_rows_survive_a_save(tmp_path, snapshot_factory, sample_accounts):
    workbook = data_manager.open_workbook(snapshot_factory())
    data_manager.append_account(workbook, sample_accounts[1])
    destination = tmp_path / "copy.xlsx"

    workbook.save(destination)

    reloaded = data_manager.open_workbook(destination)
    assert [account.account_name for account in data_manager.iter_accounts(reloaded)] == ["Meezan Bank"]


def test_deserialize_account_row_coerces_numeric_identifiers():
    record = data_manager.deserialize_account_row([101, 2002, "Petty Cash", "Asset", "Cash", 50, 75.5, None])

    assert record.account_id == "101"
    assert record.account_number == "2002"
    assert record.current_balance == Decimal("75.5")
    assert record.status is AccountStatus.ACTIVE
    assert record.account_code is None


def test_deserialize_transaction_row_requires_both_accounts():
    with pytest.raises(ValidationError):
        data_manager.deserialize_transaction_row(["T1", None, "Other", "A", None, 10])


@pytest.mark.parametrize("amount", [None, 0, -500])
def test_deserialize_transaction_row_requires_a_positive_amount(amount):
    with pytest.raises(ValidationError) as excinfo:
        data_manager.deserialize_transaction_row(["T1", None, "Other", "CASH-1", "REV-1", amount])
    assert "Amount" in excinfo.value.field_errors


def test_snapshot_with_negative_amount_fails_to_load(snapshot_factory, sample_accounts):
    path = snapshot_factory(accounts=sample_accounts, transactions=[make_transaction("T1", "CASH-1", "REV-1", "-500")])
    workbook = data_manager.open_workbook(path)

    with pytest.raises(ValidationError):
        list(data_manager.iter_transactions(workbook))

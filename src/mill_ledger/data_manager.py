"""Data access layer for the mill ledger.

This module converts everything that crosses the package boundary into typed
records. Ledger rules belong elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Backend payloads: turning the JSON documents served by the financial
   endpoints into :class:`AccountRecord` and :class:`TransactionRecord`.
3. Offline snapshots: reading and appending rows on the ``Accounts`` and
   ``Transactions`` worksheets of an ``.xlsx`` ledger snapshot.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Sequence, Type, TypeVar

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import (
    DEFAULT_CURRENCY,
    EXPECTED_SCHEMA_VERSION,
    AccountCategory,
    AccountStatus,
    AccountType,
    PaymentMethod,
    PaymentStatus,
    SheetName,
    TransactionType,
)
from .exceptions import ValidationError
from .money import ZERO, parse_decimal, require_positive


CONFIG_FILE_NAME = "config.ini"
ACCOUNTS_SHEET = SheetName.ACCOUNTS.value
TRANSACTIONS_SHEET = SheetName.TRANSACTIONS.value
DEFAULT_TIMEOUT_SECONDS = 10.0

ACCOUNT_COLUMNS: Sequence[str] = (
    "AccountID",
    "AccountNumber",
    "AccountName",
    "AccountType",
    "Category",
    "OpeningBalance",
    "CurrentBalance",
    "Status",
    "AccountCode",
)

TRANSACTION_COLUMNS: Sequence[str] = (
    "TransactionID",
    "TransactionDate",
    "TransactionType",
    "DebitAccountID",
    "CreditAccountID",
    "Amount",
    "PaymentMethod",
    "PaymentStatus",
    "Description",
    "Reference",
    "Warehouse",
)

E = TypeVar("E", bound=Enum)


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    base_url: str
    token: Optional[str]
    timeout_seconds: float
    currency: str
    schema_version: str
    snapshot_file: Optional[Path]


@dataclass(frozen=True)
class AccountRef:
    """Reference to an account as embedded in a transaction."""

    account_id: str
    account_name: Optional[str] = None
    account_number: Optional[str] = None
    category: Optional[str] = None
    account_type: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.account_name or self.account_id


@dataclass(frozen=True)
class AccountRecord:
    """In-memory view of a chart-of-accounts entry."""

    account_id: str
    account_name: str
    account_number: str
    account_type: AccountType
    category: AccountCategory
    opening_balance: Decimal
    current_balance: Decimal
    status: AccountStatus = AccountStatus.ACTIVE
    account_code: Optional[str] = None
    warehouse: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status is AccountStatus.ACTIVE

    def ref(self) -> AccountRef:
        return AccountRef(
            account_id=self.account_id,
            account_name=self.account_name,
            account_number=self.account_number,
            category=self.category.value,
            account_type=self.account_type.value,
        )


@dataclass(frozen=True)
class TransactionRecord:
    """In-memory view of one posted debit/credit pair."""

    transaction_id: str
    transaction_date: Optional[datetime]
    transaction_type: TransactionType
    debit_account: AccountRef
    credit_account: AccountRef
    amount: Decimal
    payment_method: PaymentMethod = PaymentMethod.CASH
    payment_status: PaymentStatus = PaymentStatus.COMPLETED
    description: str = ""
    reference: Optional[str] = None
    warehouse: Optional[str] = None
    transaction_number: Optional[str] = None
    currency: str = DEFAULT_CURRENCY


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file for the ledger client.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the search walks up from the current
    working directory and returns the first ``CONFIG_FILE_NAME`` it finds.

    Raises:
        FileNotFoundError: If no parent directory holds ``CONFIG_FILE_NAME``.
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

    ``[Backend] BaseUrl`` is mandatory. The token, timeout, currency, schema
    version and snapshot path fall back to defaults. A relative
    ``SnapshotFile`` is anchored to ``base_path`` (or the working directory).

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to resolve relative paths.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If ``[Backend] BaseUrl`` is missing.
        ValueError: If ``TimeoutSeconds`` is not a positive number.
    """

    try:
        base_url = parser.get("Backend", "BaseUrl")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    token = parser.get("Backend", "Token", fallback="").strip() or None
    timeout = parser.getfloat("Backend", "TimeoutSeconds", fallback=DEFAULT_TIMEOUT_SECONDS)
    if timeout <= 0:
        raise ValueError("TimeoutSeconds must be greater than zero")

    currency = parser.get("Ledger", "Currency", fallback=DEFAULT_CURRENCY)
    schema_version = parser.get("Ledger", "SchemaVersion", fallback=EXPECTED_SCHEMA_VERSION)
    snapshot_raw = parser.get("Ledger", "SnapshotFile", fallback="").strip()

    snapshot_file: Optional[Path] = None
    if snapshot_raw:
        snapshot_file = Path(snapshot_raw)
        if not snapshot_file.is_absolute():
            if base_path is None:
                base_path = Path.cwd()
            snapshot_file = (base_path / snapshot_file).resolve()

    return ConfigSettings(
        base_url=base_url.rstrip("/"),
        token=token,
        timeout_seconds=timeout,
        currency=currency,
        schema_version=schema_version,
        snapshot_file=snapshot_file,
    )


# ---------------------------------------------------------------------------
# Backend payloads
# ---------------------------------------------------------------------------


def parse_enum(enum_cls: Type[E], raw: Any, field: str, default: Optional[E] = None) -> E:
    """Coerce ``raw`` into ``enum_cls``, raising a field-keyed ``ValidationError``."""

    if raw is None or raw == "":
        if default is not None:
            return default
        raise ValidationError.for_field(field, f"{field} is required")
    if isinstance(raw, enum_cls):
        return raw
    try:
        return enum_cls(str(raw))
    except ValueError as exc:
        raise ValidationError.for_field(field, f"Unknown {field}: {raw}") from exc


def _reference_id(raw: Any) -> Optional[str]:
    """Return the identifier of a bare or populated reference."""

    if raw is None or raw == "":
        return None
    if isinstance(raw, Mapping):
        ident = raw.get("_id", raw.get("id"))
        return str(ident) if ident is not None else None
    return str(raw)


def parse_timestamp(raw: Any) -> Optional[datetime]:
    """Parse an ISO timestamp, date or datetime into a ``datetime``."""

    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw
    if isinstance(raw, date):
        return datetime.combine(raw, time.min)
    try:
        return datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValidationError.for_field("transactionDate", f"Invalid date: {raw}") from exc


def account_ref_from_payload(raw: Any, field: str = "account") -> AccountRef:
    """Build an :class:`AccountRef` from a bare id or a populated account document."""

    account_id = _reference_id(raw)
    if account_id is None:
        raise ValidationError.for_field(field, f"{field} is required")
    if not isinstance(raw, Mapping):
        return AccountRef(account_id=account_id)
    return AccountRef(
        account_id=account_id,
        account_name=raw.get("accountName"),
        account_number=raw.get("accountNumber"),
        category=raw.get("category"),
        account_type=raw.get("accountType"),
    )


def account_from_payload(payload: Mapping[str, Any]) -> AccountRecord:
    """Convert an account document from ``/api/financial/accounts``."""

    account_id = _reference_id(payload)
    if account_id is None:
        raise ValidationError.for_field("_id", "Account payload has no identifier")

    opening = parse_decimal(payload.get("openingBalance"), "openingBalance")
    current = parse_decimal(payload.get("currentBalance"), "currentBalance")
    return AccountRecord(
        account_id=account_id,
        account_name=str(payload.get("accountName") or ""),
        account_number=str(payload.get("accountNumber") or ""),
        account_type=parse_enum(AccountType, payload.get("accountType"), "accountType"),
        category=parse_enum(AccountCategory, payload.get("category"), "category"),
        opening_balance=opening if opening is not None else ZERO,
        current_balance=current if current is not None else ZERO,
        status=parse_enum(AccountStatus, payload.get("status"), "status", AccountStatus.ACTIVE),
        account_code=payload.get("accountCode") or None,
        warehouse=_reference_id(payload.get("warehouse")),
    )


def transaction_from_payload(payload: Mapping[str, Any]) -> TransactionRecord:
    """Convert a transaction document with populated debit/credit accounts."""

    transaction_id = _reference_id(payload)
    if transaction_id is None:
        raise ValidationError.for_field("_id", "Transaction payload has no identifier")

    return TransactionRecord(
        transaction_id=transaction_id,
        transaction_date=parse_timestamp(payload.get("transactionDate")),
        transaction_type=parse_enum(
            TransactionType, payload.get("transactionType"), "transactionType", TransactionType.OTHER
        ),
        debit_account=account_ref_from_payload(payload.get("debitAccount"), "debitAccount"),
        credit_account=account_ref_from_payload(payload.get("creditAccount"), "creditAccount"),
        amount=require_positive(payload.get("amount"), "amount"),
        payment_method=parse_enum(
            PaymentMethod, payload.get("paymentMethod"), "paymentMethod", PaymentMethod.CASH
        ),
        payment_status=parse_enum(
            PaymentStatus, payload.get("paymentStatus"), "paymentStatus", PaymentStatus.COMPLETED
        ),
        description=str(payload.get("description") or ""),
        reference=payload.get("reference") or None,
        warehouse=_reference_id(payload.get("warehouse")),
        transaction_number=payload.get("transactionNumber") or None,
        currency=str(payload.get("currency") or DEFAULT_CURRENCY),
    )


# ---------------------------------------------------------------------------
# Offline snapshot workbook
# ---------------------------------------------------------------------------


def open_workbook(data_file: Path) -> Workbook:
    """Open a ledger snapshot workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Snapshot workbook not found: {data_file}")

    workbook = openpyxl.load_workbook(data_file)
    log.debug("Opened snapshot workbook '%s'", data_file)
    return workbook


def iter_accounts(workbook: Workbook) -> Iterable[AccountRecord]:
    """Iterate over the ``Accounts`` worksheet, skipping the header and empty rows."""

    sheet = workbook[ACCOUNTS_SHEET]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if any(cell is not None for cell in raw):
            yield deserialize_account_row(raw)


def iter_transactions(workbook: Workbook) -> Iterable[TransactionRecord]:
    """Stream the ``Transactions`` worksheet in sheet order.

    Debit and credit references are resolved against the ``Accounts`` sheet
    so ledger entries can show the opposite account's name.
    """

    names = {account.account_id: account for account in iter_accounts(workbook)}
    sheet = workbook[TRANSACTIONS_SHEET]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        if any(cell is not None for cell in raw):
            yield deserialize_transaction_row(raw, accounts=names)


def append_account(workbook: Workbook, record: AccountRecord) -> None:
    sheet = workbook[ACCOUNTS_SHEET]
    sheet.append(serialize_account_row(record))


def append_transaction(workbook: Workbook, record: TransactionRecord) -> None:
    sheet = workbook[TRANSACTIONS_SHEET]
    sheet.append(serialize_transaction_row(record))


def serialize_account_row(record: AccountRecord) -> list[object]:
    """Convert an account record into the ``Accounts`` column ordering."""

    return [
        record.account_id,
        record.account_number,
        record.account_name,
        record.account_type.value,
        record.category.value,
        record.opening_balance,
        record.current_balance,
        record.status.value,
        record.account_code,
    ]


def serialize_transaction_row(record: TransactionRecord) -> list[object]:
    """Convert a transaction record into the ``Transactions`` column ordering."""

    return [
        record.transaction_id,
        record.transaction_date.isoformat() if record.transaction_date else None,
        record.transaction_type.value,
        record.debit_account.account_id,
        record.credit_account.account_id,
        record.amount,
        record.payment_method.value,
        record.payment_status.value,
        record.description,
        record.reference,
        record.warehouse,
    ]


def _row_decimal(raw: object, field: str) -> Decimal:
    parsed = parse_decimal(raw, field)
    return parsed if parsed is not None else ZERO


def deserialize_account_row(raw_row: Sequence[object]) -> AccountRecord:
    """Convert a raw ``Accounts`` row into an :class:`AccountRecord`.

    Identifier cells are coerced to ``str`` because Excel turns numeric-looking
    account numbers into integers.
    """

    cells = list(raw_row) + [None] * (len(ACCOUNT_COLUMNS) - len(raw_row))
    (
        account_id,
        account_number,
        account_name,
        account_type,
        category,
        opening_raw,
        current_raw,
        status,
        account_code,
    ) = cells[: len(ACCOUNT_COLUMNS)]

    return AccountRecord(
        account_id=str(account_id),
        account_number=str(account_number) if account_number is not None else "",
        account_name=str(account_name) if account_name is not None else "",
        account_type=parse_enum(AccountType, account_type, "AccountType"),
        category=parse_enum(AccountCategory, category, "Category"),
        opening_balance=_row_decimal(opening_raw, "OpeningBalance"),
        current_balance=_row_decimal(current_raw, "CurrentBalance"),
        status=parse_enum(AccountStatus, status, "Status", AccountStatus.ACTIVE),
        account_code=str(account_code) if account_code is not None else None,
    )


def deserialize_transaction_row(
    raw_row: Sequence[object],
    *,
    accounts: Optional[Mapping[str, AccountRecord]] = None,
) -> TransactionRecord:
    """Convert a raw ``Transactions`` row into a :class:`TransactionRecord`."""

    cells = list(raw_row) + [None] * (len(TRANSACTION_COLUMNS) - len(raw_row))
    (
        transaction_id,
        transaction_date,
        transaction_type,
        debit_id,
        credit_id,
        amount_raw,
        payment_method,
        payment_status,
        description,
        reference,
        warehouse,
    ) = cells[: len(TRANSACTION_COLUMNS)]

    lookup = accounts or {}

    def _ref(raw_id: object, field: str) -> AccountRef:
        if raw_id is None:
            raise ValidationError.for_field(field, f"{field} is required")
        account = lookup.get(str(raw_id))
        return account.ref() if account is not None else AccountRef(account_id=str(raw_id))

    return TransactionRecord(
        transaction_id=str(transaction_id),
        transaction_date=parse_timestamp(transaction_date),
        transaction_type=parse_enum(TransactionType, transaction_type, "TransactionType", TransactionType.OTHER),
        debit_account=_ref(debit_id, "DebitAccountID"),
        credit_account=_ref(credit_id, "CreditAccountID"),
        amount=require_positive(amount_raw, "Amount"),
        payment_method=parse_enum(PaymentMethod, payment_method, "PaymentMethod", PaymentMethod.CASH),
        payment_status=parse_enum(PaymentStatus, payment_status, "PaymentStatus", PaymentStatus.COMPLETED),
        description=str(description) if description is not None else "",
        reference=str(reference) if reference is not None else None,
        warehouse=str(warehouse) if warehouse is not None else None,
    )

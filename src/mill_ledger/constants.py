"""Enumerations shared across the mill ledger modules.

Centralises the chart-of-accounts vocabulary, transaction and payment
identifiers so that the data layer, the ledger rules, the form reducer and the
REST client agree on the exact strings the mill backend stores.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, Optional, Tuple


# Schema version expected in offline snapshot configuration.
EXPECTED_SCHEMA_VERSION = "1.0.0"

DEFAULT_CURRENCY = "PKR"
CURRENCY_SYMBOL = "Rs."


class AccountType(str, Enum):
    """Top-level classification of a ledger account."""

    ASSET = "Asset"
    LIABILITY = "Liability"
    EQUITY = "Equity"
    REVENUE = "Revenue"
    EXPENSE = "Expense"


class AccountCategory(str, Enum):
    """Sub-classification of an account within its type."""

    CASH = "Cash"
    BANK = "Bank"
    ACCOUNTS_RECEIVABLE = "Accounts Receivable"
    ACCOUNTS_PAYABLE = "Accounts Payable"
    INVENTORY = "Inventory"
    EQUIPMENT = "Equipment"
    SALARY_EXPENSE = "Salary Expense"
    PURCHASE_EXPENSE = "Purchase Expense"
    SALES_REVENUE = "Sales Revenue"
    OTHER = "Other"


class AccountStatus(str, Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"


class TransactionType(str, Enum):
    """Enumerate the transaction types accepted by the financial endpoints."""

    PAYMENT = "Payment"
    RECEIPT = "Receipt"
    PURCHASE = "Purchase"
    SALE = "Sale"
    SALARY = "Salary"
    TRANSFER = "Transfer"
    ADJUSTMENT = "Adjustment"
    OTHER = "Other"


class PaymentMethod(str, Enum):
    """Payment methods accepted on financial transactions."""

    CASH = "Cash"
    BANK_TRANSFER = "Bank Transfer"
    CHEQUE = "Cheque"
    CREDIT_CARD = "Credit Card"
    OTHER = "Other"


class PaymentStatus(str, Enum):
    PENDING = "Pending"
    COMPLETED = "Completed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"


class SalaryPaymentMethod(str, Enum):
    CASH = "Cash"
    BANK_TRANSFER = "Bank Transfer"
    CHEQUE = "Cheque"


class SalaryPaymentStatus(str, Enum):
    PENDING = "Pending"
    PAID = "Paid"
    FAILED = "Failed"


class InvoiceType(str, Enum):
    """Discriminates government (PR center) and private wheat purchases."""

    GOVERNMENT = "government"
    PRIVATE = "private"


class InvoiceStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class InvoicePaymentMethod(str, Enum):
    CASH = "cash"
    BANK = "bank"


class EntryType(str, Enum):
    """Side of a transaction an account sits on within a ledger statement."""

    DEBIT = "debit"
    CREDIT = "credit"


class SheetName(str, Enum):
    """Enumerate the worksheet names of an offline ledger snapshot."""

    ACCOUNTS = "Accounts"
    TRANSACTIONS = "Transactions"


# Category -> required account type. Categories absent here (Other) fit any type.
CATEGORY_ACCOUNT_TYPES: Dict[AccountCategory, AccountType] = {
    AccountCategory.CASH: AccountType.ASSET,
    AccountCategory.BANK: AccountType.ASSET,
    AccountCategory.ACCOUNTS_RECEIVABLE: AccountType.ASSET,
    AccountCategory.INVENTORY: AccountType.ASSET,
    AccountCategory.EQUIPMENT: AccountType.ASSET,
    AccountCategory.ACCOUNTS_PAYABLE: AccountType.LIABILITY,
    AccountCategory.SALARY_EXPENSE: AccountType.EXPENSE,
    AccountCategory.PURCHASE_EXPENSE: AccountType.EXPENSE,
    AccountCategory.SALES_REVENUE: AccountType.REVENUE,
}

# Simplified account-form choices and the (type, category) pair each creates.
SIMPLIFIED_ACCOUNT_TYPES: Dict[str, Tuple[AccountType, AccountCategory]] = {
    "Cash": (AccountType.ASSET, AccountCategory.CASH),
    "Bank": (AccountType.ASSET, AccountCategory.BANK),
    "Receivable": (AccountType.ASSET, AccountCategory.ACCOUNTS_RECEIVABLE),
    "Payable": (AccountType.LIABILITY, AccountCategory.ACCOUNTS_PAYABLE),
    "Expenses": (AccountType.EXPENSE, AccountCategory.OTHER),
    "Others": (AccountType.ASSET, AccountCategory.OTHER),
}

# Payment method -> category of the asset account that funds it.
PAYMENT_SOURCE_CATEGORIES: Dict[str, AccountCategory] = {
    PaymentMethod.CASH.value: AccountCategory.CASH,
    PaymentMethod.BANK_TRANSFER.value: AccountCategory.BANK,
}

# Purchases and sales settled later are flagged with this pseudo method.
CREDIT_PAYMENT_METHOD = "Credit"


def required_account_type(category: AccountCategory) -> Optional[AccountType]:
    """Return the account type a category is bound to, or ``None`` if free."""

    return CATEGORY_ACCOUNT_TYPES.get(category)


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_CURRENCY",
    "CURRENCY_SYMBOL",
    "AccountType",
    "AccountCategory",
    "AccountStatus",
    "TransactionType",
    "PaymentMethod",
    "PaymentStatus",
    "SalaryPaymentMethod",
    "SalaryPaymentStatus",
    "InvoiceType",
    "InvoiceStatus",
    "InvoicePaymentMethod",
    "EntryType",
    "SheetName",
    "CATEGORY_ACCOUNT_TYPES",
    "SIMPLIFIED_ACCOUNT_TYPES",
    "PAYMENT_SOURCE_CATEGORIES",
    "CREDIT_PAYMENT_METHOD",
    "required_account_type",
]

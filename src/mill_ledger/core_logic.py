"""Ledger and valuation rules for the mill.

This module is the single home of the financial arithmetic: invoice totals,
net salary, the double-entry account selection and the running ledger
balance. Everything above the "Runtime context" section is pure and can be
called with plain values. The workflows at the bottom orchestrate those rules
against a :class:`RuntimeContext`, which supplies either a live
:class:`~mill_ledger.api_client.BackendClient` or an offline snapshot workbook.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from math import ceil
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, TypeVar, Union

from openpyxl.workbook import Workbook

from . import data_manager, log
from .api_client import BackendClient
from .constants import (
    CREDIT_PAYMENT_METHOD,
    DEFAULT_CURRENCY,
    EXPECTED_SCHEMA_VERSION,
    PAYMENT_SOURCE_CATEGORIES,
    SIMPLIFIED_ACCOUNT_TYPES,
    AccountCategory,
    AccountType,
    EntryType,
    InvoicePaymentMethod,
    InvoiceStatus,
    InvoiceType,
    PaymentMethod,
    PaymentStatus,
    SalaryPaymentMethod,
    SalaryPaymentStatus,
    TransactionType,
    required_account_type,
)
from .exceptions import (
    BusinessRuleViolation,
    InvalidAccountType,
    LedgerIntegrityError,
    MissingReferenceError,
    NoMatchingAccount,
    ValidationError,
)
from .money import (
    ZERO,
    coerce_or_zero,
    is_blank,
    parse_decimal,
    parse_nonnegative,
    require_positive,
    round_money,
    to_wire,
)


T = TypeVar("T")
AccountLike = Union[str, data_manager.AccountRecord, data_manager.AccountRef]


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current UTC time when it is ``None``."""

    return candidate if candidate is not None else datetime.now(UTC)


def _collect(errors: Dict[str, str], field_name: str, parse: Callable[[], T]) -> Optional[T]:
    """Run ``parse`` and file any ``ValidationError`` under ``field_name``."""

    try:
        return parse()
    except ValidationError as exc:
        errors[field_name] = exc.field_errors.get(field_name, str(exc))
        return None


def _require_reference(errors: Dict[str, str], fields: Mapping[str, Any], field_name: str) -> Optional[str]:
    raw = fields.get(field_name)
    if is_blank(raw):
        errors[field_name] = f"{field_name} is required"
        return None
    return str(raw).strip()


def _parse_whole_number(value: Any, field_name: str, low: int, high: int, default: Optional[int] = None) -> int:
    parsed = parse_decimal(value, field_name)
    if parsed is None:
        if default is not None:
            return default
        raise ValidationError.for_field(field_name, f"{field_name} is required")
    if parsed != parsed.to_integral_value() or not low <= parsed <= high:
        raise ValidationError.for_field(field_name, f"{field_name} must be a whole number between {low} and {high}")
    return int(parsed)


def _parse_date(value: Any, field_name: str) -> Optional[date]:
    if is_blank(value):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError as exc:
        raise ValidationError.for_field(field_name, f"{field_name} must be a date (YYYY-MM-DD)") from exc


def _method_value(method: Union[str, Enum]) -> str:
    return method.value if isinstance(method, Enum) else str(method)


def _account_id(account: AccountLike) -> str:
    if isinstance(account, str):
        return account
    return account.account_id


# ---------------------------------------------------------------------------
# Invoice valuation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InvoiceTotals:
    """Derived invoice figures. Both are ``None`` until quantity and rate are known."""

    total_amount: Optional[Decimal]
    remaining_amount: Optional[Decimal]

    @property
    def is_complete(self) -> bool:
        return self.total_amount is not None


def compute_invoice_totals(wheat_quantity: Any, rate_per_kg: Any, initial_payment: Any = None) -> InvoiceTotals:
    """Derive the total and outstanding amount of a wheat purchase.

    Args:
        wheat_quantity (Any): Quantity in kilograms. Raw form text is accepted.
        rate_per_kg (Any): Price per kilogram.
        initial_payment (Any): Amount paid up front; blank means nothing paid.

    Returns:
        InvoiceTotals: ``total_amount = quantity x rate`` and
            ``remaining_amount = max(total - initial_payment, 0)``, both rounded
            to two places. When either quantity or rate is absent both totals
            are ``None``.

    Raises:
        ValidationError: If quantity or rate is present but not a positive
            finite number, or ``initial_payment`` is non-numeric or negative.
    """

    quantity = parse_decimal(wheat_quantity, "wheat_quantity")
    rate = parse_decimal(rate_per_kg, "rate_per_kg")
    paid = parse_nonnegative(initial_payment, "initial_payment")

    if quantity is not None and quantity <= ZERO:
        raise ValidationError.for_field("wheat_quantity", "wheat_quantity must be greater than 0")
    if rate is not None and rate <= ZERO:
        raise ValidationError.for_field("rate_per_kg", "rate_per_kg must be greater than 0")
    if quantity is None or rate is None:
        return InvoiceTotals(total_amount=None, remaining_amount=None)

    total = round_money(quantity * rate)
    remaining = round_money(max(total - paid, ZERO))
    log.debug("Invoice totals: %s x %s = %s (remaining %s)", quantity, rate, total, remaining)
    return InvoiceTotals(total_amount=total, remaining_amount=remaining)


@dataclass(frozen=True)
class PurchaseInvoice:
    """A validated wheat purchase ready to be posted to ``/api/invoice``."""

    invoice_type: InvoiceType
    warehouse: str
    wheat_quantity: Decimal
    rate_per_kg: Decimal
    total_amount: Decimal
    initial_payment: Decimal
    remaining_amount: Decimal
    payment_method: InvoicePaymentMethod = InvoicePaymentMethod.CASH
    status: InvoiceStatus = InvoiceStatus.PENDING
    pr_center: Optional[str] = None
    buyer: Optional[str] = None
    description: str = ""
    invoice_date: Optional[date] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "type": self.invoice_type.value,
            "warehouse": self.warehouse,
            "wheatQuantity": float(self.wheat_quantity),
            "ratePerKg": to_wire(self.rate_per_kg),
            "totalAmount": to_wire(self.total_amount),
            "initialPayment": to_wire(self.initial_payment),
            "remainingAmount": to_wire(self.remaining_amount),
            "paymentMethod": self.payment_method.value,
            "status": self.status.value,
            "description": self.description,
        }
        if self.invoice_date is not None:
            payload["date"] = self.invoice_date.isoformat()
        if self.pr_center is not None:
            payload["prCenter"] = self.pr_center
        if self.buyer is not None:
            payload["buyer"] = self.buyer
        return payload


def validate_invoice(fields: Mapping[str, Any]) -> PurchaseInvoice:
    """Validate raw invoice fields and return a :class:`PurchaseInvoice`.

    Government invoices must name a ``pr_center``; private invoices must name
    a ``buyer``. Every failing field is reported in one ``ValidationError``.
    """

    errors: Dict[str, str] = {}
    invoice_type = _collect(
        errors,
        "invoice_type",
        lambda: data_manager.parse_enum(InvoiceType, fields.get("invoice_type"), "invoice_type"),
    )
    quantity = _collect(errors, "wheat_quantity", lambda: require_positive(fields.get("wheat_quantity"), "wheat_quantity"))
    rate = _collect(errors, "rate_per_kg", lambda: require_positive(fields.get("rate_per_kg"), "rate_per_kg"))
    paid = _collect(errors, "initial_payment", lambda: parse_nonnegative(fields.get("initial_payment"), "initial_payment"))
    payment_method = _collect(
        errors,
        "payment_method",
        lambda: data_manager.parse_enum(
            InvoicePaymentMethod, fields.get("payment_method"), "payment_method", InvoicePaymentMethod.CASH
        ),
    )
    status = _collect(
        errors,
        "status",
        lambda: data_manager.parse_enum(InvoiceStatus, fields.get("status"), "status", InvoiceStatus.PENDING),
    )
    invoice_date = _collect(errors, "invoice_date", lambda: _parse_date(fields.get("invoice_date"), "invoice_date"))
    warehouse = _require_reference(errors, fields, "warehouse")

    pr_center: Optional[str] = None
    buyer: Optional[str] = None
    if invoice_type is InvoiceType.GOVERNMENT:
        pr_center = _require_reference(errors, fields, "pr_center")
    elif invoice_type is InvoiceType.PRIVATE:
        buyer = _require_reference(errors, fields, "buyer")

    if errors:
        log.error("Invoice validation failed: %s", errors)
        raise ValidationError.from_errors(errors)

    totals = compute_invoice_totals(quantity, rate, paid)
    return PurchaseInvoice(
        invoice_type=invoice_type,
        warehouse=warehouse,
        wheat_quantity=quantity,
        rate_per_kg=rate,
        total_amount=totals.total_amount,
        initial_payment=paid,
        remaining_amount=totals.remaining_amount,
        payment_method=payment_method,
        status=status,
        pr_center=pr_center,
        buyer=buyer,
        description=str(fields.get("description") or "").strip(),
        invoice_date=invoice_date,
    )


# ---------------------------------------------------------------------------
# Salary computation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SalaryBreakdown:
    overtime_amount: Decimal
    gross_salary: Decimal
    net_salary: Decimal


def compute_salary_breakdown(
    basic_salary: Any = None,
    allowances: Any = None,
    deductions: Any = None,
    overtime_hours: Any = None,
    overtime_rate: Any = None,
) -> SalaryBreakdown:
    """Compute overtime, gross and net pay from raw salary inputs.

    Unset or non-numeric inputs count as zero. The result is neither rounded
    nor clamped, so a negative net salary is returned as such.
    """

    basic = coerce_or_zero(basic_salary)
    overtime = coerce_or_zero(overtime_hours) * coerce_or_zero(overtime_rate)
    gross = basic + coerce_or_zero(allowances) + overtime
    net = gross - coerce_or_zero(deductions)
    log.debug("Salary breakdown: gross=%s overtime=%s net=%s", gross, overtime, net)
    return SalaryBreakdown(overtime_amount=overtime, gross_salary=gross, net_salary=net)


def compute_net_salary(
    basic_salary: Any = None,
    allowances: Any = None,
    deductions: Any = None,
    overtime_hours: Any = None,
    overtime_rate: Any = None,
) -> Decimal:
    """Return ``basic + allowances + overtime_hours x overtime_rate - deductions``."""

    return compute_salary_breakdown(basic_salary, allowances, deductions, overtime_hours, overtime_rate).net_salary


@dataclass(frozen=True)
class SalaryRecord:
    """A validated monthly salary ready for ``/api/financial/salaries``."""

    employee: str
    month: int
    year: int
    basic_salary: Decimal
    allowances: Decimal
    deductions: Decimal
    working_days: int
    total_days: int
    overtime_hours: Decimal
    overtime_rate: Decimal
    overtime_amount: Decimal
    net_salary: Decimal
    salary_account: str
    cash_account: str
    warehouse: str
    payment_date: date
    payment_method: SalaryPaymentMethod = SalaryPaymentMethod.CASH
    payment_status: SalaryPaymentStatus = SalaryPaymentStatus.PENDING
    notes: str = ""

    def to_payload(self) -> Dict[str, Any]:
        # netSalary is advisory; the backend recomputes it.
        return {
            "employee": self.employee,
            "month": self.month,
            "year": self.year,
            "basicSalary": to_wire(self.basic_salary),
            "allowances": to_wire(self.allowances),
            "deductions": to_wire(self.deductions),
            "workingDays": self.working_days,
            "totalDays": self.total_days,
            "overtimeHours": float(self.overtime_hours),
            "overtimeRate": to_wire(self.overtime_rate),
            "overtimeAmount": to_wire(self.overtime_amount),
            "netSalary": to_wire(self.net_salary),
            "salaryAccount": self.salary_account,
            "cashAccount": self.cash_account,
            "warehouse": self.warehouse,
            "paymentDate": self.payment_date.isoformat(),
            "paymentMethod": self.payment_method.value,
            "paymentStatus": self.payment_status.value,
            "notes": self.notes,
        }


def validate_salary(fields: Mapping[str, Any], *, today: Optional[date] = None) -> SalaryRecord:
    """Validate raw salary fields and return a :class:`SalaryRecord`.

    Args:
        fields (Mapping[str, Any]): Raw values keyed by snake_case field name.
        today (date | None): Reference date for the default month, year and
            payment date. Defaults to the current UTC date.

    Returns:
        SalaryRecord: Record carrying the computed overtime and net salary.

    Raises:
        ValidationError: Listing every failing field. ``basic_salary`` must be
            greater than zero, ``working_days`` within 1-31, ``total_days``
            within 28-31 and ``month`` within 1-12. The employee, salary
            account, cash account and warehouse references are required.
    """

    today = today or _resolve_timestamp(None).date()
    errors: Dict[str, str] = {}

    employee = _require_reference(errors, fields, "employee")
    month = _collect(errors, "month", lambda: _parse_whole_number(fields.get("month"), "month", 1, 12, today.month))
    year = _collect(errors, "year", lambda: _parse_whole_number(fields.get("year"), "year", 1900, 9999, today.year))
    basic = _collect(errors, "basic_salary", lambda: require_positive(fields.get("basic_salary"), "basic_salary"))
    amounts: Dict[str, Optional[Decimal]] = {}
    for name in ("allowances", "deductions", "overtime_hours", "overtime_rate"):
        amounts[name] = _collect(errors, name, lambda name=name: parse_nonnegative(fields.get(name), name))
    working_days = _collect(
        errors, "working_days", lambda: _parse_whole_number(fields.get("working_days"), "working_days", 1, 31)
    )
    total_days = _collect(
        errors, "total_days", lambda: _parse_whole_number(fields.get("total_days"), "total_days", 28, 31)
    )
    payment_date = _collect(errors, "payment_date", lambda: _parse_date(fields.get("payment_date"), "payment_date"))
    payment_method = _collect(
        errors,
        "payment_method",
        lambda: data_manager.parse_enum(
            SalaryPaymentMethod, fields.get("payment_method"), "payment_method", SalaryPaymentMethod.CASH
        ),
    )
    payment_status = _collect(
        errors,
        "payment_status",
        lambda: data_manager.parse_enum(
            SalaryPaymentStatus, fields.get("payment_status"), "payment_status", SalaryPaymentStatus.PENDING
        ),
    )
    salary_account = _require_reference(errors, fields, "salary_account")
    cash_account = _require_reference(errors, fields, "cash_account")
    warehouse = _require_reference(errors, fields, "warehouse")

    if errors:
        log.error("Salary validation failed: %s", errors)
        raise ValidationError.from_errors(errors)

    breakdown = compute_salary_breakdown(
        basic,
        amounts["allowances"],
        amounts["deductions"],
        amounts["overtime_hours"],
        amounts["overtime_rate"],
    )
    return SalaryRecord(
        employee=employee,
        month=month,
        year=year,
        basic_salary=basic,
        allowances=amounts["allowances"],
        deductions=amounts["deductions"],
        working_days=working_days,
        total_days=total_days,
        overtime_hours=amounts["overtime_hours"],
        overtime_rate=amounts["overtime_rate"],
        overtime_amount=breakdown.overtime_amount,
        net_salary=breakdown.net_salary,
        salary_account=salary_account,
        cash_account=cash_account,
        warehouse=warehouse,
        payment_date=payment_date or today,
        payment_method=payment_method,
        payment_status=payment_status,
        notes=str(fields.get("notes") or "").strip(),
    )


def _account_in_role(
    account_id: str,
    accounts: Iterable[data_manager.AccountRecord],
    account_type: AccountType,
    role: str,
) -> data_manager.AccountRecord:
    account = next((candidate for candidate in accounts if candidate.account_id == account_id), None)
    if account is None:
        log.warning("No %s account with id '%s'", role, account_id)
        raise NoMatchingAccount(account_type.value, f"{role} account '{account_id}' was not found")
    if account.account_type is not account_type:
        log.error(
            "Account '%s' is %s but the %s role requires %s",
            account_id,
            account.account_type.value,
            role,
            account_type.value,
        )
        raise InvalidAccountType(
            f"{role} account '{account.account_name or account_id}' must be an {account_type.value} account"
        )
    return account


def resolve_salary_accounts(
    salary_account_id: str,
    cash_account_id: str,
    accounts: Iterable[data_manager.AccountRecord],
) -> Tuple[data_manager.AccountRecord, data_manager.AccountRecord]:
    """Return ``(salary_account, cash_account)`` after checking their roles.

    Raises:
        NoMatchingAccount: If either identifier is unknown.
        InvalidAccountType: If the salary account is not an Expense account or
            the cash account is not an Asset account.
    """

    accounts = list(accounts)
    salary = _account_in_role(salary_account_id, accounts, AccountType.EXPENSE, "Salary")
    cash = _account_in_role(cash_account_id, accounts, AccountType.ASSET, "Cash")
    return salary, cash


_SALARY_STATUS_TO_PAYMENT: Dict[SalaryPaymentStatus, PaymentStatus] = {
    SalaryPaymentStatus.PENDING: PaymentStatus.PENDING,
    SalaryPaymentStatus.PAID: PaymentStatus.COMPLETED,
    SalaryPaymentStatus.FAILED: PaymentStatus.FAILED,
}


# ---------------------------------------------------------------------------
# Double-entry transaction builder
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TransactionPair:
    """Accounts selected for one double-entry posting."""

    debit_account: data_manager.AccountRecord
    credit_account: data_manager.AccountRecord
    amount: Decimal


@dataclass(frozen=True)
class TransactionDraft:
    """An unposted transaction in the shape ``POST /api/financial/transactions`` expects."""

    transaction_type: TransactionType
    description: str
    amount: Decimal
    debit_account: str
    credit_account: str
    warehouse: Optional[str] = None
    payment_method: PaymentMethod = PaymentMethod.CASH
    payment_status: PaymentStatus = PaymentStatus.COMPLETED
    transaction_date: Optional[datetime] = None
    reference: Optional[str] = None
    currency: str = DEFAULT_CURRENCY

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "transactionType": self.transaction_type.value,
            "description": self.description,
            "amount": to_wire(self.amount),
            "transactionDate": _resolve_timestamp(self.transaction_date).isoformat(),
            "debitAccount": self.debit_account,
            "creditAccount": self.credit_account,
            "paymentMethod": self.payment_method.value,
            "paymentStatus": self.payment_status.value,
            "currency": self.currency,
            "warehouse": self.warehouse,
        }
        if self.reference:
            payload["reference"] = self.reference
        return payload


def find_account_by_category(
    accounts: Iterable[data_manager.AccountRecord],
    category: AccountCategory,
    *,
    account_type: Optional[AccountType] = None,
) -> data_manager.AccountRecord:
    """Return the first active account of ``category`` in the supplied order.

    Raises:
        NoMatchingAccount: If no active account matches.
    """

    for account in accounts:
        if not account.is_active or account.category is not category:
            continue
        if account_type is not None and account.account_type is not account_type:
            continue
        return account
    log.warning("No active %s account found", category.value)
    raise NoMatchingAccount(category.value)


def find_payment_source(
    payment_method: Union[str, PaymentMethod],
    accounts: Iterable[data_manager.AccountRecord],
) -> data_manager.AccountRecord:
    """Pick the asset account that funds a payment made with ``payment_method``.

    ``Cash`` maps to the first active Asset account of category Cash and
    ``Bank Transfer`` to the first active Asset account of category Bank.

    Raises:
        ValidationError: For any other payment method.
        NoMatchingAccount: If no such account exists. No other asset account
            is ever substituted.
    """

    method = _method_value(payment_method)
    category = PAYMENT_SOURCE_CATEGORIES.get(method)
    if category is None:
        log.error("Unsupported payment method for an expense: %s", method)
        raise ValidationError.for_field(
            "payment_method", f"payment_method must be Cash or Bank Transfer, got '{method}'"
        )
    return find_account_by_category(accounts, category, account_type=AccountType.ASSET)


def build_expense_transaction(
    expense_account_id: str,
    amount: Any,
    payment_method: Union[str, PaymentMethod],
    accounts: Iterable[data_manager.AccountRecord],
) -> TransactionPair:
    """Select the debit and credit accounts for an expense payment.

    Args:
        expense_account_id (str): Identifier of the expense being paid. It
            becomes the debit account.
        amount (Any): Amount to post; must be greater than zero.
        payment_method (str | PaymentMethod): ``Cash`` or ``Bank Transfer``.
        accounts (Iterable[AccountRecord]): Chart of accounts in the order the
            payment source should be searched.

    Returns:
        TransactionPair: Expense account debited, payment source credited.

    Raises:
        ValidationError: If ``amount`` is not positive or the payment method is
            not supported.
        NoMatchingAccount: If the expense account is unknown or no payment
            source account exists.
        InvalidAccountType: If ``expense_account_id`` is not an Expense account.
    """

    accounts = list(accounts)
    value = require_positive(amount, "amount")
    expense = _account_in_role(expense_account_id, accounts, AccountType.EXPENSE, "Expense")
    source = find_payment_source(payment_method, accounts)
    log.debug(
        "Expense %s: debit '%s', credit '%s'",
        value,
        expense.account_name,
        source.account_name,
    )
    return TransactionPair(debit_account=expense, credit_account=source, amount=value)


def build_transaction(fields: Mapping[str, Any], *, timestamp: Optional[datetime] = None) -> TransactionDraft:
    """Validate a free-form transaction entry.

    ``description``, ``amount`` (> 0), ``debit_account``, ``credit_account``
    and ``warehouse`` are required and the two accounts must differ. Type,
    method and status default to Other, Cash and Completed.
    """

    errors: Dict[str, str] = {}
    description = str(fields.get("description") or "").strip()
    if not description:
        errors["description"] = "description is required"
    amount = _collect(errors, "amount", lambda: require_positive(fields.get("amount"), "amount"))
    debit = _require_reference(errors, fields, "debit_account")
    credit = _require_reference(errors, fields, "credit_account")
    if debit is not None and debit == credit:
        errors["credit_account"] = "Debit and credit accounts must be different"
    warehouse = _require_reference(errors, fields, "warehouse")
    transaction_type = _collect(
        errors,
        "transaction_type",
        lambda: data_manager.parse_enum(
            TransactionType, fields.get("transaction_type"), "transaction_type", TransactionType.OTHER
        ),
    )
    payment_method = _collect(
        errors,
        "payment_method",
        lambda: data_manager.parse_enum(PaymentMethod, fields.get("payment_method"), "payment_method", PaymentMethod.CASH),
    )
    payment_status = _collect(
        errors,
        "payment_status",
        lambda: data_manager.parse_enum(
            PaymentStatus, fields.get("payment_status"), "payment_status", PaymentStatus.COMPLETED
        ),
    )
    transaction_date = _collect(
        errors, "transaction_date", lambda: _parse_date(fields.get("transaction_date"), "transaction_date")
    )

    if errors:
        log.error("Transaction validation failed: %s", errors)
        raise ValidationError.from_errors(errors)

    when = timestamp
    if transaction_date is not None:
        when = datetime.combine(transaction_date, datetime.min.time(), tzinfo=UTC)
    return TransactionDraft(
        transaction_type=transaction_type,
        description=description,
        amount=amount,
        debit_account=debit,
        credit_account=credit,
        warehouse=warehouse,
        payment_method=payment_method,
        payment_status=payment_status,
        transaction_date=_resolve_timestamp(when),
        reference=str(fields.get("reference") or "").strip() or None,
        currency=str(fields.get("currency") or DEFAULT_CURRENCY),
    )


def _settlement_account(
    payment_method: str, accounts: Sequence[data_manager.AccountRecord]
) -> Tuple[data_manager.AccountRecord, PaymentMethod]:
    if payment_method == PaymentMethod.BANK_TRANSFER.value:
        account = find_account_by_category(accounts, AccountCategory.BANK, account_type=AccountType.ASSET)
        return account, PaymentMethod.BANK_TRANSFER
    account = find_account_by_category(accounts, AccountCategory.CASH, account_type=AccountType.ASSET)
    return account, PaymentMethod.CASH


def _draft_method(payment_method: str) -> PaymentMethod:
    # "Credit" has no counterpart on the transaction schema.
    try:
        return PaymentMethod(payment_method)
    except ValueError:
        return PaymentMethod.OTHER


def _settlement_amounts(total_amount: Any, paid_amount: Any) -> Tuple[Decimal, Decimal]:
    total = require_positive(total_amount, "total_amount")
    paid = parse_nonnegative(paid_amount, "paid_amount")
    if paid > total:
        log.error("Paid amount %s exceeds total %s", paid, total)
        raise ValidationError.for_field("paid_amount", "paid_amount cannot exceed total_amount")
    return total, paid


def build_purchase_entries(
    total_amount: Any,
    paid_amount: Any,
    payment_method: Union[str, PaymentMethod],
    accounts: Iterable[data_manager.AccountRecord],
    *,
    description: str = "Purchase",
    warehouse: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> List[TransactionDraft]:
    """Return the default postings for a purchase.

    A purchase on credit (method ``Credit`` or anything left unpaid) debits
    Purchase Expense and credits Accounts Payable for the full total, then
    records a payment from Accounts Payable against Cash or Bank for the part
    already paid. A fully paid purchase debits Purchase Expense and credits
    Cash or Bank directly. Bank is used only for ``Bank Transfer``.
    """

    accounts = list(accounts)
    total, paid = _settlement_amounts(total_amount, paid_amount)
    method = _method_value(payment_method)
    when = _resolve_timestamp(timestamp)
    expense = find_account_by_category(accounts, AccountCategory.PURCHASE_EXPENSE)

    if method == CREDIT_PAYMENT_METHOD or paid < total:
        payable = find_account_by_category(accounts, AccountCategory.ACCOUNTS_PAYABLE)
        drafts = [
            TransactionDraft(
                transaction_type=TransactionType.PURCHASE,
                description=description,
                amount=total,
                debit_account=expense.account_id,
                credit_account=payable.account_id,
                warehouse=warehouse,
                payment_method=_draft_method(method),
                payment_status=PaymentStatus.PENDING,
                transaction_date=when,
            )
        ]
        if paid > ZERO:
            source, source_method = _settlement_account(method, accounts)
            drafts.append(
                TransactionDraft(
                    transaction_type=TransactionType.PAYMENT,
                    description=f"Payment for {description}",
                    amount=paid,
                    debit_account=payable.account_id,
                    credit_account=source.account_id,
                    warehouse=warehouse,
                    payment_method=source_method,
                    payment_status=PaymentStatus.COMPLETED,
                    transaction_date=when,
                )
            )
        return drafts

    source, source_method = _settlement_account(method, accounts)
    return [
        TransactionDraft(
            transaction_type=TransactionType.PURCHASE,
            description=description,
            amount=total,
            debit_account=expense.account_id,
            credit_account=source.account_id,
            warehouse=warehouse,
            payment_method=source_method,
            payment_status=PaymentStatus.COMPLETED,
            transaction_date=when,
        )
    ]


def build_sale_entries(
    total_amount: Any,
    received_amount: Any,
    payment_method: Union[str, PaymentMethod],
    accounts: Iterable[data_manager.AccountRecord],
    *,
    description: str = "Sale",
    warehouse: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> List[TransactionDraft]:
    """Return the default postings for a sale, mirroring :func:`build_purchase_entries`."""

    accounts = list(accounts)
    total, received = _settlement_amounts(total_amount, received_amount)
    method = _method_value(payment_method)
    when = _resolve_timestamp(timestamp)
    revenue = find_account_by_category(accounts, AccountCategory.SALES_REVENUE)

    if method == CREDIT_PAYMENT_METHOD or received < total:
        receivable = find_account_by_category(accounts, AccountCategory.ACCOUNTS_RECEIVABLE)
        drafts = [
            TransactionDraft(
                transaction_type=TransactionType.SALE,
                description=description,
                amount=total,
                debit_account=receivable.account_id,
                credit_account=revenue.account_id,
                warehouse=warehouse,
                payment_method=_draft_method(method),
                payment_status=PaymentStatus.PENDING,
                transaction_date=when,
            )
        ]
        if received > ZERO:
            source, source_method = _settlement_account(method, accounts)
            drafts.append(
                TransactionDraft(
                    transaction_type=TransactionType.RECEIPT,
                    description=f"Receipt for {description}",
                    amount=received,
                    debit_account=source.account_id,
                    credit_account=receivable.account_id,
                    warehouse=warehouse,
                    payment_method=source_method,
                    payment_status=PaymentStatus.COMPLETED,
                    transaction_date=when,
                )
            )
        return drafts

    source, source_method = _settlement_account(method, accounts)
    return [
        TransactionDraft(
            transaction_type=TransactionType.SALE,
            description=description,
            amount=total,
            debit_account=source.account_id,
            credit_account=revenue.account_id,
            warehouse=warehouse,
            payment_method=source_method,
            payment_status=PaymentStatus.COMPLETED,
            transaction_date=when,
        )
    ]


def build_salary_transaction(
    record: SalaryRecord,
    accounts: Iterable[data_manager.AccountRecord],
    *,
    timestamp: Optional[datetime] = None,
) -> TransactionDraft:
    """Debit the salary expense account and credit the cash account by the net salary."""

    salary_account, cash_account = resolve_salary_accounts(record.salary_account, record.cash_account, accounts)
    if record.net_salary <= ZERO:
        log.error("Cannot post non-positive net salary %s for '%s'", record.net_salary, record.employee)
        raise ValidationError.for_field("net_salary", "net_salary must be greater than 0 to be posted")
    return TransactionDraft(
        transaction_type=TransactionType.SALARY,
        description=f"Salary {record.month:02d}/{record.year}",
        amount=round_money(record.net_salary),
        debit_account=salary_account.account_id,
        credit_account=cash_account.account_id,
        warehouse=record.warehouse,
        payment_method=PaymentMethod(record.payment_method.value),
        payment_status=_SALARY_STATUS_TO_PAYMENT[record.payment_status],
        transaction_date=_resolve_timestamp(timestamp),
    )


def resolve_simplified_account_type(name: str) -> Tuple[AccountType, AccountCategory]:
    """Map an account-form choice such as ``Receivable`` to ``(type, category)``."""

    try:
        return SIMPLIFIED_ACCOUNT_TYPES[name]
    except KeyError as exc:
        choices = ", ".join(SIMPLIFIED_ACCOUNT_TYPES)
        raise ValidationError.for_field("account_type", f"account_type must be one of: {choices}") from exc


def validate_account(account: data_manager.AccountRecord) -> None:
    """Check category/type consistency and the non-negative opening balance.

    Raises:
        InvalidAccountType: If the category is bound to a different type.
        ValidationError: If the opening balance is negative.
    """

    expected = required_account_type(account.category)
    if expected is not None and account.account_type is not expected:
        log.error(
            "Account '%s' has category %s but type %s",
            account.account_id,
            account.category.value,
            account.account_type.value,
        )
        raise InvalidAccountType(
            f"Category '{account.category.value}' requires account type '{expected.value}', "
            f"got '{account.account_type.value}'"
        )
    if account.opening_balance < ZERO:
        raise ValidationError.for_field("opening_balance", "opening_balance cannot be negative")


# ---------------------------------------------------------------------------
# Running ledger balance
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LedgerEntry:
    """One line of an account statement with the balance after it."""

    transaction_id: str
    transaction_date: Optional[datetime]
    transaction_type: TransactionType
    description: str
    entry_type: EntryType
    amount: Decimal
    balance: Decimal
    other_party: str
    reference: Optional[str] = None


@dataclass(frozen=True)
class LedgerStatement:
    account_id: str
    opening_balance: Decimal
    closing_balance: Decimal
    total_debits: Decimal
    total_credits: Decimal
    entries: Tuple[LedgerEntry, ...]


def _within(entry_date: Optional[datetime], start_date: Optional[date], end_date: Optional[date]) -> bool:
    if start_date is None and end_date is None:
        return True
    if entry_date is None:
        return False
    day = entry_date.date()
    if start_date is not None and day < start_date:
        return False
    if end_date is not None and day > end_date:
        return False
    return True


def compute_ledger(
    account: AccountLike,
    opening_balance: Any,
    transactions: Iterable[data_manager.TransactionRecord],
    *,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> LedgerStatement:
    """Rebuild an account statement with running balances.

    Transactions are accumulated in the order supplied, which must be the
    ascending order the backend returns them in. A transaction debiting the
    account adds its amount to the balance; one crediting it subtracts the
    amount. This convention is applied to every account type. Transactions
    that do not touch the account are skipped.

    Args:
        account (str | AccountRecord | AccountRef): Account whose statement is
            built.
        opening_balance (Any): Balance before the first transaction, or a
            checkpoint balance when only a later slice of history is passed.
            Unset means zero.
        transactions (Iterable[TransactionRecord]): History in source order.
        start_date (date | None): First day of entries to display.
        end_date (date | None): Last day of entries to display.

    Returns:
        LedgerStatement: Entries newest first. The date bounds only filter
            ``entries``; balances, totals and ``closing_balance`` always cover
            the full history.

    Raises:
        ValidationError: If ``opening_balance`` is not a finite number.
        LedgerIntegrityError: If a transaction debits and credits the account
            or touches it with a non-positive amount.
    """

    account_id = _account_id(account)
    parsed_opening = parse_decimal(opening_balance, "opening_balance")
    opening = parsed_opening if parsed_opening is not None else ZERO

    balance = opening
    total_debits = ZERO
    total_credits = ZERO
    entries: List[LedgerEntry] = []
    for transaction in transactions:
        is_debit = transaction.debit_account.account_id == account_id
        is_credit = transaction.credit_account.account_id == account_id
        if is_debit and is_credit:
            log.error("Transaction '%s' debits and credits account '%s'", transaction.transaction_id, account_id)
            raise LedgerIntegrityError(
                f"Transaction '{transaction.transaction_id}' uses account '{account_id}' on both sides"
            )
        if (is_debit or is_credit) and transaction.amount <= ZERO:
            log.error("Transaction '%s' has non-positive amount %s", transaction.transaction_id, transaction.amount)
            raise LedgerIntegrityError(
                f"Transaction '{transaction.transaction_id}' has a non-positive amount {transaction.amount}"
            )
        if is_debit:
            balance += transaction.amount
            total_debits += transaction.amount
            entry_type = EntryType.DEBIT
            other_party = transaction.credit_account.display_name
        elif is_credit:
            balance -= transaction.amount
            total_credits += transaction.amount
            entry_type = EntryType.CREDIT
            other_party = transaction.debit_account.display_name
        else:
            continue

        if _within(transaction.transaction_date, start_date, end_date):
            entries.append(
                LedgerEntry(
                    transaction_id=transaction.transaction_id,
                    transaction_date=transaction.transaction_date,
                    transaction_type=transaction.transaction_type,
                    description=transaction.description,
                    entry_type=entry_type,
                    amount=transaction.amount,
                    balance=balance,
                    other_party=other_party,
                    reference=transaction.reference,
                )
            )

    entries.reverse()
    log.debug(
        "Ledger for '%s': opening=%s closing=%s (%d entries shown)",
        account_id,
        opening,
        balance,
        len(entries),
    )
    return LedgerStatement(
        account_id=account_id,
        opening_balance=opening,
        closing_balance=balance,
        total_debits=total_debits,
        total_credits=total_credits,
        entries=tuple(entries),
    )


def paginate_entries(entries: Sequence[LedgerEntry], page: int = 1, limit: int = 20) -> Tuple[List[LedgerEntry], int]:
    """Return ``(entries on page, total pages)`` for display."""

    if page < 1 or limit < 1:
        raise ValidationError.for_field("page", "page and limit must be at least 1")
    total_pages = max(1, ceil(len(entries) / limit))
    start = (page - 1) * limit
    return list(entries[start : start + limit]), total_pages


# ---------------------------------------------------------------------------
# Financial summary and reconciliation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FinancialSummary:
    cash_in_hand: Decimal
    bank_balance: Decimal
    total_receivables: Decimal
    total_payables: Decimal
    total_assets: Decimal
    total_liabilities: Decimal
    total_equity: Decimal
    total_revenue: Decimal
    total_expenses: Decimal

    @property
    def net_worth(self) -> Decimal:
        return self.total_assets - self.total_liabilities

    @property
    def net_income(self) -> Decimal:
        return self.total_revenue - self.total_expenses


def summarize_accounts(accounts: Iterable[data_manager.AccountRecord]) -> FinancialSummary:
    """Aggregate current balances of active accounts into dashboard totals."""

    by_category: Dict[AccountCategory, Decimal] = {}
    by_type: Dict[AccountType, Decimal] = {}
    for account in accounts:
        if not account.is_active:
            continue
        by_category[account.category] = by_category.get(account.category, ZERO) + account.current_balance
        by_type[account.account_type] = by_type.get(account.account_type, ZERO) + account.current_balance

    return FinancialSummary(
        cash_in_hand=by_category.get(AccountCategory.CASH, ZERO),
        bank_balance=by_category.get(AccountCategory.BANK, ZERO),
        total_receivables=by_category.get(AccountCategory.ACCOUNTS_RECEIVABLE, ZERO),
        total_payables=by_category.get(AccountCategory.ACCOUNTS_PAYABLE, ZERO),
        total_assets=by_type.get(AccountType.ASSET, ZERO),
        total_liabilities=by_type.get(AccountType.LIABILITY, ZERO),
        total_equity=by_type.get(AccountType.EQUITY, ZERO),
        total_revenue=by_type.get(AccountType.REVENUE, ZERO),
        total_expenses=by_type.get(AccountType.EXPENSE, ZERO),
    )


@dataclass(frozen=True)
class Reconciliation:
    """Comparison of a locally derived balance against the backend's figure."""

    local_estimate: Decimal
    server_value: Decimal
    difference: Decimal

    @property
    def matches(self) -> bool:
        return self.difference == ZERO

    @property
    def authoritative(self) -> Decimal:
        return self.server_value


def _require_present(value: Any, field_name: str) -> Decimal:
    parsed = parse_decimal(value, field_name)
    if parsed is None:
        raise ValidationError.for_field(field_name, f"{field_name} is required")
    return parsed


def reconcile(local_estimate: Any, server_value: Any, *, label: str = "balance") -> Reconciliation:
    """Compare a client-side estimate with the server value, to the cent.

    The server value always wins; a mismatch is only reported and logged.
    """

    local = _require_present(local_estimate, "local_estimate")
    server = _require_present(server_value, "server_value")
    difference = round_money(server) - round_money(local)
    if difference != ZERO:
        log.warning("Reconciliation mismatch for %s: local=%s server=%s", label, local, server)
    return Reconciliation(local_estimate=local, server_value=server, difference=difference)


# ---------------------------------------------------------------------------
# Runtime context
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RuntimeContext:
    """Configuration plus the data source used by the workflows below.

    Exactly one of ``client`` (online) and ``workbook`` (offline snapshot) is
    set.
    """

    settings: data_manager.ConfigSettings
    client: Optional[BackendClient] = None
    workbook: Optional[Workbook] = None
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)

    @property
    def is_offline(self) -> bool:
        return self.workbook is not None


@dataclass(frozen=True)
class ExpenseCommand:
    """User intent for paying an expense from cash or bank."""

    expense_account_id: str
    amount: Any
    payment_method: Union[str, PaymentMethod]
    description: str
    warehouse: str
    reference: Optional[str] = None
    timestamp: Optional[datetime] = None


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Drop cache buckets so the next read fetches authoritative data."""

    if not names:
        return
    log.debug("Invalidating cache buckets: %s", ", ".join(names))
    for name in names:
        context._cache.pop(name, None)


def _ensure_accounts_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "accounts")
    if "all" not in bucket:
        if context.workbook is not None:
            all_accounts = list(data_manager.iter_accounts(context.workbook))
        else:
            all_accounts = _require_client(context).list_all_accounts()
        bucket["all"] = all_accounts
        bucket["active"] = [account for account in all_accounts if account.is_active]
        bucket["by_id"] = {account.account_id: account for account in all_accounts}
        log.debug(
            "Populated accounts cache with %d entries (%d active)",
            len(all_accounts),
            len(bucket["active"]),
        )
    return bucket


def _require_client(context: RuntimeContext) -> BackendClient:
    if context.client is None:
        log.error("Backend operation requested in offline mode")
        raise BusinessRuleViolation("This operation needs the backend; offline snapshots are read-only")
    return context.client


def load_runtime_context(
    config_path: Optional[Path] = None,
    *,
    offline: bool = False,
    token: Optional[str] = None,
) -> RuntimeContext:
    """Resolve ``config.ini`` and attach a backend client or snapshot workbook.

    Args:
        config_path (Path | None): Explicit configuration path. When omitted
            the data layer searches upwards from the working directory.
        offline (bool): Read the configured snapshot workbook instead of
            talking to the backend.
        token (str | None): Bearer token overriding ``[Backend] Token``.

    Returns:
        RuntimeContext: Context with an empty cache.

    Raises:
        FileNotFoundError: If the configuration file or the snapshot is
            missing, or ``offline`` is requested without ``SnapshotFile``.
        KeyError: When ``[Backend] BaseUrl`` is missing.
    """

    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)

    if offline:
        if settings.snapshot_file is None:
            raise FileNotFoundError("Offline mode requires [Ledger] SnapshotFile in config.ini")
        workbook = data_manager.open_workbook(settings.snapshot_file)
        log.info("Loaded offline runtime context from '%s'", settings.snapshot_file)
        return RuntimeContext(settings=settings, workbook=workbook)

    client = BackendClient.from_settings(settings, token=token)
    log.info("Loaded runtime context for backend '%s'", settings.base_url)
    return RuntimeContext(settings=settings, client=client)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Refuse to read a snapshot written for another schema version.

    Raises:
        RuntimeError: If ``[Ledger] SchemaVersion`` differs from
            ``EXPECTED_SCHEMA_VERSION``.
    """

    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Snapshot schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Snapshot schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )
    log.debug("Schema version '%s' validated", context.settings.schema_version)


def list_accounts(context: RuntimeContext, *, include_inactive: bool = False) -> List[data_manager.AccountRecord]:
    bucket = _ensure_accounts_cache(context)
    accounts = bucket["all"] if include_inactive else bucket["active"]
    return list(accounts)


def get_account(context: RuntimeContext, account_id: str) -> data_manager.AccountRecord:
    """Return the cached account for ``account_id``.

    Raises:
        MissingReferenceError: If the account does not exist.
    """

    account = _ensure_accounts_cache(context)["by_id"].get(account_id)
    if account is None:
        log.warning("Account '%s' not found", account_id)
        raise MissingReferenceError(f"Account '{account_id}' not found")
    return account


def load_account_history(context: RuntimeContext, account_id: str) -> List[data_manager.TransactionRecord]:
    """Return the full, ascending history of ``account_id`` from the active source."""

    if context.workbook is not None:
        return [
            transaction
            for transaction in data_manager.iter_transactions(context.workbook)
            if account_id in (transaction.debit_account.account_id, transaction.credit_account.account_id)
        ]
    return _require_client(context).fetch_account_history(account_id)


def load_ledger(
    context: RuntimeContext,
    account_id: str,
    *,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> LedgerStatement:
    """Build the statement of ``account_id`` from its opening balance and history."""

    account = get_account(context, account_id)
    history = load_account_history(context, account_id)
    return compute_ledger(account, account.opening_balance, history, start_date=start_date, end_date=end_date)


def load_summary(context: RuntimeContext) -> FinancialSummary:
    return summarize_accounts(list_accounts(context))


def record_transaction(context: RuntimeContext, draft: TransactionDraft) -> Mapping[str, Any]:
    """Post ``draft`` and drop cached balances.

    Raises:
        BusinessRuleViolation: In offline mode.
        ApiError: Any failure reported by the client.
    """

    client = _require_client(context)
    response = client.create_transaction(draft.to_payload())
    _invalidate_cache(context, "accounts")
    log.info(
        "Posted %s transaction of %s (debit '%s', credit '%s')",
        draft.transaction_type.value,
        draft.amount,
        draft.debit_account,
        draft.credit_account,
    )
    return response


def record_expense(context: RuntimeContext, command: ExpenseCommand) -> Mapping[str, Any]:
    """Select accounts for an expense payment and post it.

    The payment source is chosen from the active accounts in backend order.
    """

    if not command.description.strip():
        raise ValidationError.for_field("description", "description is required")
    if is_blank(command.warehouse):
        raise ValidationError.for_field("warehouse", "warehouse is required")

    pair = build_expense_transaction(
        command.expense_account_id,
        command.amount,
        command.payment_method,
        list_accounts(context),
    )
    draft = TransactionDraft(
        transaction_type=TransactionType.PAYMENT,
        description=command.description.strip(),
        amount=pair.amount,
        debit_account=pair.debit_account.account_id,
        credit_account=pair.credit_account.account_id,
        warehouse=command.warehouse,
        payment_method=PaymentMethod(_method_value(command.payment_method)),
        payment_status=PaymentStatus.COMPLETED,
        transaction_date=_resolve_timestamp(command.timestamp),
        reference=command.reference,
        currency=context.settings.currency,
    )
    return record_transaction(context, draft)


def record_salary(context: RuntimeContext, record: SalaryRecord) -> Mapping[str, Any]:
    """Check the salary and cash account roles, then post the salary record."""

    resolve_salary_accounts(record.salary_account, record.cash_account, list_accounts(context, include_inactive=True))
    response = _require_client(context).create_salary(record.to_payload())
    _invalidate_cache(context, "accounts")
    log.info(
        "Posted salary for employee '%s' %02d/%d (net %s)",
        record.employee,
        record.month,
        record.year,
        record.net_salary,
    )
    return response


def record_invoice(context: RuntimeContext, invoice: PurchaseInvoice) -> Mapping[str, Any]:
    response = _require_client(context).create_invoice(invoice.to_payload())
    _invalidate_cache(context, "accounts")
    log.info(
        "Posted %s invoice: %s kg x %s = %s (remaining %s)",
        invoice.invoice_type.value,
        invoice.wheat_quantity,
        invoice.rate_per_kg,
        invoice.total_amount,
        invoice.remaining_amount,
    )
    return response


__all__ = [
    "InvoiceTotals",
    "PurchaseInvoice",
    "compute_invoice_totals",
    "validate_invoice",
    "SalaryBreakdown",
    "SalaryRecord",
    "compute_salary_breakdown",
    "compute_net_salary",
    "validate_salary",
    "resolve_salary_accounts",
    "build_salary_transaction",
    "TransactionPair",
    "TransactionDraft",
    "find_account_by_category",
    "find_payment_source",
    "build_expense_transaction",
    "build_transaction",
    "build_purchase_entries",
    "build_sale_entries",
    "resolve_simplified_account_type",
    "validate_account",
    "LedgerEntry",
    "LedgerStatement",
    "compute_ledger",
    "paginate_entries",
    "FinancialSummary",
    "summarize_accounts",
    "Reconciliation",
    "reconcile",
    "RuntimeContext",
    "ExpenseCommand",
    "load_runtime_context",
    "ensure_schema_version",
    "list_accounts",
    "get_account",
    "load_account_history",
    "load_ledger",
    "load_summary",
    "record_transaction",
    "record_expense",
    "record_salary",
    "record_invoice",
]

"""Immutable entry-form state and the pure reducer that drives it.

A front end keeps one :class:`FormState` per open form and replaces it with
``reduce(state, action)`` on every event. The reducer never performs I/O; the
caller posts :func:`to_payload` itself and feeds the outcome back as
:class:`SubmitSucceeded` or :class:`SubmitFailed`.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Optional, Union

from . import core_logic, log
from .constants import (
    InvoicePaymentMethod,
    InvoiceStatus,
    InvoiceType,
    PaymentMethod,
    PaymentStatus,
    SalaryPaymentMethod,
    SalaryPaymentStatus,
    TransactionType,
)
from .exceptions import ValidationError


class FormKind(str, Enum):
    GOVERNMENT_INVOICE = "government_invoice"
    PRIVATE_INVOICE = "private_invoice"
    SALARY = "salary"
    TRANSACTION = "transaction"


@dataclass(frozen=True)
class FormState:
    """Snapshot of a form: raw values, derived figures and submission status."""

    kind: FormKind
    values: Mapping[str, str]
    derived: Mapping[str, Optional[Decimal]]
    errors: Mapping[str, str]
    submitting: bool = False
    submit_error: Optional[str] = None
    today: Optional[date] = None

    def value(self, name: str) -> str:
        return self.values.get(name, "")


@dataclass(frozen=True)
class FieldChanged:
    name: str
    value: str


@dataclass(frozen=True)
class SubmitRequested:
    pass


@dataclass(frozen=True)
class SubmitFailed:
    message: str


@dataclass(frozen=True)
class SubmitSucceeded:
    pass


@dataclass(frozen=True)
class FormReset:
    pass


FormAction = Union[FieldChanged, SubmitRequested, SubmitFailed, SubmitSucceeded, FormReset]


def _freeze(mapping: Mapping[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping))


def _invoice_defaults(invoice_type: InvoiceType, today: date) -> Dict[str, str]:
    counterpart = "pr_center" if invoice_type is InvoiceType.GOVERNMENT else "buyer"
    return {
        "invoice_type": invoice_type.value,
        counterpart: "",
        "warehouse": "",
        "wheat_quantity": "",
        "rate_per_kg": "",
        "initial_payment": "0",
        "payment_method": InvoicePaymentMethod.CASH.value,
        "status": InvoiceStatus.PENDING.value,
        "description": "",
        "invoice_date": today.isoformat(),
    }


def _salary_defaults(today: date) -> Dict[str, str]:
    return {
        "employee": "",
        "month": str(today.month),
        "year": str(today.year),
        "basic_salary": "0",
        "allowances": "0",
        "deductions": "0",
        "working_days": "26",
        "total_days": "30",
        "overtime_hours": "0",
        "overtime_rate": "0",
        "payment_date": today.isoformat(),
        "payment_method": SalaryPaymentMethod.CASH.value,
        "payment_status": SalaryPaymentStatus.PENDING.value,
        "salary_account": "",
        "cash_account": "",
        "warehouse": "",
        "notes": "",
    }


def _transaction_defaults(today: date) -> Dict[str, str]:
    return {
        "transaction_type": TransactionType.PAYMENT.value,
        "description": "",
        "amount": "0",
        "currency": "PKR",
        "debit_account": "",
        "credit_account": "",
        "payment_method": PaymentMethod.CASH.value,
        "payment_status": PaymentStatus.PENDING.value,
        "warehouse": "",
        "reference": "",
        "transaction_date": today.isoformat(),
    }


def _defaults(kind: FormKind, today: date) -> Dict[str, str]:
    if kind is FormKind.GOVERNMENT_INVOICE:
        return _invoice_defaults(InvoiceType.GOVERNMENT, today)
    if kind is FormKind.PRIVATE_INVOICE:
        return _invoice_defaults(InvoiceType.PRIVATE, today)
    if kind is FormKind.SALARY:
        return _salary_defaults(today)
    return _transaction_defaults(today)


def _derive(kind: FormKind, values: Mapping[str, str]) -> tuple[Dict[str, Optional[Decimal]], Dict[str, str]]:
    """Recompute derived figures, returning them with any field errors found."""

    if kind in (FormKind.GOVERNMENT_INVOICE, FormKind.PRIVATE_INVOICE):
        try:
            totals = core_logic.compute_invoice_totals(
                values.get("wheat_quantity"),
                values.get("rate_per_kg"),
                values.get("initial_payment"),
            )
        except ValidationError as exc:
            return {"total_amount": None, "remaining_amount": None}, dict(exc.field_errors)
        return {"total_amount": totals.total_amount, "remaining_amount": totals.remaining_amount}, {}

    if kind is FormKind.SALARY:
        breakdown = core_logic.compute_salary_breakdown(
            values.get("basic_salary"),
            values.get("allowances"),
            values.get("deductions"),
            values.get("overtime_hours"),
            values.get("overtime_rate"),
        )
        return {
            "overtime_amount": breakdown.overtime_amount,
            "gross_salary": breakdown.gross_salary,
            "net_salary": breakdown.net_salary,
        }, {}

    return {}, {}


def _validator(kind: FormKind) -> Callable[[Mapping[str, str]], Any]:
    if kind in (FormKind.GOVERNMENT_INVOICE, FormKind.PRIVATE_INVOICE):
        return core_logic.validate_invoice
    if kind is FormKind.SALARY:
        return core_logic.validate_salary
    return core_logic.build_transaction


def initial_state(kind: FormKind, *, today: Optional[date] = None) -> FormState:
    """Return a blank form of ``kind`` with the usual defaults filled in."""

    today = today or datetime.now(UTC).date()
    values = _defaults(kind, today)
    derived, errors = _derive(kind, values)
    return FormState(
        kind=kind, values=_freeze(values), derived=_freeze(derived), errors=_freeze(errors), today=today
    )


def reduce(state: FormState, action: FormAction) -> FormState:
    """Return the state that follows ``action``. ``state`` is never modified.

    * ``FieldChanged`` stores the raw value, clears that field's error and
      recomputes derived figures. Invalid invoice input leaves the totals
      unset and records the error.
    * ``SubmitRequested`` validates every field. Errors are recorded and the
      form stays editable; a valid form is flagged ``submitting``. A request
      made while already submitting is ignored.
    * ``SubmitFailed`` clears ``submitting`` and keeps every entered value.
    * ``SubmitSucceeded`` and ``FormReset`` return a fresh form dated like
      the one it replaces.
    """

    if isinstance(action, FieldChanged):
        values = dict(state.values)
        values[action.name] = action.value
        errors = {name: message for name, message in state.errors.items() if name != action.name}
        derived, derive_errors = _derive(state.kind, values)
        errors.update(derive_errors)
        return replace(
            state,
            values=_freeze(values),
            derived=_freeze(derived),
            errors=_freeze(errors),
            submit_error=None,
        )

    if isinstance(action, SubmitRequested):
        if state.submitting:
            return state
        try:
            _validator(state.kind)(state.values)
        except ValidationError as exc:
            log.debug("Form %s rejected: %s", state.kind.value, exc.field_errors)
            return replace(state, errors=_freeze(exc.field_errors), submitting=False)
        return replace(state, errors=_freeze({}), submitting=True, submit_error=None)

    if isinstance(action, SubmitFailed):
        return replace(state, submitting=False, submit_error=action.message)

    if isinstance(action, (SubmitSucceeded, FormReset)):
        return initial_state(state.kind, today=state.today)

    raise TypeError(f"Unsupported form action: {action!r}")


def to_payload(state: FormState) -> Dict[str, Any]:
    """Validate the form and return the JSON body for its endpoint.

    Raises:
        ValidationError: If the form is not valid.
    """

    return _validator(state.kind)(state.values).to_payload()


__all__ = [
    "FormKind",
    "FormState",
    "FieldChanged",
    "SubmitRequested",
    "SubmitFailed",
    "SubmitSucceeded",
    "FormReset",
    "FormAction",
    "initial_state",
    "reduce",
    "to_payload",
]

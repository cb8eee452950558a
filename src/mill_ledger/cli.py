"""Command-line entry points for the mill ledger.

All orchestration in this module is limited to argparse wiring, translating
arguments into calls on :mod:`mill_ledger.core_logic`, and printing the
results. No ledger arithmetic happens here.
"""

from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log, set_console_level
from .constants import InvoicePaymentMethod, InvoiceStatus, InvoiceType, PaymentMethod, SalaryPaymentMethod
from .exceptions import ApiError, AuthenticationError, BusinessRuleViolation
from .money import format_currency


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="mill-ledger",
        description="Ledger, valuation and posting tools for the flour-mill backend.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to config.ini (defaults to the nearest one above the working directory).",
    )
    parser.add_argument("--token", default=None, help="Bearer token overriding [Backend] Token.")
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Read the configured snapshot workbook instead of the backend.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug logging on stderr.")
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare commands that value or post documents."""
    specs = {
        "invoice": register_invoice_command(subparsers),
        "salary": register_salary_command(subparsers),
        "expense": register_expense_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only reporting commands."""
    specs = {
        "ledger": register_ledger_command(subparsers),
        "summary": register_summary_command(subparsers),
        "accounts": register_accounts_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_invoice_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``invoice``."""
    name = "invoice"
    help_text = "Value a wheat purchase invoice and optionally post it."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--type", dest="invoice_type", choices=[member.value for member in InvoiceType], required=True)
        parser.add_argument("--quantity", required=True, help="Wheat quantity in kg.")
        parser.add_argument("--rate", required=True, help="Rate per kg.")
        parser.add_argument("--initial-payment", default=None)
        parser.add_argument("--warehouse", default=None)
        parser.add_argument("--pr-center", default=None)
        parser.add_argument("--buyer", default=None)
        parser.add_argument(
            "--payment-method",
            choices=[member.value for member in InvoicePaymentMethod],
            default=InvoicePaymentMethod.CASH.value,
        )
        parser.add_argument("--status", choices=[member.value for member in InvoiceStatus], default=None)
        parser.add_argument("--description", default="")
        parser.add_argument("--date", dest="invoice_date", type=date.fromisoformat, default=None)
        parser.add_argument("--post", action="store_true", help="Post the invoice to the backend.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_invoice)


def register_salary_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``salary``."""
    name = "salary"
    help_text = "Compute a net salary and optionally post the salary record."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--basic", required=True)
        parser.add_argument("--allowances", default=None)
        parser.add_argument("--deductions", default=None)
        parser.add_argument("--overtime-hours", default=None)
        parser.add_argument("--overtime-rate", default=None)
        parser.add_argument("--employee", default=None)
        parser.add_argument("--month", default=None)
        parser.add_argument("--year", default=None)
        parser.add_argument("--working-days", default="26")
        parser.add_argument("--total-days", default="30")
        parser.add_argument("--salary-account", default=None)
        parser.add_argument("--cash-account", default=None)
        parser.add_argument("--warehouse", default=None)
        parser.add_argument(
            "--payment-method",
            choices=[member.value for member in SalaryPaymentMethod],
            default=SalaryPaymentMethod.CASH.value,
        )
        parser.add_argument("--notes", default="")
        parser.add_argument("--post", action="store_true", help="Post the salary record to the backend.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_salary)


def register_expense_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``expense``."""
    name = "expense"
    help_text = "Pay an expense from the first cash or bank account."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--account", dest="expense_account_id", required=True, help="Expense account id.")
        parser.add_argument("--amount", required=True)
        parser.add_argument(
            "--method",
            dest="payment_method",
            default=PaymentMethod.CASH.value,
            help="Cash or Bank Transfer.",
        )
        parser.add_argument("--description", default="")
        parser.add_argument("--warehouse", default="")
        parser.add_argument("--reference", default=None)
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Only show which accounts would be debited and credited.",
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_expense)


def register_ledger_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``ledger``."""
    name = "ledger"
    help_text = "Display an account statement with running balances."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--account", dest="account_id", required=True)
        parser.add_argument("--start", dest="start_date", type=date.fromisoformat, default=None)
        parser.add_argument("--end", dest="end_date", type=date.fromisoformat, default=None)
        parser.add_argument("--page", type=int, default=1)
        parser.add_argument("--limit", type=int, default=20)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_ledger)


def register_summary_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``summary``."""
    name = "summary"
    help_text = "Display cash, bank, receivable and payable totals."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_summary)


def register_accounts_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``accounts``."""
    name = "accounts"
    help_text = "List the chart of accounts."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--include-inactive", action="store_true")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_accounts)


def load_runtime_context(args: argparse.Namespace) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    context = core_logic.load_runtime_context(
        getattr(args, "config", None),
        offline=getattr(args, "offline", False),
        token=getattr(args, "token", None),
    )
    if context.is_offline:
        core_logic.ensure_schema_version(context)
    return context


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def translate_invoice(args: argparse.Namespace) -> Dict[str, Any]:
    """Translate CLI args into raw invoice fields."""
    return {
        "invoice_type": args.invoice_type,
        "wheat_quantity": args.quantity,
        "rate_per_kg": args.rate,
        "initial_payment": args.initial_payment,
        "warehouse": args.warehouse,
        "pr_center": args.pr_center,
        "buyer": args.buyer,
        "payment_method": args.payment_method,
        "status": args.status,
        "description": args.description,
        "invoice_date": args.invoice_date,
    }


def translate_salary(args: argparse.Namespace) -> Dict[str, Any]:
    """Translate CLI args into raw salary fields."""
    return {
        "employee": args.employee,
        "month": args.month,
        "year": args.year,
        "basic_salary": args.basic,
        "allowances": args.allowances,
        "deductions": args.deductions,
        "overtime_hours": args.overtime_hours,
        "overtime_rate": args.overtime_rate,
        "working_days": args.working_days,
        "total_days": args.total_days,
        "salary_account": args.salary_account,
        "cash_account": args.cash_account,
        "warehouse": args.warehouse,
        "payment_method": args.payment_method,
        "notes": args.notes,
    }


def translate_expense(args: argparse.Namespace) -> core_logic.ExpenseCommand:
    """Translate CLI args into an expense command object."""
    return core_logic.ExpenseCommand(
        expense_account_id=args.expense_account_id,
        amount=args.amount,
        payment_method=args.payment_method,
        description=args.description,
        warehouse=args.warehouse,
        reference=args.reference,
    )


def _print_lines(lines: Iterable[str]) -> None:
    for line in lines:
        print(line)


def format_ledger(statement: core_logic.LedgerStatement, page: int = 1, limit: int = 20) -> List[str]:
    """Render one display page of a statement, newest entry first."""
    entries, total_pages = core_logic.paginate_entries(statement.entries, page, limit)
    lines = [
        f"Account: {statement.account_id}",
        f"Opening balance: {format_currency(statement.opening_balance)}",
    ]
    for entry in entries:
        when = entry.transaction_date.date().isoformat() if entry.transaction_date else "-"
        lines.append(
            f"{when}  {entry.entry_type.value:<6}  {format_currency(entry.amount):>16}  "
            f"{format_currency(entry.balance):>16}  {entry.other_party}  {entry.description}"
        )
    lines.append(f"Total debits: {format_currency(statement.total_debits)}")
    lines.append(f"Total credits: {format_currency(statement.total_credits)}")
    lines.append(f"Closing balance: {format_currency(statement.closing_balance)}")
    lines.append(f"Page {page} of {total_pages}")
    return lines


def format_summary(summary: core_logic.FinancialSummary) -> List[str]:
    rows = [
        ("Cash in hand", summary.cash_in_hand),
        ("Bank balance", summary.bank_balance),
        ("Receivables", summary.total_receivables),
        ("Payables", summary.total_payables),
        ("Total assets", summary.total_assets),
        ("Total liabilities", summary.total_liabilities),
        ("Total equity", summary.total_equity),
        ("Total revenue", summary.total_revenue),
        ("Total expenses", summary.total_expenses),
        ("Net worth", summary.net_worth),
        ("Net income", summary.net_income),
    ]
    return [f"{label:<18} {format_currency(amount):>20}" for label, amount in rows]


def run_invoice(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Value the invoice, then post it when ``--post`` is given."""
    fields = translate_invoice(args)
    totals = core_logic.compute_invoice_totals(fields["wheat_quantity"], fields["rate_per_kg"], fields["initial_payment"])
    print(f"Total amount: {format_currency(totals.total_amount)}")
    print(f"Remaining amount: {format_currency(totals.remaining_amount)}")
    if args.post:
        invoice = core_logic.validate_invoice(fields)
        core_logic.record_invoice(context, invoice)
        print("Invoice posted.")
    return 0


def run_salary(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Compute the salary breakdown, then post it when ``--post`` is given."""
    fields = translate_salary(args)
    breakdown = core_logic.compute_salary_breakdown(
        fields["basic_salary"],
        fields["allowances"],
        fields["deductions"],
        fields["overtime_hours"],
        fields["overtime_rate"],
    )
    print(f"Overtime amount: {format_currency(breakdown.overtime_amount)}")
    print(f"Net salary: {format_currency(breakdown.net_salary)}")
    if args.post:
        record = core_logic.validate_salary(fields)
        core_logic.record_salary(context, record)
        print("Salary posted.")
    return 0


def run_expense(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Select the expense accounts and post the payment unless ``--dry-run``."""
    command = translate_expense(args)
    if args.dry_run:
        pair = core_logic.build_expense_transaction(
            command.expense_account_id,
            command.amount,
            command.payment_method,
            core_logic.list_accounts(context),
        )
        print(f"Debit:  {pair.debit_account.account_name} ({pair.debit_account.account_id})")
        print(f"Credit: {pair.credit_account.account_name} ({pair.credit_account.account_id})")
        print(f"Amount: {format_currency(pair.amount)}")
        return 0
    core_logic.record_expense(context, command)
    print("Expense posted.")
    return 0


def run_ledger(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the running-balance statement of one account."""
    statement = core_logic.load_ledger(
        context,
        args.account_id,
        start_date=args.start_date,
        end_date=args.end_date,
    )
    _print_lines(format_ledger(statement, args.page, args.limit))
    return 0


def run_summary(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    _print_lines(format_summary(core_logic.load_summary(context)))
    return 0


def run_accounts(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    accounts = core_logic.list_accounts(context, include_inactive=args.include_inactive)
    for account in accounts:
        print(
            f"{account.account_id:<12} {account.account_number:<10} {account.account_name:<24} "
            f"{account.account_type.value:<10} {account.category.value:<20} "
            f"{format_currency(account.current_balance):>16} {account.status.value}"
        )
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, AuthenticationError):
        log.error("Authentication failed: %s", error)
        return 4
    if isinstance(error, ApiError):
        log.error("Backend request failed: %s", error)
        return 5
    log.error("%s", error)
    return 1


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    if args.verbose:
        set_console_level(logging.DEBUG)
    context: Optional[core_logic.RuntimeContext] = None
    try:
        context = load_runtime_context(args)
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
    finally:
        if context is not None and context.client is not None:
            context.client.close()


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())

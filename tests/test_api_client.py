"""Tests for the REST client against a mocked ``requests.Session``."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
import requests

from conftest import BASE_URL, make_response
from mill_ledger.api_client import (
    ACCOUNTS_ENDPOINT,
    INVOICE_ENDPOINT,
    SALARIES_ENDPOINT,
    TRANSACTIONS_ENDPOINT,
    BackendClient,
    CancellationToken,
)
from mill_ledger.constants import AccountCategory, AccountType, TransactionType
from mill_ledger.exceptions import (
    AuthenticationError,
    NetworkError,
    RequestCancelled,
    ServerError,
)


def _account_doc(account_id, account_type="Asset", category="Cash", **extra):
    doc = {
        "_id": account_id,
        "accountName": f"{account_id} name",
        "accountNumber": f"N-{account_id}",
        "accountType": account_type,
        "category": category,
        "openingBalance": 1000,
        "currentBalance": 1300.5,
        "status": "Active",
    }
    doc.update(extra)
    return doc


def _transaction_doc(transaction_id, debit, credit, amount, when="2024-01-05T10:00:00.000Z"):
    return {
        "_id": transaction_id,
        "transactionNumber": f"TXN-{transaction_id}",
        "transactionDate": when,
        "transactionType": "Payment",
        "debitAccount": {"_id": debit, "accountName": f"{debit} name", "accountType": "Expense"},
        "creditAccount": {"_id": credit, "accountName": f"{credit} name", "accountType": "Asset"},
        "amount": amount,
        "description": "Electricity",
        "paymentMethod": "Cash",
        "paymentStatus": "Completed",
    }


@pytest.fixture
def client(session):
    return BackendClient(BASE_URL + "/", "secret-token", timeout=5, session=session)


# ---------------------------------------------------------------------------
# Request plumbing
# ---------------------------------------------------------------------------


def test_requests_carry_bearer_token_and_timeout(client, session):
    session.request.return_value = make_response(body={"_id": "T1"})

    client.create_transaction({"amount": 10.0})

    session.request.assert_called_once_with(
        "POST",
        BASE_URL + TRANSACTIONS_ENDPOINT,
        params={},
        json={"amount": 10.0},
        headers={"Content-Type": "application/json", "Authorization": "Bearer secret-token"},
        timeout=5,
    )


def test_missing_token_fails_before_any_request(session):
    client = BackendClient(BASE_URL, None, session=session)

    with pytest.raises(AuthenticationError):
        client.list_accounts()

    session.request.assert_not_called()


@pytest.mark.parametrize("status", [401, 403])
def test_rejected_credentials_raise_authentication_error(client, session, status):
    session.request.return_value = make_response(status, {"message": "Token expired"})

    with pytest.raises(AuthenticationError, match="Token expired"):
        client.list_accounts()


def test_server_error_carries_status_and_backend_message(client, session):
    session.request.return_value = make_response(400, {"message": "Insufficient balance"})

    with pytest.raises(ServerError) as excinfo:
        client.create_transaction({})

    assert excinfo.value.status_code == 400
    assert excinfo.value.message == "Insufficient balance"


def test_server_error_falls_back_to_error_key(client, session):
    session.request.return_value = make_response(500, {"error": "boom"})

    with pytest.raises(ServerError, match="boom"):
        client.create_salary({})


@pytest.mark.parametrize(
    "failure",
    [requests.exceptions.ConnectionError("refused"), requests.exceptions.Timeout("slow")],
)
def test_transport_failures_become_network_errors(client, session, failure):
    session.request.side_effect = failure

    with pytest.raises(NetworkError):
        client.list_accounts()


def test_request_cancelled_before_sending_never_reaches_backend(client, session):
    token = CancellationToken()
    token.cancel()

    with pytest.raises(RequestCancelled):
        client.create_invoice({"type": "government"}, cancel_token=token)

    session.request.assert_not_called()


def test_request_cancelled_in_flight_discards_response(client, session):
    token = CancellationToken()

    def _respond(*_args, **_kwargs):
        token.cancel()
        return make_response(body={"_id": "INV-1"})

    session.request.side_effect = _respond

    with pytest.raises(RequestCancelled):
        client.create_invoice({"type": "government"}, cancel_token=token)

    session.request.assert_called_once()


def test_empty_success_body_returns_empty_mapping(client, session):
    session.request.return_value = make_response(204)

    assert client.create_transaction({}) == {}


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


def test_login_stores_token_without_sending_authorization(session):
    client = BackendClient(BASE_URL, None, session=session)
    session.request.return_value = make_response(body={"token": "fresh", "user": {"username": "admin"}})

    assert client.login("admin", "pw") == "fresh"
    assert client.token == "fresh"
    _, kwargs = session.request.call_args
    assert "Authorization" not in kwargs["headers"]
    assert kwargs["json"] == {"username": "admin", "password": "pw"}


def test_login_without_token_in_response_fails(session):
    client = BackendClient(BASE_URL, None, session=session)
    session.request.return_value = make_response(body={"user": {}})

    with pytest.raises(AuthenticationError):
        client.login("admin", "pw")


def test_from_settings_prefers_explicit_token(settings, session):
    client = BackendClient.from_settings(settings, token="override", session=session)

    assert client.token == "override"
    assert client.timeout == settings.timeout_seconds
    assert BackendClient.from_settings(settings, session=session).token == "secret-token"


# ---------------------------------------------------------------------------
# Accounts and ledger pages
# ---------------------------------------------------------------------------


def test_list_accounts_parses_documents_and_drops_empty_filters(client, session):
    session.request.return_value = make_response(
        body={"accounts": [_account_doc("CASH-1")], "totalPages": 1, "currentPage": 1}
    )

    page = client.list_accounts(category="Cash", search="")

    account = page.accounts[0]
    assert account.account_type is AccountType.ASSET
    assert account.category is AccountCategory.CASH
    assert account.current_balance == Decimal("1300.5")
    assert page.total_pages == 1
    _, kwargs = session.request.call_args
    assert kwargs["params"] == {"page": 1, "limit": 50, "category": "Cash"}


def test_list_all_accounts_walks_every_page_in_order(client, session):
    session.request.side_effect = [
        make_response(body={"accounts": [_account_doc("CASH-1")], "totalPages": 2}),
        make_response(body={"accounts": [_account_doc("BANK-1", category="Bank")], "totalPages": 2}),
    ]

    accounts = client.list_all_accounts()

    assert [account.account_id for account in accounts] == ["CASH-1", "BANK-1"]
    assert [call.kwargs["params"]["page"] for call in session.request.call_args_list] == [1, 2]
    assert all(call.args[1] == BASE_URL + ACCOUNTS_ENDPOINT for call in session.request.call_args_list)


def test_fetch_ledger_page_serialises_date_bounds(client, session):
    session.request.return_value = make_response(
        body={"transactions": [], "pagination": {"totalPages": 1, "currentPage": 1}}
    )

    client.fetch_ledger_page("CASH-1", start_date=date(2024, 1, 1), end_date=date(2024, 1, 31))

    args, kwargs = session.request.call_args
    assert args[1] == BASE_URL + "/api/financial/accounts/CASH-1/ledger"
    assert kwargs["params"] == {"page": 1, "limit": 50, "startDate": "2024-01-01", "endDate": "2024-01-31"}


def test_fetch_account_history_concatenates_pages_without_filters(client, session):
    session.request.side_effect = [
        make_response(
            body={
                "transactions": [_transaction_doc("T1", "UTIL-EXP", "CASH-1", 200)],
                "pagination": {"totalPages": 2},
            }
        ),
        make_response(
            body={
                "transactions": [_transaction_doc("T2", "CASH-1", "REV-1", "500.75")],
                "pagination": {"totalPages": 2},
            }
        ),
    ]

    history = client.fetch_account_history("CASH-1")

    assert [transaction.transaction_id for transaction in history] == ["T1", "T2"]
    first = history[0]
    assert first.transaction_type is TransactionType.PAYMENT
    assert first.debit_account.display_name == "UTIL-EXP name"
    assert first.transaction_date.year == 2024
    assert history[1].amount == Decimal("500.75")
    for call in session.request.call_args_list:
        assert "startDate" not in call.kwargs["params"]


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "method_name, endpoint",
    [
        ("create_transaction", TRANSACTIONS_ENDPOINT),
        ("create_salary", SALARIES_ENDPOINT),
        ("create_invoice", INVOICE_ENDPOINT),
    ],
)
def test_create_endpoints_post_json_payload(client, session, method_name, endpoint):
    session.request.return_value = make_response(201, {"_id": "NEW"})

    result = getattr(client, method_name)({"amount": 1.0})

    assert result == {"_id": "NEW"}
    args, kwargs = session.request.call_args
    assert args == ("POST", BASE_URL + endpoint)
    assert kwargs["json"] == {"amount": 1.0}

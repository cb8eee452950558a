"""REST client for the mill backend's financial endpoints.

The client is thin: it attaches the bearer token, translates
transport and HTTP failures into :mod:`mill_ledger.exceptions`, and turns JSON
documents into records through :mod:`mill_ledger.data_manager`. It never
retries and never caches; balances are only trusted once re-fetched.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Mapping, Optional

import requests

from . import data_manager, log
from .exceptions import (
    AuthenticationError,
    NetworkError,
    RequestCancelled,
    ServerError,
)


LOGIN_ENDPOINT = "/api/auth/login"
ACCOUNTS_ENDPOINT = "/api/financial/accounts"
LEDGER_ENDPOINT = "/api/financial/accounts/{account_id}/ledger"
TRANSACTIONS_ENDPOINT = "/api/financial/transactions"
SALARIES_ENDPOINT = "/api/financial/salaries"
INVOICE_ENDPOINT = "/api/invoice"

DEFAULT_PAGE_SIZE = 50


class CancellationToken:
    """Flag shared between a caller and an in-flight request.

    A caller that abandons an operation (for example a closed form) cancels
    the token; a response arriving afterwards is discarded instead of being
    applied to state that no longer exists.
    """

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


@dataclass(frozen=True)
class AccountPage:
    accounts: List[data_manager.AccountRecord]
    total_pages: int


@dataclass(frozen=True)
class LedgerPage:
    transactions: List[data_manager.TransactionRecord]
    total_pages: int


def _clean_params(params: Mapping[str, Any]) -> Dict[str, Any]:
    cleaned: Dict[str, Any] = {}
    for key, value in params.items():
        if value is None or value == "":
            continue
        cleaned[key] = value.isoformat() if isinstance(value, date) else value
    return cleaned


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason or "Unknown error"
    if isinstance(body, Mapping):
        return str(body.get("message") or body.get("error") or body)
    return str(body)


class BackendClient:
    """Authenticated JSON client bound to one backend base URL."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        *,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_settings(
        cls,
        settings: data_manager.ConfigSettings,
        *,
        token: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ) -> "BackendClient":
        return cls(
            settings.base_url,
            token or settings.token,
            timeout=settings.timeout_seconds,
            session=session,
        )

    def close(self) -> None:
        self.session.close()

    def _headers(self, include_auth: bool) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if include_auth:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _request(
        self,
        method: str,
        endpoint: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        payload: Optional[Mapping[str, Any]] = None,
        include_auth: bool = True,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Any:
        """Send one request and return the decoded JSON body.

        Raises:
            AuthenticationError: If no token is configured (raised before any
                I/O) or the backend answers 401/403.
            NetworkError: On connection failures and timeouts.
            ServerError: On any other non-success status or an undecodable body.
            RequestCancelled: If ``cancel_token`` was cancelled before the
                request was sent (nothing is sent) or while it was in flight.
        """

        if include_auth and not self.token:
            log.error("Refusing to call %s %s without a bearer token", method, endpoint)
            raise AuthenticationError("No authentication token available; log in first")

        if cancel_token is not None and cancel_token.cancelled:
            log.info("Skipping %s %s; request was cancelled before sending", method, endpoint)
            raise RequestCancelled(f"{method} {endpoint} was cancelled")

        url = f"{self.base_url}{endpoint}"
        try:
            response = self.session.request(
                method,
                url,
                params=_clean_params(params or {}),
                json=dict(payload) if payload is not None else None,
                headers=self._headers(include_auth),
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as exc:
            log.error("Request to %s timed out after %ss", url, self.timeout)
            raise NetworkError(f"Request to {url} timed out") from exc
        except requests.exceptions.RequestException as exc:
            log.error("Request to %s failed: %s", url, exc)
            raise NetworkError(f"Backend connection error: {exc}") from exc

        if cancel_token is not None and cancel_token.cancelled:
            log.info("Discarding response from %s %s; request was cancelled", method, endpoint)
            raise RequestCancelled(f"{method} {endpoint} was cancelled")

        if response.status_code in (401, 403):
            log.warning("Backend rejected credentials for %s %s (%s)", method, endpoint, response.status_code)
            raise AuthenticationError(_error_message(response))
        if not response.ok:
            message = _error_message(response)
            log.error("Backend error on %s %s: %s %s", method, endpoint, response.status_code, message)
            raise ServerError(response.status_code, message)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise ServerError(response.status_code, "Response body is not valid JSON") from exc

    def login(self, username: str, password: str) -> str:
        """Exchange credentials for a bearer token and keep it on the client."""

        body = self._request(
            "POST",
            LOGIN_ENDPOINT,
            payload={"username": username, "password": password},
            include_auth=False,
        )
        token = body.get("token") if isinstance(body, Mapping) else None
        if not token:
            raise AuthenticationError("Login response did not include a token")
        self.token = str(token)
        log.info("Authenticated against %s as '%s'", self.base_url, username)
        return self.token

    def list_accounts(
        self,
        *,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        search: Optional[str] = None,
        account_type: Optional[str] = None,
        category: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AccountPage:
        body = self._request(
            "GET",
            ACCOUNTS_ENDPOINT,
            params={
                "page": page,
                "limit": limit,
                "search": search,
                "accountType": account_type,
                "category": category,
            },
            cancel_token=cancel_token,
        )
        accounts = [data_manager.account_from_payload(item) for item in body.get("accounts", [])]
        return AccountPage(accounts=accounts, total_pages=int(body.get("totalPages") or 1))

    def list_all_accounts(self, *, limit: int = DEFAULT_PAGE_SIZE, **filters: Any) -> List[data_manager.AccountRecord]:
        """Walk every accounts page and return the combined list in server order."""

        accounts: List[data_manager.AccountRecord] = []
        page = 1
        while True:
            result = self.list_accounts(page=page, limit=limit, **filters)
            accounts.extend(result.accounts)
            if page >= result.total_pages:
                break
            page += 1
        log.debug("Fetched %d accounts across %d pages", len(accounts), page)
        return accounts

    def fetch_ledger_page(
        self,
        account_id: str,
        *,
        page: int = 1,
        limit: int = DEFAULT_PAGE_SIZE,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> LedgerPage:
        body = self._request(
            "GET",
            LEDGER_ENDPOINT.format(account_id=account_id),
            params={"page": page, "limit": limit, "startDate": start_date, "endDate": end_date},
            cancel_token=cancel_token,
        )
        transactions = [data_manager.transaction_from_payload(item) for item in body.get("transactions", [])]
        pagination = body.get("pagination") or {}
        return LedgerPage(transactions=transactions, total_pages=int(pagination.get("totalPages") or 1))

    def fetch_account_history(
        self,
        account_id: str,
        *,
        limit: int = DEFAULT_PAGE_SIZE,
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[data_manager.TransactionRecord]:
        """Return the complete, unfiltered history of an account in source order.

        Running balances must accumulate over the full history, so this walks
        every page without date filters.
        """

        history: List[data_manager.TransactionRecord] = []
        page = 1
        while True:
            result = self.fetch_ledger_page(account_id, page=page, limit=limit, cancel_token=cancel_token)
            history.extend(result.transactions)
            if page >= result.total_pages:
                break
            page += 1
        log.debug("Fetched %d transactions for account '%s'", len(history), account_id)
        return history

    def create_transaction(
        self, payload: Mapping[str, Any], *, cancel_token: Optional[CancellationToken] = None
    ) -> Mapping[str, Any]:
        return self._request("POST", TRANSACTIONS_ENDPOINT, payload=payload, cancel_token=cancel_token)

    def create_salary(
        self, payload: Mapping[str, Any], *, cancel_token: Optional[CancellationToken] = None
    ) -> Mapping[str, Any]:
        return self._request("POST", SALARIES_ENDPOINT, payload=payload, cancel_token=cancel_token)

    def create_invoice(
        self, payload: Mapping[str, Any], *, cancel_token: Optional[CancellationToken] = None
    ) -> Mapping[str, Any]:
        return self._request("POST", INVOICE_ENDPOINT, payload=payload, cancel_token=cancel_token)


__all__ = [
    "CancellationToken",
    "AccountPage",
    "LedgerPage",
    "BackendClient",
]

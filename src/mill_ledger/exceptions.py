"""Error taxonomy for the mill ledger package.

Domain failures derive from :class:`BusinessRuleViolation` and are raised
before any network call. Backend failures derive from :class:`ApiError` and
are raised by :mod:`mill_ledger.api_client`. Nothing in the package retries
or silently recovers from either family.
"""

from __future__ import annotations

from typing import Dict, Mapping, Optional


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class ValidationError(BusinessRuleViolation, ValueError):
    """Raised when raw input cannot be parsed or falls outside its range.

    ``field_errors`` maps each offending field name to the message that
    should be shown next to it.
    """

    def __init__(self, message: str, field_errors: Optional[Mapping[str, str]] = None):
        super().__init__(message)
        self.field_errors: Dict[str, str] = dict(field_errors or {})

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(message, {field: message})

    @classmethod
    def from_errors(cls, field_errors: Mapping[str, str]) -> "ValidationError":
        summary = "; ".join(f"{field}: {message}" for field, message in field_errors.items())
        return cls(f"Validation failed ({summary})", field_errors)


class NoMatchingAccount(BusinessRuleViolation):
    """Raised when no account of a required category exists in the account set."""

    def __init__(self, category: str, message: Optional[str] = None):
        super().__init__(message or f"No active {category} account is available")
        self.category = category


class InvalidAccountType(BusinessRuleViolation):
    """Raised when an account is used in a role its type does not allow."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced account identifier is unknown."""


class LedgerIntegrityError(BusinessRuleViolation):
    """Raised when a transaction names one account as both debit and credit."""


class ApiError(Exception):
    """Base class for failures talking to the mill backend."""


class NetworkError(ApiError):
    """Raised when the backend cannot be reached or the request times out."""


class ServerError(ApiError):
    """Raised when the backend answers with a non-success status."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"Backend returned {status_code}: {message}")
        self.status_code = status_code
        self.message = message


class AuthenticationError(ApiError):
    """Raised when the bearer token is missing, expired or rejected."""


class RequestCancelled(ApiError):
    """Raised when a response arrives for a request its caller abandoned."""


__all__ = [
    "BusinessRuleViolation",
    "ValidationError",
    "NoMatchingAccount",
    "InvalidAccountType",
    "MissingReferenceError",
    "LedgerIntegrityError",
    "ApiError",
    "NetworkError",
    "ServerError",
    "AuthenticationError",
    "RequestCancelled",
]

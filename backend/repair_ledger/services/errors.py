# Overview: Ledger error taxonomy shared by services and routes.

"""
Ledger Errors

Every refusal the ledger can produce is a LedgerError subclass carrying:
- code: stable machine-readable identifier returned to API clients
- http_status: status the routes respond with
- context: ticket id / remaining balance so the UI can explain the refusal

Only LedgerConflictError (and its Busy subclass) is ever retried, and only
inside services.concurrency.run_with_retry.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any


class LedgerError(Exception):
    """Base class for ledger refusals and failures."""

    code = "LEDGER_ERROR"
    http_status = 400

    def __init__(
        self,
        message: str,
        *,
        ticket_id: int | None = None,
        remaining: Decimal | None = None,
        **context: Any,
    ):
        super().__init__(message)
        self.message = message
        self.ticket_id = ticket_id
        self.remaining = remaining
        self.context = context

    def to_dict(self) -> dict:
        context = {k: v for k, v in self.context.items() if v is not None}
        if self.ticket_id is not None:
            context["ticket_id"] = self.ticket_id
        if self.remaining is not None:
            context["remaining"] = f"{self.remaining:.3f}"
        return {
            "error": self.message,
            "code": self.code,
            "context": context,
        }


class NotFoundError(LedgerError):
    """Unknown lookup code or payment id (or one owned by another workshop)."""

    code = "NOT_FOUND"
    http_status = 404


class ForbiddenError(LedgerError):
    """Tenant mismatch or inactive workshop subscription."""

    code = "FORBIDDEN"
    http_status = 403


class AmountExceedsRemainingError(LedgerError):
    """Requested or amended amount would overdraw the ticket."""

    code = "AMOUNT_EXCEEDS_REMAINING"
    http_status = 409


class FullyPaidError(AmountExceedsRemainingError):
    """Ticket has no remaining balance; any amount would overdraw it."""

    code = "FULLY_PAID"


class InvalidAmountError(LedgerError):
    """Non-positive, non-numeric, or over-precise amount."""

    code = "INVALID_AMOUNT"
    http_status = 400


class LedgerConflictError(LedgerError):
    """Stale version on a concurrent write, after bounded retries."""

    code = "CONFLICT"
    http_status = 409


class LedgerBusyError(LedgerConflictError):
    """Row/database lock could not be acquired in time."""

    code = "BUSY"
    http_status = 503


class DuplicateLookupCodeError(LedgerConflictError):
    """Lookup code already used by another ticket of the same workshop."""

    code = "DUPLICATE_LOOKUP_CODE"


class StoreUnavailableError(LedgerError):
    """Underlying persistence failure that is not lock contention."""

    code = "STORE_UNAVAILABLE"
    http_status = 503

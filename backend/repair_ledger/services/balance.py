# Overview: Pure balance arithmetic for tickets (no database access).

"""
Balance Calculator

remaining = max(0, total - paid); status is "paid" once nothing remains.
Works on integer millimes so comparisons are exact; Decimal views are
provided for display and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from ..money import from_millimes, format_amount

STATUS_PAID = "paid"
STATUS_UNPAID = "unpaid"


@dataclass(frozen=True)
class Balance:
    total_millimes: int
    paid_millimes: int

    @property
    def remaining_millimes(self) -> int:
        return max(0, self.total_millimes - self.paid_millimes)

    @property
    def status(self) -> str:
        return STATUS_PAID if self.remaining_millimes == 0 else STATUS_UNPAID

    @property
    def total(self) -> Decimal:
        return from_millimes(self.total_millimes)

    @property
    def paid(self) -> Decimal:
        return from_millimes(self.paid_millimes)

    @property
    def remaining(self) -> Decimal:
        return from_millimes(self.remaining_millimes)

    def project(self, delta_millimes: int) -> "Balance":
        """Balance after moving amount_paid by delta (not clamped)."""
        return Balance(self.total_millimes, self.paid_millimes + delta_millimes)

    def to_dict(self) -> dict:
        return {
            "ticket_total": format_amount(self.total_millimes),
            "ticket_paid": format_amount(self.paid_millimes),
            "remaining": format_amount(self.remaining_millimes),
            "status": self.status,
        }


def compute_balance(total_millimes: int | None, paid_millimes: int | None, projected_paid_millimes: int | None = None) -> Balance:
    """
    Compute the balance of a ticket.

    When projected_paid_millimes is given, the balance reflects the paid
    total an operation is about to produce instead of the stored one.
    """
    paid = projected_paid_millimes if projected_paid_millimes is not None else (paid_millimes or 0)
    return Balance(total_millimes or 0, paid)


def ticket_balance(ticket) -> Balance:
    return compute_balance(ticket.amount_total_millimes, ticket.amount_paid_millimes)

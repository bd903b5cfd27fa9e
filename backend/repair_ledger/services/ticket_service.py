# Overview: Service-layer operations for repair tickets; encapsulates business logic and database work.

"""
Ticket Service

WHY: Tickets are authored elsewhere, but the ledger needs them to exist with
a known total and a zero paid amount before any payment can be captured.

DESIGN PRINCIPLES:
- amount_paid starts at 0 and is never set here afterwards
- lookup codes are unique within a workshop, generated when omitted
- balances are always derived from the stored millime columns
"""

from __future__ import annotations

import secrets

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Ticket
from ..money import to_millimes, format_amount
from .balance import STATUS_PAID, STATUS_UNPAID, Balance, ticket_balance
from .errors import DuplicateLookupCodeError, InvalidAmountError
from .lookup_service import normalize_lookup_code, resolve_ticket

LOOKUP_CODE_LENGTH = 12
LOOKUP_CODE_ATTEMPTS = 5


def generate_lookup_code() -> str:
    """Numeric code suitable for EAN-style barcodes and manual entry."""
    return "".join(secrets.choice("0123456789") for _ in range(LOOKUP_CODE_LENGTH))


def _lookup_code_taken(workshop_id: int, code: str) -> bool:
    return db.session.query(Ticket.id).filter_by(workshop_id=workshop_id, lookup_code=code).first() is not None


def create_ticket(
    workshop_id: int,
    amount_total,
    lookup_code: str | None = None,
    client_name: str | None = None,
    device_label: str | None = None,
) -> Ticket:
    """
    Create a ticket owing amount_total with nothing paid yet.

    Raises:
        InvalidAmountError: amount_total negative or not a valid amount
        DuplicateLookupCodeError: lookup code already used in this workshop
    """
    total_millimes = to_millimes(amount_total, field="amount_total")
    if total_millimes < 0:
        raise InvalidAmountError("amount_total cannot be negative")

    code = normalize_lookup_code(lookup_code)
    if code:
        if _lookup_code_taken(workshop_id, code):
            raise DuplicateLookupCodeError(f"Lookup code {code} is already in use", lookup_code=code)
    else:
        for _ in range(LOOKUP_CODE_ATTEMPTS):
            code = generate_lookup_code()
            if not _lookup_code_taken(workshop_id, code):
                break
        else:
            raise DuplicateLookupCodeError("Could not generate a unique lookup code")

    ticket = Ticket(
        workshop_id=workshop_id,
        lookup_code=code,
        client_name=client_name,
        device_label=device_label,
        amount_total_millimes=total_millimes,
        amount_paid_millimes=0,
    )
    db.session.add(ticket)
    try:
        db.session.commit()
    except IntegrityError as exc:
        # Concurrent creation with the same code
        db.session.rollback()
        raise DuplicateLookupCodeError(f"Lookup code {code} is already in use", lookup_code=code) from exc

    current_app.logger.info(
        "Ticket %s created for workshop %s (total=%s)",
        ticket.id, workshop_id, format_amount(total_millimes),
    )
    return ticket


def get_ticket_balance(workshop_id: int, lookup_code: str) -> tuple[Ticket, Balance]:
    ticket = resolve_ticket(lookup_code, workshop_id, action="VIEW_BALANCE")
    return ticket, ticket_balance(ticket)


def list_tickets(workshop_id: int, payment_state: str | None = None) -> list[Ticket]:
    """
    List a workshop's tickets, newest first.

    payment_state: "paid" (nothing remaining) or "unpaid" (balance remaining)
    """
    query = db.session.query(Ticket).filter_by(workshop_id=workshop_id)

    if payment_state == STATUS_PAID:
        query = query.filter(Ticket.amount_paid_millimes >= Ticket.amount_total_millimes)
    elif payment_state == STATUS_UNPAID:
        query = query.filter(Ticket.amount_paid_millimes < Ticket.amount_total_millimes)
    elif payment_state is not None:
        raise ValueError(f"Unknown payment state: {payment_state}")

    return query.order_by(Ticket.created_at.desc(), Ticket.id.desc()).all()


def workshop_totals(workshop_id: int) -> dict:
    """Total owed, paid and still unpaid across all tickets of a workshop."""
    total, paid, count = db.session.query(
        func.coalesce(func.sum(Ticket.amount_total_millimes), 0),
        func.coalesce(func.sum(Ticket.amount_paid_millimes), 0),
        func.count(Ticket.id),
    ).filter(Ticket.workshop_id == workshop_id).one()

    total = int(total)
    paid = int(paid)
    return {
        "ticket_count": int(count),
        "amount_total": format_amount(total),
        "amount_paid": format_amount(paid),
        "amount_unpaid": format_amount(total - paid),
    }

# Overview: Lookup Resolver; maps lookup codes and ids to tenant-scoped rows.

"""
Lookup Resolver

resolve_ticket(lookup_code, workshop_id) -> Ticket | NotFoundError

A ticket belonging to a different workshop is indistinguishable from an
unknown code for the caller: both raise NotFoundError. The difference is
only visible in the security event log.

With lock=True the row is read with SELECT ... FOR UPDATE so the caller can
hold it through its read-modify-write.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Payment, Ticket
from .concurrency import lock_for_update
from .errors import NotFoundError
from .tenant_service import log_cross_tenant_attempt


def normalize_lookup_code(lookup_code: str | None) -> str:
    if lookup_code is None:
        return ""
    return str(lookup_code).strip()


def resolve_ticket(lookup_code: str, workshop_id: int, *, lock: bool = False, action: str | None = None) -> Ticket:
    """
    Resolve a scanned/typed lookup code to a ticket of the acting workshop.

    Raises:
        NotFoundError if no ticket of this workshop carries the code
    """
    code = normalize_lookup_code(lookup_code)
    if not code:
        raise NotFoundError("No ticket found for this lookup code")

    query = db.session.query(Ticket).filter_by(workshop_id=workshop_id, lookup_code=code)
    if lock:
        query = lock_for_update(query)
    ticket = query.first()

    if ticket:
        return ticket

    foreign = db.session.query(Ticket.id, Ticket.workshop_id).filter_by(lookup_code=code).first()
    if foreign:
        current_app.logger.info(
            "Workshop %s used lookup code of ticket %s owned by workshop %s",
            workshop_id, foreign.id, foreign.workshop_id,
        )
        log_cross_tenant_attempt(
            f"Ticket {foreign.id} belongs to workshop {foreign.workshop_id}, not {workshop_id}",
            workshop_id=workshop_id,
            resource=f"ticket:{code}",
            action=action,
        )

    # Don't reveal it exists in another workshop
    raise NotFoundError("No ticket found for this lookup code")


def get_ticket(ticket_id: int, workshop_id: int, *, lock: bool = False, action: str | None = None) -> Ticket:
    """Same tenant rule as resolve_ticket, by internal id."""
    query = db.session.query(Ticket).filter_by(id=ticket_id)
    if lock:
        query = lock_for_update(query)
    ticket = query.first()

    if not ticket:
        raise NotFoundError(f"Ticket {ticket_id} not found")

    if ticket.workshop_id != workshop_id:
        log_cross_tenant_attempt(
            f"Ticket {ticket_id} belongs to workshop {ticket.workshop_id}, not {workshop_id}",
            workshop_id=workshop_id,
            resource=f"ticket:{ticket_id}",
            action=action,
        )
        raise NotFoundError(f"Ticket {ticket_id} not found")

    return ticket


def get_payment(payment_id: int, workshop_id: int, *, lock: bool = False, action: str | None = None) -> Payment:
    """Load a payment of the acting workshop; other workshops' payments are not found."""
    query = db.session.query(Payment).filter_by(id=payment_id)
    if lock:
        query = lock_for_update(query)
    payment = query.first()

    if not payment:
        raise NotFoundError(f"Payment {payment_id} not found")

    if payment.workshop_id != workshop_id:
        log_cross_tenant_attempt(
            f"Payment {payment_id} belongs to workshop {payment.workshop_id}, not {workshop_id}",
            workshop_id=workshop_id,
            resource=f"payment:{payment_id}",
            action=action,
        )
        raise NotFoundError(f"Payment {payment_id} not found")

    return payment

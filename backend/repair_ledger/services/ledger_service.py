# Overview: Service-layer operations for the payment ledger; encapsulates business logic and database work.

"""
Repair Ticket Payment Ledger

WHY: A ticket accumulates payments over time (deposit, instalments,
balance at pick-up) and must never be recorded as paid for more than it
owes, even when a payment is edited afterwards.

INVARIANT (after every committed operation, for every ticket):
- ticket.amount_paid == sum(payment.amount for its payments)
- 0 <= ticket.amount_paid <= ticket.amount_total

DESIGN PRINCIPLES:
- One write path: record and amend both move amount_paid through
  _apply_delta(ticket, old_amount, new_amount); old_amount is 0 on record
  and the locked, pre-edit amount of the payment on amend
- The payment write, the ticket update and the audit event share one
  database transaction; a failure rolls all of them back
- The ticket row is read FOR UPDATE and carries a version counter, so
  concurrent callers serialize or retry against fresh data
- workshop_id is always an explicit argument; nothing is read from the
  request here
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Payment, PaymentEvent, Ticket
from ..money import format_amount, from_millimes, to_millimes
from ..time_utils import utcnow
from ..validation import (
    MAX_IDEMPOTENCY_KEY_LENGTH,
    MAX_NOTE_LENGTH,
    ValidationError,
    coerce_datetime,
    optional_text,
)
from .balance import Balance, ticket_balance
from .concurrency import run_with_retry
from .errors import (
    AmountExceedsRemainingError,
    FullyPaidError,
    InvalidAmountError,
    LedgerConflictError,
)
from .lookup_service import get_payment as load_payment
from .lookup_service import get_ticket, resolve_ticket
from .subscription_service import require_active_subscription


# =============================================================================
# PAYMENT METHODS (CONSTANTS)
# =============================================================================

METHOD_CASH = "cash"
METHOD_CHECK = "check"
METHOD_TRANSFER = "transfer"
METHOD_CARD = "card"
METHOD_OTHER = "other"

VALID_METHODS = [
    METHOD_CASH,
    METHOD_CHECK,
    METHOD_TRANSFER,
    METHOD_CARD,
    METHOD_OTHER,
]

# Labels used by the workshop front-office forms
METHOD_ALIASES = {
    "espèce": METHOD_CASH,
    "espèces": METHOD_CASH,
    "chèque": METHOD_CHECK,
    "virement": METHOD_TRANSFER,
    "carte bancaire": METHOD_CARD,
    "carte": METHOD_CARD,
    "autre": METHOD_OTHER,
}


# =============================================================================
# EVENT TYPES (CONSTANTS)
# =============================================================================

EVENT_RECORDED = "RECORDED"
EVENT_AMENDED = "AMENDED"


@dataclass(frozen=True)
class LedgerResult:
    """Outcome of a committed ledger operation."""
    payment: Payment
    balance: Balance
    replayed: bool = False

    def to_dict(self) -> dict:
        return {
            "payment": self.payment.to_dict(),
            "balance": self.balance.to_dict(),
            "replayed": self.replayed,
        }


def normalize_method(method) -> str:
    """
    Map a payment method (or one of its front-office labels) to the closed set.

    Raises:
        ValidationError: method missing or not one of VALID_METHODS
    """
    if not isinstance(method, str) or not method.strip():
        raise ValidationError("method is required")
    key = method.strip().lower()
    key = METHOD_ALIASES.get(key, key)
    if key not in VALID_METHODS:
        raise ValidationError(f"Invalid payment method: {method}. Must be one of {VALID_METHODS}")
    return key


def _positive_millimes(amount) -> int:
    millimes = to_millimes(amount)
    if millimes <= 0:
        raise InvalidAmountError("Payment amount must be positive")
    return millimes


# =============================================================================
# RECORD PAYMENT
# =============================================================================

def record_payment(
    workshop_id: int,
    lookup_code: str,
    amount,
    paid_at,
    method: str,
    note: str | None = None,
    idempotency_key: str | None = None,
) -> LedgerResult:
    """
    Record a payment against the ticket identified by lookup_code.

    WHY: Core ledger operation. Resolves the ticket within the acting
    workshop, checks the remaining balance under lock, inserts the payment
    and advances amount_paid in one transaction.

    Args:
        workshop_id: Acting workshop (tenant)
        lookup_code: Scanned/typed ticket code
        amount: Decimal (or str/int) amount, > 0, at most 3 decimals
        paid_at: Payment date (date, datetime or ISO string)
        method: cash, check, transfer, card, other
        note: Free text (optional)
        idempotency_key: Client key; a replay returns the original payment

    Returns:
        LedgerResult with the payment and the ticket balance after it

    Raises:
        ForbiddenError: workshop subscription inactive
        NotFoundError: no ticket with this code in the workshop
        FullyPaidError: nothing left to collect
        AmountExceedsRemainingError: amount > remaining
        InvalidAmountError: amount <= 0 or malformed
        LedgerConflictError / LedgerBusyError: contention after retries
    """
    amount_millimes = _positive_millimes(amount)
    method = normalize_method(method)
    paid_at = coerce_datetime(paid_at)
    note = optional_text(note, "note", MAX_NOTE_LENGTH)
    idempotency_key = optional_text(idempotency_key, "idempotency_key", MAX_IDEMPOTENCY_KEY_LENGTH)

    require_active_subscription(workshop_id, action="RECORD_PAYMENT")

    def _op():
        if idempotency_key:
            existing = _find_by_idempotency_key(workshop_id, idempotency_key)
            if existing:
                return _replay(existing)

        ticket = resolve_ticket(lookup_code, workshop_id, lock=True, action="RECORD_PAYMENT")

        current = ticket_balance(ticket)
        if current.remaining_millimes == 0:
            raise FullyPaidError(
                f"Ticket {ticket.lookup_code} is already fully paid",
                ticket_id=ticket.id,
                remaining=current.remaining,
            )

        balance = _apply_delta(ticket, 0, amount_millimes)

        payment = Payment(
            ticket_id=ticket.id,
            workshop_id=workshop_id,
            amount_millimes=amount_millimes,
            paid_at=paid_at,
            method=method,
            note=note,
            idempotency_key=idempotency_key,
        )
        db.session.add(payment)

        try:
            db.session.flush()  # Get payment ID; ticket version checked here
        except IntegrityError:
            if not idempotency_key:
                raise
            # Same key committed by a concurrent request
            db.session.rollback()
            existing = _find_by_idempotency_key(workshop_id, idempotency_key)
            if not existing:
                raise
            return _replay(existing)

        _log_payment_event(
            payment=payment,
            ticket=ticket,
            event_type=EVENT_RECORDED,
            old_amount_millimes=0,
        )

        db.session.commit()

        current_app.logger.info(
            "Payment %s recorded on ticket %s: amount=%s paid=%s/%s",
            payment.id, ticket.id, format_amount(amount_millimes),
            format_amount(balance.paid_millimes), format_amount(balance.total_millimes),
        )
        return LedgerResult(payment=payment, balance=balance)

    return run_with_retry(_op)


# =============================================================================
# AMEND PAYMENT
# =============================================================================

def amend_payment(
    workshop_id: int,
    payment_id: int,
    amount,
    paid_at,
    method: str,
    note: str | None = None,
    expected_version: int | None = None,
) -> LedgerResult:
    """
    Amend a payment's amount, date, method and note.

    WHY: Cashier mistakes happen. The ticket's paid total moves by
    delta = new_amount - old_amount, where old_amount is read from the
    locked payment row, never from what the client believes it was.

    Args:
        expected_version: Payment.version_id the client edited; a mismatch
            means someone else amended it first (LedgerConflictError)

    Raises:
        ForbiddenError: workshop subscription inactive
        NotFoundError: payment unknown or owned by another workshop
        AmountExceedsRemainingError: new paid total would exceed amount_total
        InvalidAmountError: new amount <= 0 or malformed
        LedgerConflictError / LedgerBusyError: contention after retries
    """
    new_millimes = _positive_millimes(amount)
    method = normalize_method(method)
    paid_at = coerce_datetime(paid_at)
    note = optional_text(note, "note", MAX_NOTE_LENGTH)

    require_active_subscription(workshop_id, action="AMEND_PAYMENT")

    def _op():
        payment = load_payment(payment_id, workshop_id, lock=True, action="AMEND_PAYMENT")

        if expected_version is not None and payment.version_id != expected_version:
            raise LedgerConflictError(
                f"Payment {payment_id} was modified by someone else",
                ticket_id=payment.ticket_id,
                payment_id=payment_id,
                version_id=payment.version_id,
            )

        old_millimes = payment.amount_millimes
        ticket = get_ticket(payment.ticket_id, workshop_id, lock=True, action="AMEND_PAYMENT")

        balance = _apply_delta(ticket, old_millimes, new_millimes)

        payment.amount_millimes = new_millimes
        payment.paid_at = paid_at
        payment.method = method
        payment.note = note

        db.session.flush()

        _log_payment_event(
            payment=payment,
            ticket=ticket,
            event_type=EVENT_AMENDED,
            old_amount_millimes=old_millimes,
        )

        db.session.commit()

        current_app.logger.info(
            "Payment %s amended on ticket %s: %s -> %s paid=%s/%s",
            payment.id, ticket.id, format_amount(old_millimes), format_amount(new_millimes),
            format_amount(balance.paid_millimes), format_amount(balance.total_millimes),
        )
        return LedgerResult(payment=payment, balance=balance)

    return run_with_retry(_op)


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _apply_delta(ticket: Ticket, old_millimes: int, new_millimes: int) -> Balance:
    """
    Move ticket.amount_paid by new - old after checking the invariant.

    The only place amount_paid is written. The new value reaches the
    database at the next flush, guarded by the ticket's version counter.
    """
    if new_millimes <= 0:
        raise InvalidAmountError("Payment amount must be positive", ticket_id=ticket.id)

    current = ticket_balance(ticket)
    projected = current.project(new_millimes - old_millimes)

    if projected.paid_millimes > projected.total_millimes:
        # What this payment may amount to at most
        allowed = from_millimes(current.remaining_millimes + old_millimes)
        raise AmountExceedsRemainingError(
            f"Amount exceeds remaining balance; at most {allowed:.3f} can be applied",
            ticket_id=ticket.id,
            remaining=allowed,
        )

    if projected.paid_millimes < 0:
        raise LedgerConflictError(
            "Ticket paid total is inconsistent with its payments",
            ticket_id=ticket.id,
        )

    ticket.amount_paid_millimes = projected.paid_millimes
    return projected


def _log_payment_event(
    *,
    payment: Payment,
    ticket: Ticket,
    event_type: str,
    old_amount_millimes: int,
) -> PaymentEvent:
    """
    Log a ledger mutation to the append-only audit trail.

    Written inside the same transaction as the mutation it records.
    """
    event = PaymentEvent(
        payment_id=payment.id,
        ticket_id=ticket.id,
        workshop_id=payment.workshop_id,
        event_type=event_type,
        old_amount_millimes=old_amount_millimes,
        new_amount_millimes=payment.amount_millimes,
        delta_millimes=payment.amount_millimes - old_amount_millimes,
        paid_after_millimes=ticket.amount_paid_millimes,
        occurred_at=utcnow(),
    )
    db.session.add(event)
    db.session.flush()
    return event


def _find_by_idempotency_key(workshop_id: int, idempotency_key: str) -> Payment | None:
    return db.session.query(Payment).filter_by(
        workshop_id=workshop_id,
        idempotency_key=idempotency_key,
    ).first()


def _replay(payment: Payment) -> LedgerResult:
    ticket = db.session.get(Ticket, payment.ticket_id)
    current_app.logger.info(
        "Idempotent replay of payment %s (key=%s)", payment.id, payment.idempotency_key
    )
    return LedgerResult(payment=payment, balance=ticket_balance(ticket), replayed=True)


# =============================================================================
# QUERIES
# =============================================================================

def get_payment(workshop_id: int, payment_id: int) -> Payment:
    return load_payment(payment_id, workshop_id, action="VIEW_PAYMENT")


def get_ticket_payments(workshop_id: int, ticket_id: int) -> list[Payment]:
    """All payments of a ticket, oldest first."""
    ticket = get_ticket(ticket_id, workshop_id, action="VIEW_PAYMENTS")
    return (
        db.session.query(Payment)
        .filter_by(ticket_id=ticket.id)
        .order_by(Payment.paid_at, Payment.id)
        .all()
    )


def get_payment_events(workshop_id: int, payment_id: int) -> list[PaymentEvent]:
    """Audit trail of a payment (record + amendments)."""
    payment = load_payment(payment_id, workshop_id, action="VIEW_PAYMENT")
    return (
        db.session.query(PaymentEvent)
        .filter_by(payment_id=payment.id)
        .order_by(PaymentEvent.occurred_at, PaymentEvent.id)
        .all()
    )


def list_payments(
    workshop_id: int,
    search: str | None = None,
    method: str | None = None,
    min_amount=None,
    max_amount=None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    limit: int | None = None,
    offset: int = 0,
) -> list[Payment]:
    """
    List a workshop's payments, newest first.

    Filters:
    - search: case-insensitive match on ticket lookup code, client name or method
    - method: one of VALID_METHODS (or a front-office label)
    - min_amount / max_amount: inclusive bounds
    - date_from / date_to: inclusive calendar days of paid_at
    """
    query = (
        db.session.query(Payment)
        .join(Ticket, Ticket.id == Payment.ticket_id)
        .filter(Payment.workshop_id == workshop_id)
    )

    if search:
        term = search.strip().lower()
        for char in ("\\", "%", "_"):
            term = term.replace(char, "\\" + char)
        pattern = f"%{term}%"
        query = query.filter(or_(
            func.lower(Ticket.lookup_code).like(pattern, escape="\\"),
            func.lower(func.coalesce(Ticket.client_name, "")).like(pattern, escape="\\"),
            func.lower(Payment.method).like(pattern, escape="\\"),
        ))

    if method:
        query = query.filter(Payment.method == normalize_method(method))

    if min_amount is not None:
        query = query.filter(Payment.amount_millimes >= to_millimes(min_amount, field="min_amount"))

    if max_amount is not None:
        query = query.filter(Payment.amount_millimes <= to_millimes(max_amount, field="max_amount"))

    if date_from is not None:
        start = coerce_datetime(date_from, "date_from")
        query = query.filter(Payment.paid_at >= datetime.combine(start.date(), datetime.min.time()))

    if date_to is not None:
        end = coerce_datetime(date_to, "date_to")
        query = query.filter(Payment.paid_at < datetime.combine(end.date() + timedelta(days=1), datetime.min.time()))

    query = query.order_by(Payment.paid_at.desc(), Payment.id.desc())

    if offset:
        query = query.offset(offset)
    if limit is not None:
        query = query.limit(limit)

    return query.all()


# =============================================================================
# RECONCILIATION
# =============================================================================

def _ticket_report(ticket: Ticket, payments_total: int, payment_count: int) -> dict:
    issues = []
    if ticket.amount_paid_millimes != payments_total:
        issues.append(
            f"amount_paid {format_amount(ticket.amount_paid_millimes)} != "
            f"sum of payments {format_amount(payments_total)}"
        )
    if ticket.amount_paid_millimes < 0:
        issues.append("amount_paid is negative")
    if ticket.amount_paid_millimes > ticket.amount_total_millimes:
        issues.append(
            f"amount_paid {format_amount(ticket.amount_paid_millimes)} exceeds "
            f"amount_total {format_amount(ticket.amount_total_millimes)}"
        )

    return {
        "ticket_id": ticket.id,
        "lookup_code": ticket.lookup_code,
        "amount_total": format_amount(ticket.amount_total_millimes),
        "amount_paid": format_amount(ticket.amount_paid_millimes),
        "payments_total": format_amount(payments_total),
        "payment_count": payment_count,
        "consistent": not issues,
        "issues": issues,
    }


def verify_ticket(workshop_id: int, ticket_id: int) -> dict:
    """
    Check one ticket against the ledger invariant. Read-only.
    """
    ticket = get_ticket(ticket_id, workshop_id, action="VERIFY_TICKET")
    payments_total, payment_count = db.session.query(
        func.coalesce(func.sum(Payment.amount_millimes), 0),
        func.count(Payment.id),
    ).filter(Payment.ticket_id == ticket.id).one()
    return _ticket_report(ticket, int(payments_total), int(payment_count))


def verify_workshop(workshop_id: int) -> list[dict]:
    """
    Check every ticket of a workshop; returns only the inconsistent ones.
    """
    sums = (
        db.session.query(
            Payment.ticket_id.label("ticket_id"),
            func.sum(Payment.amount_millimes).label("payments_total"),
            func.count(Payment.id).label("payment_count"),
        )
        .filter(Payment.workshop_id == workshop_id)
        .group_by(Payment.ticket_id)
        .subquery()
    )

    rows = (
        db.session.query(Ticket, sums.c.payments_total, sums.c.payment_count)
        .outerjoin(sums, sums.c.ticket_id == Ticket.id)
        .filter(Ticket.workshop_id == workshop_id)
        .order_by(Ticket.id)
        .all()
    )

    reports = []
    for ticket, payments_total, payment_count in rows:
        report = _ticket_report(ticket, int(payments_total or 0), int(payment_count or 0))
        if not report["consistent"]:
            reports.append(report)
    return reports

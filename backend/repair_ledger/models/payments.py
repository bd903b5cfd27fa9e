from __future__ import annotations

from ..extensions import db
from ..money import format_amount
from ..time_utils import to_utc_z


class Payment(db.Model):
    """
    One recorded transfer against a ticket's balance.

    WHY: Tickets are paid in instalments (deposit at drop-off, balance at
    pick-up). Each instalment is its own row so the ticket's paid total can
    always be re-derived as the sum of its payments.

    METHODS: cash, check, transfer, card, other

    MUTABILITY: amount, paid_at, method and note may be amended through the
    ledger service only; payments are never deleted.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.UniqueConstraint("workshop_id", "idempotency_key", name="uq_payments_workshop_idempotency_key"),
        db.CheckConstraint("amount_millimes > 0", name="ck_payments_amount_positive"),
        db.Index("ix_payments_workshop_paid_at", "workshop_id", "paid_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    ticket_id = db.Column(db.Integer, db.ForeignKey("tickets.id"), nullable=False, index=True)

    # Denormalized tenant for guard checks and workshop-wide listings
    workshop_id = db.Column(db.Integer, db.ForeignKey("workshops.id"), nullable=False, index=True)

    amount_millimes = db.Column(db.BigInteger, nullable=False)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=False)
    method = db.Column(db.String(16), nullable=False, index=True)
    note = db.Column(db.Text, nullable=True)

    # Client-supplied key; replays return the original payment
    idempotency_key = db.Column(db.String(128), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    ticket = db.relationship("Ticket", backref=db.backref("payments", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Payment id={self.id} ticket_id={self.ticket_id} amount_millimes={self.amount_millimes}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ticket_id": self.ticket_id,
            "workshop_id": self.workshop_id,
            "amount": format_amount(self.amount_millimes),
            "date": to_utc_z(self.paid_at),
            "method": self.method,
            "note": self.note,
            "idempotency_key": self.idempotency_key,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class PaymentEvent(db.Model):
    """
    Append-only audit trail of ledger mutations.

    EVENT TYPES:
    - RECORDED: payment created (old_amount = 0)
    - AMENDED: payment amount/date/method/note changed

    delta is what the event moved amount_paid by; paid_after is the ticket's
    amount_paid once the event committed.

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "payment_events"
    __table_args__ = (
        db.Index("ix_payment_events_ticket_occurred", "ticket_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=False, index=True)
    ticket_id = db.Column(db.Integer, db.ForeignKey("tickets.id"), nullable=False, index=True)
    workshop_id = db.Column(db.Integer, db.ForeignKey("workshops.id"), nullable=False, index=True)

    event_type = db.Column(db.String(16), nullable=False, index=True)  # RECORDED, AMENDED

    old_amount_millimes = db.Column(db.BigInteger, nullable=False, default=0)
    new_amount_millimes = db.Column(db.BigInteger, nullable=False)
    delta_millimes = db.Column(db.BigInteger, nullable=False)
    paid_after_millimes = db.Column(db.BigInteger, nullable=False)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    payment = db.relationship("Payment", backref=db.backref("events", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_id": self.payment_id,
            "ticket_id": self.ticket_id,
            "workshop_id": self.workshop_id,
            "event_type": self.event_type,
            "old_amount": format_amount(self.old_amount_millimes),
            "new_amount": format_amount(self.new_amount_millimes),
            "delta": format_amount(self.delta_millimes),
            "paid_after": format_amount(self.paid_after_millimes),
            "occurred_at": to_utc_z(self.occurred_at),
        }

from __future__ import annotations

from ..extensions import db
from ..money import format_amount
from ..time_utils import to_utc_z


class Ticket(db.Model):
    """
    Repair ticket (fiche): one repair job with a total amount owed.

    WHY: The ticket row is the shared mutable resource of the ledger.
    amount_total is set when the ticket is authored; amount_paid is only
    ever moved by the ledger service, under lock, in the same transaction
    as the payment that justifies the move.

    INVARIANT (after every committed ledger operation):
    - amount_paid_millimes == sum of its payments' amount_millimes
    - 0 <= amount_paid_millimes <= amount_total_millimes

    CONCURRENCY: version_id is an optimistic lock. An update computed from a
    stale read raises StaleDataError at flush time and is retried.
    """
    __tablename__ = "tickets"
    __table_args__ = (
        db.UniqueConstraint("workshop_id", "lookup_code", name="uq_tickets_workshop_lookup_code"),
        db.CheckConstraint("amount_total_millimes >= 0", name="ck_tickets_total_non_negative"),
        db.CheckConstraint(
            "amount_paid_millimes >= 0 AND amount_paid_millimes <= amount_total_millimes",
            name="ck_tickets_paid_within_total",
        ),
        db.Index("ix_tickets_workshop_created", "workshop_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    workshop_id = db.Column(db.Integer, db.ForeignKey("workshops.id"), nullable=False, index=True)

    # Scannable code printed on the receipt (barcode / QR)
    lookup_code = db.Column(db.String(64), nullable=False, index=True)

    # Display-only details carried over from the authoring flow
    client_name = db.Column(db.String(255), nullable=True)
    device_label = db.Column(db.String(255), nullable=True)

    # Amounts (millimes)
    amount_total_millimes = db.Column(db.BigInteger, nullable=False, default=0)
    amount_paid_millimes = db.Column(db.BigInteger, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    workshop = db.relationship("Workshop", backref=db.backref("tickets", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Ticket id={self.id} lookup_code={self.lookup_code!r} workshop_id={self.workshop_id}>"

    def to_dict(self) -> dict:
        remaining = max(0, self.amount_total_millimes - self.amount_paid_millimes)
        return {
            "id": self.id,
            "workshop_id": self.workshop_id,
            "lookup_code": self.lookup_code,
            "client_name": self.client_name,
            "device_label": self.device_label,
            "amount_total": format_amount(self.amount_total_millimes),
            "amount_paid": format_amount(self.amount_paid_millimes),
            "remaining": format_amount(remaining),
            "status": "paid" if remaining == 0 else "unpaid",
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }

from __future__ import annotations

from ..extensions import db
from ..money import format_amount
from ..time_utils import to_utc_z, to_iso_date


class Workshop(db.Model):
    """
    Multi-tenant root: every tenant is a repair Workshop (atelier).

    WHY: Tickets, payments and subscriptions all belong to exactly one
    workshop. No ledger data may cross workshop boundaries.
    """
    __tablename__ = "workshops"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)  # Short code for lookups

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Workshop id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class WorkshopSubscription(db.Model):
    """
    Subscription window gating a workshop's access to the ledger.

    A workshop's current subscription is its latest one by start_date.
    It is active while is_paid and today falls inside
    [start_date, end_date + grace days].
    """
    __tablename__ = "workshop_subscriptions"
    __table_args__ = (
        db.Index("ix_workshop_subscriptions_workshop_start", "workshop_id", "start_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    workshop_id = db.Column(db.Integer, db.ForeignKey("workshops.id"), nullable=False, index=True)

    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    is_paid = db.Column(db.Boolean, nullable=False, default=True, index=True)

    # Accumulated subscription price (millimes)
    price_paid_millimes = db.Column(db.BigInteger, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    workshop = db.relationship("Workshop", backref=db.backref("subscriptions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "workshop_id": self.workshop_id,
            "start_date": to_iso_date(self.start_date),
            "end_date": to_iso_date(self.end_date),
            "is_paid": self.is_paid,
            "price_paid": format_amount(self.price_paid_millimes),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class WorkshopApiToken(db.Model):
    """
    Bearer token establishing the acting workshop for API requests.

    Only the SHA-256 hash of the token is stored.
    """
    __tablename__ = "workshop_api_tokens"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    workshop_id = db.Column(db.Integer, db.ForeignKey("workshops.id"), nullable=False, index=True)
    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)
    label = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    workshop = db.relationship("Workshop", backref=db.backref("api_tokens", lazy=True))

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "workshop_id": self.workshop_id,
            "label": self.label,
            "created_at": to_utc_z(self.created_at),
            "last_used_at": to_utc_z(self.last_used_at),
            "revoked_at": to_utc_z(self.revoked_at),
        }

"""Initial repair ledger schema: workshops, tickets, payments, audit

Revision ID: 20261019_initial_ledger
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_initial_ledger"
down_revision = None
branch_labels = None
depends_on = None


NOW = sa.text("(CURRENT_TIMESTAMP)")


def upgrade():
    op.create_table(
        "workshops",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("workshops", schema=None) as batch_op:
        batch_op.create_index("ix_workshops_code", ["code"], unique=True)
        batch_op.create_index("ix_workshops_is_active", ["is_active"], unique=False)

    op.create_table(
        "workshop_subscriptions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("workshop_id", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("is_paid", sa.Boolean(), nullable=False),
        sa.Column("price_paid_millimes", sa.BigInteger(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.ForeignKeyConstraint(["workshop_id"], ["workshops.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("workshop_subscriptions", schema=None) as batch_op:
        batch_op.create_index("ix_workshop_subscriptions_workshop_id", ["workshop_id"], unique=False)
        batch_op.create_index("ix_workshop_subscriptions_is_paid", ["is_paid"], unique=False)
        batch_op.create_index("ix_workshop_subscriptions_workshop_start", ["workshop_id", "start_date"], unique=False)

    op.create_table(
        "workshop_api_tokens",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("workshop_id", sa.Integer(), nullable=False),
        sa.Column("token_hash", sa.String(length=64), nullable=False),
        sa.Column("label", sa.String(length=128), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["workshop_id"], ["workshops.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("workshop_api_tokens", schema=None) as batch_op:
        batch_op.create_index("ix_workshop_api_tokens_workshop_id", ["workshop_id"], unique=False)
        batch_op.create_index("ix_workshop_api_tokens_token_hash", ["token_hash"], unique=True)

    op.create_table(
        "tickets",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("workshop_id", sa.Integer(), nullable=False),
        sa.Column("lookup_code", sa.String(length=64), nullable=False),
        sa.Column("client_name", sa.String(length=255), nullable=True),
        sa.Column("device_label", sa.String(length=255), nullable=True),
        sa.Column("amount_total_millimes", sa.BigInteger(), nullable=False),
        sa.Column("amount_paid_millimes", sa.BigInteger(), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.ForeignKeyConstraint(["workshop_id"], ["workshops.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("workshop_id", "lookup_code", name="uq_tickets_workshop_lookup_code"),
        sa.CheckConstraint("amount_total_millimes >= 0", name="ck_tickets_total_non_negative"),
        sa.CheckConstraint(
            "amount_paid_millimes >= 0 AND amount_paid_millimes <= amount_total_millimes",
            name="ck_tickets_paid_within_total",
        ),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("tickets", schema=None) as batch_op:
        batch_op.create_index("ix_tickets_workshop_id", ["workshop_id"], unique=False)
        batch_op.create_index("ix_tickets_lookup_code", ["lookup_code"], unique=False)
        batch_op.create_index("ix_tickets_workshop_created", ["workshop_id", "created_at"], unique=False)

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("ticket_id", sa.Integer(), nullable=False),
        sa.Column("workshop_id", sa.Integer(), nullable=False),
        sa.Column("amount_millimes", sa.BigInteger(), nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("method", sa.String(length=16), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("idempotency_key", sa.String(length=128), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.ForeignKeyConstraint(["ticket_id"], ["tickets.id"]),
        sa.ForeignKeyConstraint(["workshop_id"], ["workshops.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("workshop_id", "idempotency_key", name="uq_payments_workshop_idempotency_key"),
        sa.CheckConstraint("amount_millimes > 0", name="ck_payments_amount_positive"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("payments", schema=None) as batch_op:
        batch_op.create_index("ix_payments_ticket_id", ["ticket_id"], unique=False)
        batch_op.create_index("ix_payments_workshop_id", ["workshop_id"], unique=False)
        batch_op.create_index("ix_payments_method", ["method"], unique=False)
        batch_op.create_index("ix_payments_workshop_paid_at", ["workshop_id", "paid_at"], unique=False)

    op.create_table(
        "payment_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("payment_id", sa.Integer(), nullable=False),
        sa.Column("ticket_id", sa.Integer(), nullable=False),
        sa.Column("workshop_id", sa.Integer(), nullable=False),
        sa.Column("event_type", sa.String(length=16), nullable=False),
        sa.Column("old_amount_millimes", sa.BigInteger(), nullable=False),
        sa.Column("new_amount_millimes", sa.BigInteger(), nullable=False),
        sa.Column("delta_millimes", sa.BigInteger(), nullable=False),
        sa.Column("paid_after_millimes", sa.BigInteger(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.ForeignKeyConstraint(["payment_id"], ["payments.id"]),
        sa.ForeignKeyConstraint(["ticket_id"], ["tickets.id"]),
        sa.ForeignKeyConstraint(["workshop_id"], ["workshops.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("payment_events", schema=None) as batch_op:
        batch_op.create_index("ix_payment_events_payment_id", ["payment_id"], unique=False)
        batch_op.create_index("ix_payment_events_ticket_id", ["ticket_id"], unique=False)
        batch_op.create_index("ix_payment_events_workshop_id", ["workshop_id"], unique=False)
        batch_op.create_index("ix_payment_events_event_type", ["event_type"], unique=False)
        batch_op.create_index("ix_payment_events_occurred_at", ["occurred_at"], unique=False)
        batch_op.create_index("ix_payment_events_ticket_occurred", ["ticket_id", "occurred_at"], unique=False)

    op.create_table(
        "security_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("workshop_id", sa.Integer(), nullable=True),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("resource", sa.String(length=128), nullable=True),
        sa.Column("action", sa.String(length=64), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.String(length=512), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False, server_default=NOW),
        sa.ForeignKeyConstraint(["workshop_id"], ["workshops.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table("security_events", schema=None) as batch_op:
        batch_op.create_index("ix_security_events_workshop_id", ["workshop_id"], unique=False)
        batch_op.create_index("ix_security_events_event_type", ["event_type"], unique=False)
        batch_op.create_index("ix_security_events_success", ["success"], unique=False)
        batch_op.create_index("ix_security_events_occurred_at", ["occurred_at"], unique=False)
        batch_op.create_index("ix_security_events_workshop_occurred", ["workshop_id", "occurred_at"], unique=False)


def downgrade():
    op.drop_table("security_events")
    op.drop_table("payment_events")
    op.drop_table("payments")
    op.drop_table("tickets")
    op.drop_table("workshop_api_tokens")
    op.drop_table("workshop_subscriptions")
    op.drop_table("workshops")

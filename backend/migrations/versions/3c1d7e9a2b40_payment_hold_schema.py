"""payment hold schema: users, orders, release audit, notifications, jobs, webhooks

Revision ID: 3c1d7e9a2b40
Revises:
Create Date: 2026-09-28 09:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "3c1d7e9a2b40"
down_revision = None
branch_labels = None
depends_on = None


def _table_exists(bind, table_name: str) -> bool:
    try:
        return sa.inspect(bind).has_table(table_name)
    except Exception:
        return False


def upgrade():
    bind = op.get_bind()

    if not _table_exists(bind, "users"):
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=120), nullable=False, server_default=""),
            sa.Column("email", sa.String(length=255), nullable=True),
            sa.Column("role", sa.String(length=32), nullable=False, server_default="buyer"),
            sa.Column("payout_account_id", sa.String(length=64), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_users_email", "users", ["email"])

    if not _table_exists(bind, "orders"):
        op.create_table(
            "orders",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("buyer_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("seller_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
            sa.Column("payment_hold_status", sa.String(length=16), nullable=False, server_default="HELD"),
            sa.Column("shipment_status", sa.String(length=24), nullable=False, server_default="PENDING"),
            sa.Column("carrier", sa.String(length=32), nullable=True),
            sa.Column("tracking_code", sa.String(length=64), nullable=True),
            sa.Column("shipped_at", sa.DateTime(), nullable=True),
            sa.Column("delivered_at", sa.DateTime(), nullable=True),
            sa.Column("estimated_delivery_at", sa.DateTime(), nullable=True),
            sa.Column("auto_release_at", sa.DateTime(), nullable=True),
            sa.Column("buyer_confirmed_at", sa.DateTime(), nullable=True),
            sa.Column("currency", sa.String(length=3), nullable=False, server_default="gbp"),
            sa.Column("product_price_minor", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("shipping_cost_minor", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("protection_fee_minor", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("amount_total_minor", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("seller_payout_minor", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("charge_reference", sa.String(length=128), nullable=True),
            sa.Column("transfer_reference", sa.String(length=128), nullable=True, unique=True),
            sa.Column("payout_execution_status", sa.String(length=16), nullable=False, server_default="pending"),
            sa.Column("payment_released_at", sa.DateTime(), nullable=True),
            sa.Column("release_reason", sa.String(length=32), nullable=True),
            sa.Column("release_claim_id", sa.String(length=32), nullable=True),
            sa.Column("release_claimed_at", sa.DateTime(), nullable=True),
            sa.Column("release_trigger", sa.String(length=32), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
        )
        op.create_index("ix_orders_buyer_id", "orders", ["buyer_id"])
        op.create_index("ix_orders_seller_id", "orders", ["seller_id"])
        op.create_index("ix_orders_tracking_code", "orders", ["tracking_code"])
        op.create_index(
            "ix_orders_hold_release_due",
            "orders",
            ["payment_hold_status", "shipment_status", "auto_release_at"],
        )

    if not _table_exists(bind, "escrow_transitions"):
        op.create_table(
            "escrow_transitions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("order_id", sa.Integer(), nullable=False),
            sa.Column("step", sa.String(length=24), nullable=False),
            sa.Column("from_status", sa.String(length=16), nullable=False, server_default=""),
            sa.Column("to_status", sa.String(length=16), nullable=False),
            sa.Column("trigger", sa.String(length=32), nullable=True),
            sa.Column("claim_id", sa.String(length=32), nullable=True),
            sa.Column("actor_type", sa.String(length=32), nullable=False, server_default="system"),
            sa.Column("actor_id", sa.Integer(), nullable=True),
            sa.Column("idempotency_key", sa.String(length=160), nullable=False),
            sa.Column("reason", sa.String(length=240), nullable=True),
            sa.Column("metadata_json", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.UniqueConstraint("order_id", "idempotency_key", name="uq_escrow_transition_order_key"),
        )
        op.create_index("ix_escrow_transitions_order_id", "escrow_transitions", ["order_id"])
        op.create_index("ix_escrow_transitions_claim_id", "escrow_transitions", ["claim_id"])

    if not _table_exists(bind, "notifications"):
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
            sa.Column("order_id", sa.Integer(), nullable=True),
            sa.Column("channel", sa.String(length=32), nullable=False, server_default="email"),
            sa.Column("kind", sa.String(length=48), nullable=False),
            sa.Column("recipient", sa.String(length=255), nullable=True),
            sa.Column("title", sa.String(length=160), nullable=True),
            sa.Column("message", sa.Text(), nullable=False),
            sa.Column("status", sa.String(length=24), nullable=False, server_default="queued"),
            sa.Column("provider", sa.String(length=64), nullable=True),
            sa.Column("provider_ref", sa.String(length=120), nullable=True),
            sa.Column("error_code", sa.String(length=64), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("sent_at", sa.DateTime(), nullable=True),
            sa.Column("meta", sa.Text(), nullable=True),
        )
        op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
        op.create_index("ix_notifications_order_id", "notifications", ["order_id"])

    if not _table_exists(bind, "job_runs"):
        op.create_table(
            "job_runs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("job_name", sa.String(length=64), nullable=False),
            sa.Column("ran_at", sa.DateTime(), nullable=False),
            sa.Column("ok", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("duration_ms", sa.Integer(), nullable=True),
            sa.Column("processed", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("failed", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("summary_json", sa.Text(), nullable=True),
            sa.Column("error", sa.Text(), nullable=True),
        )
        op.create_index("ix_job_runs_job_name", "job_runs", ["job_name"])
        op.create_index("ix_job_runs_ran_at", "job_runs", ["ran_at"])
        op.create_index("ix_job_runs_ok", "job_runs", ["ok"])

    if not _table_exists(bind, "webhook_events"):
        op.create_table(
            "webhook_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("provider", sa.String(length=32), nullable=False),
            sa.Column("event_id", sa.String(length=128), nullable=False),
            sa.Column("tracking_code", sa.String(length=64), nullable=True),
            sa.Column("order_id", sa.Integer(), nullable=True),
            sa.Column("status", sa.String(length=32), nullable=False, server_default="received"),
            sa.Column("processed_at", sa.DateTime(), nullable=True),
            sa.Column("request_id", sa.String(length=64), nullable=True),
            sa.Column("payload_hash", sa.String(length=128), nullable=True),
            sa.Column("error", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.UniqueConstraint("provider", "event_id", name="uq_webhook_provider_event"),
        )
        op.create_index("ix_webhook_events_order_id", "webhook_events", ["order_id"])

    if not _table_exists(bind, "platform_events"):
        op.create_table(
            "platform_events",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("event_type", sa.String(length=80), nullable=False),
            sa.Column("actor_user_id", sa.Integer(), nullable=True),
            sa.Column("subject_type", sa.String(length=40), nullable=True),
            sa.Column("subject_id", sa.String(length=64), nullable=True),
            sa.Column("request_id", sa.String(length=80), nullable=True),
            sa.Column("idempotency_key", sa.String(length=180), nullable=True, unique=True),
            sa.Column("severity", sa.String(length=16), nullable=False, server_default="INFO"),
            sa.Column("metadata_json", sa.Text(), nullable=True),
        )
        op.create_index("ix_platform_events_created_at", "platform_events", ["created_at"])
        op.create_index("ix_platform_events_event_type", "platform_events", ["event_type"])
        op.create_index("ix_platform_events_subject_id", "platform_events", ["subject_id"])

    if not _table_exists(bind, "integration_settings"):
        op.create_table(
            "integration_settings",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("integrations_mode", sa.String(length=24), nullable=False, server_default="disabled"),
            sa.Column("payments_provider", sa.String(length=24), nullable=False, server_default="mock"),
            sa.Column("email_provider", sa.String(length=24), nullable=False, server_default="mock"),
            sa.Column("feature_flags_json", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
        )


def downgrade():
    for table in (
        "integration_settings",
        "platform_events",
        "webhook_events",
        "job_runs",
        "notifications",
        "escrow_transitions",
        "orders",
        "users",
    ):
        op.drop_table(table)

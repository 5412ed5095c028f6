"""create rent collection tables

Revision ID: 9a1c4e2b7d30
Revises:
Create Date: 2026-09-28 10:15:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "9a1c4e2b7d30"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "landlord_profiles",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("subscription_tier", sa.String(), nullable=False, server_default="free"),
        sa.Column("payout_account_ref", sa.String(), nullable=True),
        sa.Column("charges_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payouts_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("details_submitted", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_landlord_profiles_payout_account_ref", "landlord_profiles", ["payout_account_ref"], unique=True
    )

    op.create_table(
        "properties",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("landlord_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("address", sa.String(), nullable=False),
        sa.Column("city", sa.String(), nullable=True),
        sa.Column("state", sa.String(), nullable=True),
        sa.Column("zip", sa.String(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["landlord_id"], ["landlord_profiles.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_properties_landlord_id", "properties", ["landlord_id"], unique=False)

    op.create_table(
        "tenants",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("landlord_id", sa.String(length=36), nullable=False),
        sa.Column("property_id", sa.String(length=36), nullable=True),
        sa.Column("first_name", sa.String(), nullable=False),
        sa.Column("last_name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["landlord_id"], ["landlord_profiles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["property_id"], ["properties.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_tenants_landlord_id", "tenants", ["landlord_id"], unique=False)
    op.create_index("ix_tenants_property_id", "tenants", ["property_id"], unique=False)

    op.create_table(
        "payment_methods",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("landlord_id", sa.String(length=36), nullable=False),
        sa.Column("tenant_id", sa.String(length=36), nullable=False),
        sa.Column("processor_customer_ref", sa.String(), nullable=False),
        sa.Column("processor_method_ref", sa.String(), nullable=False),
        sa.Column("method_type", sa.String(), nullable=False, server_default="us_bank_account"),
        sa.Column("bank_name", sa.String(), nullable=True),
        sa.Column("last_four", sa.String(length=4), nullable=True),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.ForeignKeyConstraint(["landlord_id"], ["landlord_profiles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("processor_method_ref"),
    )
    op.create_index("ix_payment_methods_landlord_id", "payment_methods", ["landlord_id"], unique=False)
    op.create_index("ix_payment_methods_tenant_id", "payment_methods", ["tenant_id"], unique=False)
    op.create_index(
        "uq_payment_methods_default_per_tenant",
        "payment_methods",
        ["landlord_id", "tenant_id"],
        unique=True,
        postgresql_where=sa.text("is_default"),
    )

    op.create_table(
        "rent_payments",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("landlord_id", sa.String(length=36), nullable=False),
        sa.Column("tenant_id", sa.String(length=36), nullable=True),
        sa.Column("property_id", sa.String(length=36), nullable=True),
        sa.Column("payment_method_id", sa.String(length=36), nullable=True),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("charged_amount", sa.Integer(), nullable=False),
        sa.Column("fee_amount", sa.Integer(), nullable=False),
        sa.Column("net_amount", sa.Integer(), nullable=False),
        sa.Column("fee_payer", sa.String(length=10), nullable=False, server_default="landlord"),
        sa.Column("fee_schedule_version", sa.String(), nullable=False),
        sa.Column("status", sa.String(length=12), nullable=False, server_default="pending"),
        sa.Column("idempotency_key", sa.String(), nullable=False),
        sa.Column("processor_ref", sa.String(), nullable=True),
        sa.Column("failure_reason", sa.String(), nullable=True),
        sa.Column("rent_period_start", sa.Date(), nullable=True),
        sa.Column("rent_period_end", sa.Date(), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=True),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("returned_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "amount >= 0 AND charged_amount >= 0 AND fee_amount >= 0 AND net_amount >= 0",
            name="ck_rent_payments_non_negative",
        ),
        sa.CheckConstraint("charged_amount - net_amount = fee_amount", name="ck_rent_payments_fee_balance"),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'succeeded', 'failed', 'returned')",
            name="ck_rent_payments_status",
        ),
        sa.CheckConstraint("fee_payer IN ('landlord', 'tenant', 'split')", name="ck_rent_payments_fee_payer"),
        sa.ForeignKeyConstraint(["landlord_id"], ["landlord_profiles.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["property_id"], ["properties.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["payment_method_id"], ["payment_methods.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("idempotency_key"),
        sa.UniqueConstraint("processor_ref"),
    )
    op.create_index("ix_rent_payments_landlord_id", "rent_payments", ["landlord_id"], unique=False)
    op.create_index("ix_rent_payments_tenant_id", "rent_payments", ["tenant_id"], unique=False)
    op.create_index("ix_rent_payments_property_id", "rent_payments", ["property_id"], unique=False)
    op.create_index("ix_rent_payments_status", "rent_payments", ["status"], unique=False)
    op.create_index("ix_rent_payments_due_date", "rent_payments", ["due_date"], unique=False)
    op.create_index(
        "ix_rent_payments_landlord_created", "rent_payments", ["landlord_id", "created_at"], unique=False
    )

    op.create_table(
        "processor_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("operation_ref", sa.String(), nullable=True),
        sa.Column("result", sa.String(), nullable=False),
        sa.Column("detail", sa.String(), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("event_id"),
    )
    op.create_index("ix_processor_events_event_type", "processor_events", ["event_type"], unique=False)
    op.create_index("ix_processor_events_operation_ref", "processor_events", ["operation_ref"], unique=False)

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("landlord_id", sa.String(length=36), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=False),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("entity_type", sa.String(), nullable=False),
        sa.Column("entity_id", sa.String(), nullable=False),
        sa.Column("source", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=True),
        sa.Column("tenant_id", sa.String(length=36), nullable=True),
        sa.Column("amount", sa.Integer(), nullable=True),
        sa.Column("risk_level", sa.String(), nullable=False, server_default="low"),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_id", "audit_logs", ["id"], unique=False)
    op.create_index("ix_audit_logs_landlord_id", "audit_logs", ["landlord_id"], unique=False)
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"], unique=False)
    op.create_index("ix_audit_logs_entity_type", "audit_logs", ["entity_type"], unique=False)
    op.create_index("ix_audit_logs_entity_id", "audit_logs", ["entity_id"], unique=False)
    op.create_index("ix_audit_logs_source", "audit_logs", ["source"], unique=False)
    op.create_index("ix_audit_logs_status", "audit_logs", ["status"], unique=False)
    op.create_index("ix_audit_logs_tenant_id", "audit_logs", ["tenant_id"], unique=False)
    op.create_index("ix_audit_logs_risk_level", "audit_logs", ["risk_level"], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("audit_logs")
    op.drop_table("processor_events")
    op.drop_table("rent_payments")
    op.drop_index("uq_payment_methods_default_per_tenant", table_name="payment_methods")
    op.drop_table("payment_methods")
    op.drop_table("tenants")
    op.drop_table("properties")
    op.drop_table("landlord_profiles")

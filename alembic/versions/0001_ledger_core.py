"""create ledger core tables

Revision ID: 0001_ledger_core
Revises:
Create Date: 2026-10-19 09:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_ledger_core"
down_revision = None
branch_labels = None
depends_on = None


invoice_status = sa.Enum("pending", "partial", "paid", "overdue", "cancelled", name="invoice_status")
discount_approval_status = sa.Enum("none", "pending", "approved", "rejected", name="discount_approval_status")
installment_frequency = sa.Enum("monthly", "quarterly", "custom", name="installment_frequency")
installment_plan_status = sa.Enum("active", "completed", "cancelled", name="installment_plan_status")
payment_method = sa.Enum("cash", "bank_transfer", "esewa", "khalti", "ime_pay", name="payment_method")
payment_status = sa.Enum("pending", "completed", "failed", "refunded", name="payment_status")
payment_gateway = sa.Enum("esewa", name="payment_gateway")
gateway_transaction_status = sa.Enum("pending", "success", "failed", "expired", name="gateway_transaction_status")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def _partial(clause: str) -> dict:
    return {"postgresql_where": sa.text(clause), "sqlite_where": sa.text(clause)}


def upgrade() -> None:
    op.create_table(
        "sequence_counters",
        sa.Column("scope", sa.String(length=50), primary_key=True),
        sa.Column("last_value", sa.Integer(), nullable=False),
    )

    op.create_table(
        "invoices",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("invoice_number", sa.String(length=50), nullable=False),
        sa.Column("student_id", sa.Integer(), nullable=False),
        sa.Column("fee_definition_id", sa.Integer(), nullable=False),
        sa.Column("period_id", sa.Integer(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("subtotal", sa.Numeric(12, 2), nullable=False),
        sa.Column("discount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("discount_reason", sa.String(length=255), nullable=True),
        sa.Column("discount_approval_status", discount_approval_status, nullable=False, server_default="none"),
        sa.Column("discount_approved_by", sa.Integer(), nullable=True),
        sa.Column("discount_approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("paid_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("balance", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", invoice_status, nullable=False),
        sa.Column("generated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("balance >= 0", name="ck_invoices_balance_non_negative"),
        sa.CheckConstraint("paid_amount >= 0", name="ck_invoices_paid_non_negative"),
        sa.CheckConstraint("discount >= 0", name="ck_invoices_discount_non_negative"),
    )
    op.create_index("ix_invoices_id", "invoices", ["id"], unique=False)
    op.create_index("ix_invoices_invoice_number", "invoices", ["invoice_number"], unique=True)
    op.create_index("ix_invoices_student_id", "invoices", ["student_id"], unique=False)
    op.create_index("ix_invoices_fee_definition_id", "invoices", ["fee_definition_id"], unique=False)
    op.create_index("ix_invoices_period_id", "invoices", ["period_id"], unique=False)
    op.create_index("ix_invoices_due_date", "invoices", ["due_date"], unique=False)
    op.create_index("ix_invoices_discount_approval_status", "invoices", ["discount_approval_status"], unique=False)
    op.create_index("ix_invoices_status", "invoices", ["status"], unique=False)
    op.create_index(
        "uq_invoices_active_student_fee_period",
        "invoices",
        ["student_id", "fee_definition_id", "period_id"],
        unique=True,
        **_partial("status <> 'cancelled'"),
    )

    op.create_table(
        "invoice_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("invoice_id", sa.Integer(), sa.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False),
        sa.Column("fee_component_id", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("amount > 0", name="ck_invoice_items_amount_positive"),
    )
    op.create_index("ix_invoice_items_id", "invoice_items", ["id"], unique=False)
    op.create_index("ix_invoice_items_invoice_id", "invoice_items", ["invoice_id"], unique=False)
    op.create_index("ix_invoice_items_fee_component_id", "invoice_items", ["fee_component_id"], unique=False)

    op.create_table(
        "installment_plans",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("invoice_id", sa.Integer(), sa.ForeignKey("invoices.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("student_id", sa.Integer(), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("number_of_installments", sa.Integer(), nullable=False),
        sa.Column("installment_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("frequency", installment_frequency, nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("status", installment_plan_status, nullable=False, server_default="active"),
        sa.Column("created_by", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("number_of_installments >= 1", name="ck_installment_plans_count_positive"),
    )
    op.create_index("ix_installment_plans_id", "installment_plans", ["id"], unique=False)
    op.create_index("ix_installment_plans_invoice_id", "installment_plans", ["invoice_id"], unique=False)
    op.create_index("ix_installment_plans_student_id", "installment_plans", ["student_id"], unique=False)
    op.create_index("ix_installment_plans_status", "installment_plans", ["status"], unique=False)
    op.create_index(
        "uq_installment_plans_active_invoice",
        "installment_plans",
        ["invoice_id"],
        unique=True,
        **_partial("status = 'active'"),
    )

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("invoice_id", sa.Integer(), sa.ForeignKey("invoices.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("student_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("method", payment_method, nullable=False),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("external_transaction_id", sa.String(length=100), nullable=True),
        sa.Column("receipt_number", sa.String(length=50), nullable=False),
        sa.Column("status", payment_status, nullable=False),
        sa.Column(
            "installment_plan_id",
            sa.Integer(),
            sa.ForeignKey("installment_plans.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("installment_number", sa.Integer(), nullable=True),
        sa.Column("received_by", sa.Integer(), nullable=True),
        sa.Column("remarks", sa.Text(), nullable=True),
        sa.Column("gateway_response", sa.JSON(), nullable=True),
        sa.Column("refunded_by", sa.Integer(), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refund_reason", sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        sa.UniqueConstraint("external_transaction_id", name="uq_payments_external_transaction_id"),
    )
    op.create_index("ix_payments_id", "payments", ["id"], unique=False)
    op.create_index("ix_payments_invoice_id", "payments", ["invoice_id"], unique=False)
    op.create_index("ix_payments_student_id", "payments", ["student_id"], unique=False)
    op.create_index("ix_payments_method", "payments", ["method"], unique=False)
    op.create_index("ix_payments_payment_date", "payments", ["payment_date"], unique=False)
    op.create_index("ix_payments_receipt_number", "payments", ["receipt_number"], unique=True)
    op.create_index("ix_payments_status", "payments", ["status"], unique=False)
    op.create_index("ix_payments_installment_plan_id", "payments", ["installment_plan_id"], unique=False)
    op.create_index(
        "uq_payments_completed_installment",
        "payments",
        ["installment_plan_id", "installment_number"],
        unique=True,
        **_partial("status = 'completed' AND installment_plan_id IS NOT NULL"),
    )

    op.create_table(
        "gateway_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("transaction_uuid", sa.String(length=36), nullable=False),
        sa.Column("gateway", payment_gateway, nullable=False),
        sa.Column("invoice_id", sa.Integer(), sa.ForeignKey("invoices.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("student_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("tax_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("service_charge", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("product_code", sa.String(length=50), nullable=False),
        sa.Column("signature", sa.String(length=128), nullable=False),
        sa.Column("status", gateway_transaction_status, nullable=False, server_default="pending"),
        sa.Column("initiated_by", sa.Integer(), nullable=True),
        sa.Column("initiated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("gateway_response", sa.JSON(), nullable=True),
        sa.Column("failure_reason", sa.String(length=255), nullable=True),
        sa.Column("payment_id", sa.Integer(), sa.ForeignKey("payments.id", ondelete="SET NULL"), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_gateway_transactions_id", "gateway_transactions", ["id"], unique=False)
    op.create_index(
        "ix_gateway_transactions_transaction_uuid", "gateway_transactions", ["transaction_uuid"], unique=True
    )
    op.create_index("ix_gateway_transactions_invoice_id", "gateway_transactions", ["invoice_id"], unique=False)
    op.create_index("ix_gateway_transactions_student_id", "gateway_transactions", ["student_id"], unique=False)
    op.create_index("ix_gateway_transactions_status", "gateway_transactions", ["status"], unique=False)
    op.create_index("ix_gateway_transactions_expires_at", "gateway_transactions", ["expires_at"], unique=False)
    op.create_index(
        "uq_gateway_transactions_pending_invoice",
        "gateway_transactions",
        ["invoice_id", "gateway"],
        unique=True,
        **_partial("status = 'pending'"),
    )


def downgrade() -> None:
    op.drop_index("uq_gateway_transactions_pending_invoice", table_name="gateway_transactions")
    op.drop_index("ix_gateway_transactions_expires_at", table_name="gateway_transactions")
    op.drop_index("ix_gateway_transactions_status", table_name="gateway_transactions")
    op.drop_index("ix_gateway_transactions_student_id", table_name="gateway_transactions")
    op.drop_index("ix_gateway_transactions_invoice_id", table_name="gateway_transactions")
    op.drop_index("ix_gateway_transactions_transaction_uuid", table_name="gateway_transactions")
    op.drop_index("ix_gateway_transactions_id", table_name="gateway_transactions")
    op.drop_table("gateway_transactions")

    op.drop_index("uq_payments_completed_installment", table_name="payments")
    op.drop_index("ix_payments_installment_plan_id", table_name="payments")
    op.drop_index("ix_payments_status", table_name="payments")
    op.drop_index("ix_payments_receipt_number", table_name="payments")
    op.drop_index("ix_payments_payment_date", table_name="payments")
    op.drop_index("ix_payments_method", table_name="payments")
    op.drop_index("ix_payments_student_id", table_name="payments")
    op.drop_index("ix_payments_invoice_id", table_name="payments")
    op.drop_index("ix_payments_id", table_name="payments")
    op.drop_table("payments")

    op.drop_index("uq_installment_plans_active_invoice", table_name="installment_plans")
    op.drop_index("ix_installment_plans_status", table_name="installment_plans")
    op.drop_index("ix_installment_plans_student_id", table_name="installment_plans")
    op.drop_index("ix_installment_plans_invoice_id", table_name="installment_plans")
    op.drop_index("ix_installment_plans_id", table_name="installment_plans")
    op.drop_table("installment_plans")

    op.drop_index("ix_invoice_items_fee_component_id", table_name="invoice_items")
    op.drop_index("ix_invoice_items_invoice_id", table_name="invoice_items")
    op.drop_index("ix_invoice_items_id", table_name="invoice_items")
    op.drop_table("invoice_items")

    op.drop_index("uq_invoices_active_student_fee_period", table_name="invoices")
    op.drop_index("ix_invoices_status", table_name="invoices")
    op.drop_index("ix_invoices_discount_approval_status", table_name="invoices")
    op.drop_index("ix_invoices_due_date", table_name="invoices")
    op.drop_index("ix_invoices_period_id", table_name="invoices")
    op.drop_index("ix_invoices_fee_definition_id", table_name="invoices")
    op.drop_index("ix_invoices_student_id", table_name="invoices")
    op.drop_index("ix_invoices_invoice_number", table_name="invoices")
    op.drop_index("ix_invoices_id", table_name="invoices")
    op.drop_table("invoices")

    op.drop_table("sequence_counters")

    bind = op.get_bind()
    for enum_type in (
        gateway_transaction_status,
        payment_gateway,
        payment_status,
        payment_method,
        installment_plan_status,
        installment_frequency,
        discount_approval_status,
        invoice_status,
    ):
        enum_type.drop(bind, checkfirst=True)

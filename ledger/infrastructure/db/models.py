from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger.domain.gateway_enums import GatewayTransactionStatus, PaymentGateway
from ledger.domain.installment_enums import InstallmentFrequency, InstallmentPlanStatus
from ledger.domain.invoice_status import DiscountApprovalStatus, InvoiceStatus
from ledger.domain.payment_enums import PaymentMethod, PaymentStatus, RefundStatus
from ledger.infrastructure.db.session import Base

MONEY = Numeric(12, 2)


def _partial_where(clause: str) -> dict[str, Any]:
    return {"postgresql_where": text(clause), "sqlite_where": text(clause)}


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class SequenceCounter(Base):
    __tablename__ = "sequence_counters"

    scope: Mapped[str] = mapped_column(String(50), primary_key=True)
    last_value: Mapped[int] = mapped_column(Integer, nullable=False)


class Invoice(TimestampMixin, Base):
    __tablename__ = "invoices"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_invoices_balance_non_negative"),
        CheckConstraint("paid_amount >= 0", name="ck_invoices_paid_non_negative"),
        CheckConstraint("discount >= 0", name="ck_invoices_discount_non_negative"),
        Index(
            "uq_invoices_active_student_fee_period",
            "student_id",
            "fee_definition_id",
            "period_id",
            unique=True,
            **_partial_where("status <> 'cancelled'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    invoice_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    student_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    fee_definition_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    period_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    due_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    subtotal: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    discount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0.00"))
    discount_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    discount_approval_status: Mapped[DiscountApprovalStatus] = mapped_column(
        Enum(DiscountApprovalStatus, name="discount_approval_status"),
        nullable=False,
        default=DiscountApprovalStatus.none,
        index=True,
    )
    discount_approved_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    discount_approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0.00"))
    balance: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    status: Mapped[InvoiceStatus] = mapped_column(
        Enum(InvoiceStatus, name="invoice_status"), nullable=False, index=True
    )
    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    items: Mapped[list["InvoiceItem"]] = relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.id",
    )


class InvoiceItem(TimestampMixin, Base):
    __tablename__ = "invoice_items"
    __table_args__ = (CheckConstraint("amount > 0", name="ck_invoice_items_amount_positive"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    invoice_id: Mapped[int] = mapped_column(ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    fee_component_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    invoice: Mapped[Invoice] = relationship("Invoice", back_populates="items")


class InstallmentPlan(TimestampMixin, Base):
    __tablename__ = "installment_plans"
    __table_args__ = (
        CheckConstraint("number_of_installments >= 1", name="ck_installment_plans_count_positive"),
        Index("uq_installment_plans_active_invoice", "invoice_id", unique=True, **_partial_where("status = 'active'")),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    invoice_id: Mapped[int] = mapped_column(ForeignKey("invoices.id", ondelete="RESTRICT"), nullable=False, index=True)
    student_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    total_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    number_of_installments: Mapped[int] = mapped_column(Integer, nullable=False)
    installment_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    frequency: Mapped[InstallmentFrequency] = mapped_column(
        Enum(InstallmentFrequency, name="installment_frequency"), nullable=False
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[InstallmentPlanStatus] = mapped_column(
        Enum(InstallmentPlanStatus, name="installment_plan_status"),
        nullable=False,
        default=InstallmentPlanStatus.active,
        index=True,
    )
    created_by: Mapped[int | None] = mapped_column(Integer, nullable=True)

    invoice: Mapped[Invoice] = relationship("Invoice")


class Payment(TimestampMixin, Base):
    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        Index(
            "uq_payments_completed_installment",
            "installment_plan_id",
            "installment_number",
            unique=True,
            **_partial_where("status = 'completed' AND installment_plan_id IS NOT NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    invoice_id: Mapped[int] = mapped_column(ForeignKey("invoices.id", ondelete="RESTRICT"), nullable=False, index=True)
    student_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    method: Mapped[PaymentMethod] = mapped_column(Enum(PaymentMethod, name="payment_method"), nullable=False, index=True)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    external_transaction_id: Mapped[str | None] = mapped_column(String(100), unique=True, nullable=True)
    receipt_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, name="payment_status"), nullable=False, index=True
    )
    installment_plan_id: Mapped[int | None] = mapped_column(
        ForeignKey("installment_plans.id", ondelete="RESTRICT"), nullable=True, index=True
    )
    installment_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    received_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    gateway_response: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    refunded_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refund_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    invoice: Mapped[Invoice] = relationship("Invoice")


class Refund(TimestampMixin, Base):
    __tablename__ = "refunds"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_refunds_amount_positive"),
        Index(
            "uq_refunds_open_payment",
            "payment_id",
            unique=True,
            **_partial_where("status IN ('pending', 'approved')"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    payment_id: Mapped[int] = mapped_column(ForeignKey("payments.id", ondelete="RESTRICT"), nullable=False, index=True)
    invoice_id: Mapped[int] = mapped_column(ForeignKey("invoices.id", ondelete="RESTRICT"), nullable=False, index=True)
    student_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[RefundStatus] = mapped_column(
        Enum(RefundStatus, name="refund_status"), nullable=False, default=RefundStatus.pending, index=True
    )
    requested_by: Mapped[int] = mapped_column(Integer, nullable=False)
    approved_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    processed_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    payment: Mapped[Payment] = relationship("Payment")


class GatewayTransaction(TimestampMixin, Base):
    __tablename__ = "gateway_transactions"
    __table_args__ = (
        Index(
            "uq_gateway_transactions_pending_invoice",
            "invoice_id",
            "gateway",
            unique=True,
            **_partial_where("status = 'pending'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    transaction_uuid: Mapped[str] = mapped_column(String(36), unique=True, nullable=False, index=True)
    gateway: Mapped[PaymentGateway] = mapped_column(Enum(PaymentGateway, name="payment_gateway"), nullable=False)
    invoice_id: Mapped[int] = mapped_column(ForeignKey("invoices.id", ondelete="RESTRICT"), nullable=False, index=True)
    student_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0.00"))
    service_charge: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0.00"))
    total_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    product_code: Mapped[str] = mapped_column(String(50), nullable=False)
    signature: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[GatewayTransactionStatus] = mapped_column(
        Enum(GatewayTransactionStatus, name="gateway_transaction_status"),
        nullable=False,
        default=GatewayTransactionStatus.pending,
        index=True,
    )
    initiated_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    initiated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    gateway_response: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payment_id: Mapped[int | None] = mapped_column(ForeignKey("payments.id", ondelete="SET NULL"), nullable=True)

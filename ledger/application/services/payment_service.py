from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger.application.clock import utc_now
from ledger.application.errors import (
    AlreadyPaidError,
    AlreadyRefundedError,
    DuplicateTransactionError,
    InvalidIndexError,
    InvalidStateError,
    NotActiveError,
    NotCompletedError,
    NotFoundError,
    ValidationError,
)
from ledger.application.services.invoice_service import lock_invoice, record_payment, reverse_payment
from ledger.application.services.sequence_service import next_receipt_number
from ledger.application.services.student_balance_service import invalidate_student_balance_cache
from ledger.domain.installment_enums import InstallmentPlanStatus
from ledger.domain.invoice_status import InvoiceStatus
from ledger.domain.money import to_money
from ledger.domain.payment_enums import PaymentMethod, PaymentStatus
from ledger.infrastructure.db.models import InstallmentPlan, Invoice, Payment
from ledger.infrastructure.db.session import unit_of_work
from ledger.infrastructure.logging import get_logger
from ledger.interfaces.api.v1.schemas.payment import PaymentCreate

logger = get_logger(__name__)

METHODS_REQUIRING_REFERENCE = (PaymentMethod.bank_transfer,)


def get_payment(db: Session, *, payment_id: int) -> Payment:
    payment = db.get(Payment, payment_id)
    if payment is None:
        raise NotFoundError("Payment not found")
    return payment


def get_payment_by_receipt(db: Session, *, receipt_number: str) -> Payment:
    payment = db.execute(select(Payment).where(Payment.receipt_number == receipt_number)).scalar_one_or_none()
    if payment is None:
        raise NotFoundError("Receipt not found")
    return payment


def build_invoice_payments_query(*, invoice_id: int):
    return select(Payment).where(Payment.invoice_id == invoice_id).order_by(Payment.payment_date.desc(), Payment.id.desc())


def build_student_payments_query(*, student_id: int):
    return select(Payment).where(Payment.student_id == student_id).order_by(Payment.payment_date.desc(), Payment.id.desc())


def _external_transaction_exists(db: Session, *, external_transaction_id: str) -> bool:
    return (
        db.execute(select(Payment.id).where(Payment.external_transaction_id == external_transaction_id)).first()
        is not None
    )


def _validate_installment_link(db: Session, *, payload: PaymentCreate) -> InstallmentPlan | None:
    if payload.installment_plan_id is None and payload.installment_number is None:
        return None
    if payload.installment_plan_id is None or payload.installment_number is None:
        raise ValidationError("Installment plan id and installment number must be provided together")
    plan = db.get(InstallmentPlan, payload.installment_plan_id)
    if plan is None:
        raise NotFoundError("Installment plan not found")
    if plan.invoice_id != payload.invoice_id:
        raise ValidationError("Installment plan does not belong to invoice")
    if plan.status != InstallmentPlanStatus.active:
        raise NotActiveError(f"Installment plan is {plan.status.value}")
    if not 1 <= payload.installment_number <= plan.number_of_installments:
        raise InvalidIndexError(
            f"Installment number must be between 1 and {plan.number_of_installments}: got {payload.installment_number}"
        )
    return plan


def _complete_plan_if_fulfilled(db: Session, *, plan: InstallmentPlan) -> None:
    paid_count = db.execute(
        select(func.count(func.distinct(Payment.installment_number))).where(
            Payment.installment_plan_id == plan.id,
            Payment.status == PaymentStatus.completed,
        )
    ).scalar_one()
    if paid_count >= plan.number_of_installments and plan.status == InstallmentPlanStatus.active:
        plan.status = InstallmentPlanStatus.completed
        logger.info("installment_plan_completed", plan_id=plan.id, invoice_id=plan.invoice_id)


def _raise_for_integrity_error(exc: IntegrityError, *, payload: PaymentCreate) -> None:
    if "installment" in str(exc.orig):
        raise AlreadyPaidError(
            f"Installment {payload.installment_number} of plan {payload.installment_plan_id} is already paid"
        ) from exc
    raise DuplicateTransactionError(
        f"Payment with external transaction id {payload.external_transaction_id} already exists"
    ) from exc


def apply_payment(db: Session, *, payload: PaymentCreate) -> Payment:
    """Create a completed payment and post it to its invoice without committing.

    The invoice row stays locked until the caller's unit of work ends.
    """
    invoice = lock_invoice(db, invoice_id=payload.invoice_id)
    if invoice.status == InvoiceStatus.cancelled:
        logger.warning("payment_rejected_invoice_cancelled", invoice_id=invoice.id)
        raise InvalidStateError("Cannot record payment on cancelled invoice")
    if invoice.student_id != payload.student_id:
        logger.warning(
            "payment_rejected_invoice_student_mismatch",
            invoice_id=invoice.id,
            student_id=payload.student_id,
            invoice_student_id=invoice.student_id,
        )
        raise ValidationError("Invoice does not belong to student")
    amount = to_money(payload.amount)
    record_payment(invoice, amount=amount)

    if payload.method in METHODS_REQUIRING_REFERENCE and not payload.external_transaction_id:
        raise ValidationError(f"External transaction id is required for {payload.method.value} payments")
    if payload.external_transaction_id and _external_transaction_exists(
        db, external_transaction_id=payload.external_transaction_id
    ):
        logger.warning(
            "payment_rejected_duplicate_transaction",
            invoice_id=invoice.id,
            external_transaction_id=payload.external_transaction_id,
        )
        raise DuplicateTransactionError(
            f"Payment with external transaction id {payload.external_transaction_id} already exists"
        )
    plan = _validate_installment_link(db, payload=payload)

    payment = Payment(
        invoice_id=invoice.id,
        student_id=invoice.student_id,
        amount=amount,
        method=payload.method,
        payment_date=payload.payment_date,
        external_transaction_id=payload.external_transaction_id,
        receipt_number=next_receipt_number(db, payment_date=payload.payment_date),
        status=PaymentStatus.completed,
        installment_plan_id=payload.installment_plan_id,
        installment_number=payload.installment_number,
        received_by=payload.received_by,
        remarks=payload.remarks,
        gateway_response=payload.gateway_response,
    )
    db.add(payment)
    try:
        db.flush()
    except IntegrityError as exc:
        _raise_for_integrity_error(exc, payload=payload)
    if plan is not None:
        _complete_plan_if_fulfilled(db, plan=plan)
        db.flush()
    return payment


def process_payment(db: Session, *, payload: PaymentCreate) -> Payment:
    logger.info(
        "payment_processing_started",
        invoice_id=payload.invoice_id,
        student_id=payload.student_id,
        amount=str(payload.amount),
        method=payload.method.value,
    )
    with unit_of_work(db):
        payment = apply_payment(db, payload=payload)
        invoice = payment.invoice
        balance_after = invoice.balance
        invoice_status = invoice.status
    invalidate_student_balance_cache(student_id=payment.student_id)
    logger.info(
        "payment_processing_completed",
        payment_id=payment.id,
        invoice_id=payment.invoice_id,
        receipt_number=payment.receipt_number,
        amount=str(payment.amount),
        balance=str(balance_after),
        invoice_status=invoice_status.value,
        received_by=payment.received_by,
    )
    return payment


def _reactivate_plan(db: Session, *, plan_id: int) -> None:
    plan = db.get(InstallmentPlan, plan_id)
    if plan is None or plan.status != InstallmentPlanStatus.completed:
        return
    other_active = db.execute(
        select(InstallmentPlan.id).where(
            InstallmentPlan.invoice_id == plan.invoice_id,
            InstallmentPlan.status == InstallmentPlanStatus.active,
        )
    ).first()
    if other_active is not None:
        return
    plan.status = InstallmentPlanStatus.active
    logger.info("installment_plan_reactivated", plan_id=plan.id, invoice_id=plan.invoice_id)


def lock_payment(db: Session, *, payment_id: int) -> Payment:
    payment = db.execute(
        select(Payment).where(Payment.id == payment_id).with_for_update().execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if payment is None:
        raise NotFoundError("Payment not found")
    return payment


def reverse_completed_payment(db: Session, *, payment: Payment, refunded_by: int, reason: str) -> Invoice:
    """Mark a locked payment refunded and take its amount back off the invoice.

    Flushes only; the caller owns the unit of work.
    """
    if payment.status == PaymentStatus.refunded:
        raise AlreadyRefundedError(f"Payment {payment.receipt_number} is already refunded")
    if payment.status != PaymentStatus.completed:
        raise NotCompletedError(f"Only completed payments can be refunded: status {payment.status.value}")

    invoice = lock_invoice(db, invoice_id=payment.invoice_id)
    reverse_payment(invoice, amount=payment.amount)

    payment.status = PaymentStatus.refunded
    payment.refunded_by = refunded_by
    payment.refunded_at = utc_now()
    payment.refund_reason = reason
    refund_note = f"Refunded by user {refunded_by}: {reason}"
    payment.remarks = f"{payment.remarks}\n{refund_note}" if payment.remarks else refund_note
    if payment.installment_plan_id is not None:
        _reactivate_plan(db, plan_id=payment.installment_plan_id)
    db.flush()
    return invoice


def refund_payment(db: Session, *, payment_id: int, refunded_by: int, reason: str) -> Payment:
    logger.info("payment_refund_started", payment_id=payment_id, refunded_by=refunded_by)
    with unit_of_work(db):
        payment = lock_payment(db, payment_id=payment_id)
        invoice = reverse_completed_payment(db, payment=payment, refunded_by=refunded_by, reason=reason)
        balance_after = invoice.balance
    invalidate_student_balance_cache(student_id=payment.student_id)
    logger.info(
        "payment_refund_completed",
        payment_id=payment.id,
        invoice_id=payment.invoice_id,
        receipt_number=payment.receipt_number,
        amount=str(payment.amount),
        balance=str(balance_after),
        refunded_by=refunded_by,
        reason=reason,
    )
    return payment


def completed_total_for_invoice(db: Session, *, invoice_id: int) -> Decimal:
    total = db.execute(
        select(func.coalesce(func.sum(Payment.amount), 0)).where(
            Payment.invoice_id == invoice_id,
            Payment.status == PaymentStatus.completed,
        )
    ).scalar_one()
    return to_money(total)

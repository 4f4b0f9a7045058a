from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger.application.clock import utc_now
from ledger.application.errors import (
    ConflictError,
    InvalidStateError,
    NotCompletedError,
    NotFoundError,
    ValidationError,
)
from ledger.application.services.payment_service import lock_payment, reverse_completed_payment
from ledger.application.services.student_balance_service import invalidate_student_balance_cache
from ledger.domain.payment_enums import PaymentStatus, RefundStatus
from ledger.infrastructure.db.models import Refund
from ledger.infrastructure.db.session import unit_of_work
from ledger.infrastructure.logging import get_logger

logger = get_logger(__name__)

OPEN_REFUND_STATUSES = (RefundStatus.pending, RefundStatus.approved)


def get_refund(db: Session, *, refund_id: int) -> Refund:
    refund = db.get(Refund, refund_id)
    if refund is None:
        raise NotFoundError("Refund request not found")
    return refund


def _lock_refund(db: Session, *, refund_id: int) -> Refund:
    refund = db.execute(
        select(Refund).where(Refund.id == refund_id).with_for_update().execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if refund is None:
        raise NotFoundError("Refund request not found")
    return refund


def _require_status(refund: Refund, expected: RefundStatus, action: str) -> None:
    if refund.status != expected:
        raise InvalidStateError(f"Cannot {action} refund request in status {refund.status.value}")


def _append_remark(refund: Refund, note: str | None) -> None:
    if note:
        refund.remarks = f"{refund.remarks}\n{note}" if refund.remarks else note


def _open_request_exists(db: Session, *, payment_id: int) -> bool:
    existing = db.execute(
        select(Refund.id).where(Refund.payment_id == payment_id, Refund.status.in_(OPEN_REFUND_STATUSES))
    ).first()
    return existing is not None


def create_refund_request(
    db: Session, *, payment_id: int, reason: str, requested_by: int, remarks: str | None = None
) -> Refund:
    with unit_of_work(db):
        payment = lock_payment(db, payment_id=payment_id)
        if payment.status != PaymentStatus.completed:
            raise NotCompletedError(f"Only completed payments can be refunded: status {payment.status.value}")
        if _open_request_exists(db, payment_id=payment.id):
            raise ConflictError("Payment already has an open refund request")

        refund = Refund(
            payment_id=payment.id,
            invoice_id=payment.invoice_id,
            student_id=payment.student_id,
            amount=payment.amount,
            reason=reason,
            status=RefundStatus.pending,
            requested_by=requested_by,
            remarks=remarks,
        )
        db.add(refund)
        try:
            db.flush()
        except IntegrityError as exc:
            raise ConflictError("Payment already has an open refund request") from exc
    logger.info(
        "refund_requested",
        refund_id=refund.id,
        payment_id=refund.payment_id,
        amount=str(refund.amount),
        requested_by=requested_by,
    )
    return refund


def approve_refund(db: Session, *, refund_id: int, approved_by: int, remarks: str | None = None) -> Refund:
    with unit_of_work(db):
        refund = _lock_refund(db, refund_id=refund_id)
        _require_status(refund, RefundStatus.pending, "approve")
        if refund.requested_by == approved_by:
            raise ValidationError("Refund request must be approved by someone other than the requester")
        refund.status = RefundStatus.approved
        refund.approved_by = approved_by
        refund.approved_at = utc_now()
        _append_remark(refund, f"Approval remarks: {remarks}" if remarks else None)
    logger.info("refund_approved", refund_id=refund.id, payment_id=refund.payment_id, approved_by=approved_by)
    return refund


def reject_refund(db: Session, *, refund_id: int, rejected_by: int, reason: str) -> Refund:
    with unit_of_work(db):
        refund = _lock_refund(db, refund_id=refund_id)
        _require_status(refund, RefundStatus.pending, "reject")
        refund.status = RefundStatus.rejected
        refund.rejected_by = rejected_by
        refund.rejected_at = utc_now()
        refund.rejection_reason = reason
    logger.info("refund_rejected", refund_id=refund.id, payment_id=refund.payment_id, rejected_by=rejected_by)
    return refund


def cancel_refund_request(db: Session, *, refund_id: int) -> Refund:
    with unit_of_work(db):
        refund = _lock_refund(db, refund_id=refund_id)
        _require_status(refund, RefundStatus.pending, "cancel")
        refund.status = RefundStatus.cancelled
    logger.info("refund_cancelled", refund_id=refund.id, payment_id=refund.payment_id)
    return refund


def process_refund(db: Session, *, refund_id: int, processed_by: int) -> Refund:
    """Carry out an approved request.

    The payment reversal and the request completion commit together or not at all.
    """
    logger.info("refund_processing_started", refund_id=refund_id, processed_by=processed_by)
    with unit_of_work(db):
        refund = _lock_refund(db, refund_id=refund_id)
        _require_status(refund, RefundStatus.approved, "process")
        payment = lock_payment(db, payment_id=refund.payment_id)
        invoice = reverse_completed_payment(db, payment=payment, refunded_by=processed_by, reason=refund.reason)
        refund.status = RefundStatus.completed
        refund.processed_by = processed_by
        refund.completed_at = utc_now()
        db.flush()
        balance_after = invoice.balance
    invalidate_student_balance_cache(student_id=refund.student_id)
    logger.info(
        "refund_processing_completed",
        refund_id=refund.id,
        payment_id=refund.payment_id,
        invoice_id=refund.invoice_id,
        amount=str(refund.amount),
        balance=str(balance_after),
        processed_by=processed_by,
    )
    return refund


def build_pending_refunds_query():
    return select(Refund).where(Refund.status == RefundStatus.pending).order_by(Refund.created_at, Refund.id)


def build_payment_refunds_query(*, payment_id: int):
    return select(Refund).where(Refund.payment_id == payment_id).order_by(Refund.id.desc())


def build_student_refunds_query(*, student_id: int):
    return select(Refund).where(Refund.student_id == student_id).order_by(Refund.id.desc())

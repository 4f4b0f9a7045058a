from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger.application.errors import (
    AlreadyActiveError,
    AlreadyCompletedError,
    AlreadyPaidError,
    InvalidIndexError,
    InvalidStateError,
    NoBalanceError,
    NotActiveError,
    NotFoundError,
)
from ledger.application.services.invoice_service import lock_invoice
from ledger.application.services.payment_service import apply_payment
from ledger.application.services.student_balance_service import invalidate_student_balance_cache
from ledger.domain.installment_enums import InstallmentPlanStatus
from ledger.domain.invoice_status import InvoiceStatus
from ledger.domain.money import ZERO, to_money
from ledger.domain.payment_enums import PaymentStatus
from ledger.infrastructure.db.models import Invoice, InstallmentPlan, Payment
from ledger.infrastructure.db.session import unit_of_work
from ledger.infrastructure.logging import get_logger
from ledger.interfaces.api.v1.schemas.installment import InstallmentPay, InstallmentPlanCreate
from ledger.interfaces.api.v1.schemas.payment import PaymentCreate

logger = get_logger(__name__)


def get_plan(db: Session, *, plan_id: int) -> InstallmentPlan:
    plan = db.get(InstallmentPlan, plan_id)
    if plan is None:
        raise NotFoundError("Installment plan not found")
    return plan


def _lock_plan(db: Session, *, plan_id: int) -> InstallmentPlan:
    plan = db.execute(
        select(InstallmentPlan)
        .where(InstallmentPlan.id == plan_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if plan is None:
        raise NotFoundError("Installment plan not found")
    return plan


def paid_installment_numbers(db: Session, *, plan_id: int) -> list[int]:
    numbers = db.execute(
        select(Payment.installment_number)
        .where(
            Payment.installment_plan_id == plan_id,
            Payment.status == PaymentStatus.completed,
        )
        .distinct()
    ).scalars()
    return sorted(number for number in numbers if number is not None)


def plan_progress(db: Session, *, plan: InstallmentPlan) -> dict[str, Any]:
    """Paid indices, installments left and what the plan still has to collect."""
    paid = paid_installment_numbers(db, plan_id=plan.id)
    remaining_installments = max(plan.number_of_installments - len(paid), 0)
    remaining_amount = ZERO
    if plan.status == InstallmentPlanStatus.active and remaining_installments > 0:
        remaining_amount = db.get(Invoice, plan.invoice_id).balance
    return {
        "paid_installments": paid,
        "remaining_installments": remaining_installments,
        "remaining_amount": remaining_amount,
    }


def serialize_plan(db: Session, plan: InstallmentPlan) -> dict[str, Any]:
    return {
        "id": plan.id,
        "invoice_id": plan.invoice_id,
        "student_id": plan.student_id,
        "total_amount": plan.total_amount,
        "number_of_installments": plan.number_of_installments,
        "installment_amount": plan.installment_amount,
        "frequency": plan.frequency,
        "start_date": plan.start_date,
        "status": plan.status,
        "created_by": plan.created_by,
        "created_at": plan.created_at,
        **plan_progress(db, plan=plan),
    }


def _active_plan_exists(db: Session, *, invoice_id: int) -> bool:
    existing = db.execute(
        select(InstallmentPlan.id).where(
            InstallmentPlan.invoice_id == invoice_id,
            InstallmentPlan.status == InstallmentPlanStatus.active,
        )
    ).first()
    return existing is not None


def create_installment_plan(
    db: Session, *, payload: InstallmentPlanCreate, created_by: int | None = None
) -> InstallmentPlan:
    with unit_of_work(db):
        invoice = lock_invoice(db, invoice_id=payload.invoice_id)
        if invoice.status == InvoiceStatus.cancelled:
            raise InvalidStateError("Cannot create installment plan for cancelled invoice")
        if _active_plan_exists(db, invoice_id=invoice.id):
            raise AlreadyActiveError("Invoice already has an active installment plan")
        if invoice.balance <= ZERO:
            raise NoBalanceError("Invoice has no outstanding balance")

        plan = InstallmentPlan(
            invoice_id=invoice.id,
            student_id=invoice.student_id,
            total_amount=invoice.balance,
            number_of_installments=payload.number_of_installments,
            installment_amount=to_money(invoice.balance / payload.number_of_installments),
            frequency=payload.frequency,
            start_date=payload.start_date,
            status=InstallmentPlanStatus.active,
            created_by=created_by,
        )
        db.add(plan)
        try:
            db.flush()
        except IntegrityError as exc:
            raise AlreadyActiveError("Invoice already has an active installment plan") from exc
    logger.info(
        "installment_plan_created",
        plan_id=plan.id,
        invoice_id=plan.invoice_id,
        total_amount=str(plan.total_amount),
        number_of_installments=plan.number_of_installments,
        installment_amount=str(plan.installment_amount),
        created_by=created_by,
    )
    return plan


def installment_charge(
    *, plan: InstallmentPlan, invoice_balance: Decimal, unpaid_numbers: set[int], number: int
) -> Decimal:
    # The last unpaid installment settles whatever the invoice still owes.
    if unpaid_numbers == {number}:
        return invoice_balance
    return min(plan.installment_amount, invoice_balance)


def pay_installment(
    db: Session,
    *,
    plan_id: int,
    installment_number: int,
    payload: InstallmentPay,
    received_by: int | None = None,
) -> Payment:
    with unit_of_work(db):
        plan = _lock_plan(db, plan_id=plan_id)
        if plan.status != InstallmentPlanStatus.active:
            raise NotActiveError(f"Installment plan is {plan.status.value}")
        if not 1 <= installment_number <= plan.number_of_installments:
            raise InvalidIndexError(
                f"Installment number must be between 1 and {plan.number_of_installments}: got {installment_number}"
            )
        paid = set(paid_installment_numbers(db, plan_id=plan.id))
        if installment_number in paid:
            raise AlreadyPaidError(f"Installment {installment_number} is already paid")

        invoice = lock_invoice(db, invoice_id=plan.invoice_id)
        unpaid = set(range(1, plan.number_of_installments + 1)) - paid
        amount = installment_charge(
            plan=plan, invoice_balance=invoice.balance, unpaid_numbers=unpaid, number=installment_number
        )
        if amount <= ZERO:
            raise NoBalanceError("Invoice has no outstanding balance")

        payment = apply_payment(
            db,
            payload=PaymentCreate(
                invoice_id=plan.invoice_id,
                student_id=plan.student_id,
                amount=amount,
                method=payload.method,
                payment_date=payload.payment_date,
                external_transaction_id=payload.external_transaction_id,
                remarks=payload.remarks or f"Installment {installment_number} of {plan.number_of_installments}",
                received_by=received_by,
                installment_plan_id=plan.id,
                installment_number=installment_number,
            ),
        )
        plan_status = plan.status
    invalidate_student_balance_cache(student_id=payment.student_id)
    logger.info(
        "installment_paid",
        plan_id=plan_id,
        installment_number=installment_number,
        payment_id=payment.id,
        receipt_number=payment.receipt_number,
        amount=str(payment.amount),
        plan_status=plan_status.value,
    )
    return payment


def cancel_installment_plan(db: Session, *, plan_id: int) -> InstallmentPlan:
    with unit_of_work(db):
        plan = _lock_plan(db, plan_id=plan_id)
        if plan.status == InstallmentPlanStatus.completed:
            raise AlreadyCompletedError("Cannot cancel a completed installment plan")
        if plan.status == InstallmentPlanStatus.cancelled:
            raise InvalidStateError("Installment plan is already cancelled")
        plan.status = InstallmentPlanStatus.cancelled
    logger.info("installment_plan_cancelled", plan_id=plan.id, invoice_id=plan.invoice_id)
    return plan

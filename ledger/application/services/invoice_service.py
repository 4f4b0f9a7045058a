from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from ledger.application.clock import utc_now, utc_today
from ledger.application.errors import (
    AmountExceedsBalanceError,
    DuplicateInvoiceError,
    InvalidAmountError,
    InvalidStateError,
    NotFoundError,
    NothingToApproveError,
)
from ledger.application.services.sequence_service import next_invoice_number
from ledger.application.services.student_balance_service import invalidate_student_balance_cache
from ledger.domain.invoice_status import DiscountApprovalStatus, InvoiceStatus, resolve_invoice_status
from ledger.domain.money import ZERO, to_money
from ledger.infrastructure.db.models import Invoice, InvoiceItem
from ledger.infrastructure.db.session import unit_of_work
from ledger.infrastructure.logging import get_logger
from ledger.interfaces.api.v1.schemas.invoice import (
    InvoiceBulkCreate,
    InvoiceCreate,
    InvoiceItemCreate,
    InvoiceRegenerate,
)

logger = get_logger(__name__)

DISCOUNT_LOCKED_STATUSES = (InvoiceStatus.paid, InvoiceStatus.cancelled)


def serialize_invoice(invoice: Invoice) -> dict[str, Any]:
    return {
        "id": invoice.id,
        "invoice_number": invoice.invoice_number,
        "student_id": invoice.student_id,
        "fee_definition_id": invoice.fee_definition_id,
        "period_id": invoice.period_id,
        "due_date": invoice.due_date,
        "subtotal": invoice.subtotal,
        "discount": invoice.discount,
        "discount_reason": invoice.discount_reason,
        "discount_approval_status": invoice.discount_approval_status,
        "total_amount": invoice.total_amount,
        "paid_amount": invoice.paid_amount,
        "balance": invoice.balance,
        "status": invoice.status,
        "generated_at": invoice.generated_at,
        "cancelled_at": invoice.cancelled_at,
        "items": [
            {
                "id": item.id,
                "invoice_id": item.invoice_id,
                "fee_component_id": item.fee_component_id,
                "description": item.description,
                "amount": item.amount,
            }
            for item in invoice.items
        ],
    }


def get_invoice(db: Session, *, invoice_id: int) -> Invoice:
    invoice = db.execute(
        select(Invoice).where(Invoice.id == invoice_id).options(selectinload(Invoice.items))
    ).scalar_one_or_none()
    if invoice is None:
        raise NotFoundError("Invoice not found")
    return invoice


def get_invoice_by_number(db: Session, *, invoice_number: str) -> Invoice:
    invoice = db.execute(
        select(Invoice).where(Invoice.invoice_number == invoice_number).options(selectinload(Invoice.items))
    ).scalar_one_or_none()
    if invoice is None:
        raise NotFoundError("Invoice not found")
    return invoice


def lock_invoice(db: Session, *, invoice_id: int) -> Invoice:
    """Load an invoice for mutation, holding its row lock until the unit of work ends."""
    invoice = db.execute(
        select(Invoice).where(Invoice.id == invoice_id).with_for_update().execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if invoice is None:
        raise NotFoundError("Invoice not found")
    return invoice


def _recalculate(invoice: Invoice, *, as_of: date | None = None) -> None:
    invoice.total_amount = to_money(invoice.subtotal - invoice.discount)
    invoice.balance = to_money(invoice.total_amount - invoice.paid_amount)
    invoice.status = resolve_invoice_status(
        balance=invoice.balance,
        total_amount=invoice.total_amount,
        due_date=invoice.due_date,
        as_of=as_of or utc_today(),
    )


def _active_invoice_exists(db: Session, *, student_id: int, fee_definition_id: int, period_id: int) -> bool:
    existing = db.execute(
        select(Invoice.id).where(
            Invoice.student_id == student_id,
            Invoice.fee_definition_id == fee_definition_id,
            Invoice.period_id == period_id,
            Invoice.status != InvoiceStatus.cancelled,
        )
    ).first()
    return existing is not None


def build_invoice(
    db: Session,
    *,
    student_id: int,
    fee_definition_id: int,
    period_id: int,
    due_date: date,
    items: list[InvoiceItemCreate],
    discount: Decimal = ZERO,
    discount_reason: str | None = None,
    as_of: date | None = None,
) -> Invoice:
    """Create and flush an invoice inside the caller's unit of work."""
    as_of = as_of or utc_today()
    if _active_invoice_exists(db, student_id=student_id, fee_definition_id=fee_definition_id, period_id=period_id):
        raise DuplicateInvoiceError("Invoice already exists for this student, fee definition and period")
    if not items:
        raise InvalidAmountError("Invoice requires at least one item")
    if any(item.amount <= ZERO for item in items):
        raise InvalidAmountError("Invoice item amounts must be positive")

    subtotal = to_money(sum((item.amount for item in items), ZERO))
    discount = to_money(discount)
    if discount < ZERO or discount > subtotal:
        raise InvalidAmountError(f"Discount must be between 0 and subtotal: discount {discount}, subtotal {subtotal}")

    invoice = Invoice(
        invoice_number=next_invoice_number(db, as_of=as_of),
        student_id=student_id,
        fee_definition_id=fee_definition_id,
        period_id=period_id,
        due_date=due_date,
        subtotal=subtotal,
        discount=discount,
        discount_reason=discount_reason if discount > ZERO else None,
        discount_approval_status=DiscountApprovalStatus.pending if discount > ZERO else DiscountApprovalStatus.none,
        paid_amount=ZERO,
        generated_at=utc_now(),
    )
    invoice.items = [
        InvoiceItem(fee_component_id=item.fee_component_id, description=item.description, amount=to_money(item.amount))
        for item in items
    ]
    _recalculate(invoice, as_of=as_of)
    db.add(invoice)
    try:
        db.flush()
    except IntegrityError as exc:
        raise DuplicateInvoiceError("Invoice already exists for this student, fee definition and period") from exc
    return invoice


def create_invoice(db: Session, *, payload: InvoiceCreate, as_of: date | None = None) -> Invoice:
    logger.info(
        "invoice_creation_started",
        student_id=payload.student_id,
        fee_definition_id=payload.fee_definition_id,
        period_id=payload.period_id,
    )
    with unit_of_work(db):
        invoice = build_invoice(
            db,
            student_id=payload.student_id,
            fee_definition_id=payload.fee_definition_id,
            period_id=payload.period_id,
            due_date=payload.due_date,
            items=payload.items,
            discount=payload.discount,
            discount_reason=payload.discount_reason,
            as_of=as_of,
        )
    invalidate_student_balance_cache(student_id=invoice.student_id)
    logger.info(
        "invoice_creation_completed",
        invoice_id=invoice.id,
        invoice_number=invoice.invoice_number,
        total_amount=str(invoice.total_amount),
        status=invoice.status.value,
    )
    return invoice


def bulk_generate_invoices(db: Session, *, payload: InvoiceBulkCreate, as_of: date | None = None) -> dict[str, Any]:
    result: dict[str, Any] = {"successful": 0, "failed": 0, "errors": [], "invoice_ids": []}
    for student_id in payload.student_ids:
        try:
            invoice = create_invoice(
                db,
                payload=InvoiceCreate(
                    student_id=student_id,
                    fee_definition_id=payload.fee_definition_id,
                    period_id=payload.period_id,
                    due_date=payload.due_date,
                    items=payload.items,
                ),
                as_of=as_of,
            )
        except (DuplicateInvoiceError, InvalidAmountError) as exc:
            result["failed"] += 1
            result["errors"].append({"student_id": student_id, "error": str(exc)})
            continue
        result["successful"] += 1
        result["invoice_ids"].append(invoice.id)
    logger.info(
        "invoice_bulk_generation_completed",
        fee_definition_id=payload.fee_definition_id,
        period_id=payload.period_id,
        successful=result["successful"],
        failed=result["failed"],
    )
    return result


def apply_discount(
    db: Session, *, invoice_id: int, amount: Decimal, reason: str | None = None, as_of: date | None = None
) -> Invoice:
    with unit_of_work(db):
        invoice = lock_invoice(db, invoice_id=invoice_id)
        if invoice.status in DISCOUNT_LOCKED_STATUSES:
            raise InvalidStateError(f"Cannot apply discount to {invoice.status.value} invoice")
        amount = to_money(amount)
        if amount < ZERO or amount > invoice.subtotal:
            raise InvalidAmountError(f"Discount cannot exceed subtotal: discount {amount}, subtotal {invoice.subtotal}")
        if invoice.subtotal - amount < invoice.paid_amount:
            raise InvalidAmountError(
                f"Discount would push balance below zero: discount {amount}, paid {invoice.paid_amount}"
            )
        invoice.discount = amount
        invoice.discount_reason = reason
        invoice.discount_approval_status = DiscountApprovalStatus.pending
        invoice.discount_approved_by = None
        invoice.discount_approved_at = None
        _recalculate(invoice, as_of=as_of)
    invalidate_student_balance_cache(student_id=invoice.student_id)
    logger.info("invoice_discount_applied", invoice_id=invoice.id, discount=str(amount), reason=reason)
    return invoice


def approve_discount(db: Session, *, invoice_id: int, approved_by: int) -> Invoice:
    with unit_of_work(db):
        invoice = lock_invoice(db, invoice_id=invoice_id)
        if invoice.discount_approval_status != DiscountApprovalStatus.pending:
            raise NothingToApproveError("Invoice does not require discount approval")
        invoice.discount_approval_status = DiscountApprovalStatus.approved
        invoice.discount_approved_by = approved_by
        invoice.discount_approved_at = utc_now()
    logger.info(
        "invoice_discount_approved",
        invoice_id=invoice.id,
        discount=str(invoice.discount),
        approved_by=approved_by,
    )
    return invoice


def reject_discount(db: Session, *, invoice_id: int, as_of: date | None = None) -> Invoice:
    with unit_of_work(db):
        invoice = lock_invoice(db, invoice_id=invoice_id)
        if invoice.discount_approval_status != DiscountApprovalStatus.pending:
            raise NothingToApproveError("Invoice does not require discount approval")
        if invoice.subtotal < invoice.paid_amount:
            raise InvalidStateError("Cannot reject discount: payments already exceed the undiscounted subtotal")
        rejected_amount = invoice.discount
        invoice.discount = ZERO
        invoice.discount_reason = None
        invoice.discount_approval_status = DiscountApprovalStatus.rejected
        _recalculate(invoice, as_of=as_of)
    invalidate_student_balance_cache(student_id=invoice.student_id)
    logger.info("invoice_discount_rejected", invoice_id=invoice.id, rejected_discount=str(rejected_amount))
    return invoice


def record_payment(invoice: Invoice, *, amount: Decimal, as_of: date | None = None) -> None:
    """Apply a payment to an invoice already locked in the caller's unit of work."""
    if invoice.status == InvoiceStatus.cancelled:
        raise InvalidStateError("Cannot record payment on cancelled invoice")
    amount = to_money(amount)
    if amount <= ZERO:
        raise InvalidAmountError(f"Payment amount must be positive: requested {amount}")
    if amount > invoice.balance:
        raise AmountExceedsBalanceError(requested=amount, available=invoice.balance)
    invoice.paid_amount = to_money(invoice.paid_amount + amount)
    _recalculate(invoice, as_of=as_of)


def reverse_payment(invoice: Invoice, *, amount: Decimal, as_of: date | None = None) -> None:
    if invoice.status == InvoiceStatus.cancelled:
        raise InvalidStateError("Cannot reverse payment on cancelled invoice")
    amount = to_money(amount)
    if amount <= ZERO or amount > invoice.paid_amount:
        raise InvalidAmountError(f"Reversal amount must be within paid amount: requested {amount}, paid {invoice.paid_amount}")
    invoice.paid_amount = to_money(invoice.paid_amount - amount)
    _recalculate(invoice, as_of=as_of)


def _cancel_locked(invoice: Invoice) -> None:
    if invoice.status == InvoiceStatus.cancelled:
        raise InvalidStateError("Invoice is already cancelled")
    if invoice.paid_amount > ZERO:
        raise InvalidStateError(f"Cannot cancel invoice with payments: paid {invoice.paid_amount}")
    invoice.status = InvoiceStatus.cancelled
    invoice.cancelled_at = utc_now()


def cancel_invoice(db: Session, *, invoice_id: int) -> Invoice:
    with unit_of_work(db):
        invoice = lock_invoice(db, invoice_id=invoice_id)
        _cancel_locked(invoice)
    invalidate_student_balance_cache(student_id=invoice.student_id)
    logger.info("invoice_cancelled", invoice_id=invoice.id, invoice_number=invoice.invoice_number)
    return invoice


def regenerate_invoice(
    db: Session, *, invoice_id: int, payload: InvoiceRegenerate, as_of: date | None = None
) -> Invoice:
    """Cancel an unpaid invoice and issue its replacement in one transaction."""
    with unit_of_work(db):
        existing = lock_invoice(db, invoice_id=invoice_id)
        _cancel_locked(existing)
        db.flush()
        items = payload.items
        if items is None:
            items = [
                InvoiceItemCreate(fee_component_id=item.fee_component_id, description=item.description, amount=item.amount)
                for item in existing.items
            ]
        replacement = build_invoice(
            db,
            student_id=existing.student_id,
            fee_definition_id=existing.fee_definition_id,
            period_id=existing.period_id,
            due_date=payload.due_date or existing.due_date,
            items=items,
            discount=payload.discount,
            discount_reason=payload.discount_reason,
            as_of=as_of,
        )
    invalidate_student_balance_cache(student_id=replacement.student_id)
    logger.info(
        "invoice_regenerated",
        cancelled_invoice_id=existing.id,
        invoice_id=replacement.id,
        invoice_number=replacement.invoice_number,
    )
    return replacement


def mark_overdue_invoices(db: Session, *, as_of: date | None = None) -> int:
    as_of = as_of or utc_today()
    with unit_of_work(db):
        result = db.execute(
            update(Invoice)
            .where(
                Invoice.due_date < as_of,
                Invoice.balance > ZERO,
                Invoice.status.not_in([InvoiceStatus.paid, InvoiceStatus.cancelled, InvoiceStatus.overdue]),
            )
            .values(status=InvoiceStatus.overdue)
            .execution_options(synchronize_session=False)
        )
    affected = result.rowcount or 0
    logger.info("invoice_overdue_sweep_completed", as_of=str(as_of), affected=affected)
    return affected


def build_student_invoices_query(*, student_id: int):
    return (
        select(Invoice)
        .where(Invoice.student_id == student_id)
        .options(selectinload(Invoice.items))
        .order_by(Invoice.due_date.desc(), Invoice.id.desc())
    )


def build_pending_discount_approvals_query():
    return (
        select(Invoice)
        .where(
            Invoice.discount_approval_status == DiscountApprovalStatus.pending,
            Invoice.status != InvoiceStatus.cancelled,
        )
        .options(selectinload(Invoice.items))
        .order_by(Invoice.id)
    )

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ledger.application.services.invoice_service import get_invoice
from ledger.application.services.pagination_service import paginate_scalars
from ledger.application.services.payment_lock_service import payment_creation_lock
from ledger.application.services.payment_service import (
    build_invoice_payments_query,
    build_student_payments_query,
    get_payment,
    get_payment_by_receipt,
    process_payment,
    refund_payment,
)
from ledger.infrastructure.db.models import Payment
from ledger.infrastructure.db.session import get_db
from ledger.interfaces.api.v1.dependencies.context import get_acting_user_id, require_acting_user_id
from ledger.interfaces.api.v1.dependencies.pagination import get_pagination_params
from ledger.interfaces.api.v1.schemas.pagination import PaginationParams
from ledger.interfaces.api.v1.schemas.payment import PaymentCreate, PaymentListResponse, PaymentRefund, PaymentResponse

router = APIRouter(tags=["payments"])

PAYMENT_SEARCH_COLUMNS = [Payment.receipt_number, Payment.external_transaction_id]


@router.post(
    "/payments",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record payment",
    description=(
        "Apply a payment to an invoice and issue its receipt. "
        "Payment processing uses a short Redis lock to prevent duplicate submits."
    ),
    responses={
        404: {"description": "Invoice not found"},
        409: {"description": "Duplicate transaction, cancelled invoice or concurrent submit"},
        400: {"description": "Payment validation error"},
    },
)
def create_payment_endpoint(
    payload: PaymentCreate,
    acting_user_id: int | None = Depends(get_acting_user_id),
    db: Session = Depends(get_db),
):
    if payload.received_by is None and acting_user_id is not None:
        payload = payload.model_copy(update={"received_by": acting_user_id})
    with payment_creation_lock(invoice_id=payload.invoice_id):
        return process_payment(db, payload=payload)


@router.get(
    "/payments/receipts/{receipt_number}",
    response_model=PaymentResponse,
    summary="Verify receipt",
    description="Look up the payment that issued a receipt number.",
    responses={404: {"description": "Receipt not found"}},
)
def get_receipt(receipt_number: str, db: Session = Depends(get_db)):
    return get_payment_by_receipt(db, receipt_number=receipt_number)


@router.get(
    "/payments/{payment_id}",
    response_model=PaymentResponse,
    summary="Get payment",
    responses={404: {"description": "Payment not found"}},
)
def get_payment_endpoint(payment_id: int, db: Session = Depends(get_db)):
    return get_payment(db, payment_id=payment_id)


@router.post(
    "/payments/{payment_id}/refund",
    response_model=PaymentResponse,
    summary="Refund payment",
    description="Refund a completed payment in full and restore the invoice balance.",
    responses={
        401: {"description": "Missing X-User-Id"},
        404: {"description": "Payment not found"},
        409: {"description": "Payment already refunded or not completed"},
    },
)
def refund_payment_endpoint(
    payment_id: int,
    payload: PaymentRefund,
    refunded_by: int = Depends(require_acting_user_id),
    db: Session = Depends(get_db),
):
    return refund_payment(db, payment_id=payment_id, refunded_by=refunded_by, reason=payload.reason)


@router.get(
    "/invoices/{invoice_id}/payments",
    response_model=PaymentListResponse,
    summary="List invoice payments",
    responses={404: {"description": "Invoice not found"}},
)
def list_invoice_payments(
    invoice_id: int,
    pagination: PaginationParams = Depends(get_pagination_params),
    db: Session = Depends(get_db),
):
    get_invoice(db, invoice_id=invoice_id)
    items, meta = paginate_scalars(
        db,
        build_invoice_payments_query(invoice_id=invoice_id),
        params=pagination,
        search_columns=PAYMENT_SEARCH_COLUMNS,
    )
    return {"items": items, "pagination": meta}


@router.get(
    "/students/{student_id}/payments",
    response_model=PaymentListResponse,
    summary="List student payments",
)
def list_student_payments(
    student_id: int,
    pagination: PaginationParams = Depends(get_pagination_params),
    db: Session = Depends(get_db),
):
    items, meta = paginate_scalars(
        db,
        build_student_payments_query(student_id=student_id),
        params=pagination,
        search_columns=PAYMENT_SEARCH_COLUMNS,
    )
    return {"items": items, "pagination": meta}

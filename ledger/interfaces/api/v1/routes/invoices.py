from fastapi import APIRouter, Depends, status
from sqlalchemy import String, cast
from sqlalchemy.orm import Session

from ledger.application.services.invoice_service import (
    apply_discount,
    approve_discount,
    build_pending_discount_approvals_query,
    build_student_invoices_query,
    bulk_generate_invoices,
    cancel_invoice,
    create_invoice,
    get_invoice,
    get_invoice_by_number,
    regenerate_invoice,
    reject_discount,
    serialize_invoice,
)
from ledger.application.services.pagination_service import paginate_scalars
from ledger.application.services.student_balance_service import get_student_balance_snapshot
from ledger.infrastructure.db.models import Invoice
from ledger.infrastructure.db.session import get_db
from ledger.interfaces.api.v1.dependencies.context import require_acting_user_id
from ledger.interfaces.api.v1.dependencies.pagination import get_pagination_params
from ledger.interfaces.api.v1.schemas.invoice import (
    BulkGenerateResponse,
    DiscountApply,
    InvoiceBulkCreate,
    InvoiceCreate,
    InvoiceListResponse,
    InvoiceRegenerate,
    InvoiceResponse,
    StudentBalanceResponse,
)
from ledger.interfaces.api.v1.schemas.pagination import PaginationParams

router = APIRouter(tags=["invoices"])

INVOICE_SEARCH_COLUMNS = [Invoice.invoice_number, cast(Invoice.status, String)]


@router.post(
    "/invoices",
    response_model=InvoiceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create invoice",
    description="Issue one invoice for a student, fee definition and period from its fee component lines.",
    responses={409: {"description": "Active invoice already exists"}, 400: {"description": "Invalid amounts"}},
)
def create_invoice_endpoint(payload: InvoiceCreate, db: Session = Depends(get_db)):
    return serialize_invoice(create_invoice(db, payload=payload))


@router.post(
    "/invoices/bulk",
    response_model=BulkGenerateResponse,
    summary="Generate invoices in bulk",
    description="Create one invoice per student. Each student is committed independently and failures are reported.",
)
def bulk_generate_invoices_endpoint(payload: InvoiceBulkCreate, db: Session = Depends(get_db)):
    return bulk_generate_invoices(db, payload=payload)


@router.get(
    "/invoices/discounts/pending",
    response_model=InvoiceListResponse,
    summary="List discounts awaiting approval",
)
def list_pending_discounts(
    pagination: PaginationParams = Depends(get_pagination_params),
    db: Session = Depends(get_db),
):
    items, meta = paginate_scalars(
        db,
        build_pending_discount_approvals_query(),
        params=pagination,
        search_columns=INVOICE_SEARCH_COLUMNS,
    )
    return {"items": [serialize_invoice(item) for item in items], "pagination": meta}


@router.get(
    "/invoices/by-number/{invoice_number}",
    response_model=InvoiceResponse,
    summary="Get invoice by number",
    responses={404: {"description": "Invoice not found"}},
)
def get_invoice_by_number_endpoint(invoice_number: str, db: Session = Depends(get_db)):
    return serialize_invoice(get_invoice_by_number(db, invoice_number=invoice_number))


@router.get(
    "/invoices/{invoice_id}",
    response_model=InvoiceResponse,
    summary="Get invoice detail",
    responses={404: {"description": "Invoice not found"}},
)
def get_invoice_endpoint(invoice_id: int, db: Session = Depends(get_db)):
    return serialize_invoice(get_invoice(db, invoice_id=invoice_id))


@router.post(
    "/invoices/{invoice_id}/discount",
    response_model=InvoiceResponse,
    summary="Apply discount",
    description="Set the invoice discount. The discount waits for approval before it is final.",
    responses={404: {"description": "Invoice not found"}, 409: {"description": "Invoice is paid or cancelled"}},
)
def apply_discount_endpoint(invoice_id: int, payload: DiscountApply, db: Session = Depends(get_db)):
    invoice = apply_discount(db, invoice_id=invoice_id, amount=payload.amount, reason=payload.reason)
    return serialize_invoice(invoice)


@router.post(
    "/invoices/{invoice_id}/discount/approve",
    response_model=InvoiceResponse,
    summary="Approve discount",
    responses={401: {"description": "Missing X-User-Id"}, 409: {"description": "Nothing to approve"}},
)
def approve_discount_endpoint(
    invoice_id: int,
    approved_by: int = Depends(require_acting_user_id),
    db: Session = Depends(get_db),
):
    return serialize_invoice(approve_discount(db, invoice_id=invoice_id, approved_by=approved_by))


@router.post(
    "/invoices/{invoice_id}/discount/reject",
    response_model=InvoiceResponse,
    summary="Reject discount",
    responses={409: {"description": "Nothing to approve"}},
)
def reject_discount_endpoint(invoice_id: int, db: Session = Depends(get_db)):
    return serialize_invoice(reject_discount(db, invoice_id=invoice_id))


@router.post(
    "/invoices/{invoice_id}/cancel",
    response_model=InvoiceResponse,
    summary="Cancel invoice",
    responses={409: {"description": "Invoice has payments or is already cancelled"}},
)
def cancel_invoice_endpoint(invoice_id: int, db: Session = Depends(get_db)):
    return serialize_invoice(cancel_invoice(db, invoice_id=invoice_id))


@router.post(
    "/invoices/{invoice_id}/regenerate",
    response_model=InvoiceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Regenerate invoice",
    description="Cancel an unpaid invoice and issue a replacement with optional new items, due date or discount.",
    responses={409: {"description": "Invoice has payments or is already cancelled"}},
)
def regenerate_invoice_endpoint(invoice_id: int, payload: InvoiceRegenerate, db: Session = Depends(get_db)):
    return serialize_invoice(regenerate_invoice(db, invoice_id=invoice_id, payload=payload))


@router.get(
    "/students/{student_id}/invoices",
    response_model=InvoiceListResponse,
    summary="List student invoices",
    description="Return the student's invoices, newest due date first, with pagination and search.",
)
def list_student_invoices(
    student_id: int,
    pagination: PaginationParams = Depends(get_pagination_params),
    db: Session = Depends(get_db),
):
    items, meta = paginate_scalars(
        db,
        build_student_invoices_query(student_id=student_id),
        params=pagination,
        search_columns=INVOICE_SEARCH_COLUMNS,
    )
    return {"items": [serialize_invoice(item) for item in items], "pagination": meta}


@router.get(
    "/students/{student_id}/balance",
    response_model=StudentBalanceResponse,
    summary="Student outstanding balance",
    description="Billed, paid, outstanding and overdue totals over non-cancelled invoices. Served from cache when warm.",
)
def get_student_balance(student_id: int, db: Session = Depends(get_db)):
    return {"student_id": student_id, **get_student_balance_snapshot(db, student_id=student_id)}

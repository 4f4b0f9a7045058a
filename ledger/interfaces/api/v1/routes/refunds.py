from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ledger.application.services.pagination_service import paginate_scalars
from ledger.application.services.payment_service import get_payment
from ledger.application.services.refund_service import (
    approve_refund,
    build_payment_refunds_query,
    build_pending_refunds_query,
    build_student_refunds_query,
    cancel_refund_request,
    create_refund_request,
    get_refund,
    process_refund,
    reject_refund,
)
from ledger.infrastructure.db.models import Refund
from ledger.infrastructure.db.session import get_db
from ledger.interfaces.api.v1.dependencies.context import require_acting_user_id
from ledger.interfaces.api.v1.dependencies.pagination import get_pagination_params
from ledger.interfaces.api.v1.schemas.pagination import PaginationParams
from ledger.interfaces.api.v1.schemas.refund import (
    RefundApprove,
    RefundListResponse,
    RefundReject,
    RefundRequestCreate,
    RefundResponse,
)

router = APIRouter(tags=["refunds"])

REFUND_SEARCH_COLUMNS = [Refund.reason]


@router.post(
    "/payments/{payment_id}/refund-requests",
    response_model=RefundResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Request refund",
    description="Open a refund request for a completed payment. The refund is applied once it is approved and processed.",
    responses={
        401: {"description": "Missing X-User-Id"},
        404: {"description": "Payment not found"},
        409: {"description": "Payment not completed or already has an open request"},
    },
)
def create_refund_request_endpoint(
    payment_id: int,
    payload: RefundRequestCreate,
    requested_by: int = Depends(require_acting_user_id),
    db: Session = Depends(get_db),
):
    return create_refund_request(
        db, payment_id=payment_id, reason=payload.reason, requested_by=requested_by, remarks=payload.remarks
    )


@router.get(
    "/payments/{payment_id}/refund-requests",
    response_model=RefundListResponse,
    summary="List payment refund requests",
    responses={404: {"description": "Payment not found"}},
)
def list_payment_refunds(
    payment_id: int,
    pagination: PaginationParams = Depends(get_pagination_params),
    db: Session = Depends(get_db),
):
    get_payment(db, payment_id=payment_id)
    items, meta = paginate_scalars(
        db,
        build_payment_refunds_query(payment_id=payment_id),
        params=pagination,
        search_columns=REFUND_SEARCH_COLUMNS,
    )
    return {"items": items, "pagination": meta}


@router.get(
    "/refunds/pending",
    response_model=RefundListResponse,
    summary="List refund requests awaiting approval",
)
def list_pending_refunds(
    pagination: PaginationParams = Depends(get_pagination_params),
    db: Session = Depends(get_db),
):
    items, meta = paginate_scalars(
        db,
        build_pending_refunds_query(),
        params=pagination,
        search_columns=REFUND_SEARCH_COLUMNS,
    )
    return {"items": items, "pagination": meta}


@router.get(
    "/refunds/{refund_id}",
    response_model=RefundResponse,
    summary="Get refund request",
    responses={404: {"description": "Refund request not found"}},
)
def get_refund_endpoint(refund_id: int, db: Session = Depends(get_db)):
    return get_refund(db, refund_id=refund_id)


@router.post(
    "/refunds/{refund_id}/approve",
    response_model=RefundResponse,
    summary="Approve refund request",
    responses={
        400: {"description": "Approver is the requester"},
        401: {"description": "Missing X-User-Id"},
        404: {"description": "Refund request not found"},
        409: {"description": "Refund request is not pending"},
    },
)
def approve_refund_endpoint(
    refund_id: int,
    payload: RefundApprove | None = None,
    approved_by: int = Depends(require_acting_user_id),
    db: Session = Depends(get_db),
):
    remarks = payload.remarks if payload else None
    return approve_refund(db, refund_id=refund_id, approved_by=approved_by, remarks=remarks)


@router.post(
    "/refunds/{refund_id}/reject",
    response_model=RefundResponse,
    summary="Reject refund request",
    responses={
        401: {"description": "Missing X-User-Id"},
        404: {"description": "Refund request not found"},
        409: {"description": "Refund request is not pending"},
    },
)
def reject_refund_endpoint(
    refund_id: int,
    payload: RefundReject,
    rejected_by: int = Depends(require_acting_user_id),
    db: Session = Depends(get_db),
):
    return reject_refund(db, refund_id=refund_id, rejected_by=rejected_by, reason=payload.reason)


@router.post(
    "/refunds/{refund_id}/cancel",
    response_model=RefundResponse,
    summary="Cancel refund request",
    responses={404: {"description": "Refund request not found"}, 409: {"description": "Refund request is not pending"}},
)
def cancel_refund_endpoint(refund_id: int, db: Session = Depends(get_db)):
    return cancel_refund_request(db, refund_id=refund_id)


@router.post(
    "/refunds/{refund_id}/process",
    response_model=RefundResponse,
    summary="Process refund",
    description="Refund the payment of an approved request and restore the invoice balance.",
    responses={
        401: {"description": "Missing X-User-Id"},
        404: {"description": "Refund request not found"},
        409: {"description": "Refund request is not approved or payment is no longer completed"},
    },
)
def process_refund_endpoint(
    refund_id: int,
    processed_by: int = Depends(require_acting_user_id),
    db: Session = Depends(get_db),
):
    return process_refund(db, refund_id=refund_id, processed_by=processed_by)


@router.get(
    "/students/{student_id}/refunds",
    response_model=RefundListResponse,
    summary="List student refund requests",
)
def list_student_refunds(
    student_id: int,
    pagination: PaginationParams = Depends(get_pagination_params),
    db: Session = Depends(get_db),
):
    items, meta = paginate_scalars(
        db,
        build_student_refunds_query(student_id=student_id),
        params=pagination,
        search_columns=REFUND_SEARCH_COLUMNS,
    )
    return {"items": items, "pagination": meta}

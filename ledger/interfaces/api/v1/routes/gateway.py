from typing import Any

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from ledger.application.services.gateway_service import (
    CallbackResult,
    get_transaction_status,
    handle_callback,
    handle_failure,
    initiate_gateway_payment,
    parse_callback_payload,
    parse_encoded_callback,
)
from ledger.infrastructure.db.session import get_db
from ledger.interfaces.api.v1.dependencies.context import get_acting_user_id
from ledger.interfaces.api.v1.schemas.gateway import (
    GatewayCallbackResponse,
    GatewayFailureRequest,
    GatewayInitiateRequest,
    GatewayInitiateResponse,
    GatewayTransactionResponse,
)

router = APIRouter(prefix="/gateway", tags=["gateway"])


def _callback_response(result: CallbackResult) -> dict:
    return {
        "success": result.success,
        "outcome": result.outcome,
        "message": result.message,
        "status": result.transaction.status,
        "payment_id": result.payment.id if result.payment is not None else result.transaction.payment_id,
    }


@router.post(
    "/esewa/initiate",
    response_model=GatewayInitiateResponse,
    summary="Initiate eSewa payment",
    description=(
        "Create a pending gateway transaction and return the signed form the client posts to eSewa. "
        "Any earlier pending eSewa transaction for the invoice is expired."
    ),
    responses={404: {"description": "Invoice not found"}, 400: {"description": "Amount exceeds balance"}},
)
def initiate_esewa_payment(
    payload: GatewayInitiateRequest,
    acting_user_id: int | None = Depends(get_acting_user_id),
    db: Session = Depends(get_db),
):
    initiation = initiate_gateway_payment(db, payload=payload, initiated_by=acting_user_id)
    return {
        "transaction": initiation.transaction,
        "payment_url": initiation.payment_url,
        "form_data": initiation.form_data,
    }


@router.post(
    "/esewa/callback",
    response_model=GatewayCallbackResponse,
    summary="eSewa callback (JSON)",
    description="Verify and settle a gateway notification. Safe to deliver more than once.",
    responses={404: {"description": "Gateway transaction not found"}, 400: {"description": "Malformed payload"}},
)
def esewa_callback_json(
    payload: dict[str, Any] = Body(...),
    acting_user_id: int | None = Depends(get_acting_user_id),
    db: Session = Depends(get_db),
):
    result = handle_callback(db, payload=parse_callback_payload(payload), acting_user_id=acting_user_id)
    return _callback_response(result)


@router.get(
    "/esewa/callback",
    response_model=GatewayCallbackResponse,
    summary="eSewa success redirect",
    description="eSewa v2 redirects with the signed payload as base64 JSON in the `data` query parameter.",
    responses={404: {"description": "Gateway transaction not found"}, 400: {"description": "Malformed payload"}},
)
def esewa_callback_redirect(
    data: str = Query(..., min_length=1),
    acting_user_id: int | None = Depends(get_acting_user_id),
    db: Session = Depends(get_db),
):
    result = handle_callback(db, payload=parse_encoded_callback(data), acting_user_id=acting_user_id)
    return _callback_response(result)


@router.post(
    "/esewa/failure",
    response_model=GatewayTransactionResponse,
    summary="eSewa failure notification",
    responses={404: {"description": "Gateway transaction not found"}, 409: {"description": "Already processed"}},
)
def esewa_failure(payload: GatewayFailureRequest, db: Session = Depends(get_db)):
    return handle_failure(db, transaction_uuid=payload.transaction_uuid, reason=payload.reason)


@router.get(
    "/transactions/{transaction_uuid}",
    response_model=GatewayTransactionResponse,
    summary="Gateway transaction status",
    description="Return the transaction, expiring it first when its pending window has lapsed.",
    responses={404: {"description": "Gateway transaction not found"}},
)
def get_gateway_transaction(transaction_uuid: str, db: Session = Depends(get_db)):
    return get_transaction_status(db, transaction_uuid=transaction_uuid)

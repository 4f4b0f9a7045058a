from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ledger.application.services.installment_service import (
    cancel_installment_plan,
    create_installment_plan,
    get_plan,
    pay_installment,
    serialize_plan,
)
from ledger.application.services.payment_lock_service import payment_creation_lock
from ledger.infrastructure.db.session import get_db
from ledger.interfaces.api.v1.dependencies.context import get_acting_user_id
from ledger.interfaces.api.v1.schemas.installment import InstallmentPay, InstallmentPlanCreate, InstallmentPlanResponse
from ledger.interfaces.api.v1.schemas.payment import PaymentResponse

router = APIRouter(tags=["installments"])


@router.post(
    "/installment-plans",
    response_model=InstallmentPlanResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create installment plan",
    description="Split the invoice's current balance into equal installments.",
    responses={
        404: {"description": "Invoice not found"},
        409: {"description": "Invoice already has an active plan or is cancelled"},
        400: {"description": "Invoice has no outstanding balance"},
    },
)
def create_plan_endpoint(
    payload: InstallmentPlanCreate,
    acting_user_id: int | None = Depends(get_acting_user_id),
    db: Session = Depends(get_db),
):
    plan = create_installment_plan(db, payload=payload, created_by=acting_user_id)
    return serialize_plan(db, plan)


@router.get(
    "/installment-plans/{plan_id}",
    response_model=InstallmentPlanResponse,
    summary="Get installment plan with progress",
    responses={404: {"description": "Installment plan not found"}},
)
def get_plan_endpoint(plan_id: int, db: Session = Depends(get_db)):
    return serialize_plan(db, get_plan(db, plan_id=plan_id))


@router.post(
    "/installment-plans/{plan_id}/installments/{installment_number}/pay",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Pay installment",
    description="Charge one installment of an active plan. The last unpaid installment settles the remaining balance.",
    responses={
        404: {"description": "Installment plan not found"},
        409: {"description": "Plan not active or installment already paid"},
        400: {"description": "Installment number out of range"},
    },
)
def pay_installment_endpoint(
    plan_id: int,
    installment_number: int,
    payload: InstallmentPay,
    acting_user_id: int | None = Depends(get_acting_user_id),
    db: Session = Depends(get_db),
):
    plan = get_plan(db, plan_id=plan_id)
    with payment_creation_lock(invoice_id=plan.invoice_id):
        return pay_installment(
            db,
            plan_id=plan_id,
            installment_number=installment_number,
            payload=payload,
            received_by=acting_user_id,
        )


@router.post(
    "/installment-plans/{plan_id}/cancel",
    response_model=InstallmentPlanResponse,
    summary="Cancel installment plan",
    responses={404: {"description": "Installment plan not found"}, 409: {"description": "Plan is not cancellable"}},
)
def cancel_plan_endpoint(plan_id: int, db: Session = Depends(get_db)):
    return serialize_plan(db, cancel_installment_plan(db, plan_id=plan_id))

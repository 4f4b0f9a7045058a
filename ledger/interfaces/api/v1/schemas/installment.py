from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from ledger.domain.installment_enums import InstallmentFrequency, InstallmentPlanStatus
from ledger.domain.payment_enums import PaymentMethod


class InstallmentPlanCreate(BaseModel):
    invoice_id: int
    number_of_installments: int = Field(ge=1, le=60)
    frequency: InstallmentFrequency
    start_date: date


class InstallmentPay(BaseModel):
    method: PaymentMethod
    payment_date: date
    external_transaction_id: str | None = Field(default=None, max_length=100)
    remarks: str | None = None


class InstallmentPlanResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    invoice_id: int
    student_id: int
    total_amount: Decimal
    number_of_installments: int
    installment_amount: Decimal
    frequency: InstallmentFrequency
    start_date: date
    status: InstallmentPlanStatus
    created_by: int | None
    created_at: datetime
    paid_installments: list[int]
    remaining_installments: int
    remaining_amount: Decimal

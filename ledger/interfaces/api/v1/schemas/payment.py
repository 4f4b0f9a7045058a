from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ledger.domain.payment_enums import PaymentMethod, PaymentStatus
from ledger.interfaces.api.v1.schemas.pagination import PaginationMeta


class PaymentCreate(BaseModel):
    invoice_id: int
    student_id: int
    amount: Decimal = Field(gt=0, decimal_places=2)
    method: PaymentMethod
    payment_date: date
    external_transaction_id: str | None = Field(default=None, max_length=100)
    remarks: str | None = None
    received_by: int | None = None
    gateway_response: dict[str, Any] | None = None
    installment_plan_id: int | None = None
    installment_number: int | None = None


class PaymentRefund(BaseModel):
    reason: str = Field(min_length=1, max_length=255)


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    invoice_id: int
    student_id: int
    amount: Decimal
    method: PaymentMethod
    payment_date: date
    external_transaction_id: str | None
    receipt_number: str
    status: PaymentStatus
    installment_plan_id: int | None
    installment_number: int | None
    received_by: int | None
    remarks: str | None
    refunded_by: int | None
    refunded_at: datetime | None
    refund_reason: str | None
    created_at: datetime


class PaymentListResponse(BaseModel):
    items: list[PaymentResponse]
    pagination: PaginationMeta

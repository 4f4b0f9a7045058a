from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from ledger.domain.payment_enums import RefundStatus
from ledger.interfaces.api.v1.schemas.pagination import PaginationMeta


class RefundRequestCreate(BaseModel):
    reason: str = Field(min_length=1, max_length=255)
    remarks: str | None = None


class RefundApprove(BaseModel):
    remarks: str | None = None


class RefundReject(BaseModel):
    reason: str = Field(min_length=1, max_length=255)


class RefundResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    payment_id: int
    invoice_id: int
    student_id: int
    amount: Decimal
    reason: str
    status: RefundStatus
    requested_by: int
    approved_by: int | None
    approved_at: datetime | None
    rejected_by: int | None
    rejected_at: datetime | None
    rejection_reason: str | None
    processed_by: int | None
    completed_at: datetime | None
    remarks: str | None
    created_at: datetime


class RefundListResponse(BaseModel):
    items: list[RefundResponse]
    pagination: PaginationMeta

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from ledger.domain.invoice_status import DiscountApprovalStatus, InvoiceStatus
from ledger.interfaces.api.v1.schemas.pagination import PaginationMeta


class InvoiceItemCreate(BaseModel):
    fee_component_id: int
    description: str = Field(min_length=1, max_length=255)
    amount: Decimal = Field(gt=0, decimal_places=2)


class InvoiceCreate(BaseModel):
    student_id: int
    fee_definition_id: int
    period_id: int
    due_date: date
    items: list[InvoiceItemCreate] = Field(min_length=1)
    discount: Decimal = Field(default=Decimal("0.00"), ge=0, decimal_places=2)
    discount_reason: str | None = Field(default=None, max_length=255)


class InvoiceRegenerate(BaseModel):
    due_date: date | None = None
    items: list[InvoiceItemCreate] | None = Field(default=None, min_length=1)
    discount: Decimal = Field(default=Decimal("0.00"), ge=0, decimal_places=2)
    discount_reason: str | None = Field(default=None, max_length=255)


class InvoiceBulkCreate(BaseModel):
    student_ids: list[int] = Field(min_length=1)
    fee_definition_id: int
    period_id: int
    due_date: date
    items: list[InvoiceItemCreate] = Field(min_length=1)


class DiscountApply(BaseModel):
    amount: Decimal = Field(ge=0, decimal_places=2)
    reason: str | None = Field(default=None, max_length=255)


class InvoiceItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    invoice_id: int
    fee_component_id: int
    description: str
    amount: Decimal


class InvoiceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    invoice_number: str
    student_id: int
    fee_definition_id: int
    period_id: int
    due_date: date
    subtotal: Decimal
    discount: Decimal
    discount_reason: str | None
    discount_approval_status: DiscountApprovalStatus
    total_amount: Decimal
    paid_amount: Decimal
    balance: Decimal
    status: InvoiceStatus
    generated_at: datetime
    cancelled_at: datetime | None
    items: list[InvoiceItemResponse]


class InvoiceListResponse(BaseModel):
    items: list[InvoiceResponse]
    pagination: PaginationMeta


class BulkGenerateError(BaseModel):
    student_id: int
    error: str


class BulkGenerateResponse(BaseModel):
    successful: int
    failed: int
    errors: list[BulkGenerateError]
    invoice_ids: list[int]


class StudentBalanceResponse(BaseModel):
    student_id: int
    total_billed_amount: Decimal
    total_paid_amount: Decimal
    outstanding_balance: Decimal
    overdue_balance: Decimal

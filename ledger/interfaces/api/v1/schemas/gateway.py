from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from ledger.domain.gateway_enums import CallbackOutcome, GatewayTransactionStatus, PaymentGateway


class GatewayInitiateRequest(BaseModel):
    invoice_id: int
    student_id: int
    amount: Decimal = Field(gt=0, decimal_places=2)
    tax_amount: Decimal = Field(default=Decimal("0.00"), ge=0, decimal_places=2)
    service_charge: Decimal = Field(default=Decimal("0.00"), ge=0, decimal_places=2)


class GatewayFailureRequest(BaseModel):
    transaction_uuid: str
    reason: str | None = Field(default=None, max_length=255)


class GatewayTransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    transaction_uuid: str
    gateway: PaymentGateway
    invoice_id: int
    student_id: int
    amount: Decimal
    tax_amount: Decimal
    service_charge: Decimal
    total_amount: Decimal
    status: GatewayTransactionStatus
    initiated_at: datetime
    expires_at: datetime
    completed_at: datetime | None
    failure_reason: str | None
    payment_id: int | None


class GatewayInitiateResponse(BaseModel):
    transaction: GatewayTransactionResponse
    payment_url: str
    form_data: dict[str, str]


class GatewayCallbackResponse(BaseModel):
    success: bool
    outcome: CallbackOutcome
    message: str
    status: GatewayTransactionStatus
    payment_id: int | None = None

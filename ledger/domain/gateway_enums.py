from enum import Enum


class PaymentGateway(str, Enum):
    esewa = "esewa"


class GatewayTransactionStatus(str, Enum):
    pending = "pending"
    success = "success"
    failed = "failed"
    expired = "expired"


class CallbackOutcome(str, Enum):
    processed = "processed"
    already_processed = "already_processed"
    expired = "expired"
    invalid_signature = "invalid_signature"
    amount_mismatch = "amount_mismatch"
    not_complete = "not_complete"


ESEWA_COMPLETE_STATUS = "COMPLETE"

from enum import Enum


class PaymentMethod(str, Enum):
    cash = "cash"
    bank_transfer = "bank_transfer"
    esewa = "esewa"
    khalti = "khalti"
    ime_pay = "ime_pay"


class PaymentStatus(str, Enum):
    pending = "pending"
    completed = "completed"
    failed = "failed"
    refunded = "refunded"


class RefundStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    completed = "completed"
    cancelled = "cancelled"

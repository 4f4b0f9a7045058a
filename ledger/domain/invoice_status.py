from datetime import date
from decimal import Decimal
from enum import Enum


class InvoiceStatus(str, Enum):
    pending = "pending"
    partial = "partial"
    paid = "paid"
    overdue = "overdue"
    cancelled = "cancelled"


class DiscountApprovalStatus(str, Enum):
    none = "none"
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


def resolve_invoice_status(*, balance: Decimal, total_amount: Decimal, due_date: date, as_of: date) -> InvoiceStatus:
    if balance <= Decimal("0.00"):
        return InvoiceStatus.paid
    if balance < total_amount:
        return InvoiceStatus.partial
    if due_date < as_of:
        return InvoiceStatus.overdue
    return InvoiceStatus.pending

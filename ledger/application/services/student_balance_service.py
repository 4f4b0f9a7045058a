from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ledger.config import settings
from ledger.domain.invoice_status import InvoiceStatus
from ledger.domain.money import to_money
from ledger.infrastructure.cache.cache_service import delete_keys, get_json, set_json
from ledger.infrastructure.db.models import Invoice

SNAPSHOT_FIELDS = ("total_billed_amount", "total_paid_amount", "outstanding_balance", "overdue_balance")


def student_balance_cache_key(*, student_id: int) -> str:
    return f"student_balance:{student_id}"


def invalidate_student_balance_cache(*, student_id: int) -> None:
    delete_keys(student_balance_cache_key(student_id=student_id))


def _sum_invoices(db: Session, column, *conditions) -> Decimal:
    total = db.execute(
        select(func.coalesce(func.sum(column), 0)).where(
            Invoice.status != InvoiceStatus.cancelled,
            *conditions,
        )
    ).scalar_one()
    return to_money(total)


def get_student_balance_snapshot(db: Session, *, student_id: int) -> dict[str, Decimal]:
    cache_key = student_balance_cache_key(student_id=student_id)
    cached = get_json(cache_key)
    if cached is not None and all(field in cached for field in SNAPSHOT_FIELDS):
        return {field: to_money(cached[field]) for field in SNAPSHOT_FIELDS}

    snapshot = {
        "total_billed_amount": _sum_invoices(db, Invoice.total_amount, Invoice.student_id == student_id),
        "total_paid_amount": _sum_invoices(db, Invoice.paid_amount, Invoice.student_id == student_id),
        "outstanding_balance": _sum_invoices(db, Invoice.balance, Invoice.student_id == student_id),
        "overdue_balance": _sum_invoices(
            db,
            Invoice.balance,
            Invoice.student_id == student_id,
            Invoice.status == InvoiceStatus.overdue,
        ),
    }
    set_json(
        cache_key,
        {field: str(value) for field, value in snapshot.items()},
        settings.student_balance_cache_ttl_seconds,
    )
    return snapshot


def get_student_outstanding_balance(db: Session, *, student_id: int) -> Decimal:
    return get_student_balance_snapshot(db, student_id=student_id)["outstanding_balance"]

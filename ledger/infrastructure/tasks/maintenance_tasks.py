from ledger.application.services.gateway_service import expire_stale_gateway_transactions
from ledger.application.services.invoice_service import mark_overdue_invoices
from ledger.infrastructure.db.session import SessionLocal
from ledger.infrastructure.tasks.celery_app import celery_app


@celery_app.task(name="ledger.mark_overdue_invoices")
def mark_overdue_invoices_task() -> dict:
    db = SessionLocal()
    try:
        return {"marked_overdue": mark_overdue_invoices(db)}
    finally:
        db.close()


@celery_app.task(name="ledger.expire_stale_gateway_transactions")
def expire_stale_gateway_transactions_task() -> dict:
    db = SessionLocal()
    try:
        return {"expired": expire_stale_gateway_transactions(db)}
    finally:
        db.close()

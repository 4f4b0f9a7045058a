from celery import Celery

from ledger.config import settings

celery_app = Celery(
    "ledger",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["ledger.infrastructure.tasks.maintenance_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    beat_schedule={
        "mark-overdue-invoices": {
            "task": "ledger.mark_overdue_invoices",
            "schedule": float(settings.overdue_sweep_interval_seconds),
        },
        "expire-stale-gateway-transactions": {
            "task": "ledger.expire_stale_gateway_transactions",
            "schedule": float(settings.gateway_expiry_sweep_interval_seconds),
        },
    },
)

from collections.abc import Iterator
from contextlib import contextmanager

from ledger.application.errors import ConflictError
from ledger.config import settings
from ledger.infrastructure.cache.cache_service import acquire_lock, release_lock


def payment_lock_key(*, invoice_id: int) -> str:
    return f"payment_lock:invoice:{invoice_id}"


@contextmanager
def payment_creation_lock(*, invoice_id: int) -> Iterator[None]:
    lock_key = payment_lock_key(invoice_id=invoice_id)
    lock_token = acquire_lock(lock_key, settings.payment_lock_ttl_seconds)
    if lock_token is None:
        raise ConflictError("A payment is already being processed for this invoice")
    try:
        yield
    finally:
        release_lock(lock_key, lock_token)

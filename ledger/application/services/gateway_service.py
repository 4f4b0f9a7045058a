import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ledger.application.clock import ensure_utc, utc_now
from ledger.application.errors import (
    AmountExceedsBalanceError,
    AmountMismatchError,
    ConflictError,
    GatewayNotCompleteError,
    GatewayVerificationError,
    InvalidAmountError,
    InvalidStateError,
    NotFoundError,
    SignatureInvalidError,
    TransactionExpiredError,
    ValidationError,
)
from ledger.application.services.invoice_service import lock_invoice
from ledger.application.services.payment_service import apply_payment
from ledger.application.services.student_balance_service import invalidate_student_balance_cache
from ledger.config import settings
from ledger.domain.gateway_callback import GatewayCallbackPayload, decode_callback_data
from ledger.domain.gateway_enums import (
    ESEWA_COMPLETE_STATUS,
    CallbackOutcome,
    GatewayTransactionStatus,
    PaymentGateway,
)
from ledger.domain.gateway_signature import (
    INITIATION_SIGNED_FIELDS,
    covers_required_fields,
    sign_initiation,
    verify_signature,
)
from ledger.domain.invoice_status import InvoiceStatus
from ledger.domain.money import ZERO, format_gateway_amount, to_money
from ledger.domain.payment_enums import PaymentMethod
from ledger.infrastructure.db.models import GatewayTransaction, Payment
from ledger.infrastructure.db.session import unit_of_work
from ledger.infrastructure.logging import get_logger
from ledger.interfaces.api.v1.schemas.gateway import GatewayInitiateRequest
from ledger.interfaces.api.v1.schemas.payment import PaymentCreate

logger = get_logger(__name__)

FAILURE_REASON_MAX_LENGTH = 255
DEFAULT_CANCEL_REASON = "Payment cancelled by user"
SUPERSEDED_REASON = "Superseded by a new transaction"


@dataclass(frozen=True)
class GatewayInitiation:
    transaction: GatewayTransaction
    payment_url: str
    form_data: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class CallbackResult:
    success: bool
    outcome: CallbackOutcome
    message: str
    transaction: GatewayTransaction
    payment: Payment | None = None


def _truncate(reason: str) -> str:
    return reason[:FAILURE_REASON_MAX_LENGTH]


def parse_callback_payload(raw: dict[str, Any]) -> GatewayCallbackPayload:
    try:
        return GatewayCallbackPayload.model_validate(raw)
    except PydanticValidationError as exc:
        raise ValidationError(f"Malformed gateway callback payload: {exc.error_count()} invalid field(s)") from exc


def parse_encoded_callback(data: str) -> GatewayCallbackPayload:
    try:
        raw = decode_callback_data(data)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    return parse_callback_payload(raw)


def get_transaction(db: Session, *, transaction_uuid: str) -> GatewayTransaction:
    transaction = db.execute(
        select(GatewayTransaction).where(GatewayTransaction.transaction_uuid == transaction_uuid)
    ).scalar_one_or_none()
    if transaction is None:
        raise NotFoundError("Gateway transaction not found")
    return transaction


def _lock_transaction(db: Session, *, transaction_uuid: str) -> GatewayTransaction:
    transaction = db.execute(
        select(GatewayTransaction)
        .where(GatewayTransaction.transaction_uuid == transaction_uuid)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if transaction is None:
        raise NotFoundError("Gateway transaction not found")
    return transaction


def _lock_invoice_of(db: Session, *, transaction_uuid: str) -> None:
    # Invoice before transaction, the same order initiation takes them in.
    invoice_id = get_transaction(db, transaction_uuid=transaction_uuid).invoice_id
    lock_invoice(db, invoice_id=invoice_id)


def _is_expired(transaction: GatewayTransaction, *, now: datetime) -> bool:
    return now > ensure_utc(transaction.expires_at)


def _mark_expired(transaction: GatewayTransaction, *, reason: str = "Transaction expired") -> None:
    transaction.status = GatewayTransactionStatus.expired
    transaction.failure_reason = _truncate(reason)


def _mark_failed(transaction: GatewayTransaction, *, reason: str, raw: dict[str, Any] | None = None) -> None:
    transaction.status = GatewayTransactionStatus.failed
    transaction.failure_reason = _truncate(reason)
    if raw is not None:
        transaction.gateway_response = raw


def build_esewa_form(transaction: GatewayTransaction) -> dict[str, str]:
    return {
        "amount": format_gateway_amount(transaction.amount),
        "tax_amount": format_gateway_amount(transaction.tax_amount),
        "total_amount": format_gateway_amount(transaction.total_amount),
        "transaction_uuid": transaction.transaction_uuid,
        "product_code": transaction.product_code,
        "product_service_charge": format_gateway_amount(transaction.service_charge),
        "product_delivery_charge": "0",
        "success_url": settings.esewa_success_url,
        "failure_url": settings.esewa_failure_url,
        "signed_field_names": ",".join(INITIATION_SIGNED_FIELDS),
        "signature": transaction.signature,
    }


def _expire_pending_for_invoice(db: Session, *, invoice_id: int, gateway: PaymentGateway) -> int:
    pending = db.execute(
        select(GatewayTransaction).where(
            GatewayTransaction.invoice_id == invoice_id,
            GatewayTransaction.gateway == gateway,
            GatewayTransaction.status == GatewayTransactionStatus.pending,
        )
    ).scalars().all()
    for transaction in pending:
        _mark_expired(transaction, reason=SUPERSEDED_REASON)
    if pending:
        db.flush()
    return len(pending)


def initiate_gateway_payment(
    db: Session,
    *,
    payload: GatewayInitiateRequest,
    initiated_by: int | None = None,
    now: datetime | None = None,
) -> GatewayInitiation:
    now = now or utc_now()
    gateway = PaymentGateway.esewa
    logger.info(
        "gateway_initiation_started",
        gateway=gateway.value,
        invoice_id=payload.invoice_id,
        student_id=payload.student_id,
        amount=str(payload.amount),
    )
    with unit_of_work(db):
        invoice = lock_invoice(db, invoice_id=payload.invoice_id)
        if invoice.status == InvoiceStatus.cancelled:
            raise InvalidStateError("Cannot pay a cancelled invoice")
        if invoice.student_id != payload.student_id:
            raise ValidationError("Invoice does not belong to student")
        amount = to_money(payload.amount)
        if amount <= ZERO:
            raise InvalidAmountError(f"Payment amount must be positive: requested {amount}")
        if amount > invoice.balance:
            raise AmountExceedsBalanceError(requested=amount, available=invoice.balance)

        superseded = _expire_pending_for_invoice(db, invoice_id=invoice.id, gateway=gateway)

        tax_amount = to_money(payload.tax_amount)
        service_charge = to_money(payload.service_charge)
        total_amount = to_money(amount + tax_amount + service_charge)
        transaction_uuid = str(uuid.uuid4())
        transaction = GatewayTransaction(
            transaction_uuid=transaction_uuid,
            gateway=gateway,
            invoice_id=invoice.id,
            student_id=invoice.student_id,
            amount=amount,
            tax_amount=tax_amount,
            service_charge=service_charge,
            total_amount=total_amount,
            product_code=settings.esewa_product_code,
            signature=sign_initiation(
                total_amount=format_gateway_amount(total_amount),
                transaction_uuid=transaction_uuid,
                product_code=settings.esewa_product_code,
                secret_key=settings.esewa_secret_key,
            ),
            status=GatewayTransactionStatus.pending,
            initiated_by=initiated_by,
            initiated_at=now,
            expires_at=now + timedelta(minutes=settings.gateway_transaction_ttl_minutes),
        )
        db.add(transaction)
        try:
            db.flush()
        except IntegrityError as exc:
            raise ConflictError("A gateway payment is already pending for this invoice") from exc
        form_data = build_esewa_form(transaction)
    logger.info(
        "gateway_initiation_completed",
        gateway=gateway.value,
        transaction_uuid=transaction_uuid,
        invoice_id=payload.invoice_id,
        total_amount=str(total_amount),
        superseded_transactions=superseded,
    )
    return GatewayInitiation(transaction=transaction, payment_url=settings.esewa_payment_url, form_data=form_data)


def _verify_callback(transaction: GatewayTransaction, payload: GatewayCallbackPayload, *, now: datetime) -> None:
    if _is_expired(transaction, now=now):
        raise TransactionExpiredError("Transaction has expired")
    if not covers_required_fields(payload) or not verify_signature(payload, settings.esewa_secret_key):
        raise SignatureInvalidError("Invalid signature")
    if payload.product_code != transaction.product_code:
        raise SignatureInvalidError("Product code mismatch")
    try:
        received = Decimal(payload.total_amount.replace(",", ""))
    except InvalidOperation as exc:
        raise AmountMismatchError(expected=transaction.total_amount, received=payload.total_amount) from exc
    if not received.is_finite() or abs(received - transaction.total_amount) > settings.gateway_amount_tolerance:
        raise AmountMismatchError(expected=transaction.total_amount, received=payload.total_amount)
    if payload.status != ESEWA_COMPLETE_STATUS:
        raise GatewayNotCompleteError(f"Payment not completed: {payload.status}")


def _reject_callback(
    transaction: GatewayTransaction, *, payload: GatewayCallbackPayload, error: GatewayVerificationError
) -> CallbackResult:
    if isinstance(error, TransactionExpiredError):
        _mark_expired(transaction)
    else:
        _mark_failed(transaction, reason=str(error), raw=payload.raw())
    logger.warning(
        f"gateway_callback_rejected_{error.outcome}",
        transaction_uuid=transaction.transaction_uuid,
        invoice_id=transaction.invoice_id,
        reason=str(error),
    )
    return CallbackResult(
        success=False,
        outcome=CallbackOutcome(error.outcome),
        message=str(error),
        transaction=transaction,
    )


def _record_settlement_failure(db: Session, *, transaction_uuid: str, reason: str) -> None:
    try:
        with unit_of_work(db):
            _lock_invoice_of(db, transaction_uuid=transaction_uuid)
            transaction = _lock_transaction(db, transaction_uuid=transaction_uuid)
            if transaction.status == GatewayTransactionStatus.pending:
                _mark_failed(transaction, reason=reason)
    except (SQLAlchemyError, NotFoundError) as exc:
        logger.error(
            "gateway_settlement_failure_not_recorded",
            transaction_uuid=transaction_uuid,
            reason=reason,
            error=str(exc),
        )


def handle_callback(
    db: Session,
    *,
    payload: GatewayCallbackPayload,
    acting_user_id: int | None = None,
    now: datetime | None = None,
) -> CallbackResult:
    """Reconcile a gateway notification with its pending transaction.

    Verification failures park the transaction in a terminal state and come
    back as unsuccessful results. Errors raised while settling the payment
    roll the settlement back, mark the transaction failed and propagate.
    """
    now = now or utc_now()
    logger.info("gateway_callback_received", transaction_uuid=payload.transaction_uuid, status=payload.status)
    settling = False
    try:
        with unit_of_work(db):
            _lock_invoice_of(db, transaction_uuid=payload.transaction_uuid)
            transaction = _lock_transaction(db, transaction_uuid=payload.transaction_uuid)
            if transaction.status != GatewayTransactionStatus.pending:
                logger.info(
                    "gateway_callback_already_processed",
                    transaction_uuid=transaction.transaction_uuid,
                    status=transaction.status.value,
                )
                return CallbackResult(
                    success=transaction.status == GatewayTransactionStatus.success,
                    outcome=CallbackOutcome.already_processed,
                    message=f"Transaction already processed with status: {transaction.status.value}",
                    transaction=transaction,
                )
            try:
                _verify_callback(transaction, payload, now=now)
            except GatewayVerificationError as exc:
                return _reject_callback(transaction, payload=payload, error=exc)

            settling = True
            payment = apply_payment(
                db,
                payload=PaymentCreate(
                    invoice_id=transaction.invoice_id,
                    student_id=transaction.student_id,
                    amount=transaction.amount,
                    method=PaymentMethod(transaction.gateway.value),
                    payment_date=now.date(),
                    external_transaction_id=payload.gateway_reference(),
                    remarks=f"{transaction.gateway.value} payment {transaction.transaction_uuid}",
                    received_by=acting_user_id,
                    gateway_response=payload.raw(),
                ),
            )
            transaction.status = GatewayTransactionStatus.success
            transaction.completed_at = now
            transaction.gateway_response = payload.raw()
            transaction.payment_id = payment.id
            db.flush()
    except Exception as exc:
        if settling:
            logger.error(
                "gateway_callback_settlement_failed",
                transaction_uuid=payload.transaction_uuid,
                error=str(exc),
            )
            _record_settlement_failure(db, transaction_uuid=payload.transaction_uuid, reason=str(exc))
        raise

    invalidate_student_balance_cache(student_id=transaction.student_id)
    logger.info(
        "gateway_callback_processed",
        transaction_uuid=transaction.transaction_uuid,
        invoice_id=transaction.invoice_id,
        payment_id=payment.id,
        receipt_number=payment.receipt_number,
        amount=str(payment.amount),
    )
    return CallbackResult(
        success=True,
        outcome=CallbackOutcome.processed,
        message="Payment processed successfully",
        transaction=transaction,
        payment=payment,
    )


def handle_failure(
    db: Session, *, transaction_uuid: str, reason: str | None = None, now: datetime | None = None
) -> GatewayTransaction:
    now = now or utc_now()
    with unit_of_work(db):
        transaction = _lock_transaction(db, transaction_uuid=transaction_uuid)
        if transaction.status == GatewayTransactionStatus.pending and _is_expired(transaction, now=now):
            _mark_expired(transaction)
        elif transaction.status == GatewayTransactionStatus.pending:
            _mark_failed(transaction, reason=reason or DEFAULT_CANCEL_REASON)
        else:
            status = transaction.status.value
            raise InvalidStateError(f"Transaction already processed with status: {status}")
    logger.info(
        "gateway_transaction_failed",
        transaction_uuid=transaction_uuid,
        status=transaction.status.value,
        reason=transaction.failure_reason,
    )
    return transaction


def get_transaction_status(db: Session, *, transaction_uuid: str, now: datetime | None = None) -> GatewayTransaction:
    now = now or utc_now()
    transaction = get_transaction(db, transaction_uuid=transaction_uuid)
    if transaction.status != GatewayTransactionStatus.pending or not _is_expired(transaction, now=now):
        return transaction
    with unit_of_work(db):
        transaction = _lock_transaction(db, transaction_uuid=transaction_uuid)
        if transaction.status == GatewayTransactionStatus.pending:
            _mark_expired(transaction)
    logger.info("gateway_transaction_expired", transaction_uuid=transaction_uuid)
    return transaction


def expire_stale_gateway_transactions(db: Session, *, now: datetime | None = None) -> int:
    now = now or utc_now()
    with unit_of_work(db):
        stale = db.execute(
            select(GatewayTransaction)
            .where(
                GatewayTransaction.status == GatewayTransactionStatus.pending,
                GatewayTransaction.expires_at < now,
            )
            .with_for_update(skip_locked=True)
        ).scalars().all()
        for transaction in stale:
            _mark_expired(transaction)
    logger.info("gateway_expiry_sweep_completed", expired=len(stale))
    return len(stale)

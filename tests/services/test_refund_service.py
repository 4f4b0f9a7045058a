from decimal import Decimal

import pytest

from ledger.application.clock import utc_today
from ledger.application.errors import (
    AlreadyRefundedError,
    ConflictError,
    InvalidStateError,
    NotCompletedError,
    NotFoundError,
    ValidationError,
)
from ledger.application.services.installment_service import get_plan, pay_installment
from ledger.application.services.invoice_service import get_invoice
from ledger.application.services.payment_service import completed_total_for_invoice, get_payment, refund_payment
from ledger.application.services.refund_service import (
    approve_refund,
    build_payment_refunds_query,
    build_pending_refunds_query,
    build_student_refunds_query,
    cancel_refund_request,
    create_refund_request,
    get_refund,
    process_refund,
    reject_refund,
)
from ledger.domain.installment_enums import InstallmentPlanStatus
from ledger.domain.invoice_status import InvoiceStatus
from ledger.domain.payment_enums import PaymentMethod, PaymentStatus, RefundStatus
from ledger.interfaces.api.v1.schemas.installment import InstallmentPay
from tests.helpers.factories import issue_invoice, list_from_query, open_plan, pay

REQUESTER = 11
APPROVER = 12


def test_refund_request_approved_and_processed_restores_invoice(db_session):
    """
    Validate the full refund request workflow.

    1. Issue an invoice, pay 4000 and snapshot the invoice.
    2. Pay 6000 and request a refund of that payment.
    3. Approve with remarks and process the request.
    4. Validate invoice matches the snapshot, payment and request are closed.
    """
    invoice = issue_invoice(db_session)
    pay(db_session, invoice, "4000.00")
    before = get_invoice(db_session, invoice_id=invoice.id)
    snapshot = (before.paid_amount, before.balance, before.status)
    payment = pay(db_session, invoice, "6000.00")

    refund = create_refund_request(db_session, payment_id=payment.id, reason="Paid twice", requested_by=REQUESTER)
    assert refund.status == RefundStatus.pending
    assert refund.amount == Decimal("6000.00")
    assert refund.invoice_id == invoice.id

    approved = approve_refund(db_session, refund_id=refund.id, approved_by=APPROVER, remarks="Bank statement checked")
    assert approved.status == RefundStatus.approved
    assert approved.approved_by == APPROVER
    assert approved.approved_at is not None
    assert approved.remarks == "Approval remarks: Bank statement checked"

    completed = process_refund(db_session, refund_id=refund.id, processed_by=APPROVER)
    assert completed.status == RefundStatus.completed
    assert completed.processed_by == APPROVER
    assert completed.completed_at is not None

    after = get_invoice(db_session, invoice_id=invoice.id)
    assert (after.paid_amount, after.balance, after.status) == snapshot
    refunded = get_payment(db_session, payment_id=payment.id)
    assert refunded.status == PaymentStatus.refunded
    assert refunded.refund_reason == "Paid twice"
    assert completed_total_for_invoice(db_session, invoice_id=invoice.id) == after.paid_amount


def test_refund_request_guards(db_session):
    """
    Validate request creation guards.

    1. Issue an invoice and pay it.
    2. Request a refund and validate a second open request raises ConflictError.
    3. Refund another payment directly and validate a request for it raises NotCompletedError.
    4. Validate an unknown payment raises NotFoundError.
    """
    invoice = issue_invoice(db_session)
    first = pay(db_session, invoice, "500.00")
    second = pay(db_session, invoice, "700.00")

    create_refund_request(db_session, payment_id=first.id, reason="Error", requested_by=REQUESTER)
    with pytest.raises(ConflictError):
        create_refund_request(db_session, payment_id=first.id, reason="Again", requested_by=REQUESTER)

    refund_payment(db_session, payment_id=second.id, refunded_by=REQUESTER, reason="Error")
    with pytest.raises(NotCompletedError):
        create_refund_request(db_session, payment_id=second.id, reason="Error", requested_by=REQUESTER)
    with pytest.raises(NotFoundError):
        create_refund_request(db_session, payment_id=999999, reason="Error", requested_by=REQUESTER)


def test_refund_request_state_transitions_are_one_way(db_session):
    """
    Validate approval, rejection and cancellation rules.

    1. Validate the requester cannot approve their own request.
    2. Validate a pending request cannot be processed.
    3. Reject it and validate it can no longer be approved or cancelled.
    4. Validate a new request can then be opened and cancelled.
    """
    invoice = issue_invoice(db_session)
    payment = pay(db_session, invoice, "1500.00")
    refund = create_refund_request(db_session, payment_id=payment.id, reason="Error", requested_by=REQUESTER)

    with pytest.raises(ValidationError):
        approve_refund(db_session, refund_id=refund.id, approved_by=REQUESTER)
    with pytest.raises(InvalidStateError):
        process_refund(db_session, refund_id=refund.id, processed_by=APPROVER)

    rejected = reject_refund(db_session, refund_id=refund.id, rejected_by=APPROVER, reason="Not eligible")
    assert rejected.status == RefundStatus.rejected
    assert rejected.rejection_reason == "Not eligible"
    assert rejected.rejected_at is not None
    with pytest.raises(InvalidStateError):
        approve_refund(db_session, refund_id=refund.id, approved_by=APPROVER)
    with pytest.raises(InvalidStateError):
        cancel_refund_request(db_session, refund_id=refund.id)

    retry = create_refund_request(db_session, payment_id=payment.id, reason="Second look", requested_by=REQUESTER)
    assert cancel_refund_request(db_session, refund_id=retry.id).status == RefundStatus.cancelled
    assert get_invoice(db_session, invoice_id=invoice.id).paid_amount == Decimal("1500.00")
    with pytest.raises(NotFoundError):
        get_refund(db_session, refund_id=999999)


def test_process_refund_rolls_back_when_payment_already_refunded(db_session):
    """
    Validate processing is atomic.

    1. Request and approve a refund.
    2. Refund the payment directly before processing.
    3. Validate processing raises AlreadyRefundedError.
    4. Validate the request stays approved and the invoice is reversed once.
    """
    invoice = issue_invoice(db_session)
    payment = pay(db_session, invoice, "2000.00")
    refund = create_refund_request(db_session, payment_id=payment.id, reason="Error", requested_by=REQUESTER)
    approve_refund(db_session, refund_id=refund.id, approved_by=APPROVER)
    refund_payment(db_session, payment_id=payment.id, refunded_by=APPROVER, reason="Counter refund")

    with pytest.raises(AlreadyRefundedError):
        process_refund(db_session, refund_id=refund.id, processed_by=APPROVER)
    assert get_refund(db_session, refund_id=refund.id).status == RefundStatus.approved
    refreshed = get_invoice(db_session, invoice_id=invoice.id)
    assert refreshed.paid_amount == Decimal("0.00")
    assert refreshed.balance == Decimal("10000.00")


def test_processed_refund_reactivates_completed_plan(db_session):
    """
    Validate installment plans reopen after a processed refund.

    1. Issue an invoice and pay both installments of a 2-installment plan.
    2. Request, approve and process a refund of the last installment.
    3. Validate the plan is active again and the invoice is partial.
    """
    invoice = issue_invoice(db_session)
    plan = open_plan(db_session, invoice, 2)
    installment = InstallmentPay(method=PaymentMethod.cash, payment_date=utc_today())
    pay_installment(db_session, plan_id=plan.id, installment_number=1, payload=installment)
    last = pay_installment(db_session, plan_id=plan.id, installment_number=2, payload=installment)
    assert get_plan(db_session, plan_id=plan.id).status == InstallmentPlanStatus.completed

    refund = create_refund_request(db_session, payment_id=last.id, reason="Error", requested_by=REQUESTER)
    approve_refund(db_session, refund_id=refund.id, approved_by=APPROVER)
    process_refund(db_session, refund_id=refund.id, processed_by=APPROVER)

    assert get_plan(db_session, plan_id=plan.id).status == InstallmentPlanStatus.active
    assert get_invoice(db_session, invoice_id=invoice.id).status == InvoiceStatus.partial


def test_refund_request_queries(db_session):
    """
    Validate refund request listings.

    1. Issue invoices for two students and pay both.
    2. Open a request for each and approve one.
    3. Validate pending, per-payment and per-student queries.
    """
    first_invoice = issue_invoice(db_session, student_id=501)
    second_invoice = issue_invoice(db_session, student_id=502)
    first_payment = pay(db_session, first_invoice, "100.00")
    second_payment = pay(db_session, second_invoice, "200.00")
    first = create_refund_request(db_session, payment_id=first_payment.id, reason="A", requested_by=REQUESTER)
    second = create_refund_request(db_session, payment_id=second_payment.id, reason="B", requested_by=REQUESTER)
    approve_refund(db_session, refund_id=first.id, approved_by=APPROVER)

    pending = list_from_query(db_session, build_pending_refunds_query())
    assert [refund.id for refund in pending] == [second.id]
    by_payment = list_from_query(db_session, build_payment_refunds_query(payment_id=first_payment.id))
    assert [refund.id for refund in by_payment] == [first.id]
    by_student = list_from_query(db_session, build_student_refunds_query(student_id=502))
    assert [refund.id for refund in by_student] == [second.id]

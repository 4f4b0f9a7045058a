from tests.helpers.factories import issue_invoice, pay

REQUESTER_HEADER = {"X-User-Id": "31"}
APPROVER_HEADER = {"X-User-Id": "32"}


def _request_refund(client, payment_id: int, reason: str = "Paid twice"):
    return client.post(
        f"/api/v1/payments/{payment_id}/refund-requests", headers=REQUESTER_HEADER, json={"reason": reason}
    )


def test_refund_request_lifecycle(client, db_session):
    """
    Validate the refund request workflow over HTTP.

    1. Issue an invoice of 10000 and pay 3000.
    2. Request a refund and find it in the pending list.
    3. Approve and process it with a second user.
    4. Validate the request is completed and the invoice balance restored.
    """
    invoice = issue_invoice(db_session)
    payment = pay(db_session, invoice, "3000.00")

    created = _request_refund(client, payment.id)
    assert created.status_code == 201
    refund = created.json()
    assert refund["status"] == "pending"
    assert refund["amount"] == "3000.00"
    assert refund["requested_by"] == 31
    pending = client.get("/api/v1/refunds/pending").json()
    assert [item["id"] for item in pending["items"]] == [refund["id"]]

    approved = client.post(
        f"/api/v1/refunds/{refund['id']}/approve", headers=APPROVER_HEADER, json={"remarks": "Checked"}
    )
    assert approved.status_code == 200
    assert approved.json()["status"] == "approved"

    processed = client.post(f"/api/v1/refunds/{refund['id']}/process", headers=APPROVER_HEADER)
    assert processed.status_code == 200
    assert processed.json()["status"] == "completed"
    assert processed.json()["processed_by"] == 32

    assert client.get(f"/api/v1/payments/{payment.id}").json()["status"] == "refunded"
    invoice_payload = client.get(f"/api/v1/invoices/{invoice.id}").json()
    assert invoice_payload["balance"] == "10000.00"
    assert invoice_payload["status"] == "pending"
    history = client.get(f"/api/v1/payments/{payment.id}/refund-requests").json()
    assert [item["status"] for item in history["items"]] == ["completed"]
    assert client.get(f"/api/v1/students/{invoice.student_id}/refunds").json()["pagination"]["total"] == 1


def test_refund_request_error_responses(client, db_session):
    """
    Validate refund request error mapping.

    1. Request without X-User-Id and expect 401.
    2. Request twice for the same payment and expect 409.
    3. Approve as the requester and expect 400, process while pending and expect 409.
    4. Reject, then validate a missing request returns 404.
    """
    invoice = issue_invoice(db_session)
    payment = pay(db_session, invoice, "800.00")
    anonymous = client.post(f"/api/v1/payments/{payment.id}/refund-requests", json={"reason": "Error"})
    assert anonymous.status_code == 401

    refund = _request_refund(client, payment.id).json()
    assert _request_refund(client, payment.id).status_code == 409

    own = client.post(f"/api/v1/refunds/{refund['id']}/approve", headers=REQUESTER_HEADER)
    assert own.status_code == 400
    early = client.post(f"/api/v1/refunds/{refund['id']}/process", headers=APPROVER_HEADER)
    assert early.status_code == 409
    assert early.json() == {"detail": "Cannot process refund request in status pending"}

    rejected = client.post(
        f"/api/v1/refunds/{refund['id']}/reject", headers=APPROVER_HEADER, json={"reason": "Not eligible"}
    )
    assert rejected.status_code == 200
    assert rejected.json()["rejection_reason"] == "Not eligible"
    assert client.post(f"/api/v1/refunds/{refund['id']}/cancel").status_code == 409
    assert client.get("/api/v1/refunds/999999").status_code == 404
    assert client.get(f"/api/v1/invoices/{invoice.id}").json()["paid_amount"] == "800.00"

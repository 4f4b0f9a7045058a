from tests.helpers.factories import future_due_date, issue_invoice, pay

USER_HEADER = {"X-User-Id": "12"}


def _invoice_body(**overrides) -> dict:
    body = {
        "student_id": 1,
        "fee_definition_id": 1,
        "period_id": 1,
        "due_date": future_due_date().isoformat(),
        "items": [
            {"fee_component_id": 1, "description": "Tuition fee", "amount": "8000.00"},
            {"fee_component_id": 2, "description": "Lab fee", "amount": "2000.00"},
        ],
        "discount": "1000.00",
        "discount_reason": "Sibling discount",
    }
    body.update(overrides)
    return body


def test_create_invoice_returns_201_with_totals(client):
    """
    Validate invoice creation over HTTP.

    1. Post an invoice with two items and a discount.
    2. Receive created response payload.
    3. Validate totals, balance and status.
    4. Validate items and pending discount approval are returned.
    """
    response = client.post("/api/v1/invoices", json=_invoice_body())
    assert response.status_code == 201
    payload = response.json()
    assert payload["subtotal"] == "10000.00"
    assert payload["total_amount"] == "9000.00"
    assert payload["balance"] == "9000.00"
    assert payload["status"] == "pending"
    assert payload["discount_approval_status"] == "pending"
    assert payload["invoice_number"].startswith("INV-")
    assert len(payload["items"]) == 2


def test_create_invoice_returns_409_for_duplicate_and_400_for_large_discount(client):
    """
    Validate invoice creation errors.

    1. Create one invoice for a student and period.
    2. Post the same student and period again.
    3. Validate conflict response.
    4. Validate a discount above subtotal returns 400.
    """
    assert client.post("/api/v1/invoices", json=_invoice_body()).status_code == 201
    duplicate = client.post("/api/v1/invoices", json=_invoice_body())
    assert duplicate.status_code == 409
    too_large = client.post("/api/v1/invoices", json=_invoice_body(period_id=2, discount="10000.01"))
    assert too_large.status_code == 400


def test_bulk_generate_reports_per_student_outcomes(client, db_session):
    issue_invoice(db_session, student_id=2)
    response = client.post(
        "/api/v1/invoices/bulk",
        json={
            "student_ids": [1, 2, 3],
            "fee_definition_id": 1,
            "period_id": 1,
            "due_date": future_due_date().isoformat(),
            "items": [{"fee_component_id": 1, "description": "Tuition fee", "amount": "5000.00"}],
        },
    )
    assert response.status_code == 200
    payload = response.json()
    assert payload["successful"] == 2
    assert payload["failed"] == 1
    assert payload["errors"][0]["student_id"] == 2
    assert len(payload["invoice_ids"]) == 2


def test_get_invoice_by_id_and_number(client, db_session):
    invoice = issue_invoice(db_session)
    by_id = client.get(f"/api/v1/invoices/{invoice.id}")
    by_number = client.get(f"/api/v1/invoices/by-number/{invoice.invoice_number}")
    assert by_id.status_code == 200
    assert by_number.json()["id"] == invoice.id
    assert client.get("/api/v1/invoices/999999").status_code == 404
    assert client.get("/api/v1/invoices/by-number/INV-0000-00000").json() == {"detail": "Invoice not found"}


def test_discount_approval_flow(client, db_session):
    """
    Validate discount apply, approve and reject endpoints.

    1. Apply a discount to one invoice.
    2. Approve without X-User-Id and expect 401.
    3. Approve with X-User-Id and validate approval fields.
    4. Reject a discount on another invoice and validate totals are restored.
    """
    invoice = issue_invoice(db_session, period_id=1)
    applied = client.post(f"/api/v1/invoices/{invoice.id}/discount", json={"amount": "500.00", "reason": "Merit"})
    assert applied.status_code == 200
    assert applied.json()["total_amount"] == "9500.00"

    pending = client.get("/api/v1/invoices/discounts/pending")
    assert [item["id"] for item in pending.json()["items"]] == [invoice.id]

    missing_user = client.post(f"/api/v1/invoices/{invoice.id}/discount/approve")
    assert missing_user.status_code == 401
    assert missing_user.json() == {"detail": "X-User-Id header is required"}

    approved = client.post(f"/api/v1/invoices/{invoice.id}/discount/approve", headers=USER_HEADER)
    assert approved.status_code == 200
    assert approved.json()["discount_approval_status"] == "approved"
    assert client.post(f"/api/v1/invoices/{invoice.id}/discount/approve", headers=USER_HEADER).status_code == 409

    other = issue_invoice(db_session, period_id=2, discount="1000.00")
    rejected = client.post(f"/api/v1/invoices/{other.id}/discount/reject")
    assert rejected.status_code == 200
    assert rejected.json()["discount"] == "0.00"
    assert rejected.json()["total_amount"] == "10000.00"
    assert rejected.json()["discount_approval_status"] == "rejected"


def test_cancel_and_regenerate_invoice(client, db_session):
    """
    Validate cancellation and regeneration.

    1. Regenerate an unpaid invoice with a new due date.
    2. Validate the replacement copies items and the original is cancelled.
    3. Cancel a paid invoice and expect 409.
    4. Cancel an unpaid invoice and validate status.
    """
    original = issue_invoice(db_session, period_id=1, amounts=("6000.00", "1500.00"))
    new_due_date = future_due_date(60).isoformat()
    regenerated = client.post(f"/api/v1/invoices/{original.id}/regenerate", json={"due_date": new_due_date})
    assert regenerated.status_code == 201
    payload = regenerated.json()
    assert payload["id"] != original.id
    assert payload["due_date"] == new_due_date
    assert payload["subtotal"] == "7500.00"
    assert client.get(f"/api/v1/invoices/{original.id}").json()["status"] == "cancelled"

    paid = issue_invoice(db_session, period_id=2)
    pay(db_session, paid, "100.00")
    assert client.post(f"/api/v1/invoices/{paid.id}/cancel").status_code == 409

    unpaid = issue_invoice(db_session, period_id=3)
    cancelled = client.post(f"/api/v1/invoices/{unpaid.id}/cancel")
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"
    assert cancelled.json()["cancelled_at"] is not None


def test_student_invoices_and_balance(client, db_session):
    """
    Validate student listing and balance endpoints.

    1. Issue two invoices for one student and one for another.
    2. List the first student's invoices.
    3. Validate pagination metadata and ownership.
    4. Validate the balance reflects a partial payment.
    """
    first = issue_invoice(db_session, student_id=1, period_id=1, amounts=("3000.00",))
    issue_invoice(db_session, student_id=1, period_id=2, amounts=("2000.00",))
    issue_invoice(db_session, student_id=2, period_id=1)
    pay(db_session, first, "1000.00")

    listing = client.get("/api/v1/students/1/invoices", params={"limit": 1})
    assert listing.status_code == 200
    assert listing.json()["pagination"]["total"] == 2
    assert listing.json()["pagination"]["has_next"] is True
    assert all(item["student_id"] == 1 for item in listing.json()["items"])

    balance = client.get("/api/v1/students/1/balance").json()
    assert balance["student_id"] == 1
    assert balance["total_billed_amount"] == "5000.00"
    assert balance["total_paid_amount"] == "1000.00"
    assert balance["outstanding_balance"] == "4000.00"

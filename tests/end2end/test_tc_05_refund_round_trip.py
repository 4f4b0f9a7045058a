from tests.end2end.helpers_tc import STAFF_HEADER, create_invoice_via_api, pay_via_api, read_invoice


def test_tc_05_refund_round_trip(client):
    """
    Validate TC-05 refund restores the invoice.

    1. Create an invoice and pay 2500.
    2. Snapshot paid amount, balance and status.
    3. Pay 7500 and refund that payment.
    4. Validate the invoice matches the snapshot exactly.
    """
    invoice = create_invoice_via_api(client, student_id=106)
    assert pay_via_api(client, invoice, "2500.00").status_code == 201
    before = read_invoice(client, invoice["id"])

    payment = pay_via_api(client, invoice, "7500.00").json()
    assert read_invoice(client, invoice["id"])["status"] == "paid"
    refund = client.post(
        f"/api/v1/payments/{payment['id']}/refund", headers=STAFF_HEADER, json={"reason": "Cheque bounced"}
    )
    assert refund.status_code == 200

    after = read_invoice(client, invoice["id"])
    for field in ("paid_amount", "balance", "status"):
        assert after[field] == before[field]

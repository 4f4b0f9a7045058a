from tests.end2end.helpers_tc import create_invoice_via_api, pay_via_api, read_invoice


def test_tc_01_discounted_invoice_paid_in_full(client):
    """
    Validate TC-01 discounted invoice paid in full.

    1. Create an invoice with subtotal 10000 and discount 1000.
    2. Validate total and balance are 9000.
    3. Pay 9000 through the API.
    4. Validate balance is zero and invoice is paid.
    """
    invoice = create_invoice_via_api(client, student_id=101, amounts=("7000.00", "3000.00"), discount="1000.00")
    assert invoice["subtotal"] == "10000.00"
    assert invoice["total_amount"] == "9000.00"
    assert invoice["balance"] == "9000.00"

    response = pay_via_api(client, invoice, "9000.00")
    assert response.status_code == 201
    settled = read_invoice(client, invoice["id"])
    assert settled["balance"] == "0.00"
    assert settled["paid_amount"] == "9000.00"
    assert settled["status"] == "paid"

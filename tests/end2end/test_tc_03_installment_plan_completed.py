from ledger.application.clock import utc_today
from tests.end2end.helpers_tc import STAFF_HEADER, create_invoice_via_api, read_invoice


def test_tc_03_installment_plan_completed(client):
    """
    Validate TC-03 four installment plan.

    1. Create an invoice with balance 12000 and a four installment plan.
    2. Validate installment amount is 3000.
    3. Pay installments 1 to 4.
    4. Validate plan is completed and invoice balance is zero.
    """
    invoice = create_invoice_via_api(client, student_id=103, amounts=("12000.00",))
    plan = client.post(
        "/api/v1/installment-plans",
        headers=STAFF_HEADER,
        json={
            "invoice_id": invoice["id"],
            "number_of_installments": 4,
            "frequency": "monthly",
            "start_date": utc_today().isoformat(),
        },
    ).json()
    assert plan["installment_amount"] == "3000.00"

    for number in range(1, 5):
        response = client.post(
            f"/api/v1/installment-plans/{plan['id']}/installments/{number}/pay",
            headers=STAFF_HEADER,
            json={"method": "cash", "payment_date": utc_today().isoformat()},
        )
        assert response.status_code == 201
        assert response.json()["amount"] == "3000.00"

    assert client.get(f"/api/v1/installment-plans/{plan['id']}").json()["status"] == "completed"
    assert read_invoice(client, invoice["id"])["balance"] == "0.00"

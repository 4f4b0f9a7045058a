from ledger.application.clock import utc_today
from tests.helpers.factories import future_due_date

STAFF_HEADER = {"X-User-Id": "1"}


def create_invoice_via_api(
    client,
    *,
    student_id: int,
    period_id: int = 1,
    amounts: tuple[str, ...] = ("10000.00",),
    discount: str = "0.00",
) -> dict:
    response = client.post(
        "/api/v1/invoices",
        headers=STAFF_HEADER,
        json={
            "student_id": student_id,
            "fee_definition_id": 1,
            "period_id": period_id,
            "due_date": future_due_date().isoformat(),
            "items": [
                {"fee_component_id": index, "description": f"Fee component {index}", "amount": amount}
                for index, amount in enumerate(amounts, start=1)
            ],
            "discount": discount,
            "discount_reason": "Scholarship" if discount != "0.00" else None,
        },
    )
    assert response.status_code == 201, response.text
    return response.json()


def pay_via_api(client, invoice: dict, amount: str, *, method: str = "cash", external_transaction_id=None):
    return client.post(
        "/api/v1/payments",
        headers=STAFF_HEADER,
        json={
            "invoice_id": invoice["id"],
            "student_id": invoice["student_id"],
            "amount": amount,
            "method": method,
            "payment_date": utc_today().isoformat(),
            "external_transaction_id": external_transaction_id,
        },
    )


def read_invoice(client, invoice_id: int) -> dict:
    response = client.get(f"/api/v1/invoices/{invoice_id}")
    assert response.status_code == 200
    return response.json()


def initiate_esewa_via_api(client, invoice: dict, amount: str, *, tax_amount="0.00", service_charge="0.00") -> dict:
    response = client.post(
        "/api/v1/gateway/esewa/initiate",
        headers=STAFF_HEADER,
        json={
            "invoice_id": invoice["id"],
            "student_id": invoice["student_id"],
            "amount": amount,
            "tax_amount": tax_amount,
            "service_charge": service_charge,
        },
    )
    assert response.status_code == 200, response.text
    return response.json()

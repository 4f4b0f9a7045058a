import pytest

from tests.end2end.helpers_tc import create_invoice_via_api, pay_via_api, read_invoice


@pytest.mark.parametrize(
    "parts",
    [
        ("10000.00",),
        ("5000.00", "5000.00"),
        ("0.01", "9999.99"),
        ("3333.33", "3333.33", "3333.34"),
        ("1234.56", "4321.00", "4444.44"),
    ],
)
def test_tc_06_partitioned_payments_settle_invoice(client, parts):
    """
    Validate TC-06 partition independence.

    1. Create an invoice of 10000.
    2. Pay it in the given parts.
    3. Validate every intermediate balance stays positive.
    4. Validate final balance is zero and status is paid.
    """
    invoice = create_invoice_via_api(client, student_id=107)
    for part in parts[:-1]:
        assert pay_via_api(client, invoice, part).status_code == 201
        assert read_invoice(client, invoice["id"])["status"] == "partial"
    assert pay_via_api(client, invoice, parts[-1]).status_code == 201
    settled = read_invoice(client, invoice["id"])
    assert settled["balance"] == "0.00"
    assert settled["status"] == "paid"

from ledger.infrastructure.db.models import GatewayTransaction
from tests.end2end.helpers_tc import create_invoice_via_api, initiate_esewa_via_api, read_invoice
from tests.helpers.factories import gateway_callback


def test_tc_07_tampered_callback_never_settles(client, db_session):
    """
    Validate TC-07 tampering and replay.

    1. Initiate a payment and deliver a callback with an altered reference.
    2. Validate the callback is rejected and the invoice untouched.
    3. Replay the genuine callback afterwards.
    4. Validate the transaction stays failed and nothing is credited.
    """
    invoice = create_invoice_via_api(client, student_id=108)
    initiation = initiate_esewa_via_api(client, invoice, "1000.00")
    transaction = (
        db_session.query(GatewayTransaction)
        .filter_by(transaction_uuid=initiation["transaction"]["transaction_uuid"])
        .one()
    )
    genuine = gateway_callback(transaction)
    tampered = {**genuine, "transaction_code": "ATTACKER"}

    rejected = client.post("/api/v1/gateway/esewa/callback", json=tampered)
    assert rejected.json()["outcome"] == "invalid_signature"
    assert read_invoice(client, invoice["id"])["paid_amount"] == "0.00"

    replay = client.post("/api/v1/gateway/esewa/callback", json=genuine)
    assert replay.json()["success"] is False
    assert replay.json()["outcome"] == "already_processed"
    assert replay.json()["status"] == "failed"
    assert read_invoice(client, invoice["id"])["paid_amount"] == "0.00"

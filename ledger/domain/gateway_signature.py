import base64
import hashlib
import hmac
from collections.abc import Iterable

from ledger.domain.gateway_callback import GatewayCallbackPayload

INITIATION_SIGNED_FIELDS = ("total_amount", "transaction_uuid", "product_code")
# Fields a settlement callback must cover with its signature.
CALLBACK_REQUIRED_SIGNED_FIELDS = ("transaction_uuid", "total_amount", "status", "transaction_code")


def build_signed_message(fields: Iterable[tuple[str, str]]) -> str:
    return ",".join(f"{name}={value}" for name, value in fields)


def generate_signature(message: str, secret_key: str) -> str:
    digest = hmac.new(secret_key.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def sign_initiation(*, total_amount: str, transaction_uuid: str, product_code: str, secret_key: str) -> str:
    message = build_signed_message(
        zip(INITIATION_SIGNED_FIELDS, (total_amount, transaction_uuid, product_code))
    )
    return generate_signature(message, secret_key)


def verify_signature(payload: GatewayCallbackPayload, secret_key: str) -> bool:
    """Recompute the signature over exactly the fields the gateway declares as signed.

    A declared field that is missing from the payload fails verification.
    """
    if not payload.signature or not payload.signed_field_names:
        return False
    fields: list[tuple[str, str]] = []
    for name in payload.signed_field_names.split(","):
        if not name:
            return False
        value = payload.field_value(name)
        if value is None:
            return False
        fields.append((name, value))
    expected = generate_signature(build_signed_message(fields), secret_key)
    return hmac.compare_digest(expected.encode("ascii"), payload.signature.encode("utf-8"))


def covers_required_fields(payload: GatewayCallbackPayload) -> bool:
    signed = set((payload.signed_field_names or "").split(","))
    return all(name in signed for name in CALLBACK_REQUIRED_SIGNED_FIELDS)

import base64
import binascii
import json
from collections.abc import Mapping
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, model_validator


def _as_text(value: Any) -> Any:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    return value


class GatewayCallbackPayload(BaseModel):
    """Inbound gateway notification: named fields plus whatever else the gateway sent."""

    model_config = ConfigDict(extra="allow", frozen=True)

    transaction_uuid: str
    total_amount: str
    status: str
    signed_field_names: str | None = None
    signature: str | None = None
    transaction_code: str | None = None
    ref_id: str | None = None
    product_code: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _stringify_scalars(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        return {str(key): _as_text(value) for key, value in data.items()}

    def field_value(self, name: str) -> str | None:
        if name in type(self).model_fields:
            return getattr(self, name)
        value = (self.model_extra or {}).get(name)
        if value is None or isinstance(value, str):
            return value
        return json.dumps(value, separators=(",", ":"))

    def gateway_reference(self) -> str:
        return self.transaction_code or self.ref_id or self.transaction_uuid

    def raw(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


def decode_callback_data(data: str) -> dict[str, Any]:
    """Decode the base64 JSON blob eSewa appends to the success redirect."""
    try:
        decoded = base64.b64decode(data, validate=True)
        payload = json.loads(decoded)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("Malformed gateway callback data") from exc
    if not isinstance(payload, dict):
        raise ValueError("Malformed gateway callback data")
    return payload

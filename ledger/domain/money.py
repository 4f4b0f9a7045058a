from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Decimal | int | str) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def format_gateway_amount(value: Decimal) -> str:
    """Render an amount the way it is posted to and signed for the gateway.

    Whole amounts drop the fractional part (``1150``), anything else keeps two
    places (``1150.50``). The same string must be used in the form and in the
    signed message.
    """
    amount = to_money(value)
    if amount == amount.to_integral_value():
        return str(amount.quantize(Decimal("1")))
    return f"{amount:.2f}"

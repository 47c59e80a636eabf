from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Union


CENT = Decimal("0.01")


def parse_amount(value: Union[str, int, float, Decimal], *, allow_negative: bool = False) -> int:
    """Parse a monetary value ("1.234,56", "R$ 10", "-3.5", Decimal) into cents."""
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, float):
        amount = Decimal(str(value))
    else:
        clean = (
            value.strip()
            .replace("R$", "")
            .replace("€", "")
            .replace("$", "")
            .replace(" ", "")
        )
        if "," in clean and "." in clean:
            # whichever separator comes last is the decimal one
            if clean.rfind(",") > clean.rfind("."):
                clean = clean.replace(".", "").replace(",", ".")
            else:
                clean = clean.replace(",", "")
        else:
            clean = clean.replace(",", ".")
        if clean.count(".") > 1:
            parts = clean.split(".")
            clean = "".join(parts[:-1]) + "." + parts[-1]
        try:
            amount = Decimal(clean)
        except InvalidOperation as exc:
            raise ValueError("Invalid amount") from exc
    if not amount.is_finite():
        raise ValueError("Invalid amount")
    cents = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if cents < 0 and not allow_negative:
        raise ValueError("Amount must be positive")
    return cents


def cents_to_decimal(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


def format_amount(cents: int) -> str:
    """Plain decimal string used on the wire, e.g. 3334 -> "33.34"."""
    return str(cents_to_decimal(cents))


def split_cents(total_cents: int, parts: int) -> list[int]:
    """Split as evenly as possible; the first part absorbs the remainder."""
    if parts < 1:
        raise ValueError("parts must be at least 1")
    sign = -1 if total_cents < 0 else 1
    magnitude = abs(total_cents)
    base, remainder = divmod(magnitude, parts)
    amounts = [base] * parts
    amounts[0] += remainder
    return [sign * amount for amount in amounts]

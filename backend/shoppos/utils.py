import re
from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")


def money(v) -> Decimal:
    if v is None:
        return Decimal("0.00")
    if not isinstance(v, Decimal):
        v = Decimal(str(v))
    return v.quantize(CENT, rounding=ROUND_HALF_UP)


def fmt_money(v) -> str:
    return f"{money(v):.2f}"


def clean_phone(p: str | None) -> str | None:
    """Drop spaces, dashes and brackets; the gateway takes local numbers as typed (0713856863)."""
    if not p: return p
    return re.sub(r'[\s\-().]+', '', p)

"""
Invoice composition: fold one or more orders of a customer into a single printable view.

Lines are merged on `item_id` when the line has one and on `item_name` otherwise. The
two keys live in separate key spaces, so a catalog line never merges with a free-text
line that happens to share its name. Merging by name is best-effort: two distinct custom
entries with the same text end up on one line.
"""

from datetime import datetime
from typing import Iterable, Optional

from .config import ZERO
from .errors import ValidationError
from .schemas import InvoiceLine, InvoiceView
from .utils import money


def merge_key(line) -> tuple:
    if line.item_id is not None:
        return ("id", str(line.item_id))
    return ("name", line.item_name)


def _source_order(o):
    return (o.created_at or datetime.min, o.id or 0)


def compose_invoice(orders: Iterable, now: Optional[datetime] = None) -> InvoiceView:
    orders = sorted(orders, key=_source_order)
    if not orders:
        raise ValidationError("Nothing to invoice")
    phones = {o.customer_phone for o in orders}
    if len(phones) > 1:
        raise ValidationError("An invoice can only cover one customer")

    merged: dict[tuple, dict] = {}
    for o in orders:
        for line in o.items:
            key = merge_key(line)
            qty, total = line.quantity, money(line.total)
            if key not in merged:
                # display price comes from the first occurrence; merged totals are summed, not recomputed
                price = line.price if line.price is not None else total / qty
                merged[key] = {"item_id": line.item_id, "item_name": line.item_name,
                               "quantity": qty, "price": money(price), "total": total}
            else:
                merged[key]["quantity"] += qty
                merged[key]["total"] += total

    lines = [InvoiceLine(**merged[k]) for k in sorted(merged)]
    total_amount = money(sum((l.total for l in lines), ZERO))
    paid_amount = money(sum((money(o.paid_amount) for o in orders), ZERO))
    balance = total_amount - paid_amount
    first = orders[0]
    return InvoiceView(
        customer_name=first.customer_name,
        customer_phone=first.customer_phone,
        order_ids=sorted(o.id for o in orders),
        items=lines,
        total_amount=total_amount,
        paid_amount=paid_amount,
        balance_amount=balance,
        status="pending" if balance > 0 else "completed",
        issued_at=now or datetime.now(),
    )


def customer_invoice(orders: Iterable, phone: str, now: Optional[datetime] = None) -> InvoiceView:
    """Invoice for everything this customer still owes on (not completed, not cancelled)."""
    outstanding = [o for o in orders if o.customer_phone == phone and o.status not in ("completed", "cancelled")]
    if not outstanding:
        raise ValidationError(f"No outstanding orders for {phone}")
    return compose_invoice(outstanding, now=now)

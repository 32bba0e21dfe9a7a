"""Read-side projections over customers, items and orders. Nothing here mutates its input."""

from datetime import datetime
from typing import Iterable, Optional

from .config import LOW_STOCK_THRESHOLD, ZERO
from .schemas import CustomerGroup, DashboardOut, ItemOut, OrderOut, OrderStats
from .utils import money


def search_orders(orders: Iterable, term: str = "", status: Optional[str] = None) -> list:
    term = (term or "").strip().lower()
    out = []
    for o in orders:
        if status and status != "all" and o.status != status:
            continue
        if term and term not in o.customer_name.lower() and term not in o.customer_phone:
            continue
        out.append(o)
    return out


def group_by_customer(orders: Iterable, phone: str = "", status: Optional[str] = None) -> list[CustomerGroup]:
    groups: dict[str, dict] = {}
    for o in orders:
        if phone and phone not in o.customer_phone:
            continue
        if status and status != "all" and o.status != status:
            continue
        g = groups.setdefault(o.customer_phone, {
            "customer_name": o.customer_name, "customer_phone": o.customer_phone,
            "total_orders": 0, "total_amount": ZERO, "total_paid": ZERO, "total_balance": ZERO,
            "orders": [],
        })
        g["total_orders"] += 1
        g["total_amount"] += money(o.total_amount)
        g["total_paid"] += money(o.paid_amount)
        g["total_balance"] += money(o.balance_amount)
        g["orders"].append(OrderOut.model_validate(o))
    return [CustomerGroup(**g) for g in groups.values()]


def is_today(order, now: Optional[datetime] = None) -> bool:
    if order.created_at is None:
        return False
    now = now or datetime.now()
    created = order.created_at
    if created.tzinfo is not None:
        created = created.astimezone()  # local calendar day
    return created.date() == now.date()


def today_orders(orders: Iterable, now: Optional[datetime] = None) -> list:
    return [o for o in orders if is_today(o, now)]


def low_stock(items: Iterable, threshold: int = LOW_STOCK_THRESHOLD) -> list:
    return [i for i in items if i.qty < threshold]


def order_stats(orders: Iterable) -> OrderStats:
    orders = list(orders)
    pending = [o for o in orders if o.status == "pending"]
    completed = [o for o in orders if o.status == "completed"]
    return OrderStats(
        total=len(orders),
        pending=len(pending),
        completed=len(completed),
        total_revenue=sum((money(o.total_amount) for o in completed), ZERO),
        pending_payments=sum((money(o.balance_amount) for o in pending), ZERO),
    )


def dashboard(customers: Iterable, items: Iterable, orders: Iterable, now: Optional[datetime] = None) -> DashboardOut:
    items, orders = list(items), list(orders)
    today = [o for o in today_orders(orders, now) if o.status != "cancelled"]
    stats = order_stats(orders)
    return DashboardOut(
        today_items_sold=sum(l.quantity for o in today for l in o.items),
        today_orders=len(today),
        today_customers=len({o.customer_phone for o in today}),
        today_income=sum((money(o.total_amount) for o in today), ZERO),
        pending_orders=stats.pending,
        pending_value=stats.pending_payments,
        completed_revenue=stats.total_revenue,
        low_stock_items=[ItemOut.model_validate(i) for i in low_stock(items)],
        inventory_value=sum((money(i.unit_price) * i.qty for i in items), ZERO),
        customer_count=len(list(customers)),
    )

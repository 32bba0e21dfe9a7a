"""
Order settlement workflow.

Creating an order or recording a payment touches several records in sequence:
the order itself, catalog stock, the customer's aggregate balance, and finally an
SMS to the customer. The storage steps run inside a `Saga`; each applied step
registers its compensation, and a failure part-way through undoes what was already
done before the error reaches the caller. The SMS is best-effort and sits outside
the saga.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Optional

from . import models
from .config import ZERO
from .errors import NotFoundError, SettlementError, ValidationError
from .notify import MessageKind, Notifier
from .schemas import NotificationResult, OrderCreate
from .session import UserContext
from .store import Store
from .utils import money

logger = logging.getLogger(__name__)


@dataclass
class SettlementResult:
    order: models.Order
    warnings: list[str] = field(default_factory=list)
    notification: Optional[NotificationResult] = None
    customer: Optional[models.Customer] = None
    replayed: bool = False


class Saga:
    def __init__(self, name: str):
        self.name = name
        self._undo: list[tuple[str, Callable[[], object]]] = []

    def run(self, step: str, action: Callable[[], object], undo: Optional[Callable[[object], object]] = None):
        try:
            result = action()
        except Exception as e:
            logger.error("%s: step %s failed: %s", self.name, step, e)
            compensated = self.rollback()
            raise SettlementError(step, e, compensated) from e
        if undo is not None:
            self._undo.append((step, lambda: undo(result)))
        return result

    def rollback(self) -> bool:
        ok = True
        while self._undo:
            step, undo = self._undo.pop()
            try:
                undo()
                logger.error("%s: compensated step %s", self.name, step)
            except Exception:
                logger.exception("%s: could not compensate step %s", self.name, step)
                ok = False
        return ok


def order_status(balance: Decimal) -> str:
    return "completed" if balance <= 0 else "pending"


def _dispatch(notifier: Optional[Notifier], kind: MessageKind, phone: str, data: dict) -> Optional[NotificationResult]:
    if notifier is None:
        return None
    try:
        result = notifier.notify(kind, phone, data)
    except Exception as e:
        logger.exception("Notification %s to %s crashed", kind.value, phone)
        return NotificationResult(kind=kind.value, phone=phone, status="failed", error=str(e))
    if not result.ok:
        logger.warning("Notification %s to %s not delivered: %s", kind.value, phone, result.error or result.status)
    return result


def _load_order(store: Store, ctx: UserContext, order_id: int) -> models.Order:
    order = store.get_order(order_id)
    if order is None or order.branch != ctx.branch:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def _customer_for(store: Store, order: models.Order) -> Optional[models.Customer]:
    if order.customer_id is not None:
        c = store.get_customer(order.customer_id)
        if c is not None:
            return c
    return store.find_customer(order.customer_phone, order.branch)


def _restock(store: Store, item_id: int, quantity: int):
    item = store.get_item(item_id)
    if item is None:
        raise LookupError(f"Item {item_id} vanished before it could be restocked")
    return store.update_item(item_id, {"qty": item.qty + quantity})


def _resolve_customer(store: Store, ctx: UserContext, data: OrderCreate):
    if data.order_type == "standard":
        if data.customer_id is None:
            raise ValidationError("Select a customer for a standard order")
        customer = store.get_customer(data.customer_id)
        if customer is None or customer.branch != ctx.branch:
            raise ValidationError(f"Customer {data.customer_id} does not exist")
        return customer, customer.name, customer.phone
    name = (data.customer_name or "").strip()
    phone = (data.customer_phone or "").strip()
    if not name or not phone:
        raise ValidationError("Custom orders need a customer name and phone")
    return None, name, phone


def create_order(store: Store, ctx: UserContext, data: OrderCreate, notifier: Optional[Notifier] = None) -> SettlementResult:
    if data.reference:
        existing = store.find_order_by_reference(data.reference)
        if existing is not None:
            if existing.branch != ctx.branch:
                raise ValidationError(f"Reference {data.reference} belongs to another branch")
            logger.info("Order reference %s already settled as order %s", data.reference, existing.id)
            return SettlementResult(order=existing, replayed=True)

    if not data.items:
        raise ValidationError("An order needs at least one item")
    customer, name, phone = _resolve_customer(store, ctx, data)
    standard = data.order_type == "standard"

    # price every line; catalog price wins for standard lines that resolve
    lines: list[models.OrderItem] = []
    catalog: list[Optional[models.Item]] = []
    for li in data.items:
        if li.quantity <= 0:
            raise ValidationError(f"Quantity for {li.item_name or 'item'} must be positive")
        item = store.get_item(li.item_id) if (standard and li.item_id is not None) else None
        if item is not None:
            item_name, price = item.item_name, money(item.unit_price)
        else:
            item_name, price = li.item_name.strip(), money(li.price)
        if not item_name:
            raise ValidationError("Every line needs an item name")
        if price < 0:
            raise ValidationError(f"Price for {item_name} cannot be negative")
        lines.append(models.OrderItem(
            item_id=li.item_id, item_name=item_name, quantity=li.quantity,
            price=price, total=money(price * li.quantity),
        ))
        catalog.append(item)

    total = money(sum((l.total for l in lines), ZERO))
    paid = money(data.paid_amount)
    if paid < 0:
        raise ValidationError("Paid amount cannot be negative")
    if paid > total:
        raise ValidationError("Payment exceeds total")
    balance = max(ZERO, total - paid)

    # stock plan: a line whose decrement would go negative is skipped, not the order
    warnings: list[str] = []
    decrements: list[tuple[models.Item, int, int]] = []
    remaining: dict[int, int] = {}
    for line, item in zip(lines, catalog):
        if item is None:
            continue
        left = remaining.get(item.id, item.qty) - line.quantity
        if left < 0:
            msg = f"insufficient stock for {item.item_name}"
            logger.warning("%s (have %s, ordered %s)", msg, remaining.get(item.id, item.qty), line.quantity)
            warnings.append(msg)
            continue
        remaining[item.id] = left
        line.stock_applied = True
        decrements.append((item, line.quantity, left))

    order = models.Order(
        reference=data.reference,
        customer_id=customer.id if customer else None,
        customer_name=name, customer_phone=phone,
        total_amount=total, paid_amount=paid, balance_amount=balance,
        status=order_status(balance), order_type=data.order_type,
        branch=ctx.branch, items=lines,
    )

    saga = Saga("create_order")
    order = saga.run("persist_order", lambda: store.create_order(order),
                     undo=lambda o: store.delete_order(o.id))
    logger.info("Order %s persisted for %s: total=%s paid=%s", order.id, phone, total, paid)

    for item, qty, left in decrements:
        saga.run("adjust_stock", lambda i=item.id, q=left: store.update_item(i, {"qty": q}),
                 undo=lambda _, i=item.id, q=qty: _restock(store, i, q))

    updated_customer = None
    if standard and customer is not None:
        updated_customer = saga.run("recalculate_balance",
                                    lambda: store.recalculate_customer_balance(customer.id))

    notification = _dispatch(notifier, MessageKind.ORDER_PLACED, phone,
                             {"name": name, "total": total, "paid": paid})
    return SettlementResult(order=order, warnings=warnings, notification=notification,
                            customer=updated_customer)


def record_payment(store: Store, ctx: UserContext, order_id: int, amount, notifier: Optional[Notifier] = None) -> SettlementResult:
    order = _load_order(store, ctx, order_id)
    amount = money(amount)
    if order.status == "cancelled":
        raise ValidationError(f"Order {order.id} is cancelled")
    if amount <= 0:
        raise ValidationError("Payment must be greater than zero")
    if amount > money(order.balance_amount):
        raise ValidationError("Payment exceeds balance")

    before = {"paid_amount": money(order.paid_amount), "balance_amount": money(order.balance_amount), "status": order.status}
    new_balance = max(ZERO, before["balance_amount"] - amount)
    after = {
        "paid_amount": before["paid_amount"] + amount,
        "balance_amount": new_balance,
        "status": order_status(new_balance),
    }

    saga = Saga("record_payment")
    order = saga.run("persist_order", lambda: store.update_order(order.id, after),
                     undo=lambda _: store.update_order(order_id, before))
    logger.info("Payment of %s recorded on order %s, balance now %s", amount, order.id, new_balance)

    customer = _customer_for(store, order)
    updated_customer = None
    if customer is not None:
        updated_customer = saga.run("recalculate_balance",
                                    lambda: store.recalculate_customer_balance(customer.id))

    notification = _dispatch(notifier, MessageKind.PAYMENT_RECEIVED, order.customer_phone,
                             {"name": order.customer_name, "amount": amount, "balance": new_balance})
    return SettlementResult(order=order, notification=notification, customer=updated_customer)


def cancel_order(store: Store, ctx: UserContext, order_id: int) -> SettlementResult:
    """Cancel a pending order: stock it consumed goes back, and it stops counting toward the customer balance."""
    order = _load_order(store, ctx, order_id)
    if order.status != "pending":
        raise ValidationError(f"Only pending orders can be cancelled (order {order.id} is {order.status})")

    saga = Saga("cancel_order")
    previous = order.status
    order = saga.run("persist_order", lambda: store.update_order(order_id, {"status": "cancelled"}),
                     undo=lambda _: store.update_order(order_id, {"status": previous}))

    warnings: list[str] = []
    for line in order.items:
        if not line.stock_applied or line.item_id is None:
            continue
        if store.get_item(line.item_id) is None:
            msg = f"{line.item_name} is no longer in the catalog; stock not returned"
            logger.warning("Order %s: %s", order.id, msg)
            warnings.append(msg)
            continue
        saga.run("adjust_stock", lambda i=line.item_id, q=line.quantity: _restock(store, i, q),
                 undo=lambda it, q=line.quantity: store.update_item(it.id, {"qty": it.qty - q}))

    customer = _customer_for(store, order)
    updated_customer = None
    if customer is not None:
        updated_customer = saga.run("recalculate_balance",
                                    lambda: store.recalculate_customer_balance(customer.id))
    logger.info("Order %s cancelled", order.id)
    return SettlementResult(order=order, warnings=warnings, customer=updated_customer)


def update_order_details(store: Store, ctx: UserContext, order_id: int, data: dict) -> SettlementResult:
    """Edit the customer fields copied onto an order.

    Moving an order to another phone moves its open balance with it, so both the
    previous and the new customer are recalculated.
    """
    order = _load_order(store, ctx, order_id)
    changes = {k: v for k, v in data.items() if v is not None}
    if "customer_name" in changes:
        changes["customer_name"] = changes["customer_name"].strip()
        if not changes["customer_name"]:
            raise ValidationError("Customer name cannot be empty")
    if "customer_phone" in changes and not changes["customer_phone"]:
        raise ValidationError("Customer phone cannot be empty")
    if changes.get("customer_phone") == order.customer_phone:
        del changes["customer_phone"]
    if not changes:
        return SettlementResult(order=order)

    affected = []
    if "customer_phone" in changes:
        new_customer = store.find_customer(changes["customer_phone"], order.branch)
        if order.order_type == "standard":
            if new_customer is None:
                raise ValidationError(f"No customer with phone {changes['customer_phone']} in this branch")
            changes["customer_id"] = new_customer.id
        affected = [c for c in (_customer_for(store, order), new_customer) if c is not None]

    before = {k: getattr(order, k) for k in changes}
    saga = Saga("update_order")
    order = saga.run("persist_order", lambda: store.update_order(order_id, changes),
                     undo=lambda _: store.update_order(order_id, before))
    logger.info("Order %s updated: %s", order.id, ", ".join(sorted(changes)))

    updated_customer = None
    seen = set()
    for c in affected:
        if c.id in seen:
            continue
        seen.add(c.id)
        updated_customer = saga.run("recalculate_balance",
                                    lambda i=c.id: store.recalculate_customer_balance(i))
    return SettlementResult(order=order, customer=updated_customer)


def update_customer_details(store: Store, ctx: UserContext, customer_id: int, data: dict) -> models.Customer:
    """Rename or re-number a customer; a new phone is carried over to the customer's orders."""
    customer = store.get_customer(customer_id)
    if customer is None or customer.branch != ctx.branch:
        raise NotFoundError(f"Customer {customer_id} not found")
    old_phone = customer.phone
    before = {"name": customer.name, "phone": customer.phone}

    saga = Saga("update_customer")
    customer = saga.run("persist_customer", lambda: store.update_customer(customer_id, data),
                        undo=lambda _: store.update_customer(customer_id, before))
    if customer.phone == old_phone:
        return customer

    for o in store.list_orders(customer.branch):
        if o.customer_id == customer.id or o.customer_phone == old_phone:
            saga.run("persist_order", lambda i=o.id: store.update_order(i, {"customer_phone": customer.phone}),
                     undo=lambda _, i=o.id: store.update_order(i, {"customer_phone": old_phone}))
    logger.info("Customer %s phone changed from %s to %s", customer.id, old_phone, customer.phone)
    return saga.run("recalculate_balance", lambda: store.recalculate_customer_balance(customer.id))


def delete_order(store: Store, ctx: UserContext, order_id: int) -> None:
    order = _load_order(store, ctx, order_id)
    if order.status == "pending":
        raise ValidationError("Cancel a pending order before deleting it")
    store.delete_order(order.id)
    logger.info("Order %s deleted", order_id)


def settlement_message(action: str, result: SettlementResult) -> str:
    o = result.order
    msg = f"{action} order #{o.id}: total {money(o.total_amount):.2f}, paid {money(o.paid_amount):.2f}, " \
          f"balance {money(o.balance_amount):.2f} ({o.status})"
    if result.customer is not None:
        msg += f"; customer balance {money(result.customer.balance):.2f}"
    return msg

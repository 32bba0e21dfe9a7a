from collections import Counter
from decimal import Decimal

import pytest
import requests

from shoppos import settlement
from shoppos.errors import NotFoundError, SettlementError, ValidationError
from shoppos.schemas import OrderCreate
from shoppos.session import UserContext
from shoppos.store import SqlStore

from conftest import BRANCH, FakeGateway
from shoppos.notify import Notifier


class SpyStore(SqlStore):
    """SqlStore that counts calls and can be told to fail on a given call of a method."""

    def __init__(self, db, fail=None):
        super().__init__(db)
        self.calls = Counter()
        self.fail = fail or {}

    def _hit(self, name):
        self.calls[name] += 1
        if self.fail.get(name) == self.calls[name]:
            raise RuntimeError(f"{name} unavailable")

    def recalculate_customer_balance(self, customer_id):
        self._hit("recalculate_customer_balance")
        return super().recalculate_customer_balance(customer_id)

    def update_item(self, item_id, data):
        self._hit("update_item")
        return super().update_item(item_id, data)

    def update_order(self, order_id, data):
        self._hit("update_order")
        return super().update_order(order_id, data)


def standard_order(customer, *lines, paid="0", reference=None):
    return OrderCreate(
        order_type="standard",
        customer_id=customer.id,
        items=[{"item_id": item.id, "item_name": item.item_name, "quantity": qty} for item, qty in lines],
        paid_amount=Decimal(paid),
        reference=reference,
    )


def test_partial_payment_leaves_order_pending(store, ctx, customer, case_item, notifier, gateway):
    result = settlement.create_order(store, ctx, standard_order(customer, (case_item, 2), paid="150"), notifier)

    order = result.order
    assert order.total_amount == Decimal("200.00")
    assert order.paid_amount == Decimal("150.00")
    assert order.balance_amount == Decimal("50.00")
    assert order.status == "pending"
    assert [l.total for l in order.items] == [Decimal("200.00")]
    assert case_item.qty == 18
    assert result.customer.balance == Decimal("50.00")
    assert result.warnings == []

    assert result.notification.status == "sent"
    phone, text = gateway.sent[0]
    assert phone == "0771234567"
    assert "LKR 200.00" in text and "LKR 150.00" in text


def test_payment_completes_order_and_recalculates_once(db, ctx, customer, case_item, notifier, gateway):
    store = SpyStore(db)
    created = settlement.create_order(store, ctx, standard_order(customer, (case_item, 2), paid="150"), notifier)
    store.calls.clear()

    result = settlement.record_payment(store, ctx, created.order.id, Decimal("50"), notifier)

    assert result.order.paid_amount == Decimal("200.00")
    assert result.order.balance_amount == Decimal("0.00")
    assert result.order.status == "completed"
    assert store.calls["recalculate_customer_balance"] == 1
    assert result.customer.balance == Decimal("0.00")
    assert "received your payment of LKR 50.00" in gateway.sent[-1][1]
    assert "due balance is LKR 0.00" in gateway.sent[-1][1]


def test_repeated_payments_drive_balance_to_zero(store, ctx, customer, case_item):
    order = settlement.create_order(store, ctx, standard_order(customer, (case_item, 1))).order
    for amount in ("20", "30.50", "49.50"):
        order = settlement.record_payment(store, ctx, order.id, Decimal(amount)).order
        assert order.balance_amount == order.total_amount - order.paid_amount
    assert order.balance_amount == Decimal("0.00")
    assert order.status == "completed"


def test_overpayment_is_rejected_not_clamped(store, ctx, customer, case_item):
    order = settlement.create_order(store, ctx, standard_order(customer, (case_item, 1), paid="60")).order

    with pytest.raises(ValidationError, match="exceeds balance"):
        settlement.record_payment(store, ctx, order.id, Decimal("40.01"))
    assert order.paid_amount == Decimal("60.00")
    assert order.balance_amount == Decimal("40.00")

    with pytest.raises(ValidationError):
        settlement.record_payment(store, ctx, order.id, Decimal("0"))


def test_payment_exceeding_total_rejected_before_side_effects(store, ctx, customer, case_item, notifier, gateway):
    with pytest.raises(ValidationError, match="exceeds total"):
        settlement.create_order(store, ctx, standard_order(customer, (case_item, 1), paid="100.01"), notifier)
    assert store.list_orders(BRANCH) == []
    assert case_item.qty == 20
    assert gateway.sent == []


def test_oversell_skips_stock_but_creates_order(store, ctx, customer):
    item = store.create_item({"item_name": "A4 Paper Ream", "qty": 5, "unit_price": Decimal("10.00")})

    result = settlement.create_order(store, ctx, standard_order(customer, (item, 8)))

    assert result.order.total_amount == Decimal("80.00")
    assert item.qty == 5
    assert result.warnings == ["insufficient stock for A4 Paper Ream"]
    assert result.order.items[0].stock_applied is False


def test_stock_check_accounts_for_earlier_lines_of_same_item(store, ctx, customer):
    item = store.create_item({"item_name": "Toner", "qty": 5, "unit_price": Decimal("1.00")})

    result = settlement.create_order(store, ctx, standard_order(customer, (item, 3), (item, 3)))

    assert item.qty == 2
    assert [l.stock_applied for l in result.order.items] == [True, False]
    assert result.warnings == ["insufficient stock for Toner"]


def test_catalog_price_wins_over_submitted_price(store, ctx, customer, case_item):
    data = OrderCreate(order_type="standard", customer_id=customer.id,
                       items=[{"item_id": case_item.id, "item_name": "whatever", "quantity": 3, "price": "1.00"}])
    order = settlement.create_order(store, ctx, data).order

    line = order.items[0]
    assert line.price == Decimal("100.00")
    assert line.item_name == "Phone Case"
    assert line.total == Decimal("300.00")

    # later price changes do not touch placed orders
    store.update_item(case_item.id, {"unit_price": Decimal("150.00")})
    assert store.get_order(order.id).items[0].price == Decimal("100.00")


def test_custom_order_has_no_stock_or_balance_effect(db, ctx, case_item):
    store = SpyStore(db)
    data = OrderCreate(order_type="custom", customer_name="Walk-in", customer_phone="071 385 6863",
                       items=[{"item_id": case_item.id, "item_name": "Wedding cards", "quantity": 100, "price": "25"}],
                       paid_amount=Decimal("2500"))
    order = settlement.create_order(store, ctx, data).order

    assert order.customer_phone == "0713856863"
    assert order.total_amount == Decimal("2500.00")
    assert order.status == "completed"
    assert case_item.qty == 20
    assert store.calls["recalculate_customer_balance"] == 0


@pytest.mark.parametrize("kwargs", [
    {"order_type": "standard", "customer_id": None},
    {"order_type": "standard", "customer_id": 999},
    {"order_type": "custom", "customer_name": "", "customer_phone": "0771112223"},
])
def test_missing_customer_is_a_validation_error(store, ctx, kwargs):
    data = OrderCreate(items=[{"item_name": "Lamination", "quantity": 1, "price": "50"}], **kwargs)
    with pytest.raises(ValidationError):
        settlement.create_order(store, ctx, data)


def test_notification_failure_never_rolls_back(store, ctx, customer, case_item):
    broken = Notifier(FakeGateway(exc=requests.ConnectionError("gateway down")))

    result = settlement.create_order(store, ctx, standard_order(customer, (case_item, 1)), broken)

    assert result.notification.status == "failed"
    assert "gateway down" in result.notification.error
    assert store.get_order(result.order.id) is not None
    assert case_item.qty == 19


def test_balance_failure_compensates_order_and_stock(db, ctx, customer, case_item):
    store = SpyStore(db, fail={"recalculate_customer_balance": 1})

    with pytest.raises(SettlementError) as exc:
        settlement.create_order(store, ctx, standard_order(customer, (case_item, 4)))

    assert exc.value.step == "recalculate_balance"
    assert exc.value.compensated is True
    assert store.list_orders(BRANCH) == []
    assert case_item.qty == 20


def test_stock_failure_restores_earlier_lines(db, ctx, customer, case_item):
    other = SqlStore(db).create_item({"item_name": "Screen Guard", "qty": 10, "unit_price": Decimal("5.00")})
    store = SpyStore(db, fail={"update_item": 2})

    with pytest.raises(SettlementError) as exc:
        settlement.create_order(store, ctx, standard_order(customer, (case_item, 2), (other, 1)))

    assert exc.value.step == "adjust_stock"
    assert case_item.qty == 20
    assert other.qty == 10
    assert store.list_orders(BRANCH) == []


def test_payment_failure_restores_previous_amounts(db, ctx, customer, case_item):
    store = SpyStore(db)
    order = settlement.create_order(store, ctx, standard_order(customer, (case_item, 1))).order
    store.fail = {"recalculate_customer_balance": store.calls["recalculate_customer_balance"] + 1}

    with pytest.raises(SettlementError) as exc:
        settlement.record_payment(store, ctx, order.id, Decimal("40"))

    assert exc.value.step == "recalculate_balance"
    order = store.get_order(order.id)
    assert order.paid_amount == Decimal("0.00")
    assert order.balance_amount == Decimal("100.00")
    assert order.status == "pending"


def test_reference_makes_create_idempotent(store, ctx, customer, case_item, notifier, gateway):
    first = settlement.create_order(store, ctx, standard_order(customer, (case_item, 2), reference="till-1-0042"), notifier)
    again = settlement.create_order(store, ctx, standard_order(customer, (case_item, 2), reference="till-1-0042"), notifier)

    assert again.replayed is True
    assert again.order.id == first.order.id
    assert case_item.qty == 18
    assert len(store.list_orders(BRANCH)) == 1
    assert len(gateway.sent) == 1


def test_cancel_restocks_and_clears_balance(store, ctx, customer, case_item):
    order = settlement.create_order(store, ctx, standard_order(customer, (case_item, 3), paid="100")).order
    assert customer.balance == Decimal("200.00")

    result = settlement.cancel_order(store, ctx, order.id)

    assert result.order.status == "cancelled"
    assert case_item.qty == 20
    assert result.customer.balance == Decimal("0.00")
    with pytest.raises(ValidationError):
        settlement.record_payment(store, ctx, order.id, Decimal("10"))
    with pytest.raises(ValidationError):
        settlement.cancel_order(store, ctx, order.id)


def test_balance_sums_all_open_orders_of_customer(store, ctx, customer, case_item):
    settlement.create_order(store, ctx, standard_order(customer, (case_item, 1), paid="30"))
    settlement.create_order(store, ctx, standard_order(customer, (case_item, 2), paid="200"))
    result = settlement.create_order(store, ctx, standard_order(customer, (case_item, 1)))

    assert result.customer.balance == Decimal("170.00")


def test_pending_order_cannot_be_deleted(store, ctx, customer, case_item):
    order = settlement.create_order(store, ctx, standard_order(customer, (case_item, 1))).order
    with pytest.raises(ValidationError):
        settlement.delete_order(store, ctx, order.id)

    settlement.cancel_order(store, ctx, order.id)
    settlement.delete_order(store, ctx, order.id)
    assert store.get_order(order.id) is None


def test_orders_of_other_branches_are_invisible(store, ctx, customer, case_item):
    order = settlement.create_order(store, ctx, standard_order(customer, (case_item, 1))).order
    sub = UserContext(username="clerk", role="admin", branch="DPSubBranch")
    with pytest.raises(NotFoundError):
        settlement.record_payment(store, sub, order.id, Decimal("10"))


def test_settlement_message_reports_new_balance(store, ctx, customer, case_item):
    result = settlement.create_order(store, ctx, standard_order(customer, (case_item, 2), paid="150"))
    msg = settlement.settlement_message("Created", result)
    assert msg == (f"Created order #{result.order.id}: total 200.00, paid 150.00, balance 50.00 (pending); "
                   "customer balance 50.00")


def test_cancel_skips_restock_of_deleted_item(store, ctx, customer, case_item):
    order = settlement.create_order(store, ctx, standard_order(customer, (case_item, 2))).order
    store.delete_item(case_item.id)

    result = settlement.cancel_order(store, ctx, order.id)

    assert result.order.status == "cancelled"
    assert result.warnings == ["Phone Case is no longer in the catalog; stock not returned"]
    assert result.customer.balance == Decimal("0.00")
    settlement.delete_order(store, ctx, order.id)
    assert store.get_order(order.id) is None


def test_reference_from_another_branch_is_refused(store, ctx, customer, case_item):
    settlement.create_order(store, ctx, standard_order(customer, (case_item, 1), reference="till-1-0007"))
    sub = UserContext(username="clerk", role="admin", branch="DPSubBranch")

    with pytest.raises(ValidationError):
        settlement.create_order(store, sub, standard_order(customer, (case_item, 1), reference="till-1-0007"))
    assert case_item.qty == 19


def test_moving_order_to_another_customer_moves_balance(store, ctx, customer, case_item):
    other = store.create_customer({"name": "Sunil Silva", "phone": "0712223333", "branch": BRANCH})
    order = settlement.create_order(store, ctx, standard_order(customer, (case_item, 1))).order
    assert customer.balance == Decimal("100.00")

    result = settlement.update_order_details(store, ctx, order.id, {"customer_phone": "0712223333"})

    assert result.order.customer_id == other.id
    assert customer.balance == Decimal("0.00")
    assert other.balance == Decimal("100.00")


def test_standard_order_cannot_move_to_unknown_phone(store, ctx, customer, case_item):
    order = settlement.create_order(store, ctx, standard_order(customer, (case_item, 1))).order
    with pytest.raises(ValidationError):
        settlement.update_order_details(store, ctx, order.id, {"customer_phone": "0700000000"})
    assert store.get_order(order.id).customer_phone == "0771234567"


def test_renaming_order_leaves_balance_alone(db, ctx, customer, case_item):
    spy = SpyStore(db)
    order = settlement.create_order(spy, ctx, standard_order(customer, (case_item, 1))).order
    spy.calls.clear()

    result = settlement.update_order_details(spy, ctx, order.id, {"customer_name": "  N. Perera "})

    assert result.order.customer_name == "N. Perera"
    assert spy.calls["recalculate_customer_balance"] == 0


def test_customer_phone_change_carries_over_to_orders(store, ctx, customer, case_item):
    order = settlement.create_order(store, ctx, standard_order(customer, (case_item, 1), paid="40")).order

    updated = settlement.update_customer_details(store, ctx, customer.id, {"name": customer.name, "phone": "0759876543"})

    assert updated.phone == "0759876543"
    assert store.get_order(order.id).customer_phone == "0759876543"
    assert updated.balance == Decimal("60.00")
    assert store.recalculate_customer_balance(customer.id).balance == Decimal("60.00")


def test_failed_phone_carry_over_restores_customer(db, ctx, customer, case_item):
    spy = SpyStore(db, fail={"update_order": 1})
    order = settlement.create_order(spy, ctx, standard_order(customer, (case_item, 1))).order

    with pytest.raises(SettlementError) as exc:
        settlement.update_customer_details(spy, ctx, customer.id, {"name": customer.name, "phone": "0759876543"})

    assert exc.value.step == "persist_order"
    assert exc.value.compensated is True
    assert customer.phone == "0771234567"
    assert spy.get_order(order.id).customer_phone == "0771234567"

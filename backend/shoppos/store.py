"""
Storage collaborator used by the settlement workflow.

`Store` is the narrow interface the workflow talks to; `SqlStore` implements it on a
SQLAlchemy session. Every mutating call commits on its own, like an independent REST
call would, so a multi-step workflow can be left half-applied. The saga in
`settlement.py` is what puts it back together.
"""

import logging
from decimal import Decimal
from typing import Optional, Protocol

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from . import models
from .utils import money

logger = logging.getLogger(__name__)


class Store(Protocol):
    def list_customers(self, branch: str) -> list[models.Customer]: ...
    def get_customer(self, customer_id: int) -> Optional[models.Customer]: ...
    def find_customer(self, phone: str, branch: str) -> Optional[models.Customer]: ...
    def create_customer(self, data: dict) -> models.Customer: ...
    def update_customer(self, customer_id: int, data: dict) -> models.Customer: ...
    def delete_customer(self, customer_id: int) -> None: ...
    def recalculate_customer_balance(self, customer_id: int) -> models.Customer: ...

    def list_items(self) -> list[models.Item]: ...
    def get_item(self, item_id: int) -> Optional[models.Item]: ...
    def create_item(self, data: dict) -> models.Item: ...
    def update_item(self, item_id: int, data: dict) -> models.Item: ...
    def delete_item(self, item_id: int) -> None: ...

    def list_orders(self, branch: str) -> list[models.Order]: ...
    def get_order(self, order_id: int) -> Optional[models.Order]: ...
    def find_order_by_reference(self, reference: str) -> Optional[models.Order]: ...
    def create_order(self, order: models.Order) -> models.Order: ...
    def update_order(self, order_id: int, data: dict) -> models.Order: ...
    def delete_order(self, order_id: int) -> None: ...


class SqlStore:
    def __init__(self, db: Session):
        self.db = db

    def _commit(self):
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    def _apply(self, obj, data: dict):
        for k, v in data.items():
            if not hasattr(obj, k):
                raise AttributeError(f"{type(obj).__name__} has no field {k!r}")
            setattr(obj, k, v)

    # -------- Customers --------
    def list_customers(self, branch: str) -> list[models.Customer]:
        stmt = select(models.Customer).where(models.Customer.branch==branch).order_by(models.Customer.name)
        return list(self.db.execute(stmt).scalars().all())

    def get_customer(self, customer_id: int) -> Optional[models.Customer]:
        return self.db.get(models.Customer, customer_id)

    def find_customer(self, phone: str, branch: str) -> Optional[models.Customer]:
        stmt = select(models.Customer).where(models.Customer.phone==phone, models.Customer.branch==branch)
        return self.db.execute(stmt).scalar_one_or_none()

    def create_customer(self, data: dict) -> models.Customer:
        c = models.Customer(balance=Decimal("0.00"), **data)
        self.db.add(c)
        self._commit()
        return c

    def update_customer(self, customer_id: int, data: dict) -> models.Customer:
        c = self._require(models.Customer, customer_id)
        self._apply(c, data)
        self._commit()
        return c

    def delete_customer(self, customer_id: int) -> None:
        c = self._require(models.Customer, customer_id)
        self.db.delete(c)
        self._commit()

    def recalculate_customer_balance(self, customer_id: int) -> models.Customer:
        """Authoritative recompute: sum of open balances of this phone in this branch."""
        c = self._require(models.Customer, customer_id)
        total = self.db.execute(
            select(func.coalesce(func.sum(models.Order.balance_amount), 0)).where(
                models.Order.customer_phone==c.phone,
                models.Order.branch==c.branch,
                models.Order.status!="cancelled",
                models.Order.balance_amount > 0,
            )
        ).scalar()
        c.balance = money(total)
        self._commit()
        logger.info("Customer %s balance recalculated: %s", c.id, c.balance)
        return c

    # -------- Items --------
    def list_items(self) -> list[models.Item]:
        return list(self.db.execute(select(models.Item).order_by(models.Item.item_name)).scalars().all())

    def get_item(self, item_id: int) -> Optional[models.Item]:
        return self.db.get(models.Item, item_id)

    def find_item_by_name(self, item_name: str) -> Optional[models.Item]:
        stmt = select(models.Item).where(models.Item.item_name==item_name)
        return self.db.execute(stmt).scalar_one_or_none()

    def create_item(self, data: dict) -> models.Item:
        it = models.Item(**data)
        self.db.add(it)
        self._commit()
        return it

    def update_item(self, item_id: int, data: dict) -> models.Item:
        it = self._require(models.Item, item_id)
        if data.get("qty", 0) < 0:
            raise ValueError(f"stock for {it.item_name} cannot go negative")
        self._apply(it, data)
        self._commit()
        return it

    def delete_item(self, item_id: int) -> None:
        it = self._require(models.Item, item_id)
        self.db.delete(it)
        self._commit()

    # -------- Orders --------
    def list_orders(self, branch: str) -> list[models.Order]:
        stmt = select(models.Order).where(models.Order.branch==branch).order_by(models.Order.id.desc())
        return list(self.db.execute(stmt).scalars().all())

    def get_order(self, order_id: int) -> Optional[models.Order]:
        return self.db.get(models.Order, order_id)

    def find_order_by_reference(self, reference: str) -> Optional[models.Order]:
        stmt = select(models.Order).where(models.Order.reference==reference)
        return self.db.execute(stmt).scalar_one_or_none()

    def create_order(self, order: models.Order) -> models.Order:
        self.db.add(order)
        self._commit()
        return order

    def update_order(self, order_id: int, data: dict) -> models.Order:
        o = self._require(models.Order, order_id)
        self._apply(o, data)
        self._commit()
        return o

    def delete_order(self, order_id: int) -> None:
        o = self._require(models.Order, order_id)
        self.db.delete(o)
        self._commit()

    def company_profile(self) -> Optional[models.CompanyProfile]:
        return self.db.execute(select(models.CompanyProfile).where(models.CompanyProfile.id==1)).scalar_one_or_none()

    def _require(self, model, pk: int):
        obj = self.db.get(model, pk)
        if obj is None:
            raise LookupError(f"{model.__name__} {pk} not found")
        return obj

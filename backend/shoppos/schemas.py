from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import List, Optional, Literal
from datetime import datetime
from decimal import Decimal

from .utils import clean_phone

OrderType = Literal["standard", "custom"]
OrderStatus = Literal["pending", "completed", "cancelled"]

# -------- Customers --------
class CustomerIn(BaseModel):
    name: str = Field(min_length=1)
    phone: str = Field(min_length=1)
    branch: Optional[str] = None

    @field_validator("phone")
    @classmethod
    def _phone(cls, v: str) -> str:
        return clean_phone(v)

class CustomerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    name: str
    phone: str
    balance: Decimal
    branch: str
    created_at: Optional[datetime] = None

# -------- Items --------
class ItemIn(BaseModel):
    item_name: str = Field(min_length=1)
    qty: int = Field(0, ge=0)
    unit_price: Decimal = Field(Decimal("0"), ge=0)

class ItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    item_name: str
    qty: int
    unit_price: Decimal

# -------- Orders --------
class OrderItemIn(BaseModel):
    # no `total` here: it is always quantity * price, computed by the workflow
    item_id: Optional[int] = None
    item_name: str = ""
    quantity: int = Field(gt=0)
    price: Decimal = Field(Decimal("0"), ge=0)

class OrderCreate(BaseModel):
    order_type: OrderType = "standard"
    customer_id: Optional[int] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    items: List[OrderItemIn] = Field(min_length=1)
    paid_amount: Decimal = Field(Decimal("0"), ge=0)
    reference: Optional[str] = None

    @field_validator("customer_phone")
    @classmethod
    def _phone(cls, v: Optional[str]) -> Optional[str]:
        return clean_phone(v) if v else v

class OrderItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    item_id: Optional[int] = None
    item_name: str
    quantity: int
    price: Decimal
    total: Decimal

class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    reference: Optional[str] = None
    customer_id: Optional[int] = None
    customer_name: str
    customer_phone: str
    items: List[OrderItemOut]
    total_amount: Decimal
    paid_amount: Decimal
    balance_amount: Decimal
    status: OrderStatus
    order_type: OrderType
    branch: str
    created_at: Optional[datetime] = None

class OrderUpdate(BaseModel):
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None

    @field_validator("customer_phone")
    @classmethod
    def _phone(cls, v: Optional[str]) -> Optional[str]:
        return clean_phone(v) if v else v

class PaymentIn(BaseModel):
    amount: Decimal = Field(gt=0)

# -------- Notifications --------
class RecipientFailure(BaseModel):
    phone: str
    status: str
    error: Optional[str] = None

class NotificationResult(BaseModel):
    kind: str
    phone: Optional[str] = None
    status: Literal["sent", "partial", "failed"]
    failures: List[RecipientFailure] = []
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "sent"

class SettlementOut(BaseModel):
    message: str
    order: OrderOut
    warnings: List[str] = []
    notification: Optional[NotificationResult] = None
    customer_balance: Optional[Decimal] = None
    replayed: bool = False

# -------- Invoices --------
class InvoiceLine(BaseModel):
    model_config = ConfigDict(frozen=True)
    item_id: Optional[int] = None
    item_name: str
    quantity: int
    price: Decimal
    total: Decimal

class InvoiceView(BaseModel):
    model_config = ConfigDict(frozen=True)
    customer_name: str
    customer_phone: str
    order_ids: List[int]
    items: List[InvoiceLine]
    total_amount: Decimal
    paid_amount: Decimal
    balance_amount: Decimal
    status: Literal["pending", "completed"]
    issued_at: datetime

# -------- Reporting --------
class CustomerGroup(BaseModel):
    customer_name: str
    customer_phone: str
    total_orders: int
    total_amount: Decimal
    total_paid: Decimal
    total_balance: Decimal
    orders: List[OrderOut] = []

class OrderStats(BaseModel):
    total: int
    pending: int
    completed: int
    total_revenue: Decimal
    pending_payments: Decimal

class DashboardOut(BaseModel):
    today_items_sold: int
    today_orders: int
    today_customers: int
    today_income: Decimal
    pending_orders: int
    pending_value: Decimal
    completed_revenue: Decimal
    low_stock_items: List[ItemOut]
    inventory_value: Decimal
    customer_count: int

class NavItem(BaseModel):
    name: str
    path: str

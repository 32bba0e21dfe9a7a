import logging
from typing import List, Optional

from fastapi import FastAPI, Depends, HTTPException, Response, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from .config import CORS_ORIGIN, LOG_LEVEL
from .db import engine, get_db
from . import models
from .errors import ShopError, ValidationError, NotFoundError
from .invoice import compose_invoice, customer_invoice
from .invoice_pdf import render_invoice_pdf
from .export_excel import orders_to_excel
from .notify import MessageKind, Notifier, SmsGateway
from . import reports
from .schemas import (
    CustomerIn, CustomerOut, ItemIn, ItemOut, OrderCreate, OrderOut, OrderUpdate, PaymentIn,
    SettlementOut, NotificationResult, InvoiceView, CustomerGroup, OrderStats, DashboardOut, NavItem,
)
from .session import UserContext, get_context, require_admin, navigation_for
from . import settlement
from .store import SqlStore
from .utils import money

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

models.Base.metadata.create_all(bind=engine)

app = FastAPI(title="Shop POS API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGIN,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError):
    if exc.status_code >= 500:
        logger.error("%s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

def get_store(db: Session = Depends(get_db)) -> SqlStore:
    return SqlStore(db)

def get_notifier() -> Notifier:
    return Notifier(SmsGateway())

def settlement_out(action: str, result: settlement.SettlementResult) -> SettlementOut:
    return SettlementOut(
        message=settlement.settlement_message(action, result),
        order=OrderOut.model_validate(result.order),
        warnings=result.warnings,
        notification=result.notification,
        customer_balance=money(result.customer.balance) if result.customer is not None else None,
        replayed=result.replayed,
    )

def branch_customer(store: SqlStore, ctx: UserContext, customer_id: int) -> models.Customer:
    c = store.get_customer(customer_id)
    if not c or c.branch != ctx.branch: raise NotFoundError("Customer not found")
    return c

def branch_order(store: SqlStore, ctx: UserContext, order_id: int) -> models.Order:
    o = store.get_order(order_id)
    if not o or o.branch != ctx.branch: raise NotFoundError("Order not found")
    return o

# -------- Health / navigation --------
@app.get("/api/health")
async def api_health():
    return {"ok": True}

@app.get("/api/nav", response_model=List[NavItem])
async def api_nav(ctx: UserContext = Depends(get_context)):
    return navigation_for(ctx)

# -------- Customers --------
@app.get("/api/customers", response_model=List[CustomerOut])
async def list_customers(store: SqlStore = Depends(get_store), ctx: UserContext = Depends(get_context)):
    return store.list_customers(ctx.branch)

@app.post("/api/customers", response_model=CustomerOut, status_code=201)
async def create_customer(payload: CustomerIn, store: SqlStore = Depends(get_store), ctx: UserContext = Depends(get_context)):
    branch = payload.branch or ctx.branch
    if store.find_customer(payload.phone, branch): raise HTTPException(409, "Phone already registered in this branch")
    return store.create_customer({"name": payload.name.strip(), "phone": payload.phone, "branch": branch})

@app.put("/api/customers/{customer_id}", response_model=CustomerOut)
async def update_customer(customer_id: int, payload: CustomerIn, store: SqlStore = Depends(get_store), ctx: UserContext = Depends(get_context)):
    c = branch_customer(store, ctx, customer_id)
    other = store.find_customer(payload.phone, c.branch)
    if other and other.id != c.id: raise HTTPException(409, "Phone already registered in this branch")
    return settlement.update_customer_details(store, ctx, c.id, {"name": payload.name.strip(), "phone": payload.phone})

@app.delete("/api/customers/{customer_id}", status_code=204)
async def delete_customer(customer_id: int, store: SqlStore = Depends(get_store), ctx: UserContext = Depends(get_context)):
    c = branch_customer(store, ctx, customer_id)
    c = store.recalculate_customer_balance(c.id)
    if money(c.balance) > 0: raise HTTPException(409, "Customer still has an outstanding balance")
    store.delete_customer(c.id)
    return Response(status_code=204)

@app.post("/api/customers/{customer_id}/recalculate-balance", response_model=CustomerOut)
async def recalculate_balance(customer_id: int, store: SqlStore = Depends(get_store), ctx: UserContext = Depends(get_context)):
    c = branch_customer(store, ctx, customer_id)
    return store.recalculate_customer_balance(c.id)

@app.post("/api/customers/{customer_id}/reminder", response_model=NotificationResult)
async def send_reminder(customer_id: int, store: SqlStore = Depends(get_store), ctx: UserContext = Depends(get_context),
                        notifier: Notifier = Depends(get_notifier)):
    c = branch_customer(store, ctx, customer_id)
    if money(c.balance) <= 0: raise ValidationError(f"{c.name} has no outstanding balance")
    return notifier.notify(MessageKind.BALANCE_REMINDER, c.phone, {"name": c.name, "balance": c.balance})

# -------- Items --------
@app.get("/api/items", response_model=List[ItemOut])
async def list_items(store: SqlStore = Depends(get_store)):
    return store.list_items()

@app.get("/api/items/low-stock", response_model=List[ItemOut])
async def list_low_stock(store: SqlStore = Depends(get_store)):
    return reports.low_stock(store.list_items())

@app.post("/api/items", response_model=ItemOut, status_code=201)
async def create_item(payload: ItemIn, store: SqlStore = Depends(get_store)):
    if store.find_item_by_name(payload.item_name): raise HTTPException(409, "Item exists")
    return store.create_item({"item_name": payload.item_name, "qty": payload.qty, "unit_price": money(payload.unit_price)})

@app.put("/api/items/{item_id}", response_model=ItemOut)
async def update_item(item_id: int, payload: ItemIn, store: SqlStore = Depends(get_store)):
    if not store.get_item(item_id): raise HTTPException(404, "Item not found")
    other = store.find_item_by_name(payload.item_name)
    if other and other.id != item_id: raise HTTPException(409, "Item exists")
    return store.update_item(item_id, {"item_name": payload.item_name, "qty": payload.qty, "unit_price": money(payload.unit_price)})

@app.delete("/api/items/{item_id}", status_code=204)
async def delete_item(item_id: int, store: SqlStore = Depends(get_store)):
    if not store.get_item(item_id): raise HTTPException(404, "Item not found")
    store.delete_item(item_id)
    return Response(status_code=204)

# -------- Orders --------
@app.get("/api/orders", response_model=List[OrderOut])
async def list_orders(q: Optional[str] = None, status: Optional[str] = None,
                      store: SqlStore = Depends(get_store), ctx: UserContext = Depends(get_context)):
    return reports.search_orders(store.list_orders(ctx.branch), q or "", status)

@app.get("/api/orders/stats", response_model=OrderStats)
async def orders_stats(store: SqlStore = Depends(get_store), ctx: UserContext = Depends(get_context)):
    return reports.order_stats(store.list_orders(ctx.branch))

@app.post("/api/orders", response_model=SettlementOut, status_code=201)
async def create_order(payload: OrderCreate, store: SqlStore = Depends(get_store), ctx: UserContext = Depends(get_context),
                       notifier: Notifier = Depends(get_notifier)):
    result = settlement.create_order(store, ctx, payload, notifier)
    return settlement_out("Created", result)

@app.get("/api/orders/{order_id}", response_model=OrderOut)
async def get_order(order_id: int, store: SqlStore = Depends(get_store), ctx: UserContext = Depends(get_context)):
    return branch_order(store, ctx, order_id)

@app.put("/api/orders/{order_id}", response_model=OrderOut)
async def update_order(order_id: int, payload: OrderUpdate, store: SqlStore = Depends(get_store), ctx: UserContext = Depends(get_context)):
    result = settlement.update_order_details(store, ctx, order_id, payload.model_dump(exclude_none=True))
    return result.order

@app.delete("/api/orders/{order_id}", status_code=204)
async def delete_order(order_id: int, store: SqlStore = Depends(get_store), ctx: UserContext = Depends(require_admin)):
    settlement.delete_order(store, ctx, order_id)
    return Response(status_code=204)

@app.post("/api/orders/{order_id}/payments", response_model=SettlementOut)
async def record_payment(order_id: int, payload: PaymentIn, store: SqlStore = Depends(get_store),
                         ctx: UserContext = Depends(require_admin), notifier: Notifier = Depends(get_notifier)):
    result = settlement.record_payment(store, ctx, order_id, payload.amount, notifier)
    return settlement_out("Payment recorded on", result)

@app.post("/api/orders/{order_id}/cancel", response_model=SettlementOut)
async def cancel_order(order_id: int, store: SqlStore = Depends(get_store), ctx: UserContext = Depends(require_admin)):
    result = settlement.cancel_order(store, ctx, order_id)
    return settlement_out("Cancelled", result)

# -------- Invoices --------
@app.get("/api/orders/{order_id}/invoice", response_model=InvoiceView)
async def order_invoice(order_id: int, store: SqlStore = Depends(get_store), ctx: UserContext = Depends(get_context)):
    return compose_invoice([branch_order(store, ctx, order_id)])

@app.get("/api/orders/{order_id}/invoice.pdf")
async def order_invoice_pdf(order_id: int, store: SqlStore = Depends(get_store), ctx: UserContext = Depends(get_context)):
    view = compose_invoice([branch_order(store, ctx, order_id)])
    pdf = render_invoice_pdf(view, profile=store.company_profile())
    return Response(content=pdf, media_type="application/pdf")

@app.get("/api/invoices/customer/{phone}.pdf")
async def customer_invoice_pdf(phone: str, store: SqlStore = Depends(get_store), ctx: UserContext = Depends(get_context)):
    view = customer_invoice(store.list_orders(ctx.branch), phone)
    pdf = render_invoice_pdf(view, profile=store.company_profile())
    return Response(content=pdf, media_type="application/pdf",
                    headers={"Content-Disposition": f"inline; filename=invoice-{phone}.pdf"})

@app.get("/api/invoices/customer/{phone}", response_model=InvoiceView)
async def customer_invoice_view(phone: str, store: SqlStore = Depends(get_store), ctx: UserContext = Depends(get_context)):
    return customer_invoice(store.list_orders(ctx.branch), phone)

# -------- Reporting --------
@app.get("/api/dashboard", response_model=DashboardOut)
async def api_dashboard(store: SqlStore = Depends(get_store), ctx: UserContext = Depends(get_context)):
    return reports.dashboard(store.list_customers(ctx.branch), store.list_items(), store.list_orders(ctx.branch))

@app.get("/api/management/customers", response_model=List[CustomerGroup])
async def management_customers(phone: str = Query("", description="phone substring"), status: Optional[str] = None,
                               store: SqlStore = Depends(get_store), ctx: UserContext = Depends(require_admin)):
    return reports.group_by_customer(store.list_orders(ctx.branch), phone=phone, status=status)

@app.get("/api/export/excel")
async def export_excel(store: SqlStore = Depends(get_store), ctx: UserContext = Depends(require_admin)):
    orders = store.list_orders(ctx.branch)
    x = orders_to_excel(orders, reports.group_by_customer(orders))
    return Response(content=x, media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet", headers={"Content-Disposition": "attachment; filename=orders.xlsx"})

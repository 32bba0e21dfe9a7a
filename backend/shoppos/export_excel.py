from io import BytesIO
from openpyxl import Workbook

from .utils import money

ORDER_HEADERS = ["id","created_at","customer","phone","type","status","total","paid","balance"]
CUSTOMER_HEADERS = ["customer","phone","orders","total","paid","balance"]

def orders_to_excel(orders, groups=()):
    wb = Workbook()
    ws = wb.active
    ws.title = "orders"
    ws.append(ORDER_HEADERS)
    for o in orders:
        ws.append([
            o.id,
            o.created_at.strftime("%Y-%m-%d %H:%M") if o.created_at else "",
            o.customer_name, o.customer_phone, o.order_type, o.status,
            float(money(o.total_amount)), float(money(o.paid_amount)), float(money(o.balance_amount)),
        ])
    if groups:
        cs = wb.create_sheet("customers")
        cs.append(CUSTOMER_HEADERS)
        for g in groups:
            cs.append([g.customer_name, g.customer_phone, g.total_orders,
                       float(g.total_amount), float(g.total_paid), float(g.total_balance)])
    out = BytesIO()
    wb.save(out)
    return out.getvalue()

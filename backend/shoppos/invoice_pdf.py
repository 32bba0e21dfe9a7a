from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas
from io import BytesIO

from .config import CURRENCY, SHOP_NAME
from .schemas import InvoiceView
from .utils import fmt_money

HEADER_Y = 820
LEFT_X = 40
RIGHT_X = 560
BOTTOM_Y = 120

def draw_key_value(c, x, y, k, v):
    c.drawString(x, y, f"{k}:")
    c.drawRightString(RIGHT_X, y, v)

def draw_profile(c, profile):
    y = HEADER_Y
    c.setFont("Helvetica-Bold", 14)
    c.drawRightString(RIGHT_X, y, (getattr(profile, "company_name", None) or SHOP_NAME))
    if not profile:
        return
    c.setFont("Helvetica", 9)
    lines = (getattr(profile, "address", None) or "").splitlines()
    if getattr(profile, "phone", None):
        lines.append(f"Phone: {profile.phone}")
    y2 = y-16
    for line in [l for l in lines if l.strip()]:
        c.drawRightString(RIGHT_X, y2, line[:90])
        y2 -= 12

def draw_table_header(c, y):
    c.setFont("Helvetica-Bold", 11)
    c.drawString(LEFT_X, y, "Item")
    c.drawRightString(440, y, "Qty")
    c.drawRightString(500, y, "Rate")
    c.drawRightString(RIGHT_X, y, "Amount")
    c.line(LEFT_X, y-5, RIGHT_X, y-5)
    c.setFont("Helvetica", 10)

def render_invoice_pdf(view: InvoiceView, profile=None, title="INVOICE") -> bytes:
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    c.setTitle(title)

    draw_profile(c, profile)

    number = "-".join(str(i) for i in view.order_ids)
    c.setFont("Helvetica-Bold", 16)
    c.drawString(LEFT_X, 760, f"{title} #{number}")
    c.setFont("Helvetica", 10)
    draw_key_value(c, LEFT_X, 742, "Date", view.issued_at.strftime("%Y-%m-%d"))
    draw_key_value(c, LEFT_X, 727, "Bill To", view.customer_name)
    draw_key_value(c, LEFT_X, 712, "Phone", view.customer_phone)
    if getattr(profile, "payment_terms", None):
        draw_key_value(c, LEFT_X, 697, "Payment Terms", profile.payment_terms)

    y = 670
    draw_table_header(c, y)
    y -= 20
    for it in view.items:
        if y < BOTTOM_Y:
            c.showPage()
            y = HEADER_Y
            draw_table_header(c, y)
            y -= 20
        c.drawString(LEFT_X, y, it.item_name[:60])
        c.drawRightString(440, y, str(it.quantity))
        c.drawRightString(500, y, fmt_money(it.price))
        c.drawRightString(RIGHT_X, y, fmt_money(it.total))
        y -= 16

    c.line(400, y-5, RIGHT_X, y-5)
    c.setFont("Helvetica-Bold", 12)
    c.drawRightString(500, y-20, f"Total ({CURRENCY})")
    c.drawRightString(RIGHT_X, y-20, fmt_money(view.total_amount))
    c.setFont("Helvetica", 10)
    c.drawRightString(500, y-40, "Paid")
    c.drawRightString(RIGHT_X, y-40, fmt_money(view.paid_amount))
    c.setFont("Helvetica-Bold", 12)
    c.drawRightString(500, y-60, "Balance Due")
    c.drawRightString(RIGHT_X, y-60, fmt_money(view.balance_amount))

    if profile:
        c.setFont("Helvetica", 9)
        footer_y = 80
        footer = []
        if getattr(profile, "bank_name", None) or getattr(profile, "bank_account_no", None):
            footer.append(f"Bank: {profile.bank_name or ''}  Acc: {profile.bank_account_no or ''}")
        if getattr(profile, "footer_note", None):
            footer.extend(profile.footer_note.splitlines())
        for i, line in enumerate(footer):
            c.drawString(LEFT_X, footer_y - i*12, line[:100])

    c.showPage(); c.save()
    buf.seek(0)
    return buf.read()

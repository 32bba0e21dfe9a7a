import logging
from enum import Enum
from typing import Optional, Protocol

import requests

from .config import CURRENCY, SHOP_NAME, SMS_GATEWAY_URL, SMS_TIMEOUT
from .errors import ValidationError
from .schemas import NotificationResult, RecipientFailure
from .utils import fmt_money

logger = logging.getLogger(__name__)


class MessageKind(str, Enum):
    ORDER_PLACED = "order_placed"
    PAYMENT_RECEIVED = "payment_received"
    BALANCE_REMINDER = "balance_reminder"


TEMPLATES = {
    MessageKind.ORDER_PLACED: (
        "Dear {name},\n"
        "Your order has been placed successfully. Total Amount is {currency} {total}.\n"
        "Paid Amount is {currency} {paid}.\n"
        "Thanks for shopping with {shop}."
    ),
    MessageKind.PAYMENT_RECEIVED: (
        "Dear {name},\n"
        "We have received your payment of {currency} {amount}. Your due balance is {currency} {balance}.\n"
        "Thanks for shopping with {shop}."
    ),
    MessageKind.BALANCE_REMINDER: (
        "Dear {name},\n"
        "You have outstanding payments of {currency} {balance}.\n"
        "Thanks for shopping with {shop}."
    ),
}

MONEY_FIELDS = ("total", "paid", "amount", "balance")


def render_message(kind: MessageKind, data: dict, shop: str = SHOP_NAME, currency: str = CURRENCY) -> str:
    ctx = {"shop": shop, "currency": currency, **data}
    ctx["name"] = (data.get("name") or "").strip() or "Sir/Madam"
    for k in MONEY_FIELDS:
        if k in ctx:
            ctx[k] = fmt_money(ctx[k])
    try:
        return TEMPLATES[kind].format(**ctx)
    except KeyError as e:
        raise ValidationError(f"{kind.value} message is missing {e.args[0]}") from e


class Gateway(Protocol):
    def send_message(self, phone: str, text: str) -> dict: ...


class SmsGateway:
    """HTTP client for the SMS relay: POST {"phone", "message"} -> {"success", "result", "error"}."""

    def __init__(self, url: str = SMS_GATEWAY_URL, timeout: float = SMS_TIMEOUT, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def send_message(self, phone: str, text: str) -> dict:
        resp = self.session.post(self.url, json={"phone": phone, "message": text}, timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()


def interpret_reply(kind: MessageKind, phone: str, reply: dict) -> NotificationResult:
    if reply.get("success"):
        return NotificationResult(kind=kind.value, phone=phone, status="sent")
    result = reply.get("result") or {}
    messages = result.get("messages") or []
    if messages:
        failures = [
            RecipientFailure(phone=str(m.get("mobile", "")), status=str(m.get("status", "")), error=m.get("error"))
            for m in messages
            if str(m.get("status", "")).lower() != "success"
        ]
        if not failures:
            return NotificationResult(kind=kind.value, phone=phone, status="failed",
                                      error="SMS sending failed for unknown reason")
        status = "partial" if len(failures) < len(messages) else "failed"
        return NotificationResult(kind=kind.value, phone=phone, status=status, failures=failures,
                                  error="; ".join(f"{f.phone}: {f.error or f.status}" for f in failures))
    return NotificationResult(kind=kind.value, phone=phone, status="failed",
                              error=reply.get("error") or "Unknown error")


class Notifier:
    def __init__(self, gateway: Gateway, shop: str = SHOP_NAME, currency: str = CURRENCY):
        self.gateway = gateway
        self.shop = shop
        self.currency = currency

    def notify(self, kind: MessageKind, phone: Optional[str], data: dict) -> NotificationResult:
        if not phone:
            return NotificationResult(kind=kind.value, phone=phone, status="failed", error="No phone number")
        text = render_message(kind, data, shop=self.shop, currency=self.currency)
        try:
            reply = self.gateway.send_message(phone, text)
        except requests.Timeout:
            logger.warning("SMS gateway timed out sending %s to %s", kind.value, phone)
            return NotificationResult(kind=kind.value, phone=phone, status="failed", error="SMS gateway timed out")
        except requests.RequestException as e:
            logger.warning("SMS gateway error sending %s to %s: %s", kind.value, phone, e)
            return NotificationResult(kind=kind.value, phone=phone, status="failed", error=f"SMS gateway error: {e}")
        except ValueError:
            return NotificationResult(kind=kind.value, phone=phone, status="failed", error="SMS gateway sent an invalid reply")
        result = interpret_reply(kind, phone, reply)
        if result.ok:
            logger.info("SMS %s sent to %s", kind.value, phone)
        return result

"""
Mercado Pago (Checkout Pro) integration.

Checkout creates a PENDING order without taking stock and asks Mercado Pago for
a hosted checkout session. Stock is only decremented once the webhook reports
the payment as approved. Nothing holds the stock in between, so two buyers can
pay for the last unit; that window is accepted.
"""
import logging
import os
from datetime import datetime, timezone
from typing import Optional

import requests
from pymongo import ReturnDocument

import notifications
from database import to_object_id, transaction
from errors import GatewayUnavailable
from orders import create_pending_order, get_order
from schemas import OrderCreate, OrderStatus

logger = logging.getLogger(__name__)

MP_ACCESS_TOKEN = os.getenv("MERCADOPAGO_ACCESS_TOKEN")
MP_API = "https://api.mercadopago.com"
MP_CURRENCY = os.getenv("MERCADOPAGO_CURRENCY", "COP")
APP_URL = os.getenv("APP_URL", "http://localhost:3000").rstrip("/")
HTTP_TIMEOUT = 10


def is_configured() -> bool:
    return bool(MP_ACCESS_TOKEN)


def _headers() -> dict:
    return {"Authorization": f"Bearer {MP_ACCESS_TOKEN}", "Content-Type": "application/json"}


def create_preference(order: dict) -> Optional[str]:
    """Create a checkout preference for the order and return its init_point.

    Any network error, non-2xx answer or body without init_point gives None.
    """
    if not is_configured():
        return None
    order_id = order["id"]
    body = {
        "items": [
            {
                "title": item["product_name"][:256],
                "quantity": item["quantity"],
                "unit_price": item["unit_price"],
                "currency_id": MP_CURRENCY,
            }
            for item in order["items"]
        ],
        "payer": {"email": order["customer_email"]},
        "external_reference": order_id,
        "back_urls": {
            "success": f"{APP_URL}/checkout/exito?order_id={order_id}",
            "pending": f"{APP_URL}/checkout/pendiente?order_id={order_id}",
            "failure": f"{APP_URL}/checkout/error?order_id={order_id}",
        },
        "auto_return": "approved",
        "notification_url": f"{APP_URL}/api/payments/mercadopago/webhook",
    }
    try:
        res = requests.post(f"{MP_API}/checkout/preferences", json=body, headers=_headers(), timeout=HTTP_TIMEOUT)
    except requests.RequestException:
        logger.exception("[mercadopago] preference request failed for order %s", order_id)
        return None
    if not res.ok:
        logger.error("[mercadopago] error creating preference: %s %s", res.status_code, res.text[:500])
        return None
    try:
        data = res.json()
    except ValueError:
        logger.error("[mercadopago] preference response is not JSON")
        return None
    init_point = data.get("init_point") if isinstance(data, dict) else None
    return init_point or None


def get_payment(payment_id: str) -> Optional[dict]:
    """Fetch ``{"status", "external_reference"}`` for a payment, or None."""
    if not is_configured():
        return None
    try:
        res = requests.get(f"{MP_API}/v1/payments/{payment_id}", headers=_headers(), timeout=HTTP_TIMEOUT)
    except requests.RequestException:
        logger.exception("[mercadopago] payment lookup failed for %s", payment_id)
        return None
    if not res.ok:
        return None
    try:
        data = res.json()
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    return {"status": data.get("status"), "external_reference": data.get("external_reference")}


def start_checkout(db, payload: OrderCreate, user: Optional[dict] = None) -> dict:
    if not is_configured():
        raise GatewayUnavailable()
    order = create_pending_order(db, payload, user)
    init_point = create_preference(order)
    if not init_point:
        raise GatewayUnavailable("No se pudo crear la sesión de pago. Intenta de nuevo.", status_code=502)
    return {"orderId": order["id"], "init_point": init_point}


def confirm_order_payment(db, order_id: str) -> bool:
    """Move a PENDING order to PAID and take its stock.

    Returns False when the order is missing or no longer PENDING, which makes
    replayed notifications a no-op. Without a transaction, a failed stock write
    is undone and the order reopened before the error propagates.
    """
    oid = to_object_id(order_id)
    if oid is None:
        return False
    stamp = datetime.now(timezone.utc)
    with transaction(db) as session:
        order = db["order"].find_one_and_update(
            {"_id": oid, "status": OrderStatus.pending.value},
            {"$set": {"status": OrderStatus.paid.value, "updated_at": stamp}},
            return_document=ReturnDocument.AFTER,
            session=session,
        )
        if order is None:
            return False
        taken = []
        try:
            for item in order["items"]:
                product = db["product"].find_one_and_update(
                    {"_id": to_object_id(item["product_id"])},
                    {"$inc": {"stock": -item["quantity"]}, "$set": {"updated_at": stamp}},
                    return_document=ReturnDocument.AFTER,
                    session=session,
                )
                if product is None:
                    continue
                taken.append(item)
                if product["stock"] < 0:
                    logger.warning("Product %s oversold by %d after payment of order %s",
                                   item["product_id"], -product["stock"], order_id)
        except Exception:
            if session is None:
                _undo_payment(db, oid, taken)
            raise
    return True


def _undo_payment(db, oid, taken: list) -> None:
    """Put back the stock already taken and reopen the order so a retry can apply it."""
    for item in taken:
        db["product"].update_one({"_id": to_object_id(item["product_id"])}, {"$inc": {"stock": item["quantity"]}})
    db["order"].update_one(
        {"_id": oid, "status": OrderStatus.paid.value},
        {"$set": {"status": OrderStatus.pending.value, "updated_at": datetime.now(timezone.utc)}},
    )


def handle_webhook(db, body) -> None:
    """Process a Mercado Pago notification.

    Anything that is not an approved payment for a PENDING order is ignored.
    Only store failures propagate, so the gateway retries those.
    """
    if not isinstance(body, dict):
        return
    data = body.get("data")
    payment_id = data.get("id") if isinstance(data, dict) else None
    payment_id = payment_id or body.get("id")
    if body.get("type") != "payment" or not payment_id:
        return

    payment = get_payment(str(payment_id))
    if not payment or payment.get("status") != "approved" or not payment.get("external_reference"):
        logger.info("[mercadopago] payment %s ignored (%s)", payment_id, payment and payment.get("status"))
        return

    order_id = str(payment["external_reference"])
    if not confirm_order_payment(db, order_id):
        logger.info("[mercadopago] order %s already processed or unknown", order_id)
        return

    logger.info("[mercadopago] order %s paid (payment %s)", order_id, payment_id)
    order = get_order(db, order_id)
    try:
        notifications.send_order_confirmation_email(order)
    except Exception:
        logger.exception("[mercadopago] confirmation email failed for order %s", order_id)

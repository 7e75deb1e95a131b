import logging
import os
import smtplib
from email.message import EmailMessage
from html import escape

from database import as_utc
from orders import format_order_number

logger = logging.getLogger(__name__)

SMTP_HOST = os.getenv("SMTP_HOST")
SMTP_PORT = int(os.getenv("SMTP_PORT") or 2525)
SMTP_USER = os.getenv("SMTP_USER")
SMTP_PASS = os.getenv("SMTP_PASS")
MAIL_FROM = os.getenv("MAIL_FROM", "Gold Legacy <noreply@goldlegacy.com>")
SMTP_TIMEOUT = 15


def format_price(value) -> str:
    # COP has no cents in practice: "$ 1.250.000"
    return "$ " + f"{round(float(value)):,}".replace(",", ".")


def smtp_configured() -> bool:
    return bool(SMTP_HOST and SMTP_USER and SMTP_PASS)


def _confirmation_html(order: dict) -> str:
    rows = "".join(
        f'<tr><td style="padding:8px 12px;border-bottom:1px solid #eee">{escape(item["product_name"])}</td>'
        f'<td style="padding:8px 12px;border-bottom:1px solid #eee;text-align:center">{item["quantity"]}</td>'
        f'<td style="padding:8px 12px;border-bottom:1px solid #eee;text-align:right">{format_price(item["unit_price"])}</td></tr>'
        for item in order["items"]
    )
    created = as_utc(order["created_at"]).strftime("%d/%m/%Y %H:%M")
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Confirmación de orden</title></head>
<body style="font-family:sans-serif;max-width:560px;margin:0 auto;padding:24px;color:#333;background:#fafafa">
  <div style="background:#fff;border-radius:12px;padding:24px">
    <h1 style="color:#1a1a1a;font-size:22px;margin:0 0 8px">Gold Legacy</h1>
    <p style="color:#666;font-size:14px;margin:0 0 24px">Confirmación de tu orden</p>
    <p>Hola <strong>{escape(order["customer_name"])}</strong>,</p>
    <p>Recibimos tu pedido correctamente. Resumen:</p>
    <table style="width:100%;border-collapse:collapse;margin-bottom:20px">
      <thead><tr style="background:#1a1a1a;color:#fff">
        <th style="padding:10px 12px;text-align:left">Producto</th>
        <th style="padding:10px 12px;text-align:center">Cant.</th>
        <th style="padding:10px 12px;text-align:right">Precio</th>
      </tr></thead>
      <tbody>{rows}</tbody>
    </table>
    <p><strong>Total:</strong> {format_price(order["total"])}</p>
    <p><strong>Envío a:</strong> {escape(order["shipping_address"])}, {escape(order["shipping_city"])}</p>
    <p style="font-size:12px;color:#888">Orden {format_order_number(order["id"])} · {created}</p>
    <p style="font-size:14px;color:#666">Gracias por confiar en Gold Legacy.</p>
  </div>
</body>
</html>"""


def send_order_confirmation_email(order: dict) -> bool:
    """Email the order summary to the customer.

    Returns False when SMTP is not configured or the send fails; never raises.
    """
    if not smtp_configured():
        logger.warning("[email] SMTP not configured (SMTP_HOST, SMTP_USER, SMTP_PASS); confirmation not sent")
        return False

    number = format_order_number(order["id"])
    msg = EmailMessage()
    msg["Subject"] = f"Gold Legacy – Confirmación de orden {number}"
    msg["From"] = MAIL_FROM
    msg["To"] = order["customer_email"]
    msg.set_content(
        f"Gold Legacy – Hola {order['customer_name']}, recibimos tu pedido. "
        f"Total: {format_price(order['total'])}. "
        f"Envío a: {order['shipping_address']}, {order['shipping_city']}. Orden {number}."
    )
    msg.add_alternative(_confirmation_html(order), subtype="html")

    try:
        if SMTP_PORT == 465:
            server = smtplib.SMTP_SSL(SMTP_HOST, SMTP_PORT, timeout=SMTP_TIMEOUT)
        else:
            server = smtplib.SMTP(SMTP_HOST, SMTP_PORT, timeout=SMTP_TIMEOUT)
        with server:
            server.ehlo()
            if SMTP_PORT != 465 and server.has_extn("starttls"):
                server.starttls()
                server.ehlo()
            server.login(SMTP_USER, SMTP_PASS)
            server.send_message(msg)
    except (smtplib.SMTPException, OSError):
        logger.exception("[email] could not send confirmation for order %s", order["id"])
        return False
    logger.info("[email] confirmation for order %s sent to %s", order["id"], order["customer_email"])
    return True

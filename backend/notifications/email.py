"""
Email Delivery for order and inventory notifications.

Fire-and-forget: every sender logs and returns False on failure instead of
raising, because the order or stock change that triggered it has already
been committed.
"""

import asyncio
from decimal import Decimal
from html import escape

import sendgrid
import structlog
from sendgrid.helpers.mail import Mail

from core.config import get_settings

logger = structlog.get_logger()

STATUS_MESSAGES = {
    "processing": "Your order is being prepared for shipment.",
    "shipped": "Your order has been shipped!",
    "delivered": "Your order has been delivered! We hope you love your purchase.",
}


def format_price(amount) -> str:
    return f"${Decimal(amount):,.2f}"


def _text(value) -> str:
    """Escape user-supplied values for HTML bodies."""
    return escape("" if value is None else str(value))


def render_order_confirmation(order) -> str:
    rows = "".join(
        f"""<tr>
          <td style="padding:8px;border-bottom:1px solid #eee">{_text(item.title)}
            {f'({_text(item.color)}/{_text(item.size)})' if item.color or item.size else ''}</td>
          <td style="padding:8px;border-bottom:1px solid #eee;text-align:center">{item.quantity}</td>
          <td style="padding:8px;border-bottom:1px solid #eee;text-align:right">{format_price(item.line_total)}</td>
        </tr>"""
        for item in order.items
    )
    address = order.shipping_address or {}
    line2 = f"{_text(address.get('line2'))}<br/>" if address.get("line2") else ""
    shipping = "Free" if Decimal(order.shipping) == 0 else format_price(order.shipping)
    name = _text(order.customer_name)
    return f"""
    <div style="max-width:600px;margin:0 auto;font-family:Arial,sans-serif;color:#333">
      <div style="padding:24px">
        <h2>Order Confirmed!</h2>
        <p>Hi {name},</p>
        <p>We've received your order <strong>#{_text(order.order_number)}</strong> and are getting it ready.</p>
        <table style="width:100%;border-collapse:collapse;margin:16px 0">
          <tbody>{rows}</tbody>
        </table>
        <div style="text-align:right">
          <p>Subtotal: {format_price(order.subtotal)}</p>
          <p>Shipping: {shipping}</p>
          <p>Tax: {format_price(order.tax)}</p>
          <p style="font-weight:bold">Total: {format_price(order.total)}</p>
        </div>
        <p>Shipping to:<br/>{name}<br/>{_text(address.get('line1'))}<br/>{line2}
        {_text(address.get('city'))}, {_text(address.get('state'))} {_text(address.get('zip'))}</p>
      </div>
    </div>
    """


def render_shipping_update(order, status: str) -> str:
    message = STATUS_MESSAGES.get(status, f"Your order status has been updated to: {_text(status)}")
    tracking = ""
    if status == "shipped" and order.tracking_number:
        tracking = f"<p>Tracking number: <strong>{_text(order.tracking_number)}</strong></p>"
        if order.tracking_url:
            tracking += f'<p><a href="{_text(order.tracking_url)}">Track your package</a></p>'
    return f"""
    <div style="max-width:600px;margin:0 auto;font-family:Arial,sans-serif;color:#333;padding:24px">
      <h2>Order Update</h2>
      <p>Hi {_text(order.customer_name)},</p>
      <p>{message}</p>
      {tracking}
      <p>Order: <strong>#{_text(order.order_number)}</strong></p>
    </div>
    """


def render_inventory_alert(product_title: str, variant_sku: str, alert_type: str, stock: int) -> str:
    heading = "Out of Stock" if alert_type == "out_of_stock" else "Low Stock Warning"
    return f"""
    <div style="font-family:Arial,sans-serif;max-width:600px;margin:0 auto;padding:24px">
      <h2>{heading}</h2>
      <p><strong>Product:</strong> {_text(product_title)}</p>
      <p><strong>Variant:</strong> {_text(variant_sku)}</p>
      <p><strong>Current Stock:</strong> {stock}</p>
      <p>Please review and restock as needed.</p>
    </div>
    """


async def deliver(send, *args, kind: str) -> bool:
    """Invoke any notifier method, logging instead of raising on failure."""
    try:
        return bool(await send(*args))
    except Exception as exc:  # noqa: BLE001
        logger.warning("notification.failed", kind=kind, error=str(exc), exc_info=True)
        return False


class EmailNotifier:
    """SendGrid-backed notification service."""

    def __init__(self, api_key: str | None = None, from_email: str | None = None, admin_emails=None):
        settings = get_settings()
        self.api_key = settings.sendgrid_api_key if api_key is None else api_key
        self.from_email = from_email or settings.order_from_email
        self.admin_emails = list(settings.admin_emails if admin_emails is None else admin_emails)

    async def _send(self, to_emails, subject: str, html_content: str, kind: str) -> bool:
        if not self.api_key:
            logger.info("notification.skipped", kind=kind, reason="sendgrid_not_configured")
            return False
        if not to_emails:
            logger.info("notification.skipped", kind=kind, reason="no_recipients")
            return False
        try:
            sg = sendgrid.SendGridAPIClient(api_key=self.api_key)
            email = Mail(
                from_email=self.from_email,
                to_emails=to_emails,
                subject=subject,
                html_content=html_content,
            )
            response = await asyncio.to_thread(sg.send, email)
            sent = response.status_code in (200, 201, 202)
            if not sent:
                logger.warning("notification.rejected", kind=kind, status_code=response.status_code)
            return sent
        except Exception as exc:  # noqa: BLE001
            logger.warning("notification.failed", kind=kind, error=str(exc), exc_info=True)
            return False

    async def send_order_confirmation(self, order) -> bool:
        return await self._send(
            order.customer_email,
            f"Order Confirmed - #{order.order_number}",
            render_order_confirmation(order),
            kind="order_confirmation",
        )

    async def send_shipping_update(self, order, status: str) -> bool:
        return await self._send(
            order.customer_email,
            f"Order #{order.order_number} - {status.capitalize()}",
            render_shipping_update(order, status),
            kind="shipping_update",
        )

    async def send_inventory_alert(self, product_title: str, variant_sku: str, alert_type: str, stock: int) -> bool:
        label = "Out of Stock" if alert_type == "out_of_stock" else "Low Stock"
        return await self._send(
            self.admin_emails,
            f"[Alert] {label}: {product_title}",
            render_inventory_alert(product_title, variant_sku, alert_type, stock),
            kind="inventory_alert",
        )

"""Order confirmation emails over SMTP."""

import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

import aiosmtplib

from niramay.core.config import settings

logger = logging.getLogger(__name__)


async def send_email(to_email: str, subject: str, html_body: str, text_body: Optional[str] = None) -> bool:
    """
    Send an email using SMTP.

    Returns True if the email was sent, False otherwise. Never raises: callers
    treat email as best-effort.
    """
    if not settings.SMTP_HOST:
        logger.info("[DEV MODE] SMTP not configured; would send %r to %s", subject, to_email)
        return False

    message = MIMEMultipart("alternative")
    message["Subject"] = subject
    message["From"] = settings.EMAIL_FROM
    message["To"] = to_email
    message.attach(MIMEText(text_body or subject, "plain"))
    message.attach(MIMEText(html_body, "html"))

    try:
        await aiosmtplib.send(
            message,
            hostname=settings.SMTP_HOST,
            port=settings.SMTP_PORT,
            username=settings.SMTP_USER or None,
            password=settings.SMTP_PASSWORD or None,
            start_tls=settings.SMTP_USE_TLS,
        )
    except (aiosmtplib.SMTPException, OSError) as e:
        logger.error(f"Failed to send email to {to_email}: {e}")
        return False

    logger.info(f"Email sent successfully to {to_email}: {subject}")
    return True


async def send_order_confirmation(
    to_email: str,
    user_name: Optional[str],
    order_id: str,
    item_name: Optional[str],
    quantity: int,
    points_spent: int,
    delivery_address: str,
) -> bool:
    subject = f"Niramay Eco Store order {order_id[:8]} confirmed"
    text_body = (
        f"Hi {user_name or 'there'},\n\n"
        f"Your order for {quantity} x {item_name} is being processed.\n"
        f"Eco-points spent: {points_spent}\n"
        f"Delivery address: {delivery_address}\n"
        f"Order id: {order_id}\n"
    )
    html_body = (
        f"<p>Hi {user_name or 'there'},</p>"
        f"<p>Your order for <strong>{quantity} x {item_name}</strong> is being processed.</p>"
        f"<ul><li>Eco-points spent: {points_spent}</li>"
        f"<li>Delivery address: {delivery_address}</li>"
        f"<li>Order id: {order_id}</li></ul>"
    )
    sent = await send_email(to_email, subject, html_body, text_body)
    if not sent:
        logger.warning("Order confirmation email not sent for order %s", order_id)
    return sent

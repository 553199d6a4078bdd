import os
import smtplib
from email.message import EmailMessage
from typing import Any, Dict

import structlog
from jinja2 import Environment, FileSystemLoader, select_autoescape

from core.config import settings
from models.order import Order

log = structlog.get_logger(__name__)

# Jinja2 environment for email templates
_templates_env = Environment(
    loader=FileSystemLoader(searchpath=os.path.join(os.path.dirname(os.path.dirname(__file__)), "templates")),
    autoescape=select_autoescape(["html", "xml"]),
)


def format_amount(minor_units: int, currency: str) -> str:
    return f"{minor_units / 100:.2f} {currency.upper()}"


_templates_env.filters["money"] = format_amount


def build_message(to_email: str, subject: str, body: str) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = settings.SMTP_FROM or settings.SMTP_USERNAME
    msg["To"] = to_email
    msg.set_content(body)
    return msg


def deliver(to_email: str, subject: str, body: str) -> None:
    """Send over SMTP. Raises on failure; callers decide whether to retry."""
    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT) as server:
        server.starttls()
        if settings.SMTP_USERNAME and settings.SMTP_PASSWORD:
            server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        server.send_message(build_message(to_email, subject, body))


def send_email(to_email: str, subject: str, body: str) -> None:
    """
    Queue the email on Celery when enabled, otherwise send it directly.
    Never raises: a notification failure must not fail the request that triggered it.
    """
    if settings.EMAIL_USE_CELERY:
        from tasks.email_tasks import send_email_task

        try:
            send_email_task.delay(to_email, subject, body)
            log.info("email_queued", to=to_email, subject=subject)
            return
        except Exception as exc:
            log.warning("email_queue_unavailable", to=to_email, error=str(exc))

    _send_email_direct(to_email, subject, body)


def _send_email_direct(to_email: str, subject: str, body: str) -> None:
    if not settings.SMTP_PASSWORD:
        log.info("email_skipped_no_smtp_credentials", to=to_email, subject=subject)
        return
    try:
        deliver(to_email, subject, body)
        log.info("email_sent", to=to_email, subject=subject)
    except (smtplib.SMTPException, OSError) as exc:
        log.error("email_send_failed", to=to_email, subject=subject, error=str(exc))


def render_template(template_path: str, context: Dict[str, Any]) -> str:
    """Render a text template from templates/ directory with provided context."""
    template = _templates_env.get_template(template_path)
    return template.render(**context)


def send_templated_email(to_email: str, subject: str, template_path: str, context: Dict[str, Any]) -> None:
    body = render_template(template_path, context)
    send_email(to_email, subject, body)


def send_order_confirmation(order: Order) -> None:
    order_ref = (order.metadata_ or {}).get("order_ref") or order.id
    send_templated_email(
        order.customer_email,
        f"Order {order_ref} confirmed",
        "emails/order_confirmed.txt",
        {
            "order_ref": order_ref,
            "items": order.items,
            "total": order.total,
            "currency": order.currency,
            "address": order.shipping_address,
        },
    )

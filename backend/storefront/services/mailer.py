# storefront/services/mailer.py
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, NamedTuple, Optional, Tuple

from jinja2 import Environment, TemplateError, select_autoescape

from storefront.config import Settings, settings as default_settings
from storefront.integrations.email_provider import EmailSendError
from storefront.repositories import email_logs
from storefront.services.email_templates import DEFAULT_TEMPLATES, STATE_TEMPLATES

logger = logging.getLogger("storefront.mail")

template_env = Environment(autoescape=select_autoescape(default_for_string=True))


class EmailResult(NamedTuple):
    success: bool
    log_id: Optional[str] = None
    error: Optional[str] = None


class UnknownTemplate(KeyError):
    pass


def _money(value: Any) -> str:
    try:
        return f"{Decimal(str(value)):,.2f}"
    except Exception:
        return str(value or "0.00")


def order_context(order: Dict[str, Any], cfg: Settings) -> Dict[str, Any]:
    """Template variables shared by every order email."""
    shipment = order.get("shipment") or {}
    items = [
        {
            "name": it.get("name"),
            "quantity": it.get("quantity", 1),
            "line_total": _money(it.get("line_total")),
        }
        for it in order.get("items") or []
    ]
    return {
        "order_number": order.get("order_number"),
        "customer_name": order.get("customer_name") or "Valued Customer",
        "customer_email": order.get("customer_email"),
        "items": items,
        "total": _money(order.get("total")),
        "currency": order.get("currency") or cfg.currency,
        "status": order.get("status"),
        "paypal_transaction_id": order.get("paypal_transaction_id"),
        "paid_at": order.get("paid_at"),
        "refunded_at": order.get("refunded_at"),
        "tracking_number": shipment.get("tracking_number"),
        "tracking_url": shipment.get("tracking_url"),
        "store_url": cfg.store_url,
        "admin_link": f"{cfg.store_url}/admin/orders/{order.get('id')}",
    }


class Mailer:
    """
    Renders a template, writes an `email_logs` entry (pending -> sent | failed)
    and hands the message to the configured provider.

    Provider and template failures come back as EmailResult(success=False);
    only storage errors escape.
    """

    def __init__(self, db, provider, settings: Settings = default_settings):
        self.db = db
        self.provider = provider
        self.settings = settings

    def template_source(self, name: str) -> Tuple[str, str, bool]:
        """(subject, html, is_default) for a template name."""
        override = email_logs.get_template(self.db, name)
        if override and override.get("is_active", True) and override.get("subject") and override.get("html"):
            return override["subject"], override["html"], False
        if name not in DEFAULT_TEMPLATES:
            raise UnknownTemplate(name)
        subject, html = DEFAULT_TEMPLATES[name]
        return subject, html, True

    def render(self, name: str, context: Dict[str, Any]) -> Tuple[str, str]:
        subject_src, html_src, _ = self.template_source(name)
        ctx = {"store_url": self.settings.store_url, **context}
        subject = template_env.from_string(subject_src).render(**ctx)
        html = template_env.from_string(html_src).render(**ctx)
        return " ".join(subject.split()), html

    async def send_template(
        self,
        to: str,
        template: str,
        context: Dict[str, Any],
        *,
        recipient_name: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> EmailResult:
        try:
            subject, html = self.render(template, context)
        except TemplateError as e:
            logger.error("Email template %s failed to render: %s", template, e)
            return EmailResult(False, None, f"template error: {e}")

        log_id = email_logs.create(
            self.db,
            recipient_email=to,
            subject=subject,
            template=template,
            recipient_name=recipient_name,
            metadata=metadata,
        )
        tags = {"source": "storefront", "template": template}
        if metadata and metadata.get("order_id"):
            tags["order_id"] = str(metadata["order_id"])

        try:
            provider_id = await self.provider.send(to, subject, html, tags=tags)
        except EmailSendError as e:
            logger.error("Email %s to %s failed: %s", template, to, e)
            email_logs.mark_failed(self.db, log_id, str(e))
            return EmailResult(False, log_id, str(e))

        email_logs.mark_sent(self.db, log_id, provider_id)
        logger.info("Email %s sent to %s (log=%s)", template, to, log_id)
        return EmailResult(True, log_id)

    # ── Order emails ─────────────────────────────────────────────────────────

    async def send_order_email(self, order: Dict[str, Any], template: str, **extra) -> EmailResult:
        ctx = order_context(order, self.settings)
        ctx.update(extra)
        return await self.send_template(
            order["customer_email"],
            template,
            ctx,
            recipient_name=order.get("customer_name"),
            metadata={"order_id": order.get("id"), "order_number": order.get("order_number")},
        )

    async def send_order_confirmation(self, order: Dict[str, Any]) -> EmailResult:
        return await self.send_order_email(order, "order_confirmation")

    async def send_payment_confirmation(self, order: Dict[str, Any]) -> EmailResult:
        return await self.send_order_email(order, "payment_confirmation")

    async def send_refund_confirmation(self, order: Dict[str, Any], refund_amount: Optional[str] = None) -> EmailResult:
        return await self.send_order_email(order, "order_refunded", refund_amount=refund_amount)

    async def send_shipped(self, order: Dict[str, Any]) -> EmailResult:
        return await self.send_order_email(order, "order_shipped")

    async def send_state_update(self, order: Dict[str, Any], state: str, reason: Optional[str] = None) -> Optional[EmailResult]:
        """Status email for a new lifecycle state; None when the state has no email."""
        template = STATE_TEMPLATES.get(state)
        if not template:
            return None
        return await self.send_order_email(order, template, reason=reason)

    async def send_password_reset(self, email: str, reset_link: str, name: Optional[str] = None) -> EmailResult:
        return await self.send_template(
            email,
            "password_reset",
            {"customer_name": name or "there", "reset_link": reset_link},
            recipient_name=name,
            metadata={"kind": "password_reset"},
        )

    # ── Staff emails ─────────────────────────────────────────────────────────

    async def send_new_order_alert(self, order: Dict[str, Any]) -> EmailResult:
        return await self.send_template(
            self.settings.admin_email,
            "new_order_alert",
            order_context(order, self.settings),
            metadata={"order_id": order.get("id")},
        )

    async def send_dispute_alert(self, order: Dict[str, Any], dispute_id: Optional[str], reason: Optional[str]) -> EmailResult:
        ctx = order_context(order, self.settings)
        ctx.update(dispute_id=dispute_id, reason=reason or "not given")
        return await self.send_template(
            self.settings.admin_email,
            "dispute_alert",
            ctx,
            metadata={"order_id": order.get("id"), "dispute_id": dispute_id},
        )

# storefront/services/email_templates.py
"""
Built-in transactional email templates (Jinja2, autoescaped).

A document in `email_templates/{name}` with `is_active=True` overrides the
built-in subject and body of the same name.
"""
from typing import Dict, Tuple

_LAYOUT_HEAD = (
    '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
    '<h2 style="color: #2563eb;">Geelong Garage Doors</h2>'
)
_LAYOUT_FOOT = (
    '<p style="color:#6b7280;font-size:12px;">Questions? Reply to this email or visit '
    '<a href="{{ store_url }}">{{ store_url }}</a>.</p></div>'
)

_ITEMS_TABLE = (
    '<table style="width:100%;border-collapse:collapse;">'
    '{% for item in items %}'
    '<tr><td>{{ item.name }}</td><td>x{{ item.quantity }}</td>'
    '<td style="text-align:right;">${{ item.line_total }}</td></tr>'
    '{% endfor %}'
    '</table>'
    '<p><strong>Total: ${{ total }} {{ currency }}</strong></p>'
)


def _page(body: str) -> str:
    return _LAYOUT_HEAD + body + _LAYOUT_FOOT


DEFAULT_TEMPLATES: Dict[str, Tuple[str, str]] = {
    "order_confirmation": (
        "Order confirmation - {{ order_number }}",
        _page(
            "<p>Hi {{ customer_name }},</p>"
            "<p>Thanks for your order <strong>{{ order_number }}</strong>. We'll let you know when it ships.</p>"
            + _ITEMS_TABLE
        ),
    ),
    "payment_confirmation": (
        "Payment received - {{ order_number }}",
        _page(
            "<p>Hi {{ customer_name }},</p>"
            "<p>We've received your PayPal payment of <strong>${{ total }} {{ currency }}</strong> "
            "for order <strong>{{ order_number }}</strong>.</p>"
            "<p>PayPal transaction: {{ paypal_transaction_id }}<br>Paid: {{ paid_at }}</p>"
            + _ITEMS_TABLE
        ),
    ),
    "order_processing": (
        "Your order {{ order_number }} is being prepared",
        _page("<p>Hi {{ customer_name }},</p><p>Your order <strong>{{ order_number }}</strong> is now being prepared for dispatch.</p>"),
    ),
    "order_shipped": (
        "Your order {{ order_number }} has shipped",
        _page(
            "<p>Hi {{ customer_name }},</p>"
            "<p>Good news: order <strong>{{ order_number }}</strong> is on its way.</p>"
            "{% if tracking_number %}<p>Tracking number: <strong>{{ tracking_number }}</strong><br>"
            '<a href="{{ tracking_url }}">Track your parcel</a></p>{% endif %}'
        ),
    ),
    "order_delivered": (
        "Your order {{ order_number }} has been delivered",
        _page("<p>Hi {{ customer_name }},</p><p>Order <strong>{{ order_number }}</strong> has been delivered. Thanks for shopping with us.</p>"),
    ),
    "order_cancelled": (
        "Your order {{ order_number }} has been cancelled",
        _page(
            "<p>Hi {{ customer_name }},</p><p>Order <strong>{{ order_number }}</strong> has been cancelled.</p>"
            "{% if reason %}<p>Reason: {{ reason }}</p>{% endif %}"
        ),
    ),
    "order_refunded": (
        "Refund processed - {{ order_number }}",
        _page(
            "<p>Hi {{ customer_name }},</p>"
            "<p>A refund for order <strong>{{ order_number }}</strong> has been processed"
            "{% if refund_amount %} (${{ refund_amount }} {{ currency }}){% endif %}.</p>"
            "<p>It can take a few business days to appear in your account.</p>"
        ),
    ),
    "new_order_alert": (
        "New order {{ order_number }} - ${{ total }}",
        _page(
            "<p>New order <strong>{{ order_number }}</strong> from {{ customer_name }} ({{ customer_email }}).</p>"
            + _ITEMS_TABLE
            + '<p><a href="{{ admin_link }}">Open in admin</a></p>'
        ),
    ),
    "dispute_alert": (
        "PayPal dispute opened on order {{ order_number }}",
        _page(
            "<p>A PayPal dispute was opened on order <strong>{{ order_number }}</strong>.</p>"
            "<p>Dispute: {{ dispute_id }}<br>Reason: {{ reason }}</p>"
            '<p><a href="{{ admin_link }}">Open in admin</a></p>'
        ),
    ),
    "password_reset": (
        "Reset your Geelong Garage Doors password",
        _page(
            "<p>Hi {{ customer_name }},</p>"
            "<p>We received a request to reset your password. The link below is valid for one hour.</p>"
            '<p><a href="{{ reset_link }}">Reset password</a></p>'
            "<p>If you didn't ask for this, you can ignore this email.</p>"
        ),
    ),
    "test": (
        "Test email from Geelong Garage Doors",
        _page("<p>This is a test email. If you received it, the email system is working correctly.</p>"),
    ),
}

STATE_TEMPLATES = {
    "processing": "order_processing",
    "shipped": "order_shipped",
    "delivered": "order_delivered",
    "cancelled": "order_cancelled",
    "refunded": "order_refunded",
}

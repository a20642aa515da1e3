"""Message templates: storage, {{placeholder}} rendering and the branded HTML layout."""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

from jinja2 import Environment, select_autoescape

from .document_store import DocumentStore
from .errors import TemplateContextError, TemplateNotFoundError
from .models import MessageTemplate, Settings, TemplateType, _utc_now

logger = logging.getLogger("jewelcart.templates")

PLACEHOLDER_RE = re.compile(r"\{\{(\w+)\}\}")


class MessageKind(str, Enum):
    """System message purposes; the value is the template name looked up in the store."""

    ORDER_CONFIRMATION = "order_confirmation"
    ORDER_SHIPPED = "order_shipped"
    PAYMENT_APPROVED = "payment_approved"
    PAYMENT_REJECTED = "payment_rejected"
    MARKETING = "marketing"


SYSTEM_TEMPLATE_NAMES = frozenset(k.value for k in MessageKind if k is not MessageKind.MARKETING)

# Closed set of context fields each kind must be rendered with.
REQUIRED_FIELDS: dict[MessageKind, frozenset[str]] = {
    MessageKind.ORDER_CONFIRMATION: frozenset({"name", "orderId", "total", "companyName"}),
    MessageKind.ORDER_SHIPPED: frozenset(
        {"name", "orderId", "shortOrderId", "trackingId", "carrier", "companyName"}
    ),
    MessageKind.PAYMENT_APPROVED: frozenset({"name", "orderId", "shortOrderId", "companyName"}),
    MessageKind.PAYMENT_REJECTED: frozenset(
        {
            "name",
            "orderId",
            "shortOrderId",
            "accountUrl",
            "supportEmail",
            "supportPhone",
            "companyName",
        }
    ),
    MessageKind.MARKETING: frozenset({"name", "companyName"}),
}


@dataclass(frozen=True)
class RenderedMessage:
    subject: str
    body: str


@dataclass(frozen=True)
class DefaultTemplate:
    subject: str
    body: str


# Built-in fallbacks used when the store has no template of that name.
DEFAULT_TEMPLATES: dict[MessageKind, DefaultTemplate] = {
    MessageKind.ORDER_CONFIRMATION: DefaultTemplate(
        subject="Order Confirmed #{{orderId}} - {{companyName}}",
        body=(
            "<h1>Order Confirmed!</h1>\n"
            "<p>Hi <strong>{{name}}</strong>,</p>\n"
            "<p>We've received your order <strong class=\"highlight\">#{{orderId}}</strong> "
            "and are preparing it with care.</p>\n"
            "<div class=\"info-box\">\n"
            "  <p><strong>Order Number:</strong> #{{orderId}}</p>\n"
            "  <p><strong>Order Total:</strong> <span class=\"highlight\">${{total}}</span></p>\n"
            "  <p><strong>Status:</strong> Processing</p>\n"
            "</div>\n"
            "<p>We'll notify you as soon as it ships.</p>\n"
            "<p>Thank you for choosing {{companyName}}.</p>"
        ),
    ),
    MessageKind.ORDER_SHIPPED: DefaultTemplate(
        subject="Your Order #{{shortOrderId}} has been Shipped!",
        body=(
            "<h1>Great News, {{name}}!</h1>\n"
            "<p>Your order #{{orderId}} has been shipped.</p>\n"
            "<p><strong>Tracking Details:</strong></p>\n"
            "<p>Carrier: {{carrier}}</p>\n"
            "<p>Tracking Number: {{trackingId}}</p>\n"
            "<p>Track your package here: "
            "<a href=\"https://www.google.com/search?q={{carrier}}+{{trackingId}}\">Track Package</a></p>\n"
            "<p>Thank you for shopping with {{companyName}}.</p>"
        ),
    ),
    MessageKind.PAYMENT_APPROVED: DefaultTemplate(
        subject="Payment Confirmed - Order #{{shortOrderId}}",
        body=(
            "<h1>Payment Confirmed!</h1>\n"
            "<p>Hi {{name}},</p>\n"
            "<p>We have successfully verified your payment for order #{{orderId}}.</p>\n"
            "<p>Your order is now being processed and we will notify you once it has been shipped.</p>\n"
            "<p>Thank you for choosing {{companyName}}!</p>"
        ),
    ),
    MessageKind.PAYMENT_REJECTED: DefaultTemplate(
        subject="URGENT: Payment Verification Failed - Order #{{shortOrderId}}",
        body=(
            "<h1>Payment Rejected</h1>\n"
            "<p>Hi <strong>{{name}}</strong>,</p>\n"
            "<p>We could not verify the payment proof you uploaded for order "
            "<strong>#{{orderId}}</strong>.</p>\n"
            "<p><strong>Your order is on hold and will not be processed until a valid "
            "payment is confirmed.</strong></p>\n"
            "<p><strong>Next Steps:</strong></p>\n"
            "<ol>\n"
            "  <li>Log in to your account</li>\n"
            "  <li>Go to your order history</li>\n"
            "  <li>Re-upload a clear, valid transaction receipt or screenshot</li>\n"
            "</ol>\n"
            "<p><a href=\"{{accountUrl}}\" class=\"button-gold\">Re-upload Proof Now</a></p>\n"
            "<p><strong>Need Help?</strong> Contact our support team:</p>\n"
            "<p>Call Us: <a href=\"tel:{{supportPhone}}\">{{supportPhone}}</a></p>\n"
            "<p>Email: <a href=\"mailto:{{supportEmail}}\">{{supportEmail}}</a></p>\n"
            "<p>{{companyName}}</p>"
        ),
    ),
    MessageKind.MARKETING: DefaultTemplate(
        subject="News from {{companyName}}",
        body="<p>Hi {{name}},</p>\n<p>We have something new for you at {{companyName}}.</p>",
    ),
}


def render_text(text: str, values: Mapping[str, Any]) -> str:
    """
    Replace every literal ``{{key}}`` with its value.

    Matching is global and case-sensitive; tokens with no value are left as-is.
    """
    for key, value in values.items():
        text = text.replace("{{" + key + "}}", str(value))
    return text


def unresolved_placeholders(text: str) -> list[str]:
    """Placeholder names still present in rendered text."""
    return sorted(set(PLACEHOLDER_RE.findall(text)))


def render(subject: str, body: str, values: Mapping[str, Any]) -> RenderedMessage:
    """Render both fields of a template with the same values."""
    return RenderedMessage(
        subject=render_text(subject, values),
        body=render_text(body, values),
    )


class TemplateStore:
    """Named templates in the ``templates`` collection."""

    def __init__(self, store: DocumentStore):
        self._collection = store.templates

    def list_templates(self) -> list[MessageTemplate]:
        return [
            MessageTemplate.from_dict(d)
            for d in self._collection.find(sort_key=lambda d: d["name"])
        ]

    def find_by_name(self, name: str) -> MessageTemplate | None:
        doc = self._collection.find_one(lambda d: d.get("name") == name)
        return MessageTemplate.from_dict(doc) if doc else None

    def get(self, ref: str) -> MessageTemplate:
        """
        Get a template by ID or name.

        Raises:
            TemplateNotFoundError: If neither matches.
        """
        doc = self._collection.find_one(lambda d: d.get("id") == ref or d.get("name") == ref)
        if doc is None:
            raise TemplateNotFoundError(ref)
        return MessageTemplate.from_dict(doc)

    def upsert(
        self,
        name: str,
        subject: str,
        body: str,
        placeholders: list[str] | None = None,
        type: TemplateType | None = None,
    ) -> MessageTemplate:
        """
        Create the named template, or replace its content when it exists.

        Without ``type`` an existing template keeps its own; a new one is
        ``system`` when the name belongs to a system message kind and
        ``marketing`` otherwise.
        """
        if placeholders is None:
            placeholders = unresolved_placeholders(subject + body)
        initial_type = type or (
            TemplateType.SYSTEM if name in SYSTEM_TEMPLATE_NAMES else TemplateType.MARKETING
        )
        template = MessageTemplate.create(name, subject, body, placeholders, initial_type)
        doc, created = self._collection.insert_if_absent(
            lambda d: d.get("name") == name, template.to_dict()
        )
        if created:
            return template
        changes: dict = {
            "subject": subject,
            "body": body,
            "placeholders": placeholders,
            "updated_at": _utc_now(),
        }
        if type is not None:
            changes["type"] = type.value
        updated = self._collection.update(doc["id"], changes)
        return MessageTemplate.from_dict(updated or doc)

    def seed_defaults(self) -> list[str]:
        """
        Insert the built-in system templates that are missing.

        Existing templates are never overwritten. Returns the names created.
        """
        created_names = []
        for kind, default in DEFAULT_TEMPLATES.items():
            template = MessageTemplate.create(
                name=kind.value,
                subject=default.subject,
                body=default.body,
                placeholders=sorted(REQUIRED_FIELDS[kind]),
                type=TemplateType.MARKETING if kind is MessageKind.MARKETING else TemplateType.SYSTEM,
            )
            _, created = self._collection.insert_if_absent(
                lambda d, name=kind.value: d.get("name") == name, template.to_dict()
            )
            if created:
                created_names.append(kind.value)
        if created_names:
            logger.info("Seeded default templates: %s", ", ".join(created_names))
        return created_names


def render_message(
    kind: MessageKind,
    context: Mapping[str, Any],
    templates: TemplateStore | None = None,
) -> RenderedMessage:
    """
    Render the stored template for ``kind``, or its built-in default.

    Raises:
        TemplateContextError: If ``context`` lacks a field the kind requires.
    """
    missing = REQUIRED_FIELDS[kind] - set(context)
    if missing:
        raise TemplateContextError(kind.value, sorted(missing))

    stored = templates.find_by_name(kind.value) if templates is not None else None
    if stored is not None:
        subject, body = stored.subject, stored.body
    else:
        default = DEFAULT_TEMPLATES[kind]
        subject, body = default.subject, default.body

    rendered = render(subject, body, context)
    leftovers = unresolved_placeholders(rendered.subject + rendered.body)
    if leftovers:
        logger.warning(
            "Template '%s' rendered with unresolved placeholders: %s",
            kind.value,
            ", ".join(leftovers),
        )
    return rendered


# --- Branded layout ---

_LAYOUT = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{{ title }}</title>
  <style>
    body { font-family: 'Segoe UI', Tahoma, Geneva, Verdana, sans-serif; line-height: 1.7; color: #333333; background: #f5f7fa; }
    .main-card { max-width: 600px; margin: 0 auto; background: #ffffff; border-radius: 20px; border: 1px solid rgba(212, 175, 55, 0.1); }
    .header { padding: 40px 30px; text-align: center; border-bottom: 2px solid #f8f8f8; }
    .logo { max-width: 140px; height: auto; }
    .content { padding: 45px 40px; }
    .footer { padding: 35px 30px; text-align: center; color: #888888; font-size: 13px; }
    .info-box { background: #f9f9f9; padding: 25px; border-radius: 14px; border-left: 4px solid {{ brand_color }}; }
    .highlight { color: {{ brand_color }}; font-weight: 700; }
    .button, .button-gold { display: inline-block; padding: 16px 40px; border-radius: 12px; font-weight: 700; text-decoration: none; }
    .button { background: #000000; color: #ffffff !important; }
    .button-gold { background: {{ brand_color }}; color: #000000 !important; }
  </style>
</head>
<body>
  <div class="main-card">
    <div class="header">
      <img src="{{ logo_url }}" alt="{{ company_name }}" class="logo">
    </div>
    <div class="content">
      {{ content | safe }}
    </div>
    <div class="footer">
      <p>&copy; {{ year }} {{ company_name }}. All Rights Reserved.</p>
      <p><a href="{{ store_url }}">Visit Store</a></p>
    </div>
  </div>
</body>
</html>
"""

BRAND_COLOR = "#d4af37"

_env = Environment(autoescape=select_autoescape(default_for_string=True))
_layout_template = _env.from_string(_LAYOUT)


def wrap_layout(content: str, title: str, settings: Settings, store_url: str) -> str:
    """Wrap rendered HTML content in the store's branded email layout."""
    logo = settings.company_logo
    if not logo.startswith("http"):
        logo = store_url.rstrip("/") + "/" + logo.lstrip("/")
    return _layout_template.render(
        title=title,
        content=content,
        logo_url=logo,
        company_name=settings.company_name,
        store_url=store_url,
        brand_color=BRAND_COLOR,
        year=datetime.now(timezone.utc).year,
    )

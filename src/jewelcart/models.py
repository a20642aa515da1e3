"""Data models for jewelcart."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
import uuid


def _format_ts(moment: datetime) -> str:
    """Format a datetime as a fixed-width UTC ISO 8601 string (sortable as text)."""
    moment = moment.astimezone(timezone.utc)
    return moment.isoformat(timespec="microseconds").replace("+00:00", "Z")


def _parse_ts(value: str) -> datetime:
    """Parse a timestamp written by _format_ts."""
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _utc_now() -> str:
    """Return current UTC time as ISO 8601 string."""
    return _format_ts(datetime.now(timezone.utc))


def _generate_id() -> str:
    """Generate a new document ID."""
    return uuid.uuid4().hex


class PaymentStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class OrderStatus(str, Enum):
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class MessageStatus(str, Enum):
    """Lifecycle status of a queued message."""

    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"


class MessageCategory(str, Enum):
    """How a queued message is delivered: right away, or through the rate-limited drain."""

    TRANSACTIONAL = "transactional"
    BULK = "bulk"


class TemplateType(str, Enum):
    SYSTEM = "system"
    MARKETING = "marketing"


SETTINGS_ID = "settings"


@dataclass
class Settings:
    """Store-wide shipping and branding configuration (singleton document)."""

    standard_shipping_fee: float = 0.0
    free_shipping_threshold: float = 0.0
    company_name: str = "Sara Jewelers"
    company_logo: str = "/logo.webp"
    id: str = SETTINGS_ID
    created_at: str = field(default_factory=_utc_now)
    updated_at: str = field(default_factory=_utc_now)

    def shipping_for(self, subtotal: float) -> float:
        """Shipping fee charged for a cart subtotal."""
        if subtotal >= self.free_shipping_threshold:
            return 0.0
        return self.standard_shipping_fee

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "standard_shipping_fee": self.standard_shipping_fee,
            "free_shipping_threshold": self.free_shipping_threshold,
            "company_name": self.company_name,
            "company_logo": self.company_logo,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Settings":
        return cls(
            id=data.get("id", SETTINGS_ID),
            standard_shipping_fee=float(data.get("standard_shipping_fee", 0)),
            free_shipping_threshold=float(data.get("free_shipping_threshold", 0)),
            company_name=data.get("company_name") or "Sara Jewelers",
            company_logo=data.get("company_logo") or "/logo.webp",
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
        )


@dataclass
class CustomerSnapshot:
    """Contact and shipping details copied onto the order at checkout."""

    first_name: str
    last_name: str
    email: str
    phone: str
    address: str
    city: str
    zip_code: str

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self) -> dict[str, Any]:
        return {
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "city": self.city,
            "zip_code": self.zip_code,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CustomerSnapshot":
        return cls(
            first_name=data["first_name"],
            last_name=data["last_name"],
            email=data["email"],
            phone=data["phone"],
            address=data["address"],
            city=data["city"],
            zip_code=data["zip_code"],
        )


@dataclass(frozen=True)
class LineItem:
    """One cart line, with name and unit price frozen at order time."""

    product_id: str
    name: str
    price: float
    quantity: int
    image: str | None = None
    selected_variations: dict[str, str] = field(default_factory=dict)

    @property
    def line_total(self) -> float:
        return self.price * self.quantity

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "product_id": self.product_id,
            "name": self.name,
            "price": self.price,
            "quantity": self.quantity,
            "selected_variations": dict(self.selected_variations),
        }
        if self.image is not None:
            result["image"] = self.image
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LineItem":
        return cls(
            product_id=str(data["product_id"]),
            name=data["name"],
            price=float(data["price"]),
            quantity=int(data["quantity"]),
            image=data.get("image"),
            selected_variations=dict(data.get("selected_variations") or {}),
        )


@dataclass
class Order:
    """One checkout: customer snapshot, frozen line items, totals and both statuses."""

    id: str
    user_id: str
    customer: CustomerSnapshot
    items: list[LineItem]
    subtotal: float
    shipping: float
    total: float
    payment_status: PaymentStatus = PaymentStatus.PENDING
    order_status: OrderStatus = OrderStatus.PROCESSING
    payment_method: str = "bank_transfer"
    payment_proof: str | None = None
    tracking_id: str | None = None
    carrier: str | None = None
    created_at: str = field(default_factory=_utc_now)
    updated_at: str = field(default_factory=_utc_now)

    @property
    def short_id(self) -> str:
        """Last six characters of the ID, used in subjects."""
        return self.id[-6:]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "customer": self.customer.to_dict(),
            "items": [item.to_dict() for item in self.items],
            "subtotal": self.subtotal,
            "shipping": self.shipping,
            "total": self.total,
            "payment_status": self.payment_status.value,
            "order_status": self.order_status.value,
            "payment_method": self.payment_method,
            "payment_proof": self.payment_proof,
            "tracking_id": self.tracking_id,
            "carrier": self.carrier,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Order":
        return cls(
            id=data["id"],
            user_id=data["user_id"],
            customer=CustomerSnapshot.from_dict(data["customer"]),
            items=[LineItem.from_dict(i) for i in data.get("items", [])],
            subtotal=data["subtotal"],
            shipping=data["shipping"],
            total=data["total"],
            payment_status=PaymentStatus(data.get("payment_status", "pending")),
            order_status=OrderStatus(data.get("order_status", "processing")),
            payment_method=data.get("payment_method", "bank_transfer"),
            payment_proof=data.get("payment_proof"),
            tracking_id=data.get("tracking_id"),
            carrier=data.get("carrier"),
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
        )

    @classmethod
    def create(
        cls,
        user_id: str,
        customer: CustomerSnapshot,
        items: list[LineItem],
        subtotal: float,
        shipping: float,
        payment_proof: str | None = None,
    ) -> "Order":
        """Create a new order with generated ID; total is always subtotal + shipping."""
        now = _utc_now()
        return cls(
            id=_generate_id(),
            user_id=user_id,
            customer=customer,
            items=list(items),
            subtotal=subtotal,
            shipping=shipping,
            total=subtotal + shipping,
            payment_proof=payment_proof,
            created_at=now,
            updated_at=now,
        )


@dataclass
class MessageTemplate:
    """A named subject/body pair with {{placeholder}} tokens."""

    id: str
    name: str
    subject: str
    body: str
    placeholders: list[str] = field(default_factory=list)
    type: TemplateType = TemplateType.MARKETING
    created_at: str = field(default_factory=_utc_now)
    updated_at: str = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "subject": self.subject,
            "body": self.body,
            "placeholders": list(self.placeholders),
            "type": self.type.value,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MessageTemplate":
        return cls(
            id=data["id"],
            name=data["name"],
            subject=data["subject"],
            body=data["body"],
            placeholders=list(data.get("placeholders", [])),
            type=TemplateType(data.get("type", "marketing")),
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
        )

    @classmethod
    def create(
        cls,
        name: str,
        subject: str,
        body: str,
        placeholders: list[str] | None = None,
        type: TemplateType = TemplateType.MARKETING,
    ) -> "MessageTemplate":
        now = _utc_now()
        return cls(
            id=_generate_id(),
            name=name,
            subject=subject,
            body=body,
            placeholders=list(placeholders or []),
            type=type,
            created_at=now,
            updated_at=now,
        )


@dataclass
class QueuedMessage:
    """One outbound email and its delivery bookkeeping."""

    id: str
    to: str
    subject: str
    body: str
    category: MessageCategory = MessageCategory.TRANSACTIONAL
    status: MessageStatus = MessageStatus.PENDING
    attempts: int = 0
    last_error: str | None = None
    scheduled_at: str = field(default_factory=_utc_now)
    sent_at: str | None = None
    provider_message_id: str | None = None
    created_at: str = field(default_factory=_utc_now)
    updated_at: str = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "to": self.to,
            "subject": self.subject,
            "body": self.body,
            "category": self.category.value,
            "status": self.status.value,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "scheduled_at": self.scheduled_at,
            "sent_at": self.sent_at,
            "provider_message_id": self.provider_message_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QueuedMessage":
        return cls(
            id=data["id"],
            to=data["to"],
            subject=data["subject"],
            body=data["body"],
            category=MessageCategory(data.get("category", "transactional")),
            status=MessageStatus(data.get("status", "pending")),
            attempts=data.get("attempts", 0),
            last_error=data.get("last_error"),
            scheduled_at=data.get("scheduled_at", ""),
            sent_at=data.get("sent_at"),
            provider_message_id=data.get("provider_message_id"),
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
        )

    @classmethod
    def create(
        cls,
        to: str,
        subject: str,
        body: str,
        category: MessageCategory = MessageCategory.TRANSACTIONAL,
        scheduled_at: str | None = None,
    ) -> "QueuedMessage":
        now = _utc_now()
        return cls(
            id=_generate_id(),
            to=to,
            subject=subject,
            body=body,
            category=category,
            scheduled_at=scheduled_at or now,
            created_at=now,
            updated_at=now,
        )


@dataclass
class AdminNotification:
    """A "something happened" entry for the admin dashboard."""

    id: str
    title: str
    message: str
    type: str = "other"  # "order"|"custom_design"|"review"|"inventory"|"other"
    link: str | None = None
    is_read: bool = False
    created_at: str = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "message": self.message,
            "type": self.type,
            "link": self.link,
            "is_read": self.is_read,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AdminNotification":
        return cls(
            id=data["id"],
            title=data["title"],
            message=data["message"],
            type=data.get("type", "other"),
            link=data.get("link"),
            is_read=data.get("is_read", False),
            created_at=data.get("created_at", ""),
        )

    @classmethod
    def create(
        cls, title: str, message: str, type: str = "other", link: str | None = None
    ) -> "AdminNotification":
        return cls(
            id=_generate_id(),
            title=title,
            message=message,
            type=type,
            link=link,
        )


@dataclass
class Customer:
    """The slice of a user account the pipeline reads (marketing recipients)."""

    id: str
    email: str | None
    name: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Customer":
        return cls(id=data["id"], email=data.get("email"), name=data.get("name"))

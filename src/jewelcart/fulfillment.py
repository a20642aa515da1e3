"""Order fulfillment: checkout, payment proof, admin status changes and bulk mail.

Only the write of the order document itself decides whether an operation
succeeds. Stock adjustment, the admin notification and customer emails are
best-effort side effects: their failures are logged and never reach the
caller.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from .config import AppConfig
from .dispatcher import Dispatcher, DrainReport
from .document_store import DocumentStore
from .errors import (
    OrderNotFoundError,
    OrderOwnershipError,
    StoreError,
    TemplateNotFoundError,
    ValidationError,
)
from .inventory import InventoryAdjuster
from .models import (
    Customer,
    CustomerSnapshot,
    LineItem,
    MessageCategory,
    Order,
    OrderStatus,
    PaymentStatus,
    QueuedMessage,
    _utc_now,
)
from .notifications import NotificationStore
from .outbox import Clock, OutboundQueue
from .settings_store import SettingsStore
from .state_machine import StatusChange, plan_notifications, validate_transition
from .templates import MessageKind, TemplateStore, render, render_message
from .transport import Transport, build_transport

logger = logging.getLogger("jewelcart.fulfillment")

DEFAULT_CARRIER = "Standard Shipping"
DEFAULT_TRACKING = "N/A"
DEFAULT_RECIPIENT_NAME = "Valued Customer"
ADMIN_ORDER_LINK = "/admin/dashboard/orders/{order_id}"
# Conditional admin writes re-validate this many times before giving up.
UPDATE_ATTEMPTS = 5


@dataclass
class OrderUpdate:
    """Partial admin update; None means "leave unchanged"."""

    order_status: OrderStatus | None = None
    payment_status: PaymentStatus | None = None
    tracking_id: str | None = None
    carrier: str | None = None
    notify_customer: bool = False


@dataclass
class OrderPage:
    orders: list[Order]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


@dataclass
class MarketingResult:
    recipient_count: int
    queued: list[QueuedMessage] = field(default_factory=list)


def validate_checkout(items: list[LineItem], subtotal: float, payment_proof: str | None) -> None:
    """
    Reject a cart before anything is written.

    Raises:
        ValidationError: On the first problem found.
    """
    if not items:
        raise ValidationError("At least one item is required", field="items")
    for item in items:
        if item.quantity < 1:
            raise ValidationError(
                f"Quantity for {item.name} must be at least 1", field="items.quantity"
            )
        if item.price < 0:
            raise ValidationError(f"Price for {item.name} cannot be negative", field="items.price")
    if subtotal < 0:
        raise ValidationError("Subtotal cannot be negative", field="subtotal")
    if not payment_proof:
        raise ValidationError("Payment proof is required", field="payment_proof")


class FulfillmentService:
    """Entry point for order creation, admin updates and bulk marketing sends."""

    def __init__(
        self,
        store: DocumentStore,
        dispatcher: Dispatcher,
        config: AppConfig | None = None,
    ):
        self.config = config or AppConfig()
        self.store = store
        self.dispatcher = dispatcher
        self.queue = dispatcher.queue
        self.settings = dispatcher.settings
        self.templates = TemplateStore(store)
        self.inventory = InventoryAdjuster(store)
        self.notifications = NotificationStore(store)
        self._orders = store.orders

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        transport: Transport | None = None,
        clock: Clock | None = None,
        sleep: Any = None,
    ) -> "FulfillmentService":
        """Wire store, queue, dispatcher and transport from configuration."""
        store = DocumentStore(config.data_dir)
        kwargs = {"sleep": sleep} if sleep is not None else {}
        dispatcher = Dispatcher(
            OutboundQueue(store, clock=clock),
            transport or build_transport(config),
            SettingsStore(store),
            store_url=config.store_url,
            max_attempts=config.max_attempts,
            retry_delay=timedelta(seconds=config.retry_delay_seconds),
            **kwargs,
        )
        return cls(store, dispatcher, config)

    def startup(self) -> None:
        """Create the Settings document and default templates if they are missing."""
        self.settings.ensure()
        self.templates.seed_defaults()

    # --- Reads ---

    def get_order(self, order_id: str) -> Order:
        """
        Raises:
            OrderNotFoundError: If the order doesn't exist.
        """
        doc = self._orders.get(order_id)
        if doc is None:
            raise OrderNotFoundError(order_id)
        return Order.from_dict(doc)

    def list_user_orders(self, user_id: str) -> list[Order]:
        docs = self._orders.find(
            lambda d: d.get("user_id") == user_id,
            sort_key=lambda d: d.get("created_at", ""),
            reverse=True,
        )
        return [Order.from_dict(d) for d in docs]

    def search_orders(
        self,
        page: int = 1,
        limit: int = 10,
        search: str = "",
        status: OrderStatus | None = None,
    ) -> OrderPage:
        """Admin listing: newest first, filtered by customer text or exact ID and status."""
        needle = search.strip().lower()

        def matches(doc: dict) -> bool:
            if status is not None and doc.get("order_status") != status.value:
                return False
            if not needle:
                return True
            customer = doc.get("customer", {})
            fields = (customer.get("first_name", ""), customer.get("last_name", ""), customer.get("email", ""))
            return doc.get("id") == search.strip() or any(needle in f.lower() for f in fields)

        docs = self._orders.find(matches, sort_key=lambda d: d.get("created_at", ""), reverse=True)
        page = max(page, 1)
        start = (page - 1) * limit
        return OrderPage(
            orders=[Order.from_dict(d) for d in docs[start:start + limit]],
            page=page,
            limit=limit,
            total=len(docs),
        )

    # --- Checkout ---

    def create_order(
        self,
        user_id: str,
        customer: CustomerSnapshot,
        items: list[LineItem],
        subtotal: float,
        payment_proof: str | None,
    ) -> Order:
        """
        Price, persist and announce a new order.

        Raises:
            ValidationError: If the cart is malformed (nothing is written).
            StoreError: If the order document cannot be written.
        """
        validate_checkout(items, subtotal, payment_proof)

        settings = self.settings.load()
        shipping = settings.shipping_for(subtotal)
        order = Order.create(
            user_id=user_id,
            customer=customer,
            items=items,
            subtotal=subtotal,
            shipping=shipping,
            payment_proof=payment_proof,
        )
        self._orders.insert(order.to_dict())
        logger.info(
            "Order %s placed by %s: subtotal=%.2f shipping=%.2f total=%.2f",
            order.id,
            user_id,
            order.subtotal,
            order.shipping,
            order.total,
        )

        try:
            report = self.inventory.apply_order_lines(order.items)
            if report.failed:
                logger.warning(
                    "Order %s: stock not adjusted for %s", order.id, ", ".join(report.failed)
                )
        except Exception:
            logger.exception("Stock adjustment failed for order %s", order.id)

        try:
            self.notifications.create(
                title="New Order Placed",
                message=(
                    f"A new order has been placed by {customer.full_name} "
                    f"for ${order.total:.2f}."
                ),
                type="order",
                link=ADMIN_ORDER_LINK.format(order_id=order.id),
            )
        except Exception:
            logger.exception("Failed to create admin notification for order %s", order.id)

        self._send_customer_message(MessageKind.ORDER_CONFIRMATION, order)
        return order

    def resubmit_payment(self, order_id: str, user_id: str, payment_proof: str) -> Order:
        """
        Replace the payment proof and put the payment back to pending.

        Totals, items and stock are not touched.

        Raises:
            ValidationError: If no proof is given.
            OrderNotFoundError: If the order doesn't exist.
            OrderOwnershipError: If the order belongs to another user.
        """
        if not payment_proof:
            raise ValidationError("Payment proof is required", field="payment_proof")
        order = self.get_order(order_id)
        if order.user_id != user_id:
            raise OrderOwnershipError(order_id, user_id)

        doc = self._orders.update(
            order_id,
            {
                "payment_proof": payment_proof,
                "payment_status": PaymentStatus.PENDING.value,
                "updated_at": _utc_now(),
            },
        )
        if doc is None:
            raise OrderNotFoundError(order_id)
        logger.info("Payment proof re-submitted for order %s", order_id)
        return Order.from_dict(doc)

    # --- Admin ---

    def admin_update_order(self, order_id: str, update: OrderUpdate) -> Order:
        """
        Apply an admin status edit, then send whatever messages the diff calls for.

        The write only lands if both statuses still hold the values that were
        validated. When another writer got there first, the order is re-read
        and the move validated again against what it changed to.

        Raises:
            OrderNotFoundError: If the order doesn't exist.
            InvalidTransitionError: If a status move is not allowed (nothing is written).
            StoreError: If the order keeps changing underneath the update.
        """
        changes: dict[str, Any] = {}
        if update.order_status is not None:
            changes["order_status"] = update.order_status.value
        if update.payment_status is not None:
            changes["payment_status"] = update.payment_status.value
        if update.tracking_id is not None:
            changes["tracking_id"] = update.tracking_id
        if update.carrier is not None:
            changes["carrier"] = update.carrier

        for _ in range(UPDATE_ATTEMPTS):
            old = self.get_order(order_id)
            validate_transition(
                old.order_status, update.order_status, old.payment_status, update.payment_status
            )

            def unchanged(doc: dict, old: Order = old) -> bool:
                return (
                    doc.get("id") == order_id
                    and doc.get("order_status") == old.order_status.value
                    and doc.get("payment_status") == old.payment_status.value
                )

            doc = self._orders.find_one_and_update(
                unchanged, {**changes, "updated_at": _utc_now()}
            )
            if doc is not None:
                break
            logger.info("Order %s changed during admin update, re-validating", order_id)
        else:
            raise StoreError("orders", f"order {order_id} kept changing during update")

        order = Order.from_dict(doc)
        logger.info(
            "Order %s updated: order_status %s -> %s, payment_status %s -> %s",
            order_id,
            old.order_status.value,
            order.order_status.value,
            old.payment_status.value,
            order.payment_status.value,
        )

        change = StatusChange(
            old_order=old.order_status,
            old_payment=old.payment_status,
            new_order=update.order_status,
            new_payment=update.payment_status,
            notify_customer=update.notify_customer,
        )
        for kind in plan_notifications(change):
            self._send_customer_message(kind, order)
        return order

    def delete_order(self, order_id: str) -> Order:
        """Hard-delete an order (admin only). Stock is not restored."""
        doc = self._orders.delete(order_id)
        if doc is None:
            raise OrderNotFoundError(order_id)
        logger.info("Order %s deleted", order_id)
        return Order.from_dict(doc)

    # --- Customer messages ---

    def _message_context(self, kind: MessageKind, order: Order) -> dict[str, str]:
        settings = self.settings.load()
        context = {
            "name": order.customer.first_name,
            "orderId": order.id,
            "shortOrderId": order.short_id,
            "companyName": settings.company_name,
        }
        if kind is MessageKind.ORDER_CONFIRMATION:
            context["total"] = f"{order.total:.2f}"
        elif kind is MessageKind.ORDER_SHIPPED:
            context["trackingId"] = order.tracking_id or DEFAULT_TRACKING
            context["carrier"] = order.carrier or DEFAULT_CARRIER
        elif kind is MessageKind.PAYMENT_REJECTED:
            context["accountUrl"] = f"{self.config.store_url}/account?tab=orders"
            context["supportEmail"] = self.config.support_email
            context["supportPhone"] = self.config.support_phone
        return context

    def _send_customer_message(self, kind: MessageKind, order: Order) -> QueuedMessage | None:
        """Render, enqueue and immediately attempt one message. Never raises."""
        try:
            rendered = render_message(kind, self._message_context(kind, order), self.templates)
            message = self.queue.enqueue(order.customer.email, rendered.subject, rendered.body)
        except Exception:
            logger.exception("Failed to queue %s email for order %s", kind.value, order.id)
            return None
        return self.dispatcher.deliver_now(message.id) or message

    # --- Bulk marketing ---

    def queue_marketing(
        self,
        user_ids: list[str],
        template_ref: str | None = None,
        subject: str | None = None,
        body: str | None = None,
    ) -> MarketingResult:
        """
        Personalize a marketing message per recipient and enqueue it as bulk mail.

        A stored template (by ID or name) wins over the literal subject/body;
        ``custom`` or an unknown reference falls back to the literal content.
        Delivery is left to ``dispatch_bulk``.

        Raises:
            ValidationError: If there are no recipients or no content.
        """
        if not user_ids:
            raise ValidationError("At least one recipient is required", field="user_ids")

        if template_ref and template_ref != "custom":
            try:
                template = self.templates.get(template_ref)
                subject, body = template.subject, template.body
            except TemplateNotFoundError:
                logger.warning("Marketing template %s not found, using literal content", template_ref)
        if not subject or not body:
            raise ValidationError("Message content is required", field="body")

        wanted = set(user_ids)
        recipients = [
            Customer.from_dict(d) for d in self.store.users.find(lambda d: d.get("id") in wanted)
        ]
        company_name = self.settings.load().company_name

        tasks = []
        for user in recipients:
            if not user.email:
                logger.warning("Skipping user %s without an email address", user.id)
                continue
            rendered = render(
                subject,
                body,
                {"name": user.name or DEFAULT_RECIPIENT_NAME, "companyName": company_name},
            )
            tasks.append((user.email, rendered.subject, rendered.body))

        queued = self.queue.enqueue_many(tasks, category=MessageCategory.BULK)
        logger.info("[Marketing] Queued %d email(s) for %d requested user(s)", len(queued), len(user_ids))
        return MarketingResult(recipient_count=len(queued), queued=queued)

    def dispatch_bulk(self) -> DrainReport | None:
        """Run one rate-limited drain; meant to run detached from the request."""
        try:
            return self.dispatcher.drain(self.config.bulk_delay_ms)
        except Exception:
            logger.exception("[Queue Processor Error] bulk drain aborted")
            return None

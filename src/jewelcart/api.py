"""FastAPI REST API for jewelcart order fulfillment."""

from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field

from . import __version__
from .config import AppConfig
from .errors import (
    ConfigError,
    DeliveryError,
    InvalidTransitionError,
    JewelcartError,
    OrderNotFoundError,
    OrderOwnershipError,
    QueuedMessageNotFoundError,
    StoreError,
    TemplateContextError,
    TemplateNotFoundError,
    ValidationError,
)
from .fulfillment import FulfillmentService, OrderUpdate
from .models import (
    CustomerSnapshot,
    LineItem,
    MessageStatus,
    Order,
    OrderStatus,
    PaymentStatus,
    TemplateType,
)


# --- Pydantic Schemas ---


class CustomerSchema(BaseModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = Field(..., min_length=10)
    address: str = Field(..., min_length=5)
    city: str = Field(..., min_length=1)
    zip_code: str = Field(..., min_length=1)


class LineItemSchema(BaseModel):
    product_id: str
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    image: Optional[str] = None
    selected_variations: dict[str, str] = Field(default_factory=dict)


class OrderCreateRequest(BaseModel):
    """Checkout payload: customer snapshot, cart lines and the uploaded payment proof."""

    customer: CustomerSchema
    items: list[LineItemSchema] = Field(..., min_length=1)
    subtotal: float = Field(..., ge=0)
    payment_proof: str = Field(..., min_length=1, description="Reference to the uploaded receipt")


class OrderCreateResponse(BaseModel):
    message: str
    order_id: str


class PaymentResubmitRequest(BaseModel):
    payment_proof: str = Field(..., min_length=1)


class OrderUpdateRequest(BaseModel):
    """Admin status edit; omitted fields are left unchanged."""

    order_status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    tracking_id: Optional[str] = None
    carrier: Optional[str] = None
    notify_customer: bool = Field(
        default=False,
        description="Re-send the shipped email when order_status is set to shipped again",
    )


class OrderSchema(BaseModel):
    id: str
    user_id: str
    customer: CustomerSchema
    items: list[LineItemSchema]
    subtotal: float
    shipping: float
    total: float
    payment_status: PaymentStatus
    order_status: OrderStatus
    payment_method: str
    payment_proof: Optional[str] = None
    tracking_id: Optional[str] = None
    carrier: Optional[str] = None
    created_at: str
    updated_at: str


class OrderListResponse(BaseModel):
    orders: list[OrderSchema]
    count: int


class PaginationSchema(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class AdminOrderListResponse(BaseModel):
    orders: list[OrderSchema]
    pagination: PaginationSchema


class MarketingSendRequest(BaseModel):
    user_ids: list[str] = Field(..., min_length=1)
    template_id: Optional[str] = Field(
        None, description="Template ID or name, or 'custom' to use subject/body as given"
    )
    subject: Optional[str] = None
    body: Optional[str] = None


class MarketingSendResponse(BaseModel):
    success: bool
    message: str
    recipient_count: int


class TemplateSchema(BaseModel):
    id: str
    name: str
    subject: str
    body: str
    placeholders: list[str]
    type: TemplateType
    created_at: str
    updated_at: str


class TemplateUpsertRequest(BaseModel):
    subject: str = Field(..., min_length=1)
    body: str = Field(..., min_length=1)
    placeholders: Optional[list[str]] = None
    type: Optional[TemplateType] = None


class TemplateListResponse(BaseModel):
    templates: list[TemplateSchema]
    count: int


class QueuedMessageSchema(BaseModel):
    id: str
    to: str
    subject: str
    category: str
    status: MessageStatus
    attempts: int
    last_error: Optional[str] = None
    scheduled_at: str
    sent_at: Optional[str] = None
    created_at: str


class QueueListResponse(BaseModel):
    messages: list[QueuedMessageSchema]
    count: int
    counts_by_status: dict[str, int]


class NotificationSchema(BaseModel):
    id: str
    title: str
    message: str
    type: str
    link: Optional[str] = None
    is_read: bool
    created_at: str


class NotificationListResponse(BaseModel):
    notifications: list[NotificationSchema]
    unread_count: int


class SettingsSchema(BaseModel):
    standard_shipping_fee: float
    free_shipping_threshold: float
    company_name: str
    company_logo: str


class SettingsUpdateRequest(BaseModel):
    standard_shipping_fee: Optional[float] = Field(None, ge=0)
    free_shipping_threshold: Optional[float] = Field(None, ge=0)
    company_name: Optional[str] = Field(None, min_length=1)
    company_logo: Optional[str] = None


class ErrorResponse(BaseModel):
    detail: str
    error_type: str


# --- Helper Functions ---


@lru_cache(maxsize=1)
def get_service() -> FulfillmentService:
    """Get the process-wide FulfillmentService."""
    return FulfillmentService.from_config(AppConfig.from_env())


def get_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Authenticated customer ID, set by the session layer in front of this API."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return x_user_id


def order_to_schema(order: Order) -> OrderSchema:
    """Convert dataclass Order to Pydantic schema."""
    return OrderSchema.model_validate(order.to_dict())


def _to_snapshot(customer: CustomerSchema) -> CustomerSnapshot:
    return CustomerSnapshot(**customer.model_dump())


def _to_line_item(item: LineItemSchema) -> LineItem:
    return LineItem(**item.model_dump())


# --- FastAPI App ---


@asynccontextmanager
async def lifespan(app: FastAPI):
    service = app.dependency_overrides.get(get_service, get_service)()
    service.startup()
    yield


app = FastAPI(
    title="jewelcart API",
    description="Order fulfillment, payment review and customer messaging for the jewelry storefront",
    version=__version__,
    lifespan=lifespan,
)

# CORS for the storefront running locally
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Global Exception Handler ---


# Map exception types to HTTP status codes
ERROR_STATUS_CODES: dict[type, int] = {
    ValidationError: 400,
    OrderNotFoundError: 404,
    # Another customer's order is reported like a missing one.
    OrderOwnershipError: 404,
    InvalidTransitionError: 409,
    TemplateNotFoundError: 404,
    TemplateContextError: 500,
    QueuedMessageNotFoundError: 404,
    StoreError: 500,
    ConfigError: 500,
    DeliveryError: 502,
}


@app.exception_handler(JewelcartError)
async def jewelcart_error_handler(request: Request, exc: JewelcartError) -> JSONResponse:
    """Map JewelcartError subclasses to appropriate HTTP responses."""
    status_code = ERROR_STATUS_CODES.get(type(exc), 500)
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error_type": type(exc).__name__},
    )


# --- Endpoints ---


@app.get("/api/health")
def health_check(service: FulfillmentService = Depends(get_service)):
    """
    Health check endpoint.

    Reports whether the data directory is usable and how many queued
    messages sit in each status.
    """
    try:
        return {
            "status": "ok",
            "store_available": service.store.is_available(),
            "queue": service.queue.counts_by_status(),
        }
    except Exception as e:
        return {
            "status": "error",
            "detail": str(e),
        }


# --- Customer Order Endpoints ---


@app.post("/api/orders", response_model=OrderCreateResponse, status_code=201)
def create_order(
    request: OrderCreateRequest,
    user_id: str = Depends(get_user_id),
    service: FulfillmentService = Depends(get_service),
):
    """Place an order. Confirmation email and stock adjustment never fail the request."""
    order = service.create_order(
        user_id=user_id,
        customer=_to_snapshot(request.customer),
        items=[_to_line_item(i) for i in request.items],
        subtotal=request.subtotal,
        payment_proof=request.payment_proof,
    )
    return OrderCreateResponse(message="Order placed successfully", order_id=order.id)


@app.get("/api/orders", response_model=OrderListResponse)
def list_my_orders(
    user_id: str = Depends(get_user_id),
    service: FulfillmentService = Depends(get_service),
):
    """List the caller's orders, newest first."""
    orders = service.list_user_orders(user_id)
    return OrderListResponse(orders=[order_to_schema(o) for o in orders], count=len(orders))


@app.patch("/api/orders/{order_id}/payment", response_model=OrderSchema)
def resubmit_payment(
    order_id: str,
    request: PaymentResubmitRequest,
    user_id: str = Depends(get_user_id),
    service: FulfillmentService = Depends(get_service),
):
    """Upload a new payment proof; the payment goes back to pending review."""
    order = service.resubmit_payment(order_id, user_id, request.payment_proof)
    return order_to_schema(order)


# --- Admin Order Endpoints ---


@app.get("/api/admin/orders", response_model=AdminOrderListResponse)
def admin_list_orders(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    search: str = Query(default="", description="Customer name/email substring or exact order ID"),
    status: Optional[OrderStatus] = Query(default=None),
    service: FulfillmentService = Depends(get_service),
):
    result = service.search_orders(page=page, limit=limit, search=search, status=status)
    return AdminOrderListResponse(
        orders=[order_to_schema(o) for o in result.orders],
        pagination=PaginationSchema(
            page=result.page, limit=result.limit, total=result.total, pages=result.pages
        ),
    )


@app.get("/api/admin/orders/{order_id}", response_model=OrderSchema)
def admin_get_order(order_id: str, service: FulfillmentService = Depends(get_service)):
    return order_to_schema(service.get_order(order_id))


@app.put("/api/admin/orders/{order_id}", response_model=OrderSchema)
def admin_update_order(
    order_id: str,
    request: OrderUpdateRequest,
    service: FulfillmentService = Depends(get_service),
):
    """
    Change order and/or payment status.

    Illegal transitions are rejected with 409 before anything is written.
    Customer emails triggered by the change are sent best-effort.
    """
    order = service.admin_update_order(
        order_id,
        OrderUpdate(
            order_status=request.order_status,
            payment_status=request.payment_status,
            tracking_id=request.tracking_id,
            carrier=request.carrier,
            notify_customer=request.notify_customer,
        ),
    )
    return order_to_schema(order)


@app.delete("/api/admin/orders/{order_id}", response_model=OrderSchema)
def admin_delete_order(order_id: str, service: FulfillmentService = Depends(get_service)):
    """Hard-delete an order."""
    return order_to_schema(service.delete_order(order_id))


# --- Marketing Endpoints ---


@app.post("/api/admin/marketing/send", response_model=MarketingSendResponse)
def send_marketing(
    request: MarketingSendRequest,
    background_tasks: BackgroundTasks,
    service: FulfillmentService = Depends(get_service),
):
    """
    Queue a marketing email for each selected user.

    Returns as soon as the messages are queued; delivery runs in the
    background at one message per configured delay.
    """
    result = service.queue_marketing(
        user_ids=request.user_ids,
        template_ref=request.template_id,
        subject=request.subject,
        body=request.body,
    )
    if result.recipient_count:
        background_tasks.add_task(service.dispatch_bulk)
    return MarketingSendResponse(
        success=True,
        message=f"Queued {result.recipient_count} email(s) for delivery",
        recipient_count=result.recipient_count,
    )


@app.get("/api/admin/templates", response_model=TemplateListResponse)
def list_templates(service: FulfillmentService = Depends(get_service)):
    templates = service.templates.list_templates()
    return TemplateListResponse(
        templates=[TemplateSchema.model_validate(t.to_dict()) for t in templates],
        count=len(templates),
    )


@app.put("/api/admin/templates/{name}", response_model=TemplateSchema)
def upsert_template(
    name: str,
    request: TemplateUpsertRequest,
    service: FulfillmentService = Depends(get_service),
):
    """Create or replace the named template."""
    template = service.templates.upsert(
        name=name,
        subject=request.subject,
        body=request.body,
        placeholders=request.placeholders,
        type=request.type,
    )
    return TemplateSchema.model_validate(template.to_dict())


# --- Queue Endpoints ---


@app.get("/api/admin/queue", response_model=QueueListResponse)
def list_queue(
    status: Optional[MessageStatus] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    service: FulfillmentService = Depends(get_service),
):
    """List queued messages, newest first."""
    messages = service.queue.list_messages(status=status, limit=limit)
    return QueueListResponse(
        messages=[QueuedMessageSchema.model_validate(m.to_dict()) for m in messages],
        count=len(messages),
        counts_by_status=service.queue.counts_by_status(),
    )


@app.post("/api/admin/queue/{message_id}/retry", response_model=QueuedMessageSchema)
def retry_queued_message(
    message_id: str,
    background_tasks: BackgroundTasks,
    service: FulfillmentService = Depends(get_service),
):
    """Put a failed message back in the queue and schedule a drain."""
    message = service.queue.retry(message_id)
    background_tasks.add_task(service.dispatch_bulk)
    return QueuedMessageSchema.model_validate(message.to_dict())


# --- Notification Endpoints ---


@app.get("/api/admin/notifications", response_model=NotificationListResponse)
def list_notifications(service: FulfillmentService = Depends(get_service)):
    """Newest 20 admin notifications."""
    notifications = service.notifications.list_recent()
    return NotificationListResponse(
        notifications=[NotificationSchema.model_validate(n.to_dict()) for n in notifications],
        unread_count=sum(1 for n in notifications if not n.is_read),
    )


@app.patch("/api/admin/notifications/{notification_id}")
def mark_notification_read(notification_id: str, service: FulfillmentService = Depends(get_service)):
    """Mark one notification read, or all of them with ID ``all``."""
    updated = service.notifications.mark_read(notification_id)
    if notification_id != "all" and not updated:
        raise HTTPException(status_code=404, detail=f"Notification not found: {notification_id}")
    return {"success": True, "updated": updated}


# --- Settings Endpoints ---


@app.get("/api/admin/settings", response_model=SettingsSchema)
def get_settings(service: FulfillmentService = Depends(get_service)):
    return SettingsSchema.model_validate(service.settings.load().to_dict())


@app.put("/api/admin/settings", response_model=SettingsSchema)
def update_settings(request: SettingsUpdateRequest, service: FulfillmentService = Depends(get_service)):
    """Change shipping fees or branding; existing orders keep their computed shipping."""
    settings = service.settings.load()
    for key, value in request.model_dump(exclude_none=True).items():
        setattr(settings, key, value)
    return SettingsSchema.model_validate(service.settings.save(settings).to_dict())

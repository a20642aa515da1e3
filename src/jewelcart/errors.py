"""Custom exceptions for jewelcart."""


class JewelcartError(Exception):
    """Base exception for all jewelcart errors."""

    pass


class ConfigError(JewelcartError):
    """Raised when an environment setting cannot be parsed."""

    def __init__(self, key: str, value: str, reason: str):
        self.key = key
        self.value = value
        super().__init__(f"Invalid value for {key}: {value!r} ({reason})")


class StoreError(JewelcartError):
    """Raised when a collection cannot be read or written."""

    def __init__(self, collection: str, reason: str):
        self.collection = collection
        self.reason = reason
        super().__init__(f"Store error in '{collection}': {reason}")


class ValidationError(JewelcartError):
    """Raised when a payload is malformed or incomplete."""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class OrderNotFoundError(JewelcartError):
    """Raised when an order ID doesn't exist."""

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class OrderOwnershipError(JewelcartError):
    """Raised when a customer touches an order that isn't theirs."""

    def __init__(self, order_id: str, user_id: str):
        self.order_id = order_id
        self.user_id = user_id
        super().__init__(f"Order {order_id} does not belong to the current user")


class InvalidTransitionError(JewelcartError):
    """Raised when a status change is not in the transition table."""

    def __init__(self, field: str, old: str, new: str):
        self.field = field
        self.old = old
        self.new = new
        super().__init__(f"Illegal {field} transition: {old} -> {new}")


class TemplateNotFoundError(JewelcartError):
    """Raised when a template name or ID doesn't exist."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Template not found: {name}")


class TemplateContextError(JewelcartError):
    """Raised when a render context lacks fields its message kind requires."""

    def __init__(self, kind: str, missing: list[str]):
        self.kind = kind
        self.missing = missing
        super().__init__(
            f"Missing placeholder values for '{kind}': {', '.join(sorted(missing))}"
        )


class QueuedMessageNotFoundError(JewelcartError):
    """Raised when a queued message ID doesn't exist."""

    def __init__(self, message_id: str):
        self.message_id = message_id
        super().__init__(f"Queued message not found: {message_id}")


class DeliveryError(JewelcartError):
    """Raised by a transport when a message could not be handed off."""

    def __init__(self, message: str, transient: bool = True):
        self.transient = transient
        super().__init__(message)

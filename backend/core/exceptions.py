"""
Storefront Core domain errors.

Raised by the ledgers and the checkout orchestrator when a business rule is
violated. The API layer maps each class to an HTTP status in api/main.py.
"""


class StorefrontError(ValueError):
    """Base class for all domain errors."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(StorefrontError):
    """Malformed input. Raised before any side effect."""

    status_code = 422


class AutoReorderNotConfigured(ValidationError):
    """Reorder requested for an alert with auto-reorder disabled and no quantity."""


class ImmutableOrderError(ValidationError):
    """Line items or totals of a placed order were modified."""


class ProductUnavailable(StorefrontError):
    """Product does not exist or is inactive."""

    def __init__(self, product_id, line_index: int | None = None):
        self.product_id = str(product_id)
        self.line_index = line_index
        super().__init__(f"Product not found: {product_id}")


class VariantNotFound(StorefrontError):
    """SKU does not exist on the product."""

    def __init__(self, product_id, sku: str, line_index: int | None = None):
        self.product_id = str(product_id)
        self.sku = sku
        self.line_index = line_index
        super().__init__(f"Variant not found: {sku}")


class InsufficientStock(StorefrontError):
    """Requested quantity exceeds live stock."""

    status_code = 409

    def __init__(
        self,
        sku: str,
        available: int,
        requested: int,
        title: str | None = None,
        line_index: int | None = None,
    ):
        self.sku = sku
        self.available = available
        self.requested = requested
        self.title = title
        self.line_index = line_index
        label = title or sku
        super().__init__(f"Insufficient stock for {label}. Available: {available}")


class InvalidTransition(StorefrontError):
    """Order status change not permitted by the state machine."""

    status_code = 409

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move order from '{current}' to '{requested}'")


class OrderNotFound(StorefrontError):
    status_code = 404

    def __init__(self, order_number: str):
        self.order_number = order_number
        super().__init__(f"Order not found: {order_number}")


class AlertNotFound(StorefrontError):
    status_code = 404

    def __init__(self, alert_id):
        self.alert_id = str(alert_id)
        super().__init__(f"Alert not found: {alert_id}")


class AlertAlreadyResolved(StorefrontError):
    status_code = 409

    def __init__(self, alert_id):
        self.alert_id = str(alert_id)
        super().__init__(f"Alert already resolved: {alert_id}")


class DuplicateOrderNumber(StorefrontError):
    """Order number collided on every attempt. Retryable."""

    status_code = 503


class PaymentProviderError(StorefrontError):
    """Payment provider call failed."""

    status_code = 502


class CheckoutUnavailable(StorefrontError):
    """Infrastructure failure that persisted through the retry budget."""

    status_code = 503


class WebhookVerificationFailed(StorefrontError):
    """Webhook signature missing, stale, or wrong."""

    status_code = 400

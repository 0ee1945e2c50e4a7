"""
Checkout request and payment-session metadata schemas.

The deferred flow stores the whole priced cart in the provider session's
metadata (flat string map) so the order can be created from exactly what the
customer paid for when the completion webhook arrives.
"""

import json
from decimal import Decimal

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from core.exceptions import ValidationError
from pricing.calculator import PricedCart, PricedLine, Totals

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class CheckoutItem(BaseModel):
    product_id: str = Field(..., min_length=1, max_length=64)
    variant_sku: str = Field(..., min_length=1, max_length=100)
    quantity: int = Field(..., gt=0)


class ShippingAddress(BaseModel):
    line1: str = Field(..., min_length=1, max_length=255)
    line2: str | None = Field(None, max_length=255)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    zip: str = Field(..., min_length=1, max_length=20)
    country: str = Field("US", min_length=2, max_length=2)


class CheckoutRequest(BaseModel):
    items: list[CheckoutItem] = Field(..., min_length=1)
    email: str = Field(..., pattern=EMAIL_PATTERN, max_length=255)
    name: str = Field(..., min_length=1, max_length=255)
    shipping_address: ShippingAddress
    customer_id: str | None = Field(None, max_length=64)


# ─── Session metadata ───────────────────────────────────────────────────────


class MetadataLine(BaseModel):
    product_id: str
    variant_sku: str
    title: str
    color: str | None = None
    size: str | None = None
    image: str = ""
    unit_price: Decimal
    quantity: int = Field(..., gt=0)
    line_total: Decimal


class SessionMetadata(BaseModel):
    """Decoded form of the provider session's metadata map."""

    order_number: str = Field(..., min_length=1)
    customer_email: str = Field(..., pattern=EMAIL_PATTERN)
    customer_name: str = Field(..., min_length=1)
    customer_id: str | None = None
    shipping_address: ShippingAddress
    order_items: list[MetadataLine] = Field(..., min_length=1)
    subtotal: Decimal
    shipping: Decimal
    tax: Decimal
    total: Decimal

    @property
    def lines(self) -> list[PricedLine]:
        return [PricedLine(**item.model_dump()) for item in self.order_items]

    @property
    def totals(self) -> Totals:
        return Totals(subtotal=self.subtotal, shipping=self.shipping, tax=self.tax, total=self.total)


def encode_metadata(request: CheckoutRequest, cart: PricedCart, order_number: str) -> dict[str, str]:
    items = [
        {
            "product_id": line.product_id,
            "variant_sku": line.variant_sku,
            "title": line.title,
            "color": line.color,
            "size": line.size,
            "image": line.image,
            "unit_price": str(line.unit_price),
            "quantity": line.quantity,
            "line_total": str(line.line_total),
        }
        for line in cart.lines
    ]
    metadata = {
        "order_number": order_number,
        "customer_email": request.email,
        "customer_name": request.name,
        "shipping_address": request.shipping_address.model_dump_json(),
        "order_items": json.dumps(items, separators=(",", ":")),
        "subtotal": str(cart.totals.subtotal),
        "shipping": str(cart.totals.shipping),
        "tax": str(cart.totals.tax),
        "total": str(cart.totals.total),
    }
    if request.customer_id:
        metadata["customer_id"] = request.customer_id
    return metadata


def decode_metadata(metadata: dict) -> SessionMetadata:
    """Parse session metadata. Raises ValidationError when anything is missing or inconsistent."""
    try:
        fields = dict(metadata)
        for key in ("shipping_address", "order_items"):
            if isinstance(fields.get(key), str):
                fields[key] = json.loads(fields[key])
        decoded = SessionMetadata.model_validate(fields)
    except (PydanticValidationError, TypeError, ValueError) as exc:
        raise ValidationError(f"Malformed checkout session metadata: {exc}")

    line_sum = sum((line.line_total for line in decoded.order_items), Decimal("0"))
    if line_sum != decoded.subtotal:
        raise ValidationError("Checkout session metadata totals do not match its line items")
    if decoded.subtotal + decoded.shipping + decoded.tax != decoded.total:
        raise ValidationError("Checkout session metadata total does not add up")
    return decoded

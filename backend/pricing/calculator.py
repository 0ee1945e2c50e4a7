"""
Pricing Calculator — cart line pricing, shipping, and tax.

Pure functions: no I/O, no persistence. Every monetary value is a Decimal
rounded half-away-from-zero to cents, so re-pricing the same cart always
yields identical totals.

  unit price = product base price + variant price modifier
  line total = unit price × quantity
  shipping   = flat fee below the free-shipping threshold, else 0
  tax        = round2(subtotal × rate)
  total      = round2(subtotal + shipping + tax)
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from catalog.store import ProductSnapshot
from core.exceptions import InsufficientStock, ProductUnavailable, VariantNotFound

CENT = Decimal("0.01")

DEFAULT_FREE_SHIPPING_THRESHOLD = Decimal("50.00")
DEFAULT_FLAT_SHIPPING_FEE = Decimal("5.99")
DEFAULT_TAX_RATE = Decimal("0.08")


def round_money(value) -> Decimal:
    """Round to cents, half away from zero."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(value) -> int:
    return int((round_money(value) * 100).to_integral_value(rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class CartLine:
    product_id: str
    variant_sku: str
    quantity: int


@dataclass(frozen=True)
class PricedLine:
    product_id: str
    variant_sku: str
    title: str
    color: str | None
    size: str | None
    image: str
    unit_price: Decimal
    quantity: int
    line_total: Decimal


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    shipping: Decimal
    tax: Decimal
    total: Decimal


@dataclass(frozen=True)
class PricedCart:
    lines: tuple[PricedLine, ...]
    totals: Totals


def shipping_for(
    subtotal,
    free_threshold=DEFAULT_FREE_SHIPPING_THRESHOLD,
    flat_fee=DEFAULT_FLAT_SHIPPING_FEE,
) -> Decimal:
    """Flat fee below the free-shipping threshold, zero at or above it."""
    if round_money(subtotal) >= round_money(free_threshold):
        return Decimal("0.00")
    return round_money(flat_fee)


def tax_for(subtotal, rate=DEFAULT_TAX_RATE) -> Decimal:
    return round_money(Decimal(str(subtotal)) * Decimal(str(rate)))


def compute_totals(
    subtotal,
    tax_rate=DEFAULT_TAX_RATE,
    free_threshold=DEFAULT_FREE_SHIPPING_THRESHOLD,
    flat_fee=DEFAULT_FLAT_SHIPPING_FEE,
) -> Totals:
    sub = round_money(subtotal)
    shipping = shipping_for(sub, free_threshold, flat_fee)
    tax = tax_for(sub, tax_rate)
    return Totals(subtotal=sub, shipping=shipping, tax=tax, total=round_money(sub + shipping + tax))


def price_cart(
    lines: Sequence[CartLine],
    lookup: Callable[[str], ProductSnapshot | None],
    tax_rate=DEFAULT_TAX_RATE,
    free_threshold=DEFAULT_FREE_SHIPPING_THRESHOLD,
    flat_fee=DEFAULT_FLAT_SHIPPING_FEE,
) -> PricedCart:
    """
    Validate and price every cart line against catalog snapshots.

    Checks run per line in order (product active, variant exists, stock
    covers demand) and the first failing line aborts. Demand is summed per
    (product, sku) so repeating a SKU across lines cannot oversell it.
    """
    demand: dict[tuple[str, str], int] = {}
    priced: list[PricedLine] = []

    for index, line in enumerate(lines):
        product = lookup(str(line.product_id))
        if product is None or not product.is_active:
            raise ProductUnavailable(line.product_id, line_index=index)

        variant = product.variant(line.variant_sku)
        if variant is None:
            raise VariantNotFound(line.product_id, line.variant_sku, line_index=index)

        key = (product.product_id, variant.sku)
        demand[key] = demand.get(key, 0) + line.quantity
        if demand[key] > variant.stock:
            title = f"{product.title} ({variant.label})" if variant.label else product.title
            raise InsufficientStock(
                sku=variant.sku,
                available=variant.stock,
                requested=demand[key],
                title=title,
                line_index=index,
            )

        unit_price = round_money(product.price + variant.price_modifier)
        priced.append(
            PricedLine(
                product_id=product.product_id,
                variant_sku=variant.sku,
                title=product.title,
                color=variant.color,
                size=variant.size,
                image=product.image,
                unit_price=unit_price,
                quantity=line.quantity,
                line_total=round_money(unit_price * line.quantity),
            )
        )

    subtotal = sum((p.line_total for p in priced), Decimal("0"))
    totals = compute_totals(subtotal, tax_rate, free_threshold, flat_fee)
    return PricedCart(lines=tuple(priced), totals=totals)


def provider_line_items(cart: PricedCart) -> list[dict]:
    """
    Line items for a payment provider session, amounts in minor units.

    Shipping and tax are appended as their own lines when non-zero so the
    provider charges exactly cart.totals.total.
    """
    items = [
        {
            "name": line.title,
            "description": "/".join(p for p in (line.color, line.size) if p) or None,
            "image": line.image or None,
            "unit_amount": to_minor_units(line.unit_price),
            "quantity": line.quantity,
        }
        for line in cart.lines
    ]
    if cart.totals.shipping > 0:
        items.append({"name": "Shipping", "unit_amount": to_minor_units(cart.totals.shipping), "quantity": 1})
    if cart.totals.tax > 0:
        items.append({"name": "Tax", "unit_amount": to_minor_units(cart.totals.tax), "quantity": 1})
    return items

"""
Checkout Router — Cart checkout, price quotes and payment webhooks.
"""

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel

from api.deps import get_orchestrator
from api.v1.routers.orders import OrderResponse
from checkout.orchestrator import CheckoutOrchestrator
from checkout.schemas import CheckoutRequest
from pricing.calculator import PricedCart

router = APIRouter(prefix="/api/v1/checkout", tags=["checkout"])

SIGNATURE_HEADER = "stripe-signature"


# ─── Schemas ────────────────────────────────────────────────────────────────


class QuoteLine(BaseModel):
    product_id: str
    variant_sku: str
    title: str
    color: str | None
    size: str | None
    unit_price: float
    quantity: int
    line_total: float


class QuoteResponse(BaseModel):
    items: list[QuoteLine]
    subtotal: float
    shipping: float
    tax: float
    total: float


class CheckoutResponse(BaseModel):
    mode: str  # direct, deferred
    status: str  # processing, awaiting_payment
    order_number: str
    session_id: str | None = None
    redirect_url: str | None = None
    subtotal: float
    shipping: float
    tax: float
    total: float


class WebhookResponse(BaseModel):
    received: bool = True
    status: str
    order_number: str | None = None


class SessionStatusResponse(BaseModel):
    session_id: str
    status: str  # paid, pending, rejected
    order: OrderResponse | None = None


def _quote(cart: PricedCart) -> QuoteResponse:
    return QuoteResponse(
        items=[
            QuoteLine(
                product_id=line.product_id,
                variant_sku=line.variant_sku,
                title=line.title,
                color=line.color,
                size=line.size,
                unit_price=float(line.unit_price),
                quantity=line.quantity,
                line_total=float(line.line_total),
            )
            for line in cart.lines
        ],
        subtotal=float(cart.totals.subtotal),
        shipping=float(cart.totals.shipping),
        tax=float(cart.totals.tax),
        total=float(cart.totals.total),
    )


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("", response_model=CheckoutResponse, status_code=status.HTTP_201_CREATED)
async def checkout(
    body: CheckoutRequest,
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
):
    """
    Check out a cart.

    Direct mode places the order immediately. Deferred mode returns the
    payment provider's redirect URL; the order is created by the webhook.
    """
    result = await orchestrator.checkout(body)
    totals = result.cart.totals
    return CheckoutResponse(
        mode=result.mode,
        status="processing" if result.order is not None else "awaiting_payment",
        order_number=result.order_number,
        session_id=result.session_id,
        redirect_url=result.redirect_url,
        subtotal=float(totals.subtotal),
        shipping=float(totals.shipping),
        tax=float(totals.tax),
        total=float(totals.total),
    )


@router.post("/quote", response_model=QuoteResponse)
async def quote(
    body: CheckoutRequest,
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
):
    """Validate and price a cart without placing anything."""
    return _quote(await orchestrator.quote(body))


@router.post("/webhook", response_model=WebhookResponse)
async def payment_webhook(
    request: Request,
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
):
    """Payment provider webhook. Redelivered events are acknowledged without side effects."""
    payload = await request.body()
    outcome = await orchestrator.handle_payment_event(payload, request.headers.get(SIGNATURE_HEADER))
    return WebhookResponse(status=outcome.status, order_number=outcome.order_number)


@router.get("/session/{session_id}", response_model=SessionStatusResponse)
async def session_status(
    session_id: str,
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
):
    """Order created for a paid checkout session, for the success page to poll."""
    state, order = await orchestrator.payment_status(session_id)
    return SessionStatusResponse(
        session_id=session_id,
        status=state,
        order=OrderResponse.model_validate(order) if order is not None else None,
    )

"""
Checkout Orchestrator — cart validation, stock commitment, order creation.

Two flows share one validation and pricing pipeline:

  direct    validate → price → decrement → create order (processing) → commit
  deferred  validate → price → reserve order number → provider session
            ... later, on the signed completion webhook:
            record payment event → decrement → create order → commit

Stock is committed exactly once per order, at finalization. Anything that
fails before commit rolls the whole transaction back. Level checks and
notifications run after commit and never undo a placed order.
"""

from dataclasses import dataclass

import httpx
import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from catalog.store import CatalogStore, SqlCatalogStore
from checkout.schemas import CheckoutRequest, SessionMetadata, decode_metadata, encode_metadata
from core.config import Settings, get_settings
from core.exceptions import (
    CheckoutUnavailable,
    InsufficientStock,
    ValidationError,
    VariantNotFound,
    WebhookVerificationFailed,
)
from core.security import verify_webhook_signature
from db.models import Order, PaymentEvent
from integrations.payments import PaymentProvider, WebhookEvent, parse_webhook_event
from inventory.ledger import InventoryLedger
from orders.ledger import OrderLedger, generate_order_number
from pricing.calculator import CartLine, PricedCart, PricedLine, price_cart, provider_line_items

logger = structlog.get_logger()

RETRYABLE_ERRORS = (OperationalError, InterfaceError, httpx.TransportError)


@dataclass
class CheckoutResult:
    mode: str
    order_number: str
    cart: PricedCart
    order: Order | None = None
    session_id: str | None = None
    redirect_url: str | None = None


@dataclass
class WebhookOutcome:
    status: str  # processed, duplicate, rejected, ignored
    event_type: str
    session_id: str | None = None
    order_number: str | None = None
    error: str | None = None


class CheckoutOrchestrator:
    def __init__(
        self,
        db: AsyncSession,
        payments: PaymentProvider | None = None,
        notifier=None,
        catalog: CatalogStore | None = None,
        settings: Settings | None = None,
    ):
        self.db = db
        self.payments = payments
        self.notifier = notifier
        self.catalog = catalog or SqlCatalogStore(db)
        self.settings = settings or get_settings()
        self.inventory = InventoryLedger(db, notifier=notifier, threshold=self.settings.low_stock_threshold)
        self.orders = OrderLedger(db, notifier=notifier)
        self.retry_wait = wait_exponential(multiplier=0.2, max=2)

    # ── Entry points ────────────────────────────────────────────────────

    async def checkout(self, request: CheckoutRequest) -> CheckoutResult:
        """Place the order now, or hand off to the payment provider, per CHECKOUT_MODE."""
        mode = self.settings.resolved_checkout_mode
        if mode == "deferred":
            return await self._with_retries(self.start_deferred_checkout, request)
        return await self._with_retries(self.place_direct_order, request)

    async def quote(self, request: CheckoutRequest) -> PricedCart:
        """Validate and price a cart without touching stock or orders."""
        return await self._price(request)

    async def place_direct_order(self, request: CheckoutRequest) -> CheckoutResult:
        try:
            cart = await self._price(request)
            await self._commit_stock(cart.lines)
            order = await self.orders.create(
                customer_email=request.email,
                customer_name=request.name,
                customer_id=request.customer_id,
                shipping_address=request.shipping_address.model_dump(),
                lines=cart.lines,
                totals=cart.totals,
                status="processing",
            )
            try:
                await self.db.commit()
            except RETRYABLE_ERRORS as exc:
                # Outcome unknown: the server may have committed before the connection dropped
                logger.error(
                    "checkout.commit_outcome_unknown",
                    order_number=order.order_number,
                    error=str(exc),
                )
                raise CheckoutUnavailable(
                    "Checkout could not be confirmed, check your order history before trying again"
                ) from exc
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "checkout.order_placed",
            mode="direct",
            order_number=order.order_number,
            total=str(order.total),
            items=len(cart.lines),
        )
        await self._after_placement(order, cart.lines)
        return CheckoutResult(mode="direct", order_number=order.order_number, cart=cart, order=order)

    async def start_deferred_checkout(self, request: CheckoutRequest) -> CheckoutResult:
        if self.payments is None:
            raise CheckoutUnavailable("No payment provider is configured")

        cart = await self._price(request)
        order_number = generate_order_number(self.settings.order_number_prefix)
        frontend = self.settings.frontend_url.rstrip("/")
        session = await self.payments.create_session(
            line_items=provider_line_items(cart),
            customer_email=request.email,
            metadata=encode_metadata(request, cart, order_number),
            success_url=f"{frontend}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{frontend}/cart",
        )
        logger.info(
            "checkout.session_started",
            provider=self.payments.name,
            session_id=session.session_id,
            order_number=order_number,
            total=str(cart.totals.total),
        )
        return CheckoutResult(
            mode="deferred",
            order_number=order_number,
            cart=cart,
            session_id=session.session_id,
            redirect_url=session.redirect_url,
        )

    async def handle_payment_event(self, payload: bytes, signature: str | None) -> WebhookOutcome:
        """
        Finalize a deferred checkout from a signed provider webhook.

        Exactly one order per paid session: the payment event row (unique on
        session id) is inserted in the same transaction as the decrement and
        the order, so redelivered webhooks become no-ops.
        """
        self._verify_signature(payload, signature)
        event = parse_webhook_event(payload)
        if not event.is_completion:
            logger.info("payments.webhook_ignored", event_id=event.event_id, type=event.type)
            return WebhookOutcome(status="ignored", event_type=event.type, session_id=event.session_id)
        if self.settings.resolved_checkout_mode != "deferred":
            logger.warning("payments.webhook_rejected", event_id=event.event_id, reason="deferred_checkout_disabled")
            raise ValidationError("Payment completion received but deferred checkout is not enabled")
        if not event.session_id:
            raise ValidationError("Completion event carries no session id")

        metadata = decode_metadata(event.metadata)
        return await self._with_retries(self._confirm_payment, event, metadata)

    async def payment_status(self, session_id: str) -> tuple[str, Order | None]:
        """'paid' with its order, 'rejected', or 'pending' while the webhook is outstanding."""
        order = await self.orders.find_by_payment_session(session_id)
        if order is not None:
            return "paid", order
        result = await self.db.execute(select(PaymentEvent.outcome).where(PaymentEvent.session_id == session_id))
        outcome = result.scalar_one_or_none()
        return ("rejected" if outcome == "rejected" else "pending"), None

    # ── Internals ───────────────────────────────────────────────────────

    async def _confirm_payment(self, event: WebhookEvent, metadata: SessionMetadata) -> WebhookOutcome:
        provider = self.payments.name if self.payments else "unknown"
        lines = metadata.lines
        try:
            record = PaymentEvent(
                provider=provider,
                session_id=event.session_id,
                event_id=event.event_id,
                payment_intent_id=event.payment_intent_id,
                outcome="processed",
                order_number=metadata.order_number,
            )
            self.db.add(record)
            try:
                await self.db.flush()
            except IntegrityError:
                await self.db.rollback()
                existing = await self.orders.find_by_payment_session(event.session_id)
                logger.info("payments.webhook_duplicate", session_id=event.session_id, event_id=event.event_id)
                return WebhookOutcome(
                    status="duplicate",
                    event_type=event.type,
                    session_id=event.session_id,
                    order_number=existing.order_number if existing else None,
                )

            try:
                async with self.db.begin_nested():
                    await self._commit_stock(lines)
            except (InsufficientStock, VariantNotFound) as exc:
                record.outcome = "rejected"
                record.order_number = None
                record.error = exc.message
                await self.db.commit()
                logger.error(
                    "payments.confirmation_rejected",
                    session_id=event.session_id,
                    payment_intent_id=event.payment_intent_id,
                    order_number=metadata.order_number,
                    error=exc.message,
                    action="manual_refund_required",
                )
                return WebhookOutcome(
                    status="rejected",
                    event_type=event.type,
                    session_id=event.session_id,
                    error=exc.message,
                )

            order = await self.orders.create(
                customer_email=metadata.customer_email,
                customer_name=metadata.customer_name,
                customer_id=metadata.customer_id,
                shipping_address=metadata.shipping_address.model_dump(),
                lines=lines,
                totals=metadata.totals,
                status="processing",
                order_number=metadata.order_number,
                payment_session_id=event.session_id,
                payment_intent_id=event.payment_intent_id,
                actor="payment_webhook",
            )
            record.order_number = order.order_number
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "checkout.order_placed",
            mode="deferred",
            order_number=order.order_number,
            session_id=event.session_id,
            total=str(order.total),
        )
        await self._after_placement(order, lines)
        return WebhookOutcome(
            status="processed",
            event_type=event.type,
            session_id=event.session_id,
            order_number=order.order_number,
        )

    async def _price(self, request: CheckoutRequest) -> PricedCart:
        lines = [CartLine(i.product_id, i.variant_sku, i.quantity) for i in request.items]
        snapshots = await self.catalog.get_products(line.product_id for line in lines)
        return price_cart(
            lines,
            snapshots.get,
            tax_rate=self.settings.tax_rate,
            free_threshold=self.settings.free_shipping_threshold,
            flat_fee=self.settings.flat_shipping_fee,
        )

    async def _commit_stock(self, lines: list[PricedLine]) -> None:
        """Decrement summed demand per (product, sku). Level checks run after commit."""
        demand: dict[tuple[str, str], int] = {}
        first_line: dict[tuple[str, str], tuple[int, PricedLine]] = {}
        for index, line in enumerate(lines):
            key = (str(line.product_id), line.variant_sku)
            demand[key] = demand.get(key, 0) + line.quantity
            first_line.setdefault(key, (index, line))

        for key, quantity in demand.items():
            product_id, sku = key
            try:
                await self.inventory.decrement(product_id, sku, quantity, check=False)
            except InsufficientStock as exc:
                index, line = first_line[key]
                label = "/".join(p for p in (line.color, line.size) if p)
                raise InsufficientStock(
                    sku=sku,
                    available=exc.available,
                    requested=quantity,
                    title=f"{line.title} ({label})" if label else line.title,
                    line_index=index,
                )
            except VariantNotFound:
                raise VariantNotFound(product_id, sku, line_index=first_line[key][0])

    async def _after_placement(self, order: Order, lines: list[PricedLine]) -> None:
        product_ids = list(dict.fromkeys(str(line.product_id) for line in lines))
        try:
            for product_id in product_ids:
                await self.inventory.check_levels(product_id)
            await self.db.commit()
        except SQLAlchemyError as exc:
            # Order is already committed; the periodic sweep re-runs the check
            await self.db.rollback()
            self.inventory.discard_notifications()
            logger.error("checkout.level_check_failed", order_number=order.order_number, error=str(exc))
        else:
            await self.inventory.dispatch_notifications()
        await self.orders.notify_confirmation(order)

    def _verify_signature(self, payload: bytes, signature: str | None) -> None:
        secret = self.payments.webhook_secret if self.payments else ""
        if not secret:
            logger.error("payments.webhook_rejected", reason="no_webhook_secret")
            raise WebhookVerificationFailed("No webhook secret is configured")
        verify_webhook_signature(
            payload,
            signature,
            secret,
            tolerance_seconds=self.settings.webhook_tolerance_seconds,
        )

    async def _with_retries(self, operation, *args):
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max(1, self.settings.checkout_max_attempts)),
                wait=self.retry_wait,
                retry=retry_if_exception_type(RETRYABLE_ERRORS),
                reraise=True,
            ):
                with attempt:
                    return await operation(*args)
        except RETRYABLE_ERRORS as exc:
            logger.error("checkout.unavailable", operation=operation.__name__, error=str(exc))
            raise CheckoutUnavailable("Checkout is temporarily unavailable, please try again") from exc

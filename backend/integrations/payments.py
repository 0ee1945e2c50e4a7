"""
Payment Provider Client

Hosted checkout sessions for the deferred-payment flow. The storefront never
sees card data: it creates a session carrying the priced cart as opaque
metadata, redirects the customer, and waits for the provider's signed
"checkout.session.completed" webhook.

StripeCheckoutProvider talks to a Stripe-compatible REST API (form-encoded
bodies, bearer auth). MockPaymentProvider keeps sessions in memory for
local development and tests.
"""

import json
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.config import get_settings
from core.exceptions import PaymentProviderError, ValidationError

logger = structlog.get_logger()

COMPLETED_EVENT = "checkout.session.completed"


@dataclass(frozen=True)
class PaymentSession:
    session_id: str
    redirect_url: str


@dataclass(frozen=True)
class WebhookEvent:
    event_id: str
    type: str
    session_id: str | None = None
    payment_intent_id: str | None = None
    metadata: dict = field(default_factory=dict)

    @property
    def is_completion(self) -> bool:
        return self.type == COMPLETED_EVENT


def parse_webhook_event(payload: bytes) -> WebhookEvent:
    """Decode a provider event body. Raises ValidationError on malformed JSON."""
    try:
        body = json.loads(payload)
    except (TypeError, ValueError):
        raise ValidationError("Webhook body is not valid JSON")
    if not isinstance(body, dict):
        raise ValidationError("Webhook body must be a JSON object")

    data = body.get("data") or {}
    obj = (data.get("object") or {}) if isinstance(data, dict) else None
    if not isinstance(obj, dict) or not isinstance(obj.get("metadata") or {}, dict):
        raise ValidationError("Webhook event object is malformed")
    metadata = obj.get("metadata") or {}

    return WebhookEvent(
        event_id=str(body.get("id", "")),
        type=str(body.get("type", "")),
        session_id=obj.get("id"),
        payment_intent_id=obj.get("payment_intent"),
        metadata=metadata,
    )


def encode_form(data: dict, prefix: str = "") -> list[tuple[str, str]]:
    """Flatten nested dicts/lists into bracketed form fields (a[0][b]=c)."""
    fields: list[tuple[str, str]] = []
    for key, value in data.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if value is None:
            continue
        if isinstance(value, dict):
            fields.extend(encode_form(value, name))
        elif isinstance(value, (list, tuple)):
            for index, element in enumerate(value):
                if isinstance(element, dict):
                    fields.extend(encode_form(element, f"{name}[{index}]"))
                else:
                    fields.append((f"{name}[{index}]", str(element)))
        elif isinstance(value, bool):
            fields.append((name, "true" if value else "false"))
        else:
            fields.append((name, str(value)))
    return fields


class PaymentProvider(ABC):
    """Hosted checkout session provider."""

    name = "base"
    webhook_secret = ""

    @abstractmethod
    async def create_session(
        self,
        line_items: list[dict],
        customer_email: str,
        metadata: dict[str, str],
        success_url: str,
        cancel_url: str,
    ) -> PaymentSession:
        ...

    @abstractmethod
    async def retrieve_session(self, session_id: str) -> dict:
        ...


class StripeCheckoutProvider(PaymentProvider):
    name = "stripe"

    def __init__(
        self,
        secret_key: str,
        webhook_secret: str = "",
        api_base: str | None = None,
        currency: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.api_base = (api_base or settings.stripe_api_base).rstrip("/")
        self.currency = currency or settings.currency
        self.headers = {"Authorization": f"Bearer {secret_key}"}
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.api_base, headers=self.headers, transport=self._transport, timeout=15.0)

    def session_params(
        self,
        line_items: list[dict],
        customer_email: str,
        metadata: dict[str, str],
        success_url: str,
        cancel_url: str,
    ) -> dict:
        return {
            "mode": "payment",
            "customer_email": customer_email,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "line_items": [
                {
                    "price_data": {
                        "currency": self.currency,
                        "product_data": {
                            "name": item["name"],
                            "description": item.get("description"),
                            "images": [item["image"]] if item.get("image") else None,
                        },
                        "unit_amount": item["unit_amount"],
                    },
                    "quantity": item["quantity"],
                }
                for item in line_items
            ],
            "metadata": metadata,
        }

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(min=1, max=10),
        reraise=True,
    )
    async def create_session(
        self,
        line_items: list[dict],
        customer_email: str,
        metadata: dict[str, str],
        success_url: str,
        cancel_url: str,
    ) -> PaymentSession:
        params = self.session_params(line_items, customer_email, metadata, success_url, cancel_url)
        async with self._client() as client:
            response = await client.post("/checkout/sessions", data=dict(encode_form(params)))
        body = self._json_or_raise(response, "create_session")
        logger.info("payments.session_created", provider=self.name, session_id=body.get("id"))
        return PaymentSession(session_id=body["id"], redirect_url=body["url"])

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(min=1, max=10),
        reraise=True,
    )
    async def retrieve_session(self, session_id: str) -> dict:
        async with self._client() as client:
            response = await client.get(f"/checkout/sessions/{session_id}")
        return self._json_or_raise(response, "retrieve_session")

    def _json_or_raise(self, response: httpx.Response, operation: str) -> dict:
        if response.is_success:
            return response.json()
        try:
            message = response.json().get("error", {}).get("message", response.text)
        except ValueError:
            message = response.text
        logger.error(
            "payments.request_failed",
            provider=self.name,
            operation=operation,
            status_code=response.status_code,
            error=message,
        )
        raise PaymentProviderError(f"Payment provider rejected {operation}: {message}")


class MockPaymentProvider(PaymentProvider):
    """In-memory sessions. Redirects straight to the success URL."""

    name = "mock"

    def __init__(self, webhook_secret: str | None = None):
        # Random per instance unless configured
        self.webhook_secret = webhook_secret or f"whsec_mock_{secrets.token_hex(16)}"
        self.sessions: dict[str, dict] = {}

    async def create_session(
        self,
        line_items: list[dict],
        customer_email: str,
        metadata: dict[str, str],
        success_url: str,
        cancel_url: str,
    ) -> PaymentSession:
        session_id = f"cs_mock_{secrets.token_hex(12)}"
        self.sessions[session_id] = {
            "id": session_id,
            "customer_email": customer_email,
            "line_items": line_items,
            "metadata": dict(metadata),
            "payment_intent": f"pi_mock_{secrets.token_hex(12)}",
            "amount_total": sum(item["unit_amount"] * item["quantity"] for item in line_items),
        }
        redirect_url = success_url.replace("{CHECKOUT_SESSION_ID}", session_id)
        return PaymentSession(session_id=session_id, redirect_url=redirect_url)

    async def retrieve_session(self, session_id: str) -> dict:
        session = self.sessions.get(session_id)
        if session is None:
            raise PaymentProviderError(f"No such checkout session: {session_id}")
        return session

    def completion_event(self, session_id: str) -> bytes:
        """Body of the webhook the provider would send once the session is paid."""
        session = self.sessions[session_id]
        return json.dumps(
            {
                "id": f"evt_mock_{secrets.token_hex(8)}",
                "type": COMPLETED_EVENT,
                "data": {
                    "object": {
                        "id": session_id,
                        "payment_intent": session["payment_intent"],
                        "metadata": session["metadata"],
                    }
                },
            }
        ).encode()


def build_payment_provider() -> PaymentProvider:
    """Stripe when a secret key is configured, the in-memory mock otherwise."""
    settings = get_settings()
    if settings.stripe_secret_key:
        return StripeCheckoutProvider(
            secret_key=settings.stripe_secret_key,
            webhook_secret=settings.stripe_webhook_secret,
        )
    return MockPaymentProvider(webhook_secret=settings.stripe_webhook_secret or None)

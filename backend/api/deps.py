"""
Storefront Core API Dependencies

Dependency injection for DB sessions, auth, notifications and payments.
"""

from collections.abc import AsyncGenerator
from functools import lru_cache

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from checkout.orchestrator import CheckoutOrchestrator
from core.config import Settings, get_settings
from db.session import AsyncSessionLocal
from integrations.payments import PaymentProvider, build_payment_provider
from notifications.email import EmailNotifier

settings = get_settings()
security = HTTPBearer(auto_error=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> dict:
    """Decode JWT and return user payload. Bypassed in debug mode."""
    if settings.debug:
        return {"sub": "dev-user", "email": "dev@storefront.local", "roles": ["admin"]}

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    from core.security import decode_access_token

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return payload


async def require_admin(user: dict = Depends(get_current_user)) -> dict:
    """Admin role claim, or an email listed in ADMIN_EMAILS."""
    roles = user.get("roles") or []
    if "admin" in roles or (user.get("email") and user["email"] in settings.admin_emails):
        return user
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")


@lru_cache
def get_notifier() -> EmailNotifier:
    return EmailNotifier()


@lru_cache
def get_payment_provider() -> PaymentProvider:
    return build_payment_provider()


def get_checkout_settings() -> Settings:
    return get_settings()


async def get_orchestrator(
    db: AsyncSession = Depends(get_db),
    payments: PaymentProvider = Depends(get_payment_provider),
    notifier=Depends(get_notifier),
    checkout_settings: Settings = Depends(get_checkout_settings),
) -> CheckoutOrchestrator:
    return CheckoutOrchestrator(db, payments=payments, notifier=notifier, settings=checkout_settings)

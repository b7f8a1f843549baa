"""
FastAPI dependencies.

Authentication for protected routes, plus the wiring of the ledger-facing
services so tests can override any of them.
"""

from typing import Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy import select
from tenapay.app.core.jwt import decode_access_token
from tenapay.app.db.session import get_db, get_session_factory
from tenapay.app.models.user import User
from tenapay.app.services.connections import connection_directory
from tenapay.app.services.gateway import GatewayClient
from tenapay.app.services.mailer import Mailer
from tenapay.app.services.notification_service import NotificationDispatcher
from tenapay.app.services.payouts import PayoutInitiator
from tenapay.app.services.webhooks import WebhookIngestor

# HTTP Bearer security scheme
security = HTTPBearer()


async def authenticate_token(token: Optional[str], db: AsyncSession) -> Optional[dict]:
    """
    Validate a bearer token against the database.

    Returns the decoded payload, or None if the token is invalid or the
    account no longer exists or is inactive.
    """
    if not token:
        return None
    payload = decode_access_token(token)
    if payload is None or not payload.get("sub"):
        return None

    result = await db.execute(select(User.is_active).where(User.id == payload["sub"]))
    is_active = result.scalar_one_or_none()
    if not is_active:
        return None

    payload["user_id"] = payload["sub"]
    return payload


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> dict:
    """
    FastAPI dependency for JWT authentication.

    1. Validates JWT token signature and expiry
    2. Verifies the account still exists and is active (real-time check)

    Identity is the verified 'sub' claim only.

    Raises:
        HTTPException: 401 if token is invalid, 403 if the account is inactive
    """
    payload = decode_access_token(credentials.credentials)
    if payload is None or not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    result = await db.execute(select(User).where(User.id == payload["sub"]))
    user = result.scalar_one_or_none()

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive",
        )

    payload["user_id"] = user.id
    payload["role"] = user.role.value
    return payload


# --- Service wiring ---

def get_gateway_client() -> GatewayClient:
    return GatewayClient.from_settings()


def get_mailer() -> Mailer:
    return Mailer.from_settings()


def get_dispatcher(
    session_factory: async_sessionmaker = Depends(get_session_factory),
    mailer: Mailer = Depends(get_mailer)
) -> NotificationDispatcher:
    return NotificationDispatcher(session_factory, connection_directory, mailer)


def get_payout_initiator(
    gateway: GatewayClient = Depends(get_gateway_client),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    session_factory: async_sessionmaker = Depends(get_session_factory)
) -> PayoutInitiator:
    return PayoutInitiator(gateway, dispatcher, session_factory=session_factory)


def get_webhook_ingestor(
    dispatcher: NotificationDispatcher = Depends(get_dispatcher)
) -> WebhookIngestor:
    return WebhookIngestor(dispatcher)

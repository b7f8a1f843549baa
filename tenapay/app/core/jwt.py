"""
Access tokens.

HS256 JWTs issued at login/registration. The account id travels in 'sub';
'role' is informational and re-read from the database on every request.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from tenapay.app.core.config import settings


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Sign 'data' with iat/exp/iss added.

    Example payload:
        {"sub": "5f0c...", "user_id": "5f0c...", "role": "USER",
         "iss": "tenapay", "iat": 1700000000, "exp": 1700604800}
    """
    issued_at = datetime.now(timezone.utc)
    lifetime = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)

    claims = {
        **data,
        "iss": settings.token_issuer,
        "iat": issued_at,
        "exp": issued_at + lifetime,
    }
    return jwt.encode(claims, settings.secret_key, algorithm=settings.algorithm)


def create_user_token(user) -> str:
    return create_access_token({
        "sub": user.id,
        "user_id": user.id,
        "role": user.role.value,
    })


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Verify signature, expiry and issuer.

    Returns:
        The claims, or None for any invalid token
    """
    try:
        return jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.algorithm],
            issuer=settings.token_issuer,
        )
    except JWTError:
        return None

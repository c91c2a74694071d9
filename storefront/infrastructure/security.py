import hmac
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from storefront.config import settings
from storefront.domain.exceptions import ForbiddenError, UnauthorizedError

ADMIN_ROLES = frozenset({"SUPER_ADMIN", "ADMIN"})


def issue_admin_token(
    admin_id: str,
    email: str,
    role: str = "ADMIN",
    expires_delta: Optional[timedelta] = None,
) -> str:
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(days=settings.ADMIN_TOKEN_EXPIRE_DAYS))
    claims = {
        "sub": admin_id,
        "email": email,
        "role": role,
        "iat": now,
        "exp": expire,
        "type": "admin",
    }
    return jwt.encode(claims, settings.ADMIN_JWT_SECRET, algorithm=settings.ADMIN_JWT_ALGORITHM)


def decode_admin_token(token: Optional[str]) -> dict:
    """Claims админской сессии; 401 без токена или с битым токеном, 403 без роли"""
    if not token:
        raise UnauthorizedError("Unauthorized")
    if not settings.ADMIN_JWT_SECRET:
        raise UnauthorizedError("Admin authentication is not configured")
    try:
        claims = jwt.decode(token, settings.ADMIN_JWT_SECRET, algorithms=[settings.ADMIN_JWT_ALGORITHM])
    except JWTError:
        raise UnauthorizedError("Invalid or expired session")

    if claims.get("type") != "admin" or not claims.get("sub"):
        raise UnauthorizedError("Invalid or expired session")
    if claims.get("role") not in ADMIN_ROLES:
        raise ForbiddenError("Insufficient permissions")
    return claims


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


def verify_cron_secret(authorization: Optional[str], secret: str) -> None:
    token = bearer_token(authorization)
    if not secret or not token or not hmac.compare_digest(token.encode(), secret.encode()):
        raise UnauthorizedError("Unauthorized")

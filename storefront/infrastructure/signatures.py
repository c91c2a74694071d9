import hashlib
import hmac
import time
from typing import Optional

from storefront.domain.exceptions import InvalidSignatureError


def compute_signature(secret: str, timestamp: int, payload: bytes) -> str:
    signed = f"{timestamp}.".encode() + payload
    return hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()


def sign_payload(secret: str, payload: bytes, timestamp: Optional[int] = None) -> str:
    """Заголовок вида t=<unix>,v1=<hex> для исходящих и тестовых событий"""
    timestamp = int(time.time()) if timestamp is None else timestamp
    return f"t={timestamp},v1={compute_signature(secret, timestamp, payload)}"


def _parse_header(header: str) -> tuple[Optional[int], list[str]]:
    timestamp = None
    signatures = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                return None, []
        elif key == "v1" and value:
            signatures.append(value)
    return timestamp, signatures


def verify_signature(
    payload: bytes,
    header: Optional[str],
    secret: str,
    tolerance_seconds: int = 300,
    now: Optional[float] = None,
) -> int:
    """Проверка подписи вебхука. Возвращает метку времени события."""
    if not header:
        raise InvalidSignatureError("No signature provided")
    if not secret:
        raise InvalidSignatureError("Webhook secret is not configured")

    timestamp, signatures = _parse_header(header)
    if timestamp is None or not signatures:
        raise InvalidSignatureError("Malformed signature header")

    expected = compute_signature(secret, timestamp, payload)
    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        raise InvalidSignatureError("Signature mismatch")

    now = time.time() if now is None else now
    if tolerance_seconds and abs(now - timestamp) > tolerance_seconds:
        raise InvalidSignatureError("Timestamp outside the tolerance zone")
    return timestamp

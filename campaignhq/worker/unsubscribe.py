"""
Signed unsubscribe tokens.

Token format: ``base64url(json payload).base64url(hmac-sha256 signature)``
with payload ``{"sid": subscriber_id, "iat": issued_at, "cid": campaign_id}``.
``cid`` is optional. Tokens expire after one year.
"""

import base64
import hashlib
import hmac
import json
import time
from typing import NamedTuple, Optional
from urllib.parse import quote

from ..exceptions import InvalidUnsubscribeToken

TOKEN_TTL_SECONDS = 365 * 24 * 60 * 60


class UnsubscribeClaims(NamedTuple):
    subscriber_id: int
    campaign_id: Optional[int] = None


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64decode(data: str) -> bytes:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def _sign(data: str, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), data.encode("utf-8"), hashlib.sha256).digest()
    return _b64encode(digest)


def generate_unsubscribe_token(subscriber_id: int, secret: str, issued_at: Optional[int] = None,
                               campaign_id: Optional[int] = None) -> str:
    payload = {"sid": int(subscriber_id), "iat": int(issued_at if issued_at is not None else time.time())}
    if campaign_id is not None:
        payload["cid"] = int(campaign_id)
    encoded = _b64encode(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
    return f"{encoded}.{_sign(encoded, secret)}"


def decode_unsubscribe_token(token: str, secret: str, now: Optional[float] = None) -> UnsubscribeClaims:
    """Verify a token and return its claims, else raise InvalidUnsubscribeToken."""
    parts = (token or "").split(".")
    if len(parts) != 2:
        raise InvalidUnsubscribeToken("Invalid token format")

    encoded, signature = parts
    try:
        signature_bytes = signature.encode("ascii")
    except UnicodeEncodeError as e:
        raise InvalidUnsubscribeToken("Invalid token signature") from e
    if not hmac.compare_digest(signature_bytes, _sign(encoded, secret).encode("ascii")):
        raise InvalidUnsubscribeToken("Invalid token signature")

    try:
        payload = json.loads(_b64decode(encoded))
    except ValueError as e:
        raise InvalidUnsubscribeToken("Invalid token payload") from e

    if not isinstance(payload, dict):
        raise InvalidUnsubscribeToken("Invalid token payload structure")
    subscriber_id = payload.get("sid")
    issued_at = payload.get("iat")
    campaign_id = payload.get("cid")
    if not isinstance(subscriber_id, int) or not isinstance(issued_at, int):
        raise InvalidUnsubscribeToken("Invalid token payload structure")
    if campaign_id is not None and not isinstance(campaign_id, int):
        raise InvalidUnsubscribeToken("Invalid token payload structure")

    now = now if now is not None else time.time()
    if now > issued_at + TOKEN_TTL_SECONDS:
        raise InvalidUnsubscribeToken("Token has expired")

    return UnsubscribeClaims(subscriber_id, campaign_id)


def verify_unsubscribe_token(token: str, secret: str, now: Optional[float] = None) -> int:
    """Return the subscriber id for a valid token, else raise InvalidUnsubscribeToken."""
    return decode_unsubscribe_token(token, secret, now).subscriber_id


def build_unsubscribe_url(base_url: str, subscriber_id: int, secret: str,
                          campaign_id: Optional[int] = None) -> str:
    token = generate_unsubscribe_token(subscriber_id, secret, campaign_id=campaign_id)
    return f"{base_url.rstrip('/')}/unsubscribe?token={quote(token)}"

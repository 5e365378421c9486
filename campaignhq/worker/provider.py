"""
Delivery provider interface and the Resend batch implementation.

A provider accepts one batch of messages per call and returns the provider
message ids in request order. Rate limiting is reported as
``ProviderRateLimited`` so the sender can back off; any other failure is a
``ProviderError``.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol

import requests

from ..exceptions import ProviderError, ProviderRateLimited
from ..logging_config import get_logger

logger = get_logger("provider")


@dataclass
class OutboundMessage:
    from_address: str
    to: str
    subject: str
    html: str
    text: str
    headers: Dict[str, str] = field(default_factory=dict)

    def to_payload(self) -> dict:
        payload = {
            "from": self.from_address,
            "to": [self.to],
            "subject": self.subject,
            "html": self.html,
            "text": self.text,
        }
        if self.headers:
            payload["headers"] = dict(self.headers)
        return payload


class DeliveryProvider(Protocol):
    async def batch_send(self, messages: List[OutboundMessage]) -> List[Optional[str]]:
        ...


def is_rate_limit_error(status_code: int, body: Optional[dict]) -> bool:
    if status_code == 429:
        return True
    if not isinstance(body, dict):
        return False
    name = str(body.get("name") or "")
    message = str(body.get("message") or "")
    return name == "rate_limit_exceeded" or "rate limit" in message.lower()


class ResendProvider:
    """Resend ``POST /emails/batch`` client."""

    def __init__(self, api_key: str, api_url: str = "https://api.resend.com", timeout: float = 30.0,
                 session: Optional[requests.Session] = None):
        if not api_key:
            raise ValueError("RESEND_API_KEY must be set to send campaigns")
        self.api_key = api_key
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _post_batch(self, payload: List[dict]) -> List[Optional[str]]:
        try:
            response = self.session.post(
                f"{self.api_url}/emails/batch",
                json=payload,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ProviderError(f"Resend request failed: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.status_code >= 400:
            message = body.get("message") if isinstance(body, dict) else response.text
            if is_rate_limit_error(response.status_code, body):
                raise ProviderRateLimited(message or "rate limit exceeded")
            raise ProviderError(f"Resend returned {response.status_code}: {message}")

        items = body.get("data", []) if isinstance(body, dict) else []
        return [item.get("id") if isinstance(item, dict) else None for item in items]

    async def batch_send(self, messages: List[OutboundMessage]) -> List[Optional[str]]:
        payload = [m.to_payload() for m in messages]
        ids = await asyncio.to_thread(self._post_batch, payload)
        logger.debug("resend_batch_accepted", count=len(messages), ids=len(ids))
        return ids

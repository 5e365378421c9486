"""
Engagement recording: open pixel hits, click redirects, unsubscribes and
delivery provider webhook events.

EmailSend status only moves forward:

    pending < sent < delivered < opened < clicked

``bounced`` and ``complained`` are terminal and override any non-terminal
status. A later event with a lower rank never regresses a send, so the
"delivered" metric (delivered, opened or clicked) stays well defined even
when the provider reports events out of order.
"""

import base64
import hashlib
import hmac
import time
from typing import Callable, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..logging_config import get_logger
from ..models.email_send import EmailEvent, EmailSend, SendStatus
from ..models.subscriber import Subscriber, SubscriberStatus
from ..timeutils import utcnow

logger = get_logger("engagement")

STATUS_RANK = {
    SendStatus.PENDING: 0,
    SendStatus.SENT: 1,
    SendStatus.DELIVERED: 2,
    SendStatus.OPENED: 3,
    SendStatus.CLICKED: 4,
}
TERMINAL_STATUSES = (SendStatus.BOUNCED, SendStatus.COMPLAINED)

# Resend webhook event type -> EmailSend status
PROVIDER_EVENT_STATUS = {
    "email.sent": SendStatus.SENT,
    "email.delivered": SendStatus.DELIVERED,
    "email.opened": SendStatus.OPENED,
    "email.clicked": SendStatus.CLICKED,
    "email.bounced": SendStatus.BOUNCED,
    "email.complained": SendStatus.COMPLAINED,
}

SIGNATURE_TOLERANCE_SECONDS = 5 * 60


def advance_status(send: EmailSend, target: str, now) -> bool:
    """Move ``send`` to ``target`` if that is forward progress. Returns True on change."""
    current = send.status
    if current in TERMINAL_STATUSES:
        return False

    if target in TERMINAL_STATUSES:
        send.status = target
        return True

    if STATUS_RANK.get(target, -1) <= STATUS_RANK.get(current, -1):
        return False

    send.status = target
    if target == SendStatus.SENT and send.sent_at is None:
        send.sent_at = now
    if target == SendStatus.DELIVERED and send.delivered_at is None:
        send.delivered_at = now
    if target in (SendStatus.OPENED, SendStatus.CLICKED) and send.opened_at is None:
        send.opened_at = now
    if target == SendStatus.CLICKED and send.clicked_at is None:
        send.clicked_at = now
    return True


def _log_event(db: Session, event_type: str, send: Optional[EmailSend] = None, subscriber_id: Optional[int] = None,
               campaign_id: Optional[int] = None, data: Optional[dict] = None, now=None):
    db.add(EmailEvent(
        subscriber_id=send.subscriber_id if send is not None else subscriber_id,
        campaign_id=send.campaign_id if send is not None else campaign_id,
        email_send_id=send.id if send is not None else None,
        event_type=event_type,
        event_data=data,
        created_at=now or utcnow(),
    ))


def record_open(db: Session, email_send_id: int, clock: Callable = utcnow) -> bool:
    """Pixel hit. Returns False for an unknown send id or one never handed to the provider."""
    send = db.get(EmailSend, email_send_id)
    if send is None or send.status == SendStatus.PENDING:
        return False

    now = clock()
    advance_status(send, SendStatus.OPENED, now)
    _log_event(db, "open", send=send, now=now)
    db.commit()
    logger.debug("email_opened", email_send_id=email_send_id)
    return True


def record_click(db: Session, email_send_id: int, url: str, clock: Callable = utcnow) -> bool:
    send = db.get(EmailSend, email_send_id)
    if send is None or send.status == SendStatus.PENDING:
        return False

    now = clock()
    advance_status(send, SendStatus.CLICKED, now)
    _log_event(db, "click", send=send, data={"url": url}, now=now)
    db.commit()
    logger.debug("email_clicked", email_send_id=email_send_id)
    return True


def record_unsubscribe(db: Session, subscriber_id: int, campaign_id: Optional[int] = None,
                       source: str = "link", clock: Callable = utcnow) -> Optional[Subscriber]:
    """
    Mark a subscriber unsubscribed.

    Repeated calls are harmless: the ``unsubscribe`` event is only logged
    when the status actually changes. Returns None for an unknown subscriber.
    """
    subscriber = db.get(Subscriber, subscriber_id)
    if subscriber is None:
        return None

    if subscriber.status != SubscriberStatus.UNSUBSCRIBED:
        now = clock()
        subscriber.status = SubscriberStatus.UNSUBSCRIBED
        subscriber.updated_at = now
        _log_event(
            db,
            "unsubscribe",
            subscriber_id=subscriber_id,
            campaign_id=campaign_id,
            data={"source": source},
            now=now,
        )
        db.commit()
        logger.info("subscriber_unsubscribed", subscriber_id=subscriber_id, source=source)

    return subscriber


def apply_provider_event(db: Session, payload: dict, clock: Callable = utcnow) -> Optional[EmailSend]:
    """
    Apply one provider webhook event to the matching EmailSend.

    Unknown event types and unknown message ids are ignored (returns None).
    """
    event_type = payload.get("type")
    target = PROVIDER_EVENT_STATUS.get(event_type)
    data = payload.get("data") or {}
    message_id = data.get("email_id")
    if target is None or not message_id:
        logger.debug("provider_event_ignored", event_type=event_type)
        return None

    send = db.execute(
        select(EmailSend).where(EmailSend.provider_message_id == message_id)
    ).scalars().first()
    if send is None:
        logger.warning("provider_event_unknown_message", event_type=event_type, message_id=message_id)
        return None

    now = clock()
    changed = advance_status(send, target, now)

    if target == SendStatus.BOUNCED:
        _log_event(db, "bounce", send=send, data={"bounce": data.get("bounce")}, now=now)
        subscriber = db.get(Subscriber, send.subscriber_id)
        if subscriber is not None and subscriber.status == SubscriberStatus.ACTIVE:
            subscriber.status = SubscriberStatus.BOUNCED
            subscriber.updated_at = now
        db.commit()
    elif target == SendStatus.COMPLAINED:
        _log_event(db, "complaint", send=send, now=now)
        db.commit()
        record_unsubscribe(db, send.subscriber_id, campaign_id=send.campaign_id, source="complaint", clock=clock)
    else:
        db.commit()

    logger.info(
        "provider_event_applied",
        event_type=event_type,
        email_send_id=send.id,
        status=send.status,
        changed=changed,
    )
    return send


# ============================================================
# WEBHOOK SIGNATURES (Svix scheme used by Resend)
# ============================================================

def _secret_bytes(secret: str) -> bytes:
    if secret.startswith("whsec_"):
        return base64.b64decode(secret[len("whsec_"):])
    return secret.encode("utf-8")


def sign_webhook_payload(body: bytes, message_id: str, timestamp: int, secret: str) -> str:
    """Return the ``v1,<base64>`` signature for a webhook body."""
    signed = f"{message_id}.{timestamp}.".encode("utf-8") + body
    digest = hmac.new(_secret_bytes(secret), signed, hashlib.sha256).digest()
    return "v1," + base64.b64encode(digest).decode("ascii")


def verify_webhook_signature(body: bytes, headers: Mapping[str, str], secret: str,
                             now: Optional[float] = None) -> bool:
    message_id = headers.get("svix-id")
    timestamp = headers.get("svix-timestamp")
    signatures = headers.get("svix-signature")
    if not message_id or not timestamp or not signatures:
        return False

    try:
        timestamp = int(timestamp)
    except ValueError:
        return False

    now = now if now is not None else time.time()
    if abs(now - timestamp) > SIGNATURE_TOLERANCE_SECONDS:
        return False

    expected = sign_webhook_payload(body, message_id, timestamp, secret)
    return any(hmac.compare_digest(expected, candidate) for candidate in signatures.split())

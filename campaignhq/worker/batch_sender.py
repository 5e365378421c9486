"""
Batch sending of one campaign to the delivery provider.

For every batch of recipients:

1. create a ``pending`` EmailSend row per recipient (its id goes into the
   tracking links, so it must exist before the message is built)
2. render the template and apply click/open tracking to the HTML part
3. submit the batch, retrying on rate limits with exponential backoff
4. on success, backfill provider ids positionally and mark rows ``sent``

A failed row insert or render only drops that recipient from the batch. A
batch that exhausts its retries leaves its rows ``pending`` and the remaining
batches still run. Batches go out one at a time with a fixed pause between
them.
"""

import asyncio
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..exceptions import ProviderError, ProviderRateLimited
from ..logging_config import get_logger
from ..models.email_send import EmailSend, SendStatus
from ..timeutils import utcnow
from .provider import DeliveryProvider, OutboundMessage
from .recipients import Recipient
from .renderer import TemplateRenderer
from .tracking import TrackingOptions, apply_email_tracking
from .unsubscribe import build_unsubscribe_url

logger = get_logger("batch_sender")


@dataclass
class RetryPolicy:
    """Bounded exponential backoff: delay_for(n) = base_delay * 2**n."""
    max_retries: int = 3
    base_delay: float = 1.0

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * (2 ** attempt)


@dataclass
class SendResult:
    campaign_id: int
    total_recipients: int = 0
    sent: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class BatchOutcome:
    success: bool
    provider_ids: List[Optional[str]] = field(default_factory=list)
    error: Optional[str] = None
    attempts: int = 1


@dataclass
class PreparedEmail:
    email_send_id: int
    recipient: Recipient
    message: OutboundMessage


def chunked(items: list, size: int):
    for start in range(0, len(items), size):
        yield items[start:start + size]


class BatchSender:
    def __init__(
        self,
        db: Session,
        provider: DeliveryProvider,
        renderer: TemplateRenderer,
        *,
        from_email: str,
        tracking_base_url: str,
        unsubscribe_secret: str = "",
        utm_source: str = "campaignhq_email",
        batch_size: int = 100,
        batch_delay: float = 1.0,
        retry_policy: Optional[RetryPolicy] = None,
        provider_timeout: Optional[float] = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = utcnow,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.db = db
        self.provider = provider
        self.renderer = renderer
        self.from_email = from_email
        self.tracking_base_url = tracking_base_url.rstrip("/")
        self.unsubscribe_secret = unsubscribe_secret
        self.utm_source = utm_source
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.retry_policy = retry_policy or RetryPolicy()
        self.provider_timeout = provider_timeout
        self.sleep = sleep
        self.clock = clock

    @classmethod
    def from_settings(cls, db: Session, provider: DeliveryProvider, renderer: TemplateRenderer, settings, **overrides):
        options = dict(
            from_email=settings.from_email,
            tracking_base_url=settings.tracking_base_url,
            unsubscribe_secret=settings.unsubscribe_secret,
            utm_source=settings.utm_source,
            batch_size=settings.batch_size,
            batch_delay=settings.batch_delay_seconds,
            retry_policy=RetryPolicy(settings.max_retries, settings.base_retry_delay_seconds),
            provider_timeout=settings.provider_timeout_seconds,
        )
        options.update(overrides)
        return cls(db, provider, renderer, **options)

    # ------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------

    async def send(self, campaign, recipients: List[Recipient]) -> SendResult:
        campaign_id = campaign.id
        template_id = campaign.template_id
        subject = campaign.subject

        result = SendResult(campaign_id=campaign_id, total_recipients=len(recipients))
        if not recipients:
            return result

        total_batches = (len(recipients) + self.batch_size - 1) // self.batch_size
        submitted_before = False

        for batch_number, batch in enumerate(chunked(recipients, self.batch_size), start=1):
            logger.info(
                "batch_started",
                campaign_id=campaign_id,
                batch=batch_number,
                total_batches=total_batches,
                size=len(batch),
            )

            prepared = self._prepare_batch(campaign_id, template_id, subject, batch, result)
            if not prepared:
                continue

            if submitted_before:
                await self.sleep(self.batch_delay)
            submitted_before = True

            outcome = await self.send_with_retry([p.message for p in prepared])

            if outcome.success:
                self._record_accepted(prepared, outcome.provider_ids, result)
                logger.info("batch_sent", campaign_id=campaign_id, batch=batch_number, attempts=outcome.attempts)
            else:
                result.failed += len(prepared)
                result.errors.append(f"Batch {batch_number} failed: {outcome.error}")
                logger.error(
                    "batch_failed",
                    campaign_id=campaign_id,
                    batch=batch_number,
                    attempts=outcome.attempts,
                    reason=outcome.error,
                )

        logger.info(
            "campaign_batches_complete",
            campaign_id=campaign_id,
            total=result.total_recipients,
            sent=result.sent,
            failed=result.failed,
        )
        return result

    async def send_with_retry(self, messages: List[OutboundMessage]) -> BatchOutcome:
        """Submit one batch; only rate limiting is retried."""
        attempt = 0
        while True:
            try:
                provider_ids = await asyncio.wait_for(
                    self.provider.batch_send(messages),
                    timeout=self.provider_timeout,
                )
                return BatchOutcome(True, list(provider_ids or []), None, attempt + 1)
            except ProviderRateLimited as e:
                if attempt >= self.retry_policy.max_retries:
                    return BatchOutcome(
                        False,
                        error=f"rate limited, gave up after {attempt} retries: {e}",
                        attempts=attempt + 1,
                    )
                delay = self.retry_policy.delay_for(attempt)
                logger.warning(
                    "batch_rate_limited",
                    attempt=attempt + 1,
                    max_retries=self.retry_policy.max_retries,
                    delay_seconds=delay,
                )
                await self.sleep(delay)
                attempt += 1
            except asyncio.TimeoutError:
                # Not retried: the provider may already have accepted the batch
                return BatchOutcome(
                    False,
                    error=f"provider call timed out after {self.provider_timeout}s",
                    attempts=attempt + 1,
                )
            except ProviderError as e:
                return BatchOutcome(False, error=str(e) or type(e).__name__, attempts=attempt + 1)
            except Exception as e:
                logger.error("batch_provider_error", error=e)
                return BatchOutcome(False, error=f"{type(e).__name__}: {e}", attempts=attempt + 1)

    # ------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------

    def _create_send_row(self, campaign_id: int, recipient: Recipient) -> int:
        row = EmailSend(
            subscriber_id=recipient.subscriber_id,
            campaign_id=campaign_id,
            status=SendStatus.PENDING,
            created_at=self.clock(),
        )
        self.db.add(row)
        self.db.commit()
        return row.id

    def _build_message(self, template_id: int, subject: str, campaign_id: int,
                       recipient: Recipient, email_send_id: int) -> OutboundMessage:
        unsubscribe_url = build_unsubscribe_url(
            self.tracking_base_url, recipient.subscriber_id, self.unsubscribe_secret,
            campaign_id=campaign_id,
        )
        variables = {
            "firstName": recipient.first_name or "Friend",
            "lastName": recipient.last_name or "",
            "email": recipient.email,
            "unsubscribeUrl": unsubscribe_url,
        }
        rendered = self.renderer.render(template_id, variables)
        html = apply_email_tracking(
            rendered.html,
            TrackingOptions(
                base_url=self.tracking_base_url,
                email_send_id=email_send_id,
                campaign_id=campaign_id,
                utm_source=self.utm_source,
            ),
        )
        return OutboundMessage(
            from_address=self.from_email,
            to=recipient.email,
            subject=subject,
            html=html,
            text=rendered.text,
            headers={
                "List-Unsubscribe": f"<{unsubscribe_url}>",
                "List-Unsubscribe-Post": "List-Unsubscribe=One-Click",
            },
        )

    def _prepare_batch(self, campaign_id: int, template_id: int, subject: str,
                       batch: List[Recipient], result: SendResult) -> List[PreparedEmail]:
        created = []
        for recipient in batch:
            try:
                created.append((recipient, self._create_send_row(campaign_id, recipient)))
            except Exception as e:
                self.db.rollback()
                result.failed += 1
                result.errors.append(f"DB insert failed for {recipient.email}: {e}")
                logger.error("send_row_failed", campaign_id=campaign_id, email=recipient.email, error=e)

        prepared = []
        for recipient, email_send_id in created:
            try:
                message = self._build_message(template_id, subject, campaign_id, recipient, email_send_id)
            except Exception as e:
                result.failed += 1
                result.errors.append(f"Render failed for {recipient.email}: {e}")
                logger.error("render_failed", campaign_id=campaign_id, email=recipient.email, error=e)
                continue
            prepared.append(PreparedEmail(email_send_id, recipient, message))
        return prepared

    def _record_accepted(self, prepared: List[PreparedEmail], provider_ids: List[Optional[str]],
                         result: SendResult):
        now = self.clock()
        for index, item in enumerate(prepared):
            provider_id = provider_ids[index] if index < len(provider_ids) else None
            try:
                self.db.execute(
                    update(EmailSend)
                    .where(EmailSend.id == item.email_send_id)
                    .values(status=SendStatus.SENT, provider_message_id=provider_id, sent_at=now)
                )
                self.db.commit()
                result.sent += 1
            except Exception as e:
                self.db.rollback()
                result.failed += 1
                result.errors.append(f"DB update failed for {item.recipient.email}: {e}")
                logger.error("send_row_update_failed", email_send_id=item.email_send_id, error=e)

"""
Scheduled campaign dispatch

Runs due campaigns through the send pipeline:
- Finds campaigns with status ``scheduled`` whose time has come
- Claims each one by moving it to ``sending`` (conditional update)
- Resolves recipients and hands them to the BatchSender
- Marks the campaign ``sent``, or rolls it back to ``draft`` on a fatal error

One campaign failing never stops the others in the same tick. Ticks come
from an external trigger (cron calling the CLI or the dispatch endpoint);
``PeriodicTrigger`` is an in-process alternative for single-node setups.
"""

import asyncio
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..exceptions import (
    CampaignError,
    CampaignSendError,
    CampaignTransitionConflict,
    CampaignValidationError,
)
from ..logging_config import get_logger, timed
from ..models.campaign import Campaign, CampaignStatus
from ..timeutils import utcnow
from .batch_sender import BatchSender, SendResult
from .provider import DeliveryProvider
from .recipients import RecipientResolver
from .renderer import TemplateCache, TemplateRenderer
from .state_machine import CampaignStateMachine, parse_segment_ids

logger = get_logger("scheduler")


@dataclass
class DispatchResult:
    """Summary of one dispatcher tick"""
    found: int = 0
    processed: int = 0
    failed: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)
    results: List[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


class ScheduledDispatcher:
    """
    Drives due campaigns through sending.

    The ``scheduled -> sending`` write is the only concurrency guard: a
    campaign claimed by one tick no longer matches the ``scheduled`` filter
    of any other tick.
    """

    def __init__(
        self,
        db: Session,
        sender: BatchSender,
        state_machine: Optional[CampaignStateMachine] = None,
        resolver: Optional[RecipientResolver] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.sender = sender
        self.clock = clock
        self.state = state_machine or CampaignStateMachine(db, clock=clock)
        self.resolver = resolver or RecipientResolver(db)

    def find_due_campaigns(self) -> List[int]:
        """Ids of scheduled campaigns whose time has come, oldest first."""
        return list(self.db.execute(
            select(Campaign.id)
            .where(
                Campaign.status == CampaignStatus.SCHEDULED,
                Campaign.scheduled_at <= self.clock(),
            )
            .order_by(Campaign.scheduled_at, Campaign.id)
        ).scalars().all())

    async def dispatch_campaign(self, campaign_id: int) -> SendResult:
        """
        Send one scheduled campaign.

        Raises:
            CampaignNotFound: no such campaign
            CampaignTransitionConflict: someone else already claimed it
            CampaignSendError: fatal failure; the campaign is back in draft
        """
        campaign = self.state.get(campaign_id)
        self.db.refresh(campaign)

        try:
            self.state.validate_ready(campaign)
        except CampaignValidationError as e:
            self.state.rollback_to_draft(campaign_id, from_statuses=(CampaignStatus.SCHEDULED,))
            raise CampaignSendError(campaign_id, str(e)) from e

        self.state.begin_sending(campaign_id)

        try:
            campaign = self.state.get(campaign_id)
            segment_ids = parse_segment_ids(campaign.segment_ids)
            # Fail before any rows are written if the template is gone
            self.sender.renderer.load(campaign.template_id)

            recipients = self.resolver.resolve(segment_ids)
            logger.info(
                "campaign_recipients_resolved",
                campaign_id=campaign_id,
                segments=len(segment_ids),
                recipients=len(recipients),
            )

            result = await self.sender.send(campaign, recipients)
            self.state.mark_sent(campaign_id)
        except Exception as e:
            logger.error("campaign_send_failed", campaign_id=campaign_id, error=e)
            self.state.rollback_to_draft(campaign_id)
            raise CampaignSendError(campaign_id, str(e)) from e

        logger.info(
            "campaign_dispatched",
            campaign_id=campaign_id,
            sent=result.sent,
            failed=result.failed,
        )
        return result

    async def send_now(self, campaign_id: int) -> SendResult:
        """draft -> scheduled (due now) -> sending -> sent in one call."""
        self.state.schedule(campaign_id, None)
        return await self.dispatch_campaign(campaign_id)

    @timed(logger)
    async def run_once(self) -> DispatchResult:
        result = DispatchResult()
        due = self.find_due_campaigns()
        result.found = len(due)

        if due:
            logger.info("dispatch_tick_started", due=len(due))

        for campaign_id in due:
            try:
                send_result = await self.dispatch_campaign(campaign_id)
                result.processed += 1
                result.results.append(send_result.to_dict())
            except CampaignTransitionConflict as e:
                result.skipped += 1
                logger.info("campaign_skipped", campaign_id=campaign_id, reason=str(e))
            except CampaignError as e:
                result.failed += 1
                result.errors.append(f"Campaign {campaign_id}: {e}")
            except Exception as e:
                self.db.rollback()
                result.failed += 1
                result.errors.append(f"Campaign {campaign_id}: {e}")
                logger.error("campaign_dispatch_error", campaign_id=campaign_id, error=e)

        logger.info(
            "dispatch_tick_complete",
            found=result.found,
            processed=result.processed,
            failed=result.failed,
            skipped=result.skipped,
        )
        return result


def build_dispatcher(
    db: Session,
    provider: DeliveryProvider,
    settings,
    cache: Optional[TemplateCache] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], datetime] = utcnow,
) -> ScheduledDispatcher:
    """Wire a dispatcher and its collaborators from settings."""
    if cache is None:
        cache = TemplateCache(ttl_seconds=settings.template_cache_ttl_seconds, clock=clock)
    renderer = TemplateRenderer(db, cache)
    sender = BatchSender.from_settings(db, provider, renderer, settings, sleep=sleep, clock=clock)
    state_machine = CampaignStateMachine(
        db,
        clock=clock,
        min_schedule_lead=timedelta(minutes=settings.min_schedule_lead_minutes),
    )
    return ScheduledDispatcher(db, sender, state_machine=state_machine, clock=clock)


async def run_dispatch_tick(
    session_factory: Callable[[], Session],
    provider: DeliveryProvider,
    settings,
    cache: Optional[TemplateCache] = None,
) -> DispatchResult:
    """One tick with its own session."""
    db = session_factory()
    try:
        return await build_dispatcher(db, provider, settings, cache=cache).run_once()
    finally:
        db.close()


class PeriodicTrigger:
    """Runs an async tick every ``interval_seconds`` until stopped."""

    def __init__(
        self,
        tick: Callable[[], Awaitable],
        interval_seconds: float,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        name: str = "dispatcher",
    ):
        self.tick = tick
        self.interval = interval_seconds
        self.sleep = sleep
        self.name = name
        self._task: Optional[asyncio.Task] = None
        self._stopping = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run(self, max_ticks: Optional[int] = None) -> int:
        """Loop until stopped (or ``max_ticks`` reached). Returns ticks run."""
        ticks = 0
        while not self._stopping:
            try:
                await self.tick()
            except Exception as e:
                logger.error("periodic_tick_failed", trigger=self.name, error=e)
            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                break
            await self.sleep(self.interval)
        return ticks

    def start(self):
        if self.running:
            return
        self._stopping = False
        self._task = asyncio.create_task(self.run())
        logger.info("periodic_trigger_started", trigger=self.name, interval_seconds=self.interval)

    async def stop(self):
        self._stopping = True
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("periodic_trigger_stopped", trigger=self.name)

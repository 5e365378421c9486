"""
Campaign lifecycle

    draft -> scheduled -> sending -> sent
    scheduled -> draft          (cancel)
    sending -> draft            (send failure rollback)
    draft -> cancelled          (abandon)

``sent`` and ``cancelled`` are terminal. A failed send goes back to ``draft``
rather than ``scheduled`` so the next scheduler tick does not pick it up again.

Status writes that act as a concurrency guard use a conditional UPDATE and
check the affected row count instead of a read-then-write pair.
"""

import json
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from ..exceptions import (
    CampaignDataError,
    CampaignNotFound,
    CampaignTransitionConflict,
    CampaignValidationError,
)
from ..logging_config import get_logger
from ..models.campaign import Campaign, CampaignStatus
from ..timeutils import as_utc_naive, utcnow

logger = get_logger("state_machine")


TRANSITIONS = {
    CampaignStatus.DRAFT: {CampaignStatus.SCHEDULED, CampaignStatus.CANCELLED},
    CampaignStatus.SCHEDULED: {CampaignStatus.DRAFT, CampaignStatus.SENDING},
    CampaignStatus.SENDING: {CampaignStatus.SENT, CampaignStatus.DRAFT},
    CampaignStatus.SENT: set(),
    CampaignStatus.CANCELLED: set(),
}


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, set())


def parse_segment_ids(raw: Optional[str]) -> List[int]:
    """Decode the stored JSON segment list. Malformed data is a fatal error."""
    if raw is None or raw == "":
        return []
    try:
        value = json.loads(raw)
    except ValueError as e:
        raise CampaignDataError(f"Invalid segment_ids JSON: {e}") from e
    if not isinstance(value, list):
        raise CampaignDataError("segment_ids must be a JSON array")
    try:
        return [int(v) for v in value]
    except (TypeError, ValueError) as e:
        raise CampaignDataError(f"segment_ids must contain integers: {value!r}") from e


class CampaignStateMachine:
    """Legal status transitions for one campaign table, plus their side effects."""

    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime] = utcnow,
        min_schedule_lead: timedelta = timedelta(minutes=15),
    ):
        self.db = db
        self.clock = clock
        self.min_schedule_lead = min_schedule_lead

    def get(self, campaign_id: int) -> Campaign:
        campaign = self.db.get(Campaign, campaign_id)
        if campaign is None:
            raise CampaignNotFound(campaign_id)
        return campaign

    # ------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------

    def validate_ready(self, campaign: Campaign) -> List[int]:
        """Template and at least one segment are required before leaving draft."""
        if not campaign.template_id:
            raise CampaignValidationError(f"Campaign {campaign.id} has no template assigned")
        try:
            segment_ids = parse_segment_ids(campaign.segment_ids)
        except CampaignDataError as e:
            raise CampaignValidationError(f"Campaign {campaign.id}: {e}") from e
        if not segment_ids:
            raise CampaignValidationError(f"Campaign {campaign.id} must have at least one segment selected")
        return segment_ids

    def assert_editable(self, campaign: Campaign):
        if campaign.status != CampaignStatus.DRAFT:
            raise CampaignValidationError(
                f"Only draft campaigns can be updated (campaign {campaign.id} is {campaign.status})"
            )

    def _require_status(self, campaign: Campaign, target: str):
        if not can_transition(campaign.status, target):
            raise CampaignValidationError(
                f"Campaign {campaign.id} cannot move from {campaign.status} to {target}"
            )

    # ------------------------------------------------------------
    # Operator transitions
    # ------------------------------------------------------------

    def schedule(self, campaign_id: int, scheduled_at: Optional[datetime] = None) -> Campaign:
        """draft -> scheduled. ``scheduled_at=None`` means due immediately."""
        campaign = self.get(campaign_id)
        self._require_status(campaign, CampaignStatus.SCHEDULED)
        self.validate_ready(campaign)

        now = self.clock()
        if scheduled_at is not None:
            scheduled_at = as_utc_naive(scheduled_at)
            if scheduled_at < now + self.min_schedule_lead:
                minutes = int(self.min_schedule_lead.total_seconds() // 60)
                raise CampaignValidationError(
                    f"Scheduled time must be at least {minutes} minutes from now"
                )

        campaign.status = CampaignStatus.SCHEDULED
        campaign.scheduled_at = scheduled_at or now
        self.db.commit()
        self.db.refresh(campaign)

        logger.info(
            "campaign_scheduled",
            campaign_id=campaign.id,
            scheduled_at=campaign.scheduled_at,
            send_now=scheduled_at is None,
        )
        return campaign

    def cancel(self, campaign_id: int) -> Campaign:
        """scheduled -> draft. Only possible before sending starts."""
        campaign = self.get(campaign_id)
        if campaign.status != CampaignStatus.SCHEDULED:
            raise CampaignValidationError("Only scheduled campaigns can be cancelled")

        result = self.db.execute(
            update(Campaign)
            .where(Campaign.id == campaign_id, Campaign.status == CampaignStatus.SCHEDULED)
            .values(status=CampaignStatus.DRAFT, scheduled_at=None, updated_at=self.clock())
        )
        self.db.commit()
        if result.rowcount != 1:
            raise CampaignTransitionConflict(f"Campaign {campaign_id} left scheduled state before it could be cancelled")

        self.db.refresh(campaign)
        logger.info("campaign_cancelled", campaign_id=campaign_id)
        return campaign

    def abandon(self, campaign_id: int) -> Campaign:
        """draft -> cancelled (terminal)."""
        campaign = self.get(campaign_id)
        self._require_status(campaign, CampaignStatus.CANCELLED)
        campaign.status = CampaignStatus.CANCELLED
        campaign.scheduled_at = None
        self.db.commit()
        self.db.refresh(campaign)
        logger.info("campaign_abandoned", campaign_id=campaign_id)
        return campaign

    # ------------------------------------------------------------
    # Pipeline transitions
    # ------------------------------------------------------------

    def begin_sending(self, campaign_id: int):
        """scheduled -> sending, committed before any send work starts."""
        result = self.db.execute(
            update(Campaign)
            .where(Campaign.id == campaign_id, Campaign.status == CampaignStatus.SCHEDULED)
            .values(status=CampaignStatus.SENDING, updated_at=self.clock())
        )
        self.db.commit()
        if result.rowcount != 1:
            raise CampaignTransitionConflict(f"Campaign {campaign_id} is no longer scheduled")
        self.db.expire_all()
        logger.info("campaign_sending", campaign_id=campaign_id)

    def mark_sent(self, campaign_id: int):
        """sending -> sent, recording sent_at."""
        now = self.clock()
        result = self.db.execute(
            update(Campaign)
            .where(Campaign.id == campaign_id, Campaign.status == CampaignStatus.SENDING)
            .values(status=CampaignStatus.SENT, sent_at=now, updated_at=now)
        )
        self.db.commit()
        if result.rowcount != 1:
            raise CampaignTransitionConflict(f"Campaign {campaign_id} is not in sending state")
        self.db.expire_all()
        logger.info("campaign_sent", campaign_id=campaign_id)

    def rollback_to_draft(
        self,
        campaign_id: int,
        from_statuses=(CampaignStatus.SENDING, CampaignStatus.SCHEDULED),
    ) -> bool:
        """sending/scheduled -> draft after a fatal pipeline error."""
        self.db.rollback()
        result = self.db.execute(
            update(Campaign)
            .where(
                Campaign.id == campaign_id,
                Campaign.status.in_(list(from_statuses)),
            )
            .values(status=CampaignStatus.DRAFT, updated_at=self.clock())
        )
        self.db.commit()
        self.db.expire_all()
        rolled_back = result.rowcount == 1
        logger.warning("campaign_rolled_back", campaign_id=campaign_id, rolled_back=rolled_back)
        return rolled_back

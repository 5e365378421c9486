"""
Daily metrics aggregation.

Computes per-day email engagement counters (one row per campaign that had
sends that day, plus an overall row with ``campaign_id = NULL``) and
subscriber growth counters, and upserts them. Every (date, campaign) row is
written and committed on its own, so re-running a day converges to the same
rows and one failing bucket does not take the others down.

Counters are defined over a half-open UTC window ``[day 00:00, day+1 00:00)``:

- sent: sends whose ``sent_at`` falls in the window
- delivered: of those, status delivered/opened/clicked
- opened: of those, status opened/clicked
- clicked / bounced: of those, that exact status
- unsubscribed: ``unsubscribe`` events in the window
"""

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..logging_config import get_logger, timed
from ..models.email_send import EmailEvent, EmailSend, SendStatus
from ..models.metrics import DailyEmailMetrics, DailySubscriberMetrics
from ..models.subscriber import Subscriber, SubscriberStatus
from ..timeutils import day_window, previous_day, utcnow

logger = get_logger("metrics")

EMAIL_COUNTERS = ("sent", "delivered", "opened", "clicked", "bounced", "unsubscribed")


@dataclass
class DailyMetricsResult:
    date: date
    campaigns: List[int] = field(default_factory=list)
    email_rows: int = 0
    subscriber_row: bool = False
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["date"] = self.date.isoformat()
        return data


class MetricsAggregator:
    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    @timed(logger)
    def aggregate(self, day: Optional[date] = None) -> DailyMetricsResult:
        """Aggregate one UTC day (yesterday by default)."""
        day = day or previous_day(self.clock())
        start, end = day_window(day)
        result = DailyMetricsResult(date=day)

        result.campaigns = self.campaigns_with_sends(start, end)
        buckets = list(result.campaigns) + [None]

        for campaign_id in buckets:
            try:
                counts = self.compute_email_metrics(start, end, campaign_id)
                self._upsert_email_metrics(day, campaign_id, counts)
                result.email_rows += 1
            except Exception as e:
                self.db.rollback()
                result.errors.append(f"Email metrics for campaign {campaign_id} failed: {e}")
                logger.error("email_metrics_failed", date=day.isoformat(), campaign_id=campaign_id, error=e)

        try:
            counts = self.compute_subscriber_metrics(start, end)
            self._upsert_subscriber_metrics(day, counts)
            result.subscriber_row = True
        except Exception as e:
            self.db.rollback()
            result.errors.append(f"Subscriber metrics failed: {e}")
            logger.error("subscriber_metrics_failed", date=day.isoformat(), error=e)

        logger.info(
            "daily_metrics_aggregated",
            date=day.isoformat(),
            campaigns=len(result.campaigns),
            email_rows=result.email_rows,
            errors=len(result.errors),
        )
        return result

    # ------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------

    def campaigns_with_sends(self, start: datetime, end: datetime) -> List[int]:
        return list(self.db.execute(
            select(EmailSend.campaign_id)
            .where(
                EmailSend.created_at >= start,
                EmailSend.created_at < end,
                EmailSend.campaign_id.isnot(None),
            )
            .distinct()
            .order_by(EmailSend.campaign_id)
        ).scalars().all())

    def compute_email_metrics(self, start: datetime, end: datetime,
                              campaign_id: Optional[int] = None) -> Dict[str, int]:
        window = [EmailSend.sent_at >= start, EmailSend.sent_at < end]
        if campaign_id is not None:
            window.append(EmailSend.campaign_id == campaign_id)

        def count_sends(*extra) -> int:
            return self.db.scalar(select(func.count(EmailSend.id)).where(*window, *extra)) or 0

        unsubscribe_filter = [
            EmailEvent.event_type == "unsubscribe",
            EmailEvent.created_at >= start,
            EmailEvent.created_at < end,
        ]
        if campaign_id is not None:
            unsubscribe_filter.append(EmailEvent.campaign_id == campaign_id)

        return {
            "sent": count_sends(),
            "delivered": count_sends(EmailSend.status.in_(SendStatus.DELIVERED_OR_BETTER)),
            "opened": count_sends(EmailSend.status.in_(SendStatus.OPENED_OR_BETTER)),
            "clicked": count_sends(EmailSend.status == SendStatus.CLICKED),
            "bounced": count_sends(EmailSend.status == SendStatus.BOUNCED),
            "unsubscribed": self.db.scalar(
                select(func.count(EmailEvent.id)).where(*unsubscribe_filter)
            ) or 0,
        }

    def compute_subscriber_metrics(self, start: datetime, end: datetime) -> Dict[str, int]:
        new_subscribers = self.db.scalar(
            select(func.count(Subscriber.id))
            .where(Subscriber.subscribed_at >= start, Subscriber.subscribed_at < end)
        ) or 0
        unsubscribed = self.db.scalar(
            select(func.count(EmailEvent.id))
            .where(
                EmailEvent.event_type == "unsubscribe",
                EmailEvent.created_at >= start,
                EmailEvent.created_at < end,
            )
        ) or 0
        total_active = self.db.scalar(
            select(func.count(Subscriber.id))
            .where(Subscriber.status == SubscriberStatus.ACTIVE, Subscriber.subscribed_at < end)
        ) or 0
        return {
            "new_subscribers": new_subscribers,
            "unsubscribed": unsubscribed,
            "net_growth": new_subscribers - unsubscribed,
            "total_active": total_active,
        }

    # ------------------------------------------------------------
    # Upserts
    # ------------------------------------------------------------

    def _upsert_email_metrics(self, day: date, campaign_id: Optional[int], counts: Dict[str, int]):
        # NULL never equals NULL in a unique index, so the overall row is matched explicitly
        query = select(DailyEmailMetrics).where(DailyEmailMetrics.date == day)
        if campaign_id is None:
            query = query.where(DailyEmailMetrics.campaign_id.is_(None))
        else:
            query = query.where(DailyEmailMetrics.campaign_id == campaign_id)

        row = self.db.execute(query).scalars().first()
        if row is None:
            row = DailyEmailMetrics(date=day, campaign_id=campaign_id)
            self.db.add(row)

        for key in EMAIL_COUNTERS:
            setattr(row, key, counts[key])
        row.updated_at = self.clock()
        self.db.commit()

    def _upsert_subscriber_metrics(self, day: date, counts: Dict[str, int]):
        row = self.db.execute(
            select(DailySubscriberMetrics).where(DailySubscriberMetrics.date == day)
        ).scalars().first()
        if row is None:
            row = DailySubscriberMetrics(date=day)
            self.db.add(row)

        for key, value in counts.items():
            setattr(row, key, value)
        row.updated_at = self.clock()
        self.db.commit()

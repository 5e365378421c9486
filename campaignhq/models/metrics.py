"""
Daily aggregate tables. Derived data: safe to delete and rebuild.
"""
from sqlalchemy import Column, Integer, Date, DateTime, UniqueConstraint
from ..database import Base
from ..timeutils import utcnow


class DailyEmailMetrics(Base):
    __tablename__ = "daily_email_metrics"
    __table_args__ = (UniqueConstraint("date", "campaign_id", name="uq_daily_email_metrics_date_campaign"),)

    id = Column(Integer, primary_key=True, index=True)
    date = Column(Date, nullable=False, index=True)
    campaign_id = Column(Integer, nullable=True, index=True)  # null = all campaigns
    sent = Column(Integer, default=0, nullable=False)
    delivered = Column(Integer, default=0, nullable=False)
    opened = Column(Integer, default=0, nullable=False)
    clicked = Column(Integer, default=0, nullable=False)
    bounced = Column(Integer, default=0, nullable=False)
    unsubscribed = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        """Convert to dictionary for API responses"""
        return {
            "date": self.date.isoformat(),
            "campaign_id": self.campaign_id,
            "sent": self.sent,
            "delivered": self.delivered,
            "opened": self.opened,
            "clicked": self.clicked,
            "bounced": self.bounced,
            "unsubscribed": self.unsubscribed,
        }


class DailySubscriberMetrics(Base):
    __tablename__ = "daily_subscriber_metrics"

    id = Column(Integer, primary_key=True, index=True)
    date = Column(Date, nullable=False, unique=True, index=True)
    new_subscribers = Column(Integer, default=0, nullable=False)
    unsubscribed = Column(Integer, default=0, nullable=False)
    net_growth = Column(Integer, default=0, nullable=False)
    total_active = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        """Convert to dictionary for API responses"""
        return {
            "date": self.date.isoformat(),
            "new_subscribers": self.new_subscribers,
            "unsubscribed": self.unsubscribed,
            "net_growth": self.net_growth,
            "total_active": self.total_active,
        }

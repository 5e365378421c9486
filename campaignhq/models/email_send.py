"""
EmailSend and EmailEvent models: the durable send log and event log.
"""
from sqlalchemy import Column, Integer, String, DateTime, JSON, ForeignKey
from sqlalchemy.orm import relationship
from ..database import Base
from ..timeutils import utcnow


class SendStatus:
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    OPENED = "opened"
    CLICKED = "clicked"
    BOUNCED = "bounced"
    COMPLAINED = "complained"

    DELIVERED_OR_BETTER = (DELIVERED, OPENED, CLICKED)
    OPENED_OR_BETTER = (OPENED, CLICKED)


class EmailSend(Base):
    __tablename__ = "email_sends"

    id = Column(Integer, primary_key=True, index=True)
    subscriber_id = Column(Integer, ForeignKey("subscribers.id"), nullable=False, index=True)
    campaign_id = Column(Integer, ForeignKey("campaigns.id"), nullable=True, index=True)
    provider_message_id = Column(String(128), nullable=True, index=True)
    status = Column(String(20), default=SendStatus.PENDING, nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, index=True)
    sent_at = Column(DateTime, nullable=True, index=True)
    delivered_at = Column(DateTime, nullable=True)
    opened_at = Column(DateTime, nullable=True)
    clicked_at = Column(DateTime, nullable=True)

    campaign = relationship("Campaign", back_populates="sends")
    subscriber = relationship("Subscriber")

    def to_dict(self):
        """Convert to dictionary for API responses"""
        return {
            "id": self.id,
            "subscriber_id": self.subscriber_id,
            "campaign_id": self.campaign_id,
            "provider_message_id": self.provider_message_id,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "delivered_at": self.delivered_at.isoformat() if self.delivered_at else None,
            "opened_at": self.opened_at.isoformat() if self.opened_at else None,
            "clicked_at": self.clicked_at.isoformat() if self.clicked_at else None,
        }


class EmailEvent(Base):
    __tablename__ = "email_events"

    id = Column(Integer, primary_key=True, index=True)
    subscriber_id = Column(Integer, ForeignKey("subscribers.id", ondelete="SET NULL"), nullable=True, index=True)
    campaign_id = Column(Integer, nullable=True, index=True)
    email_send_id = Column(Integer, nullable=True)
    event_type = Column(String(30), nullable=False, index=True)  # open, click, unsubscribe, bounce, complaint
    event_data = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)
